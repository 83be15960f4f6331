import enum
from dataclasses import dataclass


class PromoKind(str, enum.Enum):
    PERCENT = "percent"


@dataclass(frozen=True)
class PromoRule:
    discount: int
    kind: PromoKind
    description: str


@dataclass(frozen=True)
class AppliedPromo:
    code: str
    rule: PromoRule


# Codes carry no expiry or redemption count; repeat use is allowed.
PROMO_CODES: dict[str, PromoRule] = {
    "VOKAISTHEBEST": PromoRule(discount=5, kind=PromoKind.PERCENT, description="5% off"),
    "PEGACYSHOP1": PromoRule(discount=10, kind=PromoKind.PERCENT, description="10% off"),
    "PEGACYFREE_VOKA": PromoRule(discount=100, kind=PromoKind.PERCENT, description="100% off"),
}


def normalize_promo_code(code: str | None) -> str | None:
    if code is None:
        return None
    normalized = code.strip().upper()
    return normalized or None


def lookup_promo_code(
    code: str | None,
    registry: dict[str, PromoRule] | None = None,
) -> AppliedPromo | None:
    """Return the rule for ``code`` or ``None`` when it is absent or unknown."""
    normalized = normalize_promo_code(code)
    if normalized is None:
        return None

    rule = (PROMO_CODES if registry is None else registry).get(normalized)
    if rule is None:
        return None
    return AppliedPromo(code=normalized, rule=rule)

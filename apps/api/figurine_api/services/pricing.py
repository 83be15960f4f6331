from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from figurine_api.config import settings
from figurine_api.models.order import ShippingDestination
from figurine_api.services.promo_codes import PromoKind, PromoRule, lookup_promo_code

SUBUNITS_PER_UNIT = 100


@dataclass(frozen=True)
class PricingRules:
    base_price: int = 129
    domestic_shipping_fee: int = 0
    international_shipping_fee: int = 30
    quantity_discount_percent: int = 15
    quantity_discount_min_units: int = 2
    min_chargeable_amount: int = 1

    def shipping_fee(self, destination: ShippingDestination) -> int:
        if destination == ShippingDestination.DOMESTIC:
            return self.domestic_shipping_fee
        return self.international_shipping_fee


@dataclass(frozen=True)
class PriceBreakdown:
    quantity: int
    shipping_destination: ShippingDestination
    subtotal: int
    quantity_discount: int
    promo_code: str | None
    promo_discount: int
    shipping: int
    total: int

    @property
    def amount_subunits(self) -> int:
        return self.total * SUBUNITS_PER_UNIT


DEFAULT_PRICING_RULES = PricingRules()


def pricing_rules_from_settings() -> PricingRules:
    return PricingRules(
        base_price=settings.base_price,
        domestic_shipping_fee=settings.domestic_shipping_fee,
        international_shipping_fee=settings.international_shipping_fee,
        quantity_discount_percent=settings.quantity_discount_percent,
        quantity_discount_min_units=settings.quantity_discount_min_units,
        min_chargeable_amount=settings.min_chargeable_amount,
    )


def _percent_of(amount: int, percent: int) -> int:
    value = Decimal(amount) * Decimal(percent) / Decimal(100)
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def compute_total(
    quantity: int,
    destination: ShippingDestination | str,
    promo_code: str | None = None,
    rules: PricingRules = DEFAULT_PRICING_RULES,
    promo_registry: dict[str, PromoRule] | None = None,
) -> PriceBreakdown:
    """Price an order.

    Steps run in a fixed order: subtotal, shipping, quantity discount, promo
    discount on the discounted total including shipping, then the clamp to
    the minimum chargeable amount. Unknown promo codes price exactly like no
    code at all.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValueError("quantity must be a positive integer")
    destination = ShippingDestination(destination)

    subtotal = rules.base_price * quantity
    shipping = rules.shipping_fee(destination)

    quantity_discount = 0
    if quantity >= rules.quantity_discount_min_units:
        quantity_discount = _percent_of(subtotal, rules.quantity_discount_percent)

    total_before_promo = subtotal - quantity_discount + shipping

    promo_discount = 0
    applied_code = None
    promo = lookup_promo_code(promo_code, promo_registry)
    if promo is not None and promo.rule.kind == PromoKind.PERCENT:
        promo_discount = _percent_of(total_before_promo, promo.rule.discount)
        applied_code = promo.code

    total = max(total_before_promo - promo_discount, rules.min_chargeable_amount)

    return PriceBreakdown(
        quantity=quantity,
        shipping_destination=destination,
        subtotal=subtotal,
        quantity_discount=quantity_discount,
        promo_code=applied_code,
        promo_discount=promo_discount,
        shipping=shipping,
        total=total,
    )

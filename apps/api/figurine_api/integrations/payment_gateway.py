import enum
import hashlib
import hmac
import json
import logging
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Protocol

import stripe
from pydantic import ValidationError

from figurine_api.config import settings
from figurine_api.integrations.errors import (
    IntegrationBadGatewayError,
    IntegrationError,
    IntegrationUnavailableError,
    WebhookSignatureError,
)
from figurine_api.observability import log_event, metrics_store
from figurine_api.schemas.payment import OrderPaymentMetadata

SERVICE = "payment_gateway"

PAYMENT_SUCCEEDED_EVENT = "payment_intent.succeeded"
PAYMENT_FAILED_EVENT = "payment_intent.payment_failed"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


_GATEWAY_STATUSES: dict[str, PaymentStatus] = {
    "requires_payment_method": PaymentStatus.PENDING,
    "requires_confirmation": PaymentStatus.PENDING,
    "requires_action": PaymentStatus.PENDING,
    "requires_capture": PaymentStatus.PROCESSING,
    "processing": PaymentStatus.PROCESSING,
    "succeeded": PaymentStatus.SUCCEEDED,
    "canceled": PaymentStatus.CANCELED,
}


def payment_status_from_gateway(value: str | None) -> PaymentStatus:
    if value is None:
        return PaymentStatus.PENDING
    return _GATEWAY_STATUSES.get(value, PaymentStatus.FAILED)


@dataclass(frozen=True)
class PaymentAuthorization:
    id: str
    client_secret: str
    status: PaymentStatus = PaymentStatus.PENDING


@dataclass(frozen=True)
class PaymentEvent:
    event_id: str
    type: str
    authorization_id: str
    status: PaymentStatus
    amount_subunits: int
    metadata: OrderPaymentMetadata | None


class PaymentGateway(Protocol):
    def authorize(
        self,
        *,
        amount_subunits: int,
        currency: str,
        metadata: OrderPaymentMetadata,
        receipt_email: str | None = None,
        description: str | None = None,
    ) -> PaymentAuthorization: ...

    def verify_event(self, payload: bytes, signature_header: str | None) -> PaymentEvent: ...

    def fetch_status(self, authorization_id: str) -> PaymentStatus: ...

    def cancel(self, authorization_id: str) -> None: ...


def encode_metadata(metadata: OrderPaymentMetadata) -> dict[str, str]:
    """Flatten metadata into the gateway's string map."""
    encoded: dict[str, str] = {}
    for key, value in metadata.model_dump(mode="json").items():
        encoded[key] = "" if value is None else str(value)
    return encoded


def decode_metadata(
    raw: dict[str, Any], *, payment_id: str | None = None
) -> OrderPaymentMetadata | None:
    """Rebuild typed metadata, or ``None`` when no order can be correlated.

    Metadata that names an order but breaks the contract is treated as
    uncorrelatable: the event is authentic, and redelivery cannot repair it.
    """
    if not raw or not raw.get("order_id"):
        return None

    values: dict[str, Any] = {key: (value or None) for key, value in raw.items()}
    try:
        return OrderPaymentMetadata.model_validate(values)
    except ValidationError as err:
        metrics_store.increment("payment_metadata_invalid_total")
        log_event(
            "payment_metadata_invalid",
            order_id=str(raw.get("order_id")),
            payment_id=payment_id,
            level=logging.WARNING,
            detail=f"{err.error_count()} contract error(s)",
        )
        return None


def sign_payload(payload: bytes, secret: str, timestamp: int) -> str:
    """Build a ``Stripe-Signature`` header for locally issued events."""
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def construct_event(
    payload: bytes,
    signature_header: str | None,
    secret: str,
    tolerance_s: int,
) -> PaymentEvent:
    if not signature_header:
        raise WebhookSignatureError(SERVICE, "Missing signature header")

    try:
        stripe.Webhook.construct_event(payload, signature_header, secret, tolerance=tolerance_s)
    except stripe.SignatureVerificationError as err:
        raise WebhookSignatureError(SERVICE, str(err)) from err
    except ValueError as err:
        raise WebhookSignatureError(SERVICE, "Webhook payload is not valid JSON") from err

    event = json.loads(payload)
    if not isinstance(event, dict):
        raise WebhookSignatureError(SERVICE, "Webhook payload is not an event object")

    intent = (event.get("data") or {}).get("object") or {}
    authorization_id = str(intent.get("id") or "")
    return PaymentEvent(
        event_id=str(event.get("id") or ""),
        type=str(event.get("type") or ""),
        authorization_id=authorization_id,
        status=payment_status_from_gateway(intent.get("status")),
        amount_subunits=int(intent.get("amount") or 0),
        metadata=decode_metadata(
            dict(intent.get("metadata") or {}), payment_id=authorization_id or None
        ),
    )


@contextmanager
def _stripe_errors() -> Iterator[None]:
    try:
        yield
    except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as err:
        raise IntegrationUnavailableError(SERVICE, str(err)) from err
    except stripe.StripeError as err:
        message = f"Payment gateway returned {err.http_status or 'an error'}"
        if err.user_message:
            message += f": {err.user_message}"
        raise IntegrationBadGatewayError(SERVICE, message) from err


def configure_stripe(*, api_base: str, timeout_s: float, max_retries: int) -> None:
    """Apply transport settings to the SDK's process-wide client."""
    stripe.api_base = api_base.rstrip("/")
    stripe.max_network_retries = max_retries
    stripe.default_http_client = stripe.RequestsClient(timeout=timeout_s)


class StripeGatewayClient:
    """PaymentIntents through the Stripe SDK."""

    def __init__(self, api_key: str, webhook_secret: str, *, webhook_tolerance_s: int) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.webhook_tolerance_s = webhook_tolerance_s

    def _require_key(self) -> str:
        if not self.api_key:
            raise IntegrationUnavailableError(SERVICE, "Stripe secret key is not configured")
        return self.api_key

    def authorize(
        self,
        *,
        amount_subunits: int,
        currency: str,
        metadata: OrderPaymentMetadata,
        receipt_email: str | None = None,
        description: str | None = None,
    ) -> PaymentAuthorization:
        api_key = self._require_key()
        params: dict[str, Any] = {
            "amount": amount_subunits,
            "currency": currency,
            "automatic_payment_methods": {"enabled": True},
            "metadata": encode_metadata(metadata),
        }
        if receipt_email:
            params["receipt_email"] = receipt_email
        if description:
            params["description"] = description

        with _stripe_errors():
            intent = stripe.PaymentIntent.create(
                api_key=api_key,
                idempotency_key=f"authorize-{metadata.order_id}",
                **params,
            )
        if not getattr(intent, "id", None) or not getattr(intent, "client_secret", None):
            raise IntegrationBadGatewayError(SERVICE, "Payment intent response missing id/secret")
        return PaymentAuthorization(
            id=str(intent.id),
            client_secret=str(intent.client_secret),
            status=payment_status_from_gateway(getattr(intent, "status", None)),
        )

    def verify_event(self, payload: bytes, signature_header: str | None) -> PaymentEvent:
        return construct_event(
            payload, signature_header, self.webhook_secret, self.webhook_tolerance_s
        )

    def fetch_status(self, authorization_id: str) -> PaymentStatus:
        api_key = self._require_key()
        with _stripe_errors():
            intent = stripe.PaymentIntent.retrieve(authorization_id, api_key=api_key)
        return payment_status_from_gateway(getattr(intent, "status", None))

    def cancel(self, authorization_id: str) -> None:
        api_key = self._require_key()
        with _stripe_errors():
            stripe.PaymentIntent.cancel(authorization_id, api_key=api_key)


@dataclass
class FakeAuthorization:
    amount_subunits: int
    currency: str
    metadata: OrderPaymentMetadata
    receipt_email: str | None
    description: str | None
    status: PaymentStatus = PaymentStatus.PENDING


@dataclass
class FakePaymentGateway:
    """In-memory gateway for local development and tests.

    Events carry a ``Stripe-Signature`` header and are verified by the SDK,
    so the webhook path is exercised end to end.
    """

    webhook_secret: str = "whsec_test"
    webhook_tolerance_s: int = 300
    authorizations: dict[str, FakeAuthorization] = field(default_factory=dict)
    calls: list[dict[str, Any]] = field(default_factory=list)
    fail_with: IntegrationError | None = None

    def authorize(
        self,
        *,
        amount_subunits: int,
        currency: str,
        metadata: OrderPaymentMetadata,
        receipt_email: str | None = None,
        description: str | None = None,
    ) -> PaymentAuthorization:
        self.calls.append(
            {
                "method": "authorize",
                "amount_subunits": amount_subunits,
                "order_id": metadata.order_id,
            }
        )
        if self.fail_with is not None:
            raise self.fail_with

        authorization_id = f"pi_fake_{uuid.uuid4().hex[:16]}"
        self.authorizations[authorization_id] = FakeAuthorization(
            amount_subunits=amount_subunits,
            currency=currency,
            metadata=metadata,
            receipt_email=receipt_email,
            description=description,
        )
        return PaymentAuthorization(
            id=authorization_id,
            client_secret=f"{authorization_id}_secret_{uuid.uuid4().hex[:8]}",
        )

    def verify_event(self, payload: bytes, signature_header: str | None) -> PaymentEvent:
        return construct_event(
            payload, signature_header, self.webhook_secret, self.webhook_tolerance_s
        )

    def fetch_status(self, authorization_id: str) -> PaymentStatus:
        self.calls.append({"method": "fetch_status", "authorization_id": authorization_id})
        authorization = self.authorizations.get(authorization_id)
        if authorization is None:
            raise IntegrationBadGatewayError(SERVICE, "Payment gateway returned 404")
        return authorization.status

    def cancel(self, authorization_id: str) -> None:
        self.calls.append({"method": "cancel", "authorization_id": authorization_id})
        authorization = self.authorizations.get(authorization_id)
        if authorization is not None:
            authorization.status = PaymentStatus.CANCELED

    def set_status(self, authorization_id: str, status: PaymentStatus) -> None:
        self.authorizations[authorization_id].status = status

    def sign(self, body: dict[str, Any], timestamp: int | None = None) -> tuple[bytes, str]:
        payload = json.dumps(body).encode()
        signed_at = int(time.time()) if timestamp is None else timestamp
        return payload, sign_payload(payload, self.webhook_secret, signed_at)

    def signed_event(
        self,
        authorization_id: str,
        event_type: str = PAYMENT_SUCCEEDED_EVENT,
        timestamp: int | None = None,
    ) -> tuple[bytes, str]:
        """Build a webhook body and signature header for ``authorization_id``."""
        authorization = self.authorizations[authorization_id]
        gateway_status = "requires_payment_method"
        if event_type == PAYMENT_SUCCEEDED_EVENT:
            gateway_status = "succeeded"
        body = {
            "id": f"evt_fake_{uuid.uuid4().hex[:12]}",
            "object": "event",
            "type": event_type,
            "data": {
                "object": {
                    "id": authorization_id,
                    "object": "payment_intent",
                    "status": gateway_status,
                    "amount": authorization.amount_subunits,
                    "currency": authorization.currency,
                    "metadata": encode_metadata(authorization.metadata),
                }
            },
        }
        return self.sign(body, timestamp)


def get_payment_gateway() -> PaymentGateway:
    if settings.payment_gateway_mode == "stripe":
        configure_stripe(
            api_base=settings.stripe_api_base_url,
            timeout_s=settings.stripe_timeout_s,
            max_retries=settings.stripe_max_retries,
        )
        return StripeGatewayClient(
            settings.stripe_secret_key,
            settings.stripe_webhook_secret,
            webhook_tolerance_s=settings.stripe_webhook_tolerance_s,
        )
    return FakePaymentGateway(
        webhook_secret=settings.stripe_webhook_secret,
        webhook_tolerance_s=settings.stripe_webhook_tolerance_s,
    )

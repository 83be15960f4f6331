from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from figurine_api.config import settings
from figurine_api.dependencies import get_order_manager, get_payment_gateway
from figurine_api.integrations.errors import IntegrationError, WebhookSignatureError
from figurine_api.integrations.payment_gateway import PaymentGateway
from figurine_api.observability import log_event, metrics_store
from figurine_api.schemas.order import (
    CheckoutRequest,
    CheckoutResponse,
    PriceBreakdownResponse,
    QuoteRequest,
    QuoteResponse,
    WebhookAckResponse,
)
from figurine_api.services.orders_service import OrderLifecycleManager

router = APIRouter(prefix="/api/v1", tags=["payments"])


def _translate_integration_error(err: IntegrationError) -> HTTPException:
    if err.retryable:
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"service": err.service, "code": err.code, "message": err.message},
        )
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={"service": err.service, "code": err.code, "message": err.message},
    )


@router.post("/pricing/quote", response_model=QuoteResponse, summary="Quote an order")
def quote_endpoint(
    payload: QuoteRequest,
    manager: OrderLifecycleManager = Depends(get_order_manager),
) -> QuoteResponse:
    pricing = manager.quote(payload)
    return QuoteResponse(
        currency=settings.currency,
        pricing=PriceBreakdownResponse.model_validate(pricing),
    )


@router.post(
    "/payments/intents",
    response_model=CheckoutResponse,
    summary="Create a pending order and its payment authorization",
    status_code=201,
)
def create_payment_intent_endpoint(
    payload: CheckoutRequest,
    manager: OrderLifecycleManager = Depends(get_order_manager),
) -> CheckoutResponse:
    try:
        result = manager.create_order(payload)
    except IntegrationError as err:
        raise _translate_integration_error(err) from err

    return CheckoutResponse(
        order_id=result.order.order_id,
        client_secret=result.authorization.client_secret,
        payment_authorization_id=result.authorization.id,
        amount=result.pricing.total,
        currency=result.order.currency,
        pricing=PriceBreakdownResponse.model_validate(result.pricing),
    )


@router.post("/payments/webhook", response_model=WebhookAckResponse, summary="Payment webhook")
async def payment_webhook_endpoint(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    manager: OrderLifecycleManager = Depends(get_order_manager),
) -> WebhookAckResponse:
    """Verify the signed gateway event, then record the payment it reports.

    The signature covers the raw body, so the body is read before any parsing.
    """
    payload = await request.body()
    try:
        event = gateway.verify_event(payload, stripe_signature)
    except WebhookSignatureError as err:
        metrics_store.increment("webhook_signature_invalid_total")
        log_event("webhook_signature_invalid", detail=err.message)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=err.message) from err
    except IntegrationError as err:
        raise _translate_integration_error(err) from err

    log_event(
        "payment_event_received",
        payment_id=event.authorization_id,
        detail=event.type,
    )
    await run_in_threadpool(manager.handle_payment_event, event)
    return WebhookAckResponse()

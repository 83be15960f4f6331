from figurine_api.schemas.health import HealthResponse, ReadinessDependency, ReadinessResponse
from figurine_api.schemas.metrics import MetricsResponse
from figurine_api.schemas.order import (
    AdminOrderListResponse,
    AdminOrderResponse,
    CheckoutRequest,
    CheckoutResponse,
    OrderConfirmRequest,
    OrderConfirmResponse,
    OrderStatusResponse,
    PriceBreakdownResponse,
    QuoteRequest,
    QuoteResponse,
    WebhookAckResponse,
)
from figurine_api.schemas.payment import OrderPaymentMetadata
from figurine_api.schemas.upload import UploadResponse

__all__ = [
    "AdminOrderListResponse",
    "AdminOrderResponse",
    "CheckoutRequest",
    "CheckoutResponse",
    "HealthResponse",
    "MetricsResponse",
    "OrderConfirmRequest",
    "OrderConfirmResponse",
    "OrderPaymentMetadata",
    "OrderStatusResponse",
    "PriceBreakdownResponse",
    "QuoteRequest",
    "QuoteResponse",
    "ReadinessDependency",
    "ReadinessResponse",
    "UploadResponse",
    "WebhookAckResponse",
]

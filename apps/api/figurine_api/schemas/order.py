from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from figurine_api.models.order import OrderStatus, ShippingDestination


class QuoteRequest(BaseModel):
    quantity: int = Field(default=1, ge=1)
    shipping_destination: ShippingDestination = ShippingDestination.INTERNATIONAL
    promo_code: str | None = Field(default=None, max_length=50)


class CheckoutRequest(QuoteRequest):
    email: str = Field(min_length=3, max_length=255)
    session_id: str = Field(min_length=1, max_length=64)
    pet_name: str | None = Field(default=None, max_length=255)

    @field_validator("email", "session_id", mode="before")
    @classmethod
    def strip_required(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        local, _, domain = value.partition("@")
        if not local or not domain:
            raise ValueError("email must be a valid address")
        return value

    @field_validator("pet_name", "promo_code")
    @classmethod
    def strip_optional(cls, value: str | None) -> str | None:
        if value is None:
            return value
        return value.strip() or None


class PriceBreakdownResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    quantity: int
    shipping_destination: ShippingDestination
    subtotal: int
    quantity_discount: int
    promo_code: str | None
    promo_discount: int
    shipping: int
    total: int


class QuoteResponse(BaseModel):
    currency: str
    pricing: PriceBreakdownResponse


class CheckoutResponse(BaseModel):
    order_id: str
    client_secret: str
    payment_authorization_id: str
    amount: int
    currency: str
    pricing: PriceBreakdownResponse


class OrderConfirmRequest(BaseModel):
    payment_authorization_id: str | None = Field(default=None, max_length=255)


class OrderConfirmResponse(BaseModel):
    order_id: str
    status: OrderStatus
    email: str
    message: str


class OrderStatusResponse(BaseModel):
    order_id: str
    status: OrderStatus
    size: str
    amount: int
    currency: str
    created_at: datetime


class AdminOrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: str
    email: str
    pet_name: str | None
    size: str
    quantity: int
    shipping_destination: ShippingDestination
    subtotal: int
    quantity_discount: int
    promo_code: str | None
    promo_discount: int
    shipping: int
    total: int
    currency: str
    status: OrderStatus
    payment_authorization_id: str
    created_at: datetime
    paid_at: datetime | None
    confirmed_at: datetime | None


class AdminOrderListResponse(BaseModel):
    items: list[AdminOrderResponse]


class WebhookAckResponse(BaseModel):
    received: bool = True

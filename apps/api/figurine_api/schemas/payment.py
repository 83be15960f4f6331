from pydantic import BaseModel, ConfigDict, Field

from figurine_api.models.order import ShippingDestination
from figurine_api.services.pricing import PriceBreakdown


class OrderPaymentMetadata(BaseModel):
    """Correlation data carried on the payment authorization."""

    model_config = ConfigDict(frozen=True)

    order_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    email: str
    pet_name: str | None = None
    quantity: int = Field(ge=1)
    shipping_destination: ShippingDestination
    subtotal: int = Field(ge=0)
    quantity_discount: int = Field(ge=0)
    promo_code: str | None = None
    promo_discount: int = Field(ge=0)
    shipping: int = Field(ge=0)
    total: int = Field(ge=0)

    @classmethod
    def for_order(
        cls,
        *,
        order_id: str,
        session_id: str,
        email: str,
        pet_name: str | None,
        pricing: PriceBreakdown,
    ) -> "OrderPaymentMetadata":
        return cls(
            order_id=order_id,
            session_id=session_id,
            email=email,
            pet_name=pet_name,
            quantity=pricing.quantity,
            shipping_destination=pricing.shipping_destination,
            subtotal=pricing.subtotal,
            quantity_discount=pricing.quantity_discount,
            promo_code=pricing.promo_code,
            promo_discount=pricing.promo_discount,
            shipping=pricing.shipping,
            total=pricing.total,
        )

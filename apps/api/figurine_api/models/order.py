import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from figurine_api.db.base import Base


class ShippingDestination(str, enum.Enum):
    DOMESTIC = "domestic"
    INTERNATIONAL = "international"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    CONFIRMED = "confirmed"


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)

    email: Mapped[str] = mapped_column(String(255), nullable=False)
    pet_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    size: Mapped[str] = mapped_column(String(20), nullable=False, default="7cm")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    shipping_destination: Mapped[ShippingDestination] = mapped_column(
        Enum(ShippingDestination, name="shipping_destination"),
        nullable=False,
        default=ShippingDestination.INTERNATIONAL,
    )

    # Whole currency units; the gateway is charged total * 100 subunits
    subtotal: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_discount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    promo_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    promo_discount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    shipping: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, name="order_status"), nullable=False, default=OrderStatus.PENDING
    )
    payment_authorization_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    upload_session_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

import asyncio
import base64
from collections.abc import Sequence
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol

import aiosmtplib

from figurine_api.config import settings, smtp_configured
from figurine_api.models.order import Order, ShippingDestination
from figurine_api.observability import log_event
from figurine_api.services.upload_sessions import StoredImage

_DESTINATION_LABELS = {
    ShippingDestination.DOMESTIC: "Domestic (~1 week)",
    ShippingDestination.INTERNATIONAL: "International (~2 weeks)",
}


@dataclass(frozen=True)
class OrderNotification:
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
    images: tuple[StoredImage, ...] = ()

    @classmethod
    def from_order(cls, order: Order, images: Sequence[StoredImage]) -> "OrderNotification":
        return cls(
            order_id=order.order_id,
            email=order.email,
            pet_name=order.pet_name,
            size=order.size,
            quantity=order.quantity,
            shipping_destination=order.shipping_destination,
            subtotal=order.subtotal,
            quantity_discount=order.quantity_discount,
            promo_code=order.promo_code,
            promo_discount=order.promo_discount,
            shipping=order.shipping,
            total=order.total,
            currency=order.currency,
            images=tuple(images),
        )


class OrderNotifier(Protocol):
    def send_order_notification(self, notification: OrderNotification) -> bool: ...


class NoopNotifier:
    def send_order_notification(self, notification: OrderNotification) -> bool:
        log_event("order_notification_skipped", order_id=notification.order_id)
        return False


def render_notification_text(notification: OrderNotification) -> str:
    currency = notification.currency.upper()
    lines = [
        f"New order {notification.order_id}",
        "",
        f"Pet name: {notification.pet_name or 'Not specified'}",
        f"Customer email: {notification.email}",
        f"Size: {notification.size}",
        f"Quantity: {notification.quantity} figurine(s)",
        f"Shipping: {_DESTINATION_LABELS[notification.shipping_destination]}",
    ]
    if notification.promo_code:
        lines.append(f"Promo code: {notification.promo_code} (-{notification.promo_discount})")
    lines += [
        "",
        f"Subtotal: {notification.subtotal} {currency}",
    ]
    if notification.quantity_discount:
        lines.append(f"Quantity discount: -{notification.quantity_discount} {currency}")
    lines += [
        f"Shipping: {notification.shipping} {currency}",
        f"Total paid: {notification.total} {currency}",
        "",
        f"{len(notification.images)} photo(s) attached and ready for modelling.",
    ]
    return "\n".join(lines)


class EmailNotifier:
    """Send the staff notification email with every uploaded photo attached."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: str,
        password: str,
        use_tls: bool,
        timeout_s: float,
        sender: str,
        recipient: str,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout_s = timeout_s
        self.sender = sender
        self.recipient = recipient

    def build_message(self, notification: OrderNotification) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = self.recipient
        message["Subject"] = (
            f"New Order: {notification.order_id} - "
            f"{notification.pet_name or 'Pet Figurine'} ({notification.quantity}x)"
        )
        message.set_content(render_notification_text(notification))

        for image in notification.images:
            maintype, _, subtype = image.media_type.partition("/")
            if maintype != "image" or not subtype:
                maintype, subtype = "application", "octet-stream"
            message.add_attachment(
                base64.b64decode(image.payload),
                maintype=maintype,
                subtype=subtype,
                filename=f"angle_{image.angle}_{image.filename}",
            )
        return message

    async def _send(self, message: EmailMessage) -> None:
        await aiosmtplib.send(
            message,
            hostname=self.host,
            port=self.port,
            username=self.username or None,
            password=self.password or None,
            start_tls=self.use_tls,
            timeout=self.timeout_s,
        )

    def send_order_notification(self, notification: OrderNotification) -> bool:
        message = self.build_message(notification)
        asyncio.run(self._send(message))
        log_event(
            "order_notification_sent",
            order_id=notification.order_id,
            detail=f"attachments={len(notification.images)}",
        )
        return True


def build_notifier() -> OrderNotifier:
    if not smtp_configured():
        return NoopNotifier()
    sender = settings.notification_sender or settings.smtp_username or settings.notification_email
    return EmailNotifier(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        timeout_s=settings.smtp_timeout_s,
        sender=sender,
        recipient=settings.notification_email,
    )

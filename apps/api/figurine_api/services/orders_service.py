import logging
import secrets
import string
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from figurine_api.config import settings
from figurine_api.db.session import SessionLocal
from figurine_api.integrations.errors import IntegrationError
from figurine_api.integrations.notifier import OrderNotification, OrderNotifier
from figurine_api.integrations.payment_gateway import (
    PAYMENT_FAILED_EVENT,
    PAYMENT_SUCCEEDED_EVENT,
    PaymentAuthorization,
    PaymentEvent,
    PaymentGateway,
    PaymentStatus,
)
from figurine_api.models.order import Order, OrderStatus
from figurine_api.models.order_image import OrderImage
from figurine_api.observability import log_event, metrics_store, observe_timing
from figurine_api.schemas.order import CheckoutRequest, QuoteRequest
from figurine_api.schemas.payment import OrderPaymentMetadata
from figurine_api.services.locks import KeyedLock
from figurine_api.services.pricing import PriceBreakdown, PricingRules, compute_total
from figurine_api.services.state_machine import ensure_valid_transition, has_reached
from figurine_api.services.upload_sessions import (
    MISSING_SESSION_DETAIL,
    StoredImage,
    UploadSessionStore,
    utcnow,
)

_ORDER_ID_ALPHABET = string.ascii_uppercase + string.digits


def _generate_order_id(prefix: str, length: int = 8) -> str:
    suffix = "".join(secrets.choice(_ORDER_ID_ALPHABET) for _ in range(length))
    return f"{prefix}-{suffix}"


def _generate_unique_order_id(db: Session, prefix: str) -> str:
    while True:
        order_id = _generate_order_id(prefix)
        exists = db.scalar(select(Order.id).where(Order.order_id == order_id))
        if not exists:
            return order_id


def _payment_description(quantity: int, size: str, promo_code: str | None) -> str:
    if quantity == 1:
        description = f"Pegacy 3D Pet Figurine - {size} Premium Edition"
    else:
        description = f"Pegacy 3D Pet Figurines ({quantity}x) - {size} Premium Edition"
    if promo_code:
        description += f" (Promo: {promo_code})"
    return description


def get_order(db: Session, order_id: str, *, for_update: bool = False) -> Order:
    query = select(Order).where(Order.order_id == order_id)
    if for_update:
        query = query.with_for_update()
    order = db.scalar(query)
    if not order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return order


def list_recent_orders(db: Session, limit: int) -> list[Order]:
    query = (
        select(Order).order_by(Order.created_at.desc(), Order.order_id.desc()).limit(limit)
    )
    return list(db.scalars(query))


def list_order_images(db: Session, order_id: str) -> list[OrderImage]:
    images = db.scalars(
        select(OrderImage).where(OrderImage.order_id == order_id).order_by(OrderImage.angle.asc())
    )
    return list(images)


@dataclass(frozen=True)
class CheckoutResult:
    order: Order
    authorization: PaymentAuthorization
    pricing: PriceBreakdown


class OrderLifecycleManager:
    """Owns the pending -> paid -> confirmed lifecycle.

    Transitions on one order are serialized by a per-order lock and read the
    row ``FOR UPDATE`` before writing. Gateway and notification calls run
    outside both locks.
    """

    def __init__(
        self,
        *,
        upload_store: UploadSessionStore,
        payment_gateway: PaymentGateway,
        notifier: OrderNotifier,
        session_factory: Callable[[], Session] = SessionLocal,
        pricing_rules: PricingRules | None = None,
        currency: str | None = None,
        order_id_prefix: str | None = None,
        product_size: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uploads = upload_store
        self._gateway = payment_gateway
        self._notifier = notifier
        self._session_factory = session_factory
        self._pricing_rules = pricing_rules or PricingRules()
        self._currency = currency or settings.currency
        self._order_id_prefix = order_id_prefix or settings.order_id_prefix
        self._product_size = product_size or settings.product_size
        self._clock = clock
        self._order_locks = KeyedLock()

    def quote(self, payload: QuoteRequest) -> PriceBreakdown:
        return compute_total(
            payload.quantity,
            payload.shipping_destination,
            payload.promo_code,
            self._pricing_rules,
        )

    def create_order(self, payload: CheckoutRequest) -> CheckoutResult:
        session = self._uploads.get(payload.session_id)
        if session is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail=MISSING_SESSION_DETAIL
            )
        if session.order_id is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Upload session is already linked to another order",
            )

        # Client-declared amounts are never accepted; the total is always recomputed here.
        pricing = self.quote(payload)

        with self._session_factory() as db:
            order_id = _generate_unique_order_id(db, self._order_id_prefix)

        # Claim the session first so two concurrent checkouts cannot share it.
        self._uploads.attach_order(payload.session_id, order_id)

        metadata = OrderPaymentMetadata.for_order(
            order_id=order_id,
            session_id=payload.session_id,
            email=payload.email,
            pet_name=payload.pet_name,
            pricing=pricing,
        )
        authorization: PaymentAuthorization | None = None
        try:
            with observe_timing("payment_authorize_duration_seconds"):
                authorization = self._gateway.authorize(
                    amount_subunits=pricing.amount_subunits,
                    currency=self._currency,
                    metadata=metadata,
                    receipt_email=payload.email,
                    description=_payment_description(
                        pricing.quantity, self._product_size, pricing.promo_code
                    ),
                )
            order = self._insert_pending_order(order_id, payload, pricing, authorization)
        except Exception:
            self._uploads.detach_order(payload.session_id, order_id)
            if authorization is not None:
                self._cancel_authorization(order_id, authorization.id)
            log_event(
                "order_create_rolled_back",
                order_id=order_id,
                session_id=payload.session_id,
                level=logging.WARNING,
            )
            raise

        metrics_store.increment("orders_created_total")
        log_event(
            "order_created",
            order_id=order.order_id,
            session_id=payload.session_id,
            payment_id=authorization.id,
        )
        return CheckoutResult(order=order, authorization=authorization, pricing=pricing)

    def _insert_pending_order(
        self,
        order_id: str,
        payload: CheckoutRequest,
        pricing: PriceBreakdown,
        authorization: PaymentAuthorization,
    ) -> Order:
        with self._session_factory() as db:
            order = Order(
                order_id=order_id,
                email=payload.email,
                pet_name=payload.pet_name,
                size=self._product_size,
                quantity=pricing.quantity,
                shipping_destination=pricing.shipping_destination,
                subtotal=pricing.subtotal,
                quantity_discount=pricing.quantity_discount,
                promo_code=pricing.promo_code,
                promo_discount=pricing.promo_discount,
                shipping=pricing.shipping,
                total=pricing.total,
                currency=self._currency,
                status=OrderStatus.PENDING,
                payment_authorization_id=authorization.id,
                upload_session_id=payload.session_id,
                created_at=self._clock(),
            )
            db.add(order)
            db.commit()
            db.refresh(order)
            return order

    def _cancel_authorization(self, order_id: str, authorization_id: str) -> None:
        try:
            self._gateway.cancel(authorization_id)
        except IntegrationError as err:
            log_event(
                "payment_authorization_cancel_failed",
                order_id=order_id,
                payment_id=authorization_id,
                level=logging.ERROR,
                detail=str(err),
            )

    def get_order(self, order_id: str) -> Order:
        with self._session_factory() as db:
            return get_order(db, order_id)

    def mark_paid(
        self,
        order_id: str,
        metadata: OrderPaymentMetadata | None = None,
        *,
        authorization_id: str | None = None,
    ) -> Order:
        """Record a successful payment; repeated calls leave the order untouched.

        Images move from the upload session into ``order_images`` in the same
        transaction as the status change, so a failed write leaves the order
        pending and the session intact for a retry.
        """
        images: tuple[StoredImage, ...] = ()
        with self._order_locks.hold(order_id):
            with self._session_factory() as db:
                order = get_order(db, order_id, for_update=True)
                _ensure_same_authorization(order, authorization_id)

                if has_reached(order.status, OrderStatus.PAID):
                    metrics_store.increment("payment_events_duplicate_total")
                    log_event(
                        "order_paid_duplicate_ignored",
                        order_id=order_id,
                        payment_id=order.payment_authorization_id,
                    )
                    return order

                session_id = order.upload_session_id or (metadata.session_id if metadata else None)
                if session_id:
                    images = self._uploads.images_for_order(session_id, order_id)

                ensure_valid_transition(order.status, OrderStatus.PAID)
                order.status = OrderStatus.PAID
                order.paid_at = self._clock()
                for image in images:
                    db.add(
                        OrderImage(
                            order_id=order_id,
                            angle=image.angle,
                            filename=image.filename,
                            media_type=image.media_type,
                            payload=image.payload,
                            size_bytes=image.size_bytes,
                        )
                    )
                db.commit()
                db.refresh(order)

            if session_id:
                self._uploads.consume(session_id)

        metrics_store.increment("orders_paid_total")
        if images:
            log_event(
                "order_images_persisted",
                order_id=order_id,
                session_id=session_id,
                detail=f"count={len(images)}",
            )
        else:
            log_event(
                "order_paid_without_images",
                order_id=order_id,
                session_id=session_id,
                level=logging.WARNING,
            )
        log_event("order_paid", order_id=order_id, payment_id=order.payment_authorization_id)

        self._dispatch_notification(order, images)
        return order

    def _dispatch_notification(self, order: Order, images: Sequence[StoredImage]) -> bool:
        notification = OrderNotification.from_order(order, images)
        try:
            delivered = self._notifier.send_order_notification(notification)
        except Exception as exc:  # a recorded payment must stand even when staff email fails
            metrics_store.increment("order_notifications_failed_total")
            log_event(
                "order_notification_failed",
                order_id=order.order_id,
                level=logging.ERROR,
                detail=f"{type(exc).__name__}: {exc}",
            )
            return False

        if delivered:
            metrics_store.increment("order_notifications_sent_total")
        return delivered

    def mark_confirmed(self, order_id: str, *, authorization_id: str | None = None) -> Order:
        with self._order_locks.hold(order_id):
            with self._session_factory() as db:
                order = get_order(db, order_id)
        _ensure_same_authorization(order, authorization_id)
        if order.status == OrderStatus.CONFIRMED:
            return order

        with observe_timing("payment_status_duration_seconds"):
            payment_status = self._gateway.fetch_status(order.payment_authorization_id)
        if payment_status != PaymentStatus.SUCCEEDED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"message": "Payment not completed", "status": payment_status.value},
            )

        with self._order_locks.hold(order_id):
            with self._session_factory() as db:
                order = get_order(db, order_id, for_update=True)
                if order.status == OrderStatus.CONFIRMED:
                    return order

                ensure_valid_transition(order.status, OrderStatus.CONFIRMED)
                order.status = OrderStatus.CONFIRMED
                order.confirmed_at = self._clock()
                db.commit()
                db.refresh(order)

        metrics_store.increment("orders_confirmed_total")
        log_event("order_confirmed", order_id=order_id, payment_id=order.payment_authorization_id)
        return order

    def handle_payment_event(self, event: PaymentEvent) -> Order | None:
        order_id = event.metadata.order_id if event.metadata else None

        if event.type == PAYMENT_FAILED_EVENT:
            metrics_store.increment("payment_events_failed_total")
            log_event(
                "payment_failed",
                order_id=order_id,
                payment_id=event.authorization_id,
                level=logging.WARNING,
            )
            return None
        if event.type != PAYMENT_SUCCEEDED_EVENT:
            log_event("payment_event_ignored", payment_id=event.authorization_id, detail=event.type)
            return None
        if order_id is None:
            log_event(
                "payment_event_without_order",
                payment_id=event.authorization_id,
                level=logging.WARNING,
            )
            return None

        try:
            return self.mark_paid(order_id, event.metadata, authorization_id=event.authorization_id)
        except HTTPException as exc:
            if exc.status_code not in (status.HTTP_404_NOT_FOUND, status.HTTP_409_CONFLICT):
                raise
            log_event(
                "payment_event_rejected",
                order_id=order_id,
                payment_id=event.authorization_id,
                level=logging.WARNING,
                detail=str(exc.detail),
            )
            return None


def _ensure_same_authorization(order: Order, authorization_id: str | None) -> None:
    if authorization_id and authorization_id != order.payment_authorization_id:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Payment reference does not match order",
        )

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from figurine_api.config import settings
from figurine_api.db.session import get_db
from figurine_api.dependencies import get_order_manager
from figurine_api.integrations.errors import IntegrationError
from figurine_api.routers.payments import _translate_integration_error
from figurine_api.schemas.order import (
    AdminOrderListResponse,
    AdminOrderResponse,
    OrderConfirmRequest,
    OrderConfirmResponse,
    OrderStatusResponse,
)
from figurine_api.services.orders_service import (
    OrderLifecycleManager,
    get_order,
    list_recent_orders,
)

router = APIRouter(prefix="/api/v1", tags=["orders"])


@router.get("/orders/{order_id}", response_model=OrderStatusResponse, summary="Order status")
def get_order_endpoint(order_id: str, db: Session = Depends(get_db)) -> OrderStatusResponse:
    order = get_order(db, order_id)
    return OrderStatusResponse(
        order_id=order.order_id,
        status=order.status,
        size=order.size,
        amount=order.total,
        currency=order.currency,
        created_at=order.created_at,
    )


@router.post(
    "/orders/{order_id}/confirm",
    response_model=OrderConfirmResponse,
    summary="Confirm a paid order",
)
def confirm_order_endpoint(
    order_id: str,
    payload: OrderConfirmRequest | None = None,
    manager: OrderLifecycleManager = Depends(get_order_manager),
) -> OrderConfirmResponse:
    authorization_id = payload.payment_authorization_id if payload else None
    try:
        order = manager.mark_confirmed(order_id, authorization_id=authorization_id)
    except IntegrationError as err:
        raise _translate_integration_error(err) from err

    return OrderConfirmResponse(
        order_id=order.order_id,
        status=order.status,
        email=order.email,
        message="Order confirmed successfully",
    )


@router.get("/admin/orders", response_model=AdminOrderListResponse, summary="Recent orders")
def list_admin_orders_endpoint(
    limit: int = Query(
        default=settings.admin_orders_default_limit,
        ge=1,
        le=settings.admin_orders_max_limit,
    ),
    db: Session = Depends(get_db),
) -> AdminOrderListResponse:
    orders = list_recent_orders(db, limit)
    return AdminOrderListResponse(
        items=[AdminOrderResponse.model_validate(order) for order in orders]
    )

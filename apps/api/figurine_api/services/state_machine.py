from fastapi import HTTPException, status

from figurine_api.models.order import OrderStatus

ORDER_STATE_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.PAID},
    OrderStatus.PAID: {OrderStatus.CONFIRMED},
    OrderStatus.CONFIRMED: set(),
}

_STATUS_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.PAID: 1,
    OrderStatus.CONFIRMED: 2,
}


def has_reached(current: OrderStatus, target: OrderStatus) -> bool:
    """True when ``current`` is ``target`` or later in the lifecycle."""
    return _STATUS_RANK[current] >= _STATUS_RANK[target]


def ensure_valid_transition(current: OrderStatus, next_status: OrderStatus) -> None:
    if next_status == current:
        return

    allowed = ORDER_STATE_TRANSITIONS.get(current, set())
    if next_status not in allowed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": f"Invalid state transition: {current.value} -> {next_status.value}",
                "status": current.value,
            },
        )

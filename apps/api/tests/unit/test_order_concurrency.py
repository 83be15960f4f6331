import threading

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from figurine_api.db.base import Base
from figurine_api.integrations.payment_gateway import PaymentStatus
from figurine_api.models.order import OrderStatus
from figurine_api.schemas.order import CheckoutRequest
from figurine_api.services.orders_service import OrderLifecycleManager, list_order_images

WORKERS = 8


@pytest.fixture
def file_session_factory(tmp_path):
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'orders.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def threaded_manager(upload_store, payment_gateway, notifier, clock, file_session_factory):
    return OrderLifecycleManager(
        upload_store=upload_store,
        payment_gateway=payment_gateway,
        notifier=notifier,
        session_factory=file_session_factory,
        clock=clock,
    )


def _checkout(session_id: str) -> CheckoutRequest:
    return CheckoutRequest(
        email="owner@example.com",
        session_id=session_id,
        pet_name="Voka",
        quantity=2,
        shipping_destination="international",
    )


def _race(*calls):
    """Start every call at the same barrier and collect results or raised errors."""
    barrier = threading.Barrier(len(calls))
    outcomes: list = [None] * len(calls)

    def _run(index, call):
        barrier.wait()
        try:
            outcomes[index] = call()
        except Exception as exc:  # collected for assertions in the test thread
            outcomes[index] = exc

    threads = [
        threading.Thread(target=_run, args=(index, call)) for index, call in enumerate(calls)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    assert not any(thread.is_alive() for thread in threads)
    return outcomes


def _conflicts(outcomes) -> list[HTTPException]:
    return [
        outcome
        for outcome in outcomes
        if isinstance(outcome, HTTPException) and outcome.status_code == 409
    ]


def test_concurrent_mark_paid_persists_images_and_notifies_once(
    threaded_manager, make_session, notifier, file_session_factory
):
    session_id = make_session(3)
    result = threaded_manager.create_order(_checkout(session_id))
    order_id = result.order.order_id

    outcomes = _race(*[lambda: threaded_manager.mark_paid(order_id) for _ in range(WORKERS)])

    assert [type(outcome) for outcome in outcomes if isinstance(outcome, Exception)] == []
    assert {outcome.status for outcome in outcomes} == {OrderStatus.PAID}
    assert len({outcome.paid_at for outcome in outcomes}) == 1
    with file_session_factory() as db:
        assert [image.angle for image in list_order_images(db, order_id)] == [1, 2, 3]
    assert len(notifier.sent) == 1
    assert len(notifier.sent[0].images) == 3


def test_concurrent_checkouts_on_one_session_create_a_single_order(
    threaded_manager, make_session, payment_gateway, upload_store
):
    session_id = make_session()

    outcomes = _race(
        lambda: threaded_manager.create_order(_checkout(session_id)),
        lambda: threaded_manager.create_order(_checkout(session_id)),
    )

    created = [outcome for outcome in outcomes if not isinstance(outcome, Exception)]
    assert len(created) == 1
    assert len(_conflicts(outcomes)) == 1
    assert upload_store.get(session_id).order_id == created[0].order.order_id
    authorizations = [call for call in payment_gateway.calls if call["method"] == "authorize"]
    assert [call["order_id"] for call in authorizations] == [created[0].order.order_id]


def test_confirm_racing_payment_event_settles_on_confirmed(
    threaded_manager, make_session, payment_gateway, notifier, file_session_factory
):
    session_id = make_session()
    result = threaded_manager.create_order(_checkout(session_id))
    order_id = result.order.order_id
    payment_gateway.set_status(result.authorization.id, PaymentStatus.SUCCEEDED)

    outcomes = _race(
        lambda: threaded_manager.mark_paid(order_id),
        lambda: threaded_manager.mark_confirmed(order_id),
    )

    assert not isinstance(outcomes[0], Exception)
    assert not isinstance(outcomes[1], Exception) or _conflicts(outcomes[1:])
    assert threaded_manager.mark_confirmed(order_id).status == OrderStatus.CONFIRMED
    with file_session_factory() as db:
        assert len(list_order_images(db, order_id)) == 2
    assert len(notifier.sent) == 1


def test_concurrent_consume_hands_images_to_one_caller(upload_store, make_session):
    session_id = make_session(3)

    outcomes = _race(*[lambda: upload_store.consume(session_id) for _ in range(WORKERS)])

    assert sorted(len(images) for images in outcomes) == [0] * (WORKERS - 1) + [3]
    assert upload_store.get(session_id) is None

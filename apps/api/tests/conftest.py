import os

os.environ.setdefault("FIGURINE_TESTING", "true")
os.environ.setdefault("FIGURINE_DATABASE_URL", "sqlite+pysqlite:///:memory:")

from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

import figurine_api.models  # noqa: E402,F401
from figurine_api.config import settings  # noqa: E402
from figurine_api.db.base import Base  # noqa: E402
from figurine_api.db.session import SessionLocal  # noqa: E402
from figurine_api.db.session import engine as app_engine  # noqa: E402
from figurine_api.dependencies import (  # noqa: E402
    get_order_manager,
    get_payment_gateway,
    get_upload_store,
)
from figurine_api.integrations.notifier import OrderNotification  # noqa: E402
from figurine_api.integrations.payment_gateway import FakePaymentGateway  # noqa: E402
from figurine_api.main import app  # noqa: E402
from figurine_api.observability import metrics_store  # noqa: E402
from figurine_api.services.orders_service import OrderLifecycleManager  # noqa: E402
from figurine_api.services.upload_sessions import ImageUpload, UploadSessionStore  # noqa: E402

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class FrozenClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[OrderNotification] = []
        self.fail_with: Exception | None = None

    def send_order_notification(self, notification: OrderNotification) -> bool:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(notification)
        return True


@pytest.fixture(scope="session", autouse=True)
def enable_testing_mode():
    original = settings.testing
    settings.testing = True
    yield
    settings.testing = original


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=app_engine)
    Base.metadata.create_all(bind=app_engine)
    yield


@pytest.fixture(autouse=True)
def reset_metrics_store():
    metrics_store.reset()
    yield


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def upload_store(clock):
    return UploadSessionStore(ttl_s=1800, max_images=5, max_image_bytes=1024, clock=clock)


@pytest.fixture
def payment_gateway():
    return FakePaymentGateway(webhook_secret="whsec_test")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def order_manager(upload_store, payment_gateway, notifier, clock):
    return OrderLifecycleManager(
        upload_store=upload_store,
        payment_gateway=payment_gateway,
        notifier=notifier,
        session_factory=SessionLocal,
        clock=clock,
    )


@pytest.fixture
def make_session(upload_store):
    def _make(count: int = 2) -> str:
        images = [
            ImageUpload(filename=f"pet_{index}.png", media_type="image/png", content=PNG_BYTES)
            for index in range(1, count + 1)
        ]
        return upload_store.create(images).session_id

    return _make


@pytest.fixture
def db_session():
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=app_engine)
    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client(upload_store, payment_gateway, order_manager):
    app.dependency_overrides[get_upload_store] = lambda: upload_store
    app.dependency_overrides[get_payment_gateway] = lambda: payment_gateway
    app.dependency_overrides[get_order_manager] = lambda: order_manager
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

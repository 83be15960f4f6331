import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from figurine_api.config import allowed_origins, ensure_secure_runtime_settings, settings
from figurine_api.db.base import Base
from figurine_api.db.session import SessionLocal, engine
from figurine_api.integrations.notifier import build_notifier
from figurine_api.integrations.payment_gateway import get_payment_gateway
from figurine_api.observability import configure_logging, log_event, metrics_store, set_request_id
from figurine_api.routers.health import router as health_router
from figurine_api.routers.metrics import router as metrics_router
from figurine_api.routers.orders import router as orders_router
from figurine_api.routers.payments import router as payments_router
from figurine_api.routers.uploads import router as uploads_router
from figurine_api.services.orders_service import OrderLifecycleManager
from figurine_api.services.pricing import pricing_rules_from_settings
from figurine_api.services.upload_sessions import build_upload_store


@asynccontextmanager
async def lifespan(app_: FastAPI):
    import figurine_api.models  # noqa: F401 (register all SQLAlchemy models)

    configure_logging()
    ensure_secure_runtime_settings()
    Base.metadata.create_all(bind=engine)

    upload_store = build_upload_store()
    payment_gateway = get_payment_gateway()
    app_.state.upload_store = upload_store
    app_.state.payment_gateway = payment_gateway
    app_.state.order_manager = OrderLifecycleManager(
        upload_store=upload_store,
        payment_gateway=payment_gateway,
        notifier=build_notifier(),
        session_factory=SessionLocal,
        pricing_rules=pricing_rules_from_settings(),
    )
    log_event("service_started", detail=f"gateway={settings.payment_gateway_mode}")
    yield


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description="Custom pet figurine ordering: uploads, pricing, payment and order lifecycle",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next) -> Response:
    request_id = request.headers.get("X-Request-ID") or str(uuid4())
    set_request_id(request_id)

    start = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - start

    response.headers["X-Request-ID"] = request_id
    metrics_store.increment("http_requests_total")
    metrics_store.observe("http_request_duration_seconds", elapsed)
    log_event("http_request", order_id=request.path_params.get("order_id"))
    return response


app.include_router(health_router)
app.include_router(uploads_router)
app.include_router(payments_router)
app.include_router(orders_router)
app.include_router(metrics_router)

from fastapi import Request

from figurine_api.integrations.payment_gateway import PaymentGateway
from figurine_api.services.orders_service import OrderLifecycleManager
from figurine_api.services.upload_sessions import UploadSessionStore


def get_upload_store(request: Request) -> UploadSessionStore:
    return request.app.state.upload_store


def get_payment_gateway(request: Request) -> PaymentGateway:
    return request.app.state.payment_gateway


def get_order_manager(request: Request) -> OrderLifecycleManager:
    return request.app.state.order_manager

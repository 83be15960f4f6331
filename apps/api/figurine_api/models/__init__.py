# Import SQLAlchemy models so they register on Base.metadata
from figurine_api.models.order import Order, OrderStatus, ShippingDestination  # noqa: F401
from figurine_api.models.order_image import OrderImage  # noqa: F401

"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from storefront.models.base import Base
from storefront.models.tenant import Tenant
from storefront.models.product import Product
from storefront.models.cart import Cart
from storefront.models.order import Order, OrderStatus, PaymentStatus
from storefront.models.payment_event import PaymentEvent

# Export all for convenience
__all__ = [
    "Base", "Tenant", "Product", "Cart",
    "Order", "OrderStatus", "PaymentStatus", "PaymentEvent"
]

"""Order model"""
import uuid
from sqlalchemy import Column, String, Numeric, JSON, DateTime
from datetime import datetime, timezone
from storefront.models.base import Base


class OrderStatus:
    PENDING = "Pending"
    PROCESSING = "Processing"
    PACKED = "Packed"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLATION_REQUESTED = "CancellationRequested"
    CANCELLED = "Cancelled"
    REFUNDED = "Refunded"


class PaymentStatus:
    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"
    REFUNDED = "Refunded"


class Order(Base):
    """Order created at checkout finalize and advanced by payment webhooks"""
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    email = Column(String(255), nullable=False, index=True)

    # Lines: [{"product_id", "variant_id", "title", "quantity", "price"}]
    items = Column(JSON, nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False)
    shipping_cost = Column(Numeric(10, 2), nullable=False, default=0)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False)

    delivery_method = Column(String(20), nullable=False, default="standard")
    shipping_address = Column(JSON, nullable=True)
    billing_address = Column(JSON, nullable=True)

    status = Column(String(30), nullable=False, default=OrderStatus.PENDING, index=True)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING, index=True)

    gateway_session_id = Column(String(255), nullable=True, index=True)
    gateway_charge_id = Column(String(255), nullable=True)
    fulfillment_reference = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                        onupdate=lambda: datetime.now(timezone.utc), nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)

"""PaymentEvent model"""
from sqlalchemy import Column, Integer, String, JSON, DateTime
from datetime import datetime, timezone
from storefront.models.base import Base


class PaymentEvent(Base):
    """Verified payment succeeded/failed deliveries, one row per gateway event"""
    __tablename__ = "payment_events"

    id = Column(Integer, primary_key=True, index=True)
    gateway_event_id = Column(String(255), unique=True, nullable=False, index=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    payment_reference = Column(String(255), nullable=True, index=True)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

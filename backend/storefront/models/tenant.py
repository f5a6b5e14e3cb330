"""Tenant model"""
from sqlalchemy import Column, Integer, String, Boolean, Numeric, JSON, DateTime
from datetime import datetime, timezone
from storefront.models.base import Base


class Tenant(Base):
    """A hosted shop with its own payment account and commerce settings

    Payment configuration is read-only for the payment core; it is written by
    the shop admin tooling.
    """
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(64), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    base_url = Column(String(512), nullable=True)

    # Stripe configuration
    is_configured = Column(Boolean, default=False, nullable=False)
    environment = Column(String(10), default="test", nullable=False)  # 'test' or 'live'
    test_publishable_key = Column(String(255), nullable=True)
    test_secret_key = Column(String(255), nullable=True)
    live_publishable_key = Column(String(255), nullable=True)
    live_secret_key = Column(String(255), nullable=True)
    test_webhook_secret = Column(String(255), nullable=True)
    live_webhook_secret = Column(String(255), nullable=True)
    webhook_secret = Column(String(255), nullable=True)  # legacy single secret

    # Commerce settings
    delivery_options = Column(JSON, nullable=True)
    vat_rate = Column(Numeric(5, 4), nullable=True)
    price_mode = Column(String(3), default="HT", nullable=False)  # 'HT' or 'TTC'

    # Notifications and fulfillment
    sender_email = Column(String(255), nullable=True)
    sender_name = Column(String(255), nullable=True)
    fulfillment_enabled = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

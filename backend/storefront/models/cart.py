"""Cart model"""
import uuid
from sqlalchemy import Column, String, JSON, DateTime
from datetime import datetime, timezone
from storefront.models.base import Base


class Cart(Base):
    """Shopping cart snapshot; ``items`` is an ordered JSON list of
    ``{"product_id", "variant_id", "quantity", "unit_price"}`` lines"""
    __tablename__ = "carts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    items = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                        onupdate=lambda: datetime.now(timezone.utc), nullable=False)

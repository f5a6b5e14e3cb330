"""Product model"""
import uuid
from sqlalchemy import Column, Integer, String, Text, Numeric, JSON, DateTime
from datetime import datetime, timezone
from storefront.models.base import Base


class Product(Base):
    """Catalog product; variants are stored as a JSON list of
    ``{"id", "title", "price", "stock_quantity"}`` objects"""
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    stock_quantity = Column(Integer, default=0, nullable=False)
    variants = Column(JSON, nullable=True)
    images = Column(JSON, nullable=True)
    delivery_cost_override = Column(Numeric(10, 2), nullable=True)
    gateway_product_id = Column(String(255), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    def find_variant(self, variant_id):
        """Return the variant dict with the given id, or None"""
        if not variant_id:
            return None
        for variant in self.variants or []:
            if str(variant.get("id")) == str(variant_id):
                return variant
        return None

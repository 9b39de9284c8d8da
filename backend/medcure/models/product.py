"""
Product model
The displayed price is derived state: it mirrors the selling price of the
oldest active batch and is only written by the price recalculator.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, DECIMAL
from sqlalchemy.orm import relationship
from medcure.db.base import Base


class Product(Base):
    """Product sold at the counter"""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String(150), nullable=False, index=True, comment="Generic name")
    brand_name = Column(String(150), comment="Brand name")
    description = Column(Text, comment="Description")

    # Denormalised selling price of the oldest active batch; NULL until first stock-in
    displayed_unit_price = Column(DECIMAL(12, 2), comment="Current unit price shown at the POS")

    is_active = Column(Boolean, default=True, comment="Enabled")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    batches = relationship("ProductBatch", back_populates="product", order_by="ProductBatch.created_at")
    price_history = relationship("PriceHistory", back_populates="product")

    def __repr__(self):
        return f"<Product {self.id}: {self.name} @ {self.displayed_unit_price}>"

    @property
    def full_name(self) -> str:
        """Generic name plus brand"""
        if self.brand_name:
            return f"{self.name} ({self.brand_name})"
        return self.name

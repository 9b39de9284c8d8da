"""
Price history - one row per change of a product's displayed price
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, DECIMAL
from sqlalchemy.orm import relationship
from medcure.db.base import Base


class PriceHistory(Base):
    """Displayed price change"""
    __tablename__ = "price_history"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)

    old_price = Column(DECIMAL(12, 2), comment="Previous displayed price (NULL on first stock-in)")
    new_price = Column(DECIMAL(12, 2), nullable=False, comment="New displayed price")

    # Batch whose selling price became current
    batch_id = Column(Integer, ForeignKey("product_batches.id"), comment="Source batch")

    # depletion / stock_in / sale_reversal / reconcile
    reason = Column(String(50), comment="What triggered the recalculation")

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    product = relationship("Product", back_populates="price_history")

    def __repr__(self):
        return f"<PriceHistory product:{self.product_id} {self.old_price} -> {self.new_price}>"

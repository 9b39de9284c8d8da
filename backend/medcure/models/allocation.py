"""
Sale batch allocation ledger - which batch supplied how many units of which line item

Rows are append-only. Prices are snapshotted from the batch at allocation time,
so COGS/profit reports stay correct after later batches arrive at other prices.
Undoing a sale appends compensating rows with negative quantities that point
back at the row they cancel.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, DECIMAL
from sqlalchemy.orm import relationship
from medcure.db.base import Base


class BatchAllocation(Base):
    """Ledger row"""
    __tablename__ = "sale_batch_allocations"

    id = Column(Integer, primary_key=True, index=True)

    sale_id = Column(String(64), ForeignKey("sales.id"), nullable=False, index=True)
    sale_line_item_id = Column(Integer, ForeignKey("sale_items.id"), nullable=False, index=True)
    batch_id = Column(Integer, ForeignKey("product_batches.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)

    # Negative on compensating rows
    quantity_drawn = Column(Integer, nullable=False, comment="Units drawn from the batch")

    unit_purchase_price = Column(DECIMAL(12, 2), nullable=False, comment="Batch cost at allocation time")
    unit_selling_price = Column(DECIMAL(12, 2), nullable=False, comment="Batch price at allocation time")

    item_cogs = Column(DECIMAL(12, 2), nullable=False, comment="quantity * purchase price")
    item_revenue = Column(DECIMAL(12, 2), nullable=False, comment="quantity * selling price")
    item_profit = Column(DECIMAL(12, 2), nullable=False, comment="revenue - cogs")

    # Set on compensating rows
    reversal_of_id = Column(Integer, ForeignKey("sale_batch_allocations.id"), index=True, comment="Row being reversed")

    created_at = Column(DateTime, default=datetime.utcnow)

    batch = relationship("ProductBatch", back_populates="allocations")
    sale_item = relationship("SaleItem", back_populates="allocations")

    def __repr__(self):
        return f"<BatchAllocation sale:{self.sale_id} batch:{self.batch_id} qty:{self.quantity_drawn}>"

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None

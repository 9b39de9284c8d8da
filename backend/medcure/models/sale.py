"""
Sale and sale line item models

Status flow:
    pending -> allocating -> committed -> reversed
    pending -> allocating -> aborted (may be resubmitted)
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, DECIMAL, UniqueConstraint
from sqlalchemy.orm import relationship
from medcure.db.base import Base

SALE_PENDING = "pending"
SALE_ALLOCATING = "allocating"
SALE_COMMITTED = "committed"
SALE_ABORTED = "aborted"
SALE_REVERSED = "reversed"


class Sale(Base):
    """Sale header with COGS/profit aggregates"""
    __tablename__ = "sales"

    # Supplied by the POS terminal so a failed sale can be resubmitted under the same id
    id = Column(String(64), primary_key=True)

    status = Column(String(20), nullable=False, default=SALE_PENDING, index=True, comment="Status")

    # Sums over the sale's allocation rows
    total_revenue = Column(DECIMAL(12, 2), default=Decimal("0.00"), comment="Revenue")
    total_cogs = Column(DECIMAL(12, 2), default=Decimal("0.00"), comment="Cost of goods sold")
    gross_profit = Column(DECIMAL(12, 2), default=Decimal("0.00"), comment="Revenue - COGS")
    profit_margin_percentage = Column(DECIMAL(8, 2), default=Decimal("0.00"), comment="Profit / revenue * 100")

    failure_reason = Column(String(500), comment="Why the last settlement attempt aborted")
    reversal_reason = Column(String(500), comment="Why the sale was undone")

    committed_at = Column(DateTime, comment="Settlement time")
    reversed_at = Column(DateTime, comment="Undo time")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship("SaleItem", back_populates="sale", order_by="SaleItem.line_no")

    def __repr__(self):
        return f"<Sale {self.id}: {self.status} cogs={self.total_cogs} profit={self.gross_profit}>"


class SaleItem(Base):
    """Sale line item"""
    __tablename__ = "sale_items"
    __table_args__ = (
        UniqueConstraint("sale_id", "line_no", name="uq_sale_item_line"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sale_id = Column(String(64), ForeignKey("sales.id"), nullable=False, index=True)

    # Position in the submitted request, allocation follows this order
    line_no = Column(Integer, nullable=False)

    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, comment="Pieces sold")

    # Displayed price when the line was settled (the ledger holds per-batch prices)
    unit_price = Column(DECIMAL(12, 2), comment="Displayed unit price at settlement")

    created_at = Column(DateTime, default=datetime.utcnow)

    sale = relationship("Sale", back_populates="items")
    product = relationship("Product")
    allocations = relationship("BatchAllocation", back_populates="sale_item")

    def __repr__(self):
        return f"<SaleItem {self.sale_id}#{self.line_no}: product {self.product_id} x{self.quantity}>"

"""
Stock batch model - one row per stock-in event
Each batch keeps its own cost, selling price and remaining quantity:
- FIFO order is created_at ascending, ties broken by id
- status flips to depleted exactly when quantity_remaining reaches 0
- batches are never deleted, sale allocations point at them for audit
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Text, DateTime, Date, ForeignKey, DECIMAL, Index, CheckConstraint
from sqlalchemy.orm import relationship
from medcure.db.base import Base

BATCH_ACTIVE = "active"
BATCH_DEPLETED = "depleted"


class ProductBatch(Base):
    """Stock batch"""
    __tablename__ = "product_batches"
    __table_args__ = (
        CheckConstraint("quantity_remaining >= 0", name="ck_batch_quantity_non_negative"),
        Index("ix_product_batches_fifo", "product_id", "status", "created_at", "id"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Batch number, BT + MMDDYY + per-product daily sequence, e.g. BT010125-001
    batch_number = Column(String(50), nullable=False, index=True, comment="Batch number")

    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)

    initial_quantity = Column(Integer, nullable=False, comment="Quantity received")
    quantity_remaining = Column(Integer, nullable=False, comment="Quantity still on hand")

    # Prices are per piece
    purchase_price = Column(DECIMAL(12, 2), nullable=False, comment="Unit cost paid to supplier")
    selling_price = Column(DECIMAL(12, 2), nullable=False, comment="Unit price charged to customer")
    markup_percentage = Column(DECIMAL(8, 2), default=Decimal("0.00"), comment="(selling - purchase) / purchase * 100")

    # active: on hand
    # depleted: quantity_remaining is 0
    status = Column(String(20), nullable=False, default=BATCH_ACTIVE, index=True, comment="Status")

    supplier_name = Column(String(150), comment="Supplier")
    expiry_date = Column(Date, comment="Expiry date (informational)")
    notes = Column(Text, comment="Notes")

    # Optimistic concurrency counter, bumped on every UPDATE
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, comment="Stock-in time, FIFO key")
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}

    product = relationship("Product", back_populates="batches")
    allocations = relationship("BatchAllocation", back_populates="batch")

    def __repr__(self):
        return f"<ProductBatch {self.batch_number}: {self.quantity_remaining}/{self.initial_quantity} {self.status}>"

    @property
    def is_depleted(self) -> bool:
        return self.quantity_remaining <= 0

    @property
    def is_available(self) -> bool:
        return self.status == BATCH_ACTIVE and self.quantity_remaining > 0

    def update_status(self):
        """Keep status in step with the remaining quantity"""
        if self.quantity_remaining <= 0:
            self.status = BATCH_DEPLETED
        else:
            self.status = BATCH_ACTIVE


def compute_markup(purchase_price: Decimal, selling_price: Decimal) -> Decimal:
    """Markup over cost in percent, 0 when the cost is 0"""
    if not purchase_price or purchase_price <= 0:
        return Decimal("0.00")
    markup = (selling_price - purchase_price) / purchase_price * Decimal("100")
    return markup.quantize(Decimal("0.01"))

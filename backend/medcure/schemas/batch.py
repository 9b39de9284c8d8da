"""Stock batch schemas"""
from typing import Optional
from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal


# ===== Batches =====
class BatchCreate(BaseModel):
    """Stock-in"""
    product_id: int = Field(..., description="Product ID")
    quantity: int = Field(..., gt=0, description="Pieces received")
    purchase_price: Decimal = Field(..., ge=0, description="Unit cost")
    selling_price: Decimal = Field(..., gt=0, description="Unit selling price")
    supplier_name: Optional[str] = Field(None, max_length=150, description="Supplier")
    expiry_date: Optional[date] = Field(None, description="Expiry date")
    notes: Optional[str] = Field(None, max_length=500, description="Notes")
    # Back-dated stock-in (opening balances); defaults to now
    received_at: Optional[datetime] = Field(None, description="Stock-in time")


class BatchResponse(BaseModel):
    """Batch"""
    id: int
    batch_number: str
    product_id: int

    initial_quantity: int
    quantity_remaining: int

    purchase_price: Decimal
    selling_price: Decimal
    markup_percentage: Decimal = Decimal("0")

    status: str
    is_depleted: bool = False

    supplier_name: Optional[str] = None
    expiry_date: Optional[date] = None
    notes: Optional[str] = None

    created_at: datetime
    updated_at: Optional[datetime] = None


class BatchAllocationResponse(BaseModel):
    """Ledger row as seen from a batch or a sale"""
    id: int
    sale_id: str
    sale_line_item_id: int
    batch_id: int
    product_id: int
    quantity_drawn: int
    unit_purchase_price: Decimal
    unit_selling_price: Decimal
    item_cogs: Decimal
    item_revenue: Decimal
    item_profit: Decimal
    reversal_of_id: Optional[int] = None
    created_at: Optional[datetime] = None

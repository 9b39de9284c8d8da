"""Sale settlement schemas"""
from typing import List, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal

from medcure.schemas.batch import BatchAllocationResponse
from medcure.schemas.events import InventoryEvent


class SaleLineItem(BaseModel):
    """Requested line"""
    product_id: int = Field(..., description="Product ID")
    # Positivity is checked by the settlement service so the same rule applies to in-process callers
    quantity: int = Field(..., description="Pieces")


class SettleSaleRequest(BaseModel):
    sale_id: str = Field(..., min_length=1, max_length=64, description="Sale ID issued by the POS terminal")
    items: List[SaleLineItem] = Field(..., description="Lines, allocated in this order")


class UndoSaleRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500, description="Why the sale is undone")


class SaleSettlementResult(BaseModel):
    """Committed sale"""
    sale_id: str
    status: str
    attempts: int = 1
    total_revenue: Decimal = Decimal("0")
    total_cogs: Decimal = Decimal("0")
    gross_profit: Decimal = Decimal("0")
    profit_margin_percentage: Decimal = Decimal("0")
    committed_at: Optional[datetime] = None
    allocations: List[BatchAllocationResponse] = []
    events: List[InventoryEvent] = []


class SaleReversalResult(BaseModel):
    """Undone sale"""
    sale_id: str
    status: str
    attempts: int = 1
    reversed_at: Optional[datetime] = None
    reversal_reason: Optional[str] = None
    compensating_allocations: List[BatchAllocationResponse] = []
    events: List[InventoryEvent] = []


class SaleItemResponse(BaseModel):
    id: int
    line_no: int
    product_id: int
    quantity: int
    unit_price: Optional[Decimal] = None


class SaleResponse(BaseModel):
    """Sale header"""
    id: str
    status: str
    total_revenue: Decimal = Decimal("0")
    total_cogs: Decimal = Decimal("0")
    gross_profit: Decimal = Decimal("0")
    profit_margin_percentage: Decimal = Decimal("0")
    failure_reason: Optional[str] = None
    reversal_reason: Optional[str] = None
    committed_at: Optional[datetime] = None
    reversed_at: Optional[datetime] = None
    items: List[SaleItemResponse] = []


class SaleProfitDetail(BaseModel):
    """Per-batch profit line"""
    allocation_id: int
    product_id: int
    product_name: str
    batch_id: int
    batch_number: str
    quantity_sold: int
    purchase_price: Decimal
    selling_price: Decimal
    item_cogs: Decimal
    item_revenue: Decimal
    item_profit: Decimal
    is_reversal: bool = False

"""Product schemas"""
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from decimal import Decimal


class ProductCreate(BaseModel):
    """Create product"""
    name: str = Field(..., min_length=1, max_length=150, description="Generic name")
    brand_name: Optional[str] = Field(None, max_length=150, description="Brand name")
    description: Optional[str] = Field(None, description="Description")


class ProductResponse(BaseModel):
    """Product with current price and stock"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    brand_name: Optional[str] = None
    full_name: str = ""
    description: Optional[str] = None
    displayed_unit_price: Optional[Decimal] = None
    stock_on_hand: int = 0
    is_active: bool = True
    created_at: datetime
    updated_at: datetime


class CurrentBatchPrice(BaseModel):
    """Pricing taken from the oldest active batch"""
    product_id: int
    batch_id: Optional[int] = None
    batch_number: Optional[str] = None
    selling_price: Optional[Decimal] = None
    purchase_price: Optional[Decimal] = None
    available_quantity: int = 0


class PriceHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    old_price: Optional[Decimal] = None
    new_price: Decimal
    batch_id: Optional[int] = None
    reason: Optional[str] = None
    created_at: datetime


class PriceRefreshSummary(BaseModel):
    """Outcome of a reconciliation sweep"""
    products_checked: int = 0
    prices_updated: int = 0
    out_of_stock: int = 0

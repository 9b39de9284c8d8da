"""Domain events, dispatched after the producing transaction commits"""
from decimal import Decimal
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class DomainEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_type: str


class BatchDepleted(DomainEvent):
    """A batch's remaining quantity reached 0"""
    event_type: Literal["batch_depleted"] = "batch_depleted"
    product_id: int
    batch_id: int


class OutOfStock(DomainEvent):
    """No active batch with stock remains for the product"""
    event_type: Literal["out_of_stock"] = "out_of_stock"
    product_id: int


class PriceChanged(DomainEvent):
    """The displayed unit price moved to another batch's selling price"""
    event_type: Literal["price_changed"] = "price_changed"
    product_id: int
    old_price: Optional[Decimal] = Field(None, description="NULL when the product had no price yet")
    new_price: Decimal


InventoryEvent = Union[BatchDepleted, OutOfStock, PriceChanged]

"""Product API - catalogue, stock and displayed price"""

from typing import Any, List

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medcure.core.deps import get_db, get_dispatcher, get_session_factory
from medcure.models.price_history import PriceHistory
from medcure.models.product import Product
from medcure.schemas.batch import BatchResponse
from medcure.schemas.product import (
    CurrentBatchPrice, PriceHistoryResponse, PriceRefreshSummary,
    ProductCreate, ProductResponse
)
from medcure.services import batch_store, price_recalculator
from medcure.services.events import EventDispatcher
from medcure.services.fifo_allocator import get_current_batch

from medcure.api.api_v1.endpoints.batches import build_batch_response

router = APIRouter()


def build_product_response(product: Product, stock_on_hand: int) -> ProductResponse:
    response = ProductResponse.model_validate(product)
    response.stock_on_hand = stock_on_hand
    return response


@router.post("/", response_model=ProductResponse, status_code=201)
async def create_product(
    *,
    db: AsyncSession = Depends(get_db),
    product_in: ProductCreate) -> Any:
    """Create product"""
    product = await batch_store.create_product(db, product_in)
    await db.commit()
    await db.refresh(product)
    return build_product_response(product, 0)


@router.post("/refresh-prices", response_model=PriceRefreshSummary)
async def refresh_prices(
    session_factory=Depends(get_session_factory),
    event_dispatcher: EventDispatcher = Depends(get_dispatcher)) -> Any:
    """Run the displayed price reconciliation sweep now"""
    return await price_recalculator.refresh_all_prices(session_factory, event_dispatcher)


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    *,
    db: AsyncSession = Depends(get_db),
    product_id: int) -> Any:
    product = await batch_store.get_product(db, product_id)
    stock = await batch_store.get_product_stock(db, product_id)
    return build_product_response(product, stock)


@router.get("/{product_id}/batches", response_model=List[BatchResponse])
async def list_product_batches(
    *,
    db: AsyncSession = Depends(get_db),
    product_id: int,
    include_depleted: bool = Query(False, description="Include depleted batches")) -> Any:
    """Batches in FIFO order"""
    await batch_store.get_product(db, product_id)
    batches = await batch_store.list_fifo_batches(db, product_id, include_depleted)
    return [build_batch_response(b) for b in batches]


@router.get("/{product_id}/current-price", response_model=CurrentBatchPrice)
async def get_current_price(
    *,
    db: AsyncSession = Depends(get_db),
    product_id: int) -> Any:
    """Pricing of the batch the next sale draws from"""
    await batch_store.get_product(db, product_id)
    batch = await get_current_batch(db, product_id)
    if batch is None:
        return CurrentBatchPrice(product_id=product_id)
    return CurrentBatchPrice(
        product_id=product_id,
        batch_id=batch.id,
        batch_number=batch.batch_number,
        selling_price=batch.selling_price,
        purchase_price=batch.purchase_price,
        available_quantity=batch.quantity_remaining)


@router.get("/{product_id}/price-history", response_model=List[PriceHistoryResponse])
async def get_price_history(
    *,
    db: AsyncSession = Depends(get_db),
    product_id: int,
    limit: int = Query(50, ge=1, le=500)) -> Any:
    await batch_store.get_product(db, product_id)
    result = await db.execute(
        select(PriceHistory)
        .where(PriceHistory.product_id == product_id)
        .order_by(PriceHistory.created_at.desc(), PriceHistory.id.desc())
        .limit(limit)
    )
    return [PriceHistoryResponse.model_validate(row) for row in result.scalars().all()]

"""
FIFO allocator

Plans which batches a requested quantity is drawn from, oldest first. The
plan is computed from the batches as they are stored right now and nothing
is written; apply_draws in batch_mutation turns a plan into stock movements.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from medcure.core.errors import InsufficientStockError, ValidationError
from medcure.models.batch import ProductBatch, BATCH_ACTIVE


@dataclass(frozen=True)
class BatchDraw:
    batch_id: int
    quantity: int


@dataclass(frozen=True)
class AllocationPlan:
    """Ordered draws covering exactly quantity_requested"""
    product_id: int
    quantity_requested: int
    draws: Tuple[BatchDraw, ...]

    @property
    def batch_ids(self) -> List[int]:
        return [d.batch_id for d in self.draws]

    def as_pairs(self) -> List[Tuple[int, int]]:
        return [(d.batch_id, d.quantity) for d in self.draws]


def fifo_batches_query(product_id: int, include_depleted: bool = False) -> Select:
    """Batches of a product, oldest first; id breaks created_at ties"""
    query = select(ProductBatch).where(ProductBatch.product_id == product_id)
    if not include_depleted:
        query = query.where(
            ProductBatch.status == BATCH_ACTIVE,
            ProductBatch.quantity_remaining > 0,
        )
    return query.order_by(ProductBatch.created_at.asc(), ProductBatch.id.asc())


def validate_quantity(quantity) -> int:
    # bool is an int subclass, True must not read as 1 piece
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(f"Quantity must be a whole number of pieces, got {quantity!r}")
    if quantity <= 0:
        raise ValidationError(f"Quantity must be greater than 0, got {quantity}")
    return quantity


def plan_draws(product_id: int, batches: Sequence[ProductBatch], quantity_requested: int) -> AllocationPlan:
    """Greedy FIFO plan over batches that are already in FIFO order"""
    quantity_requested = validate_quantity(quantity_requested)

    available = sum(b.quantity_remaining for b in batches if b.is_available)
    if available < quantity_requested:
        raise InsufficientStockError(
            requested=quantity_requested, available=available, product_id=product_id)

    remaining = quantity_requested
    draws = []
    for batch in batches:
        if remaining <= 0:
            break
        if not batch.is_available:
            continue
        take = min(batch.quantity_remaining, remaining)
        draws.append(BatchDraw(batch_id=batch.id, quantity=take))
        remaining -= take

    return AllocationPlan(product_id=product_id, quantity_requested=quantity_requested, draws=tuple(draws))


async def fetch_active_batches(db: AsyncSession, product_id: int) -> List[ProductBatch]:
    # populate_existing: always plan from the stored rows, never from a stale identity map
    result = await db.execute(
        fifo_batches_query(product_id).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_current_batch(db: AsyncSession, product_id: int) -> Optional[ProductBatch]:
    """Oldest active batch with stock, i.e. the batch the next unit comes from"""
    result = await db.execute(
        fifo_batches_query(product_id).limit(1).execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def allocate(db: AsyncSession, product_id: int, quantity_requested: int) -> AllocationPlan:
    """Plan a draw of quantity_requested units of product_id

    Raises:
        ValidationError: quantity_requested is not a positive integer (no query is run)
        InsufficientStockError: active batches hold fewer units than requested
    """
    validate_quantity(quantity_requested)
    batches = await fetch_active_batches(db, product_id)
    return plan_draws(product_id, batches, quantity_requested)

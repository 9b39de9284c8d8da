"""
Batch mutation - turns an allocation plan into stock movements

Runs in the settlement transaction:
1. lock the planned batch rows (SELECT ... FOR UPDATE where the engine has row locks)
2. re-check every planned draw against the locked rows
3. decrement, flip status at 0, append the ledger rows
4. recalculate the product price if a batch depleted

Losing a race to another terminal surfaces as ConcurrentModificationError,
either from the re-check or from the version counter on flush; the
settlement service re-plans against fresh state.
"""

from typing import Dict, Iterable, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from medcure.core.errors import ConcurrentModificationError
from medcure.core.logging_config import get_logger
from medcure.models.allocation import BatchAllocation
from medcure.models.batch import ProductBatch, BATCH_ACTIVE, BATCH_DEPLETED
from medcure.models.sale import SaleItem
from medcure.schemas.events import BatchDepleted
from medcure.services import allocation_ledger, price_recalculator
from medcure.services.events import EventOutbox
from medcure.services.fifo_allocator import AllocationPlan

logger = get_logger(__name__)


async def lock_batches(db: AsyncSession, batch_ids: Iterable[int]) -> Dict[int, ProductBatch]:
    """Lock and re-read batch rows in ascending id order

    Ordering only covers the rows of one call. A sale locks line by line and
    also takes product rows in the recalculator, so a deadlock between sales
    is still possible on server databases and surfaces as a retryable conflict.
    """
    ids = sorted(set(batch_ids))
    if not ids:
        return {}
    result = await db.execute(
        select(ProductBatch)
        .where(ProductBatch.id.in_(ids))
        .order_by(ProductBatch.id.asc())
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {batch.id: batch for batch in result.scalars().all()}


async def flush_batches(db: AsyncSession) -> None:
    """Flush pending batch updates, reporting a version mismatch as a lost race"""
    try:
        await db.flush()
    except StaleDataError as exc:
        raise ConcurrentModificationError(f"Batch row changed concurrently: {exc}") from exc


async def apply_draws(
    db: AsyncSession,
    plan: AllocationPlan,
    sale_item: SaleItem,
    outbox: EventOutbox) -> List[BatchAllocation]:
    """Apply `plan` for `sale_item`; returns the ledger rows written"""
    locked = await lock_batches(db, plan.batch_ids)

    rows = []
    depleted = []
    for draw in plan.draws:
        batch = locked.get(draw.batch_id)
        if batch is None or batch.status != BATCH_ACTIVE or batch.quantity_remaining < draw.quantity:
            have = batch.quantity_remaining if batch is not None else 0
            raise ConcurrentModificationError(
                f"Batch {draw.batch_id} has {have} left, plan needs {draw.quantity}",
                batch_id=draw.batch_id)

        batch.quantity_remaining -= draw.quantity
        batch.update_status()
        rows.append(allocation_ledger.record_allocation(db, sale_item, batch, draw.quantity))

        if batch.status == BATCH_DEPLETED:
            depleted.append(batch)
            outbox.add(BatchDepleted(product_id=batch.product_id, batch_id=batch.id))

    await flush_batches(db)

    for batch in depleted:
        logger.info(f"Batch {batch.batch_number} (product {batch.product_id}) depleted")
    if depleted:
        await price_recalculator.on_batch_depleted(db, plan.product_id, outbox)

    return rows


async def restore_draws(db: AsyncSession, originals: List[BatchAllocation]) -> List[BatchAllocation]:
    """Put the units of `originals` back into the batches they came from

    Depleted batches become active again. Returns the compensating ledger rows.
    """
    locked = await lock_batches(db, [row.batch_id for row in originals])

    reversals = []
    for row in originals:
        batch = locked.get(row.batch_id)
        if batch is None:
            raise ConcurrentModificationError(f"Batch {row.batch_id} disappeared", batch_id=row.batch_id)
        batch.quantity_remaining += row.quantity_drawn
        batch.update_status()
        reversals.append(allocation_ledger.record_reversal(db, row))

    await flush_batches(db)
    return reversals

"""Stock batch API"""

from typing import Any, List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from medcure.core.deps import get_db, get_dispatcher
from medcure.models.batch import ProductBatch
from medcure.schemas.batch import BatchAllocationResponse, BatchCreate, BatchResponse
from medcure.services import allocation_ledger, batch_store
from medcure.services.events import EventDispatcher, EventOutbox

router = APIRouter()


def build_batch_response(batch: ProductBatch) -> BatchResponse:
    """Build batch response"""
    return BatchResponse(
        id=batch.id,
        batch_number=batch.batch_number,
        product_id=batch.product_id,

        initial_quantity=batch.initial_quantity,
        quantity_remaining=batch.quantity_remaining,

        purchase_price=batch.purchase_price,
        selling_price=batch.selling_price,
        markup_percentage=batch.markup_percentage,

        status=batch.status,
        is_depleted=batch.is_depleted,

        supplier_name=batch.supplier_name,
        expiry_date=batch.expiry_date,
        notes=batch.notes,

        created_at=batch.created_at,
        updated_at=batch.updated_at)


@router.post("/", response_model=BatchResponse, status_code=201)
async def create_batch(
    *,
    db: AsyncSession = Depends(get_db),
    event_dispatcher: EventDispatcher = Depends(get_dispatcher),
    batch_in: BatchCreate) -> Any:
    """Stock-in: one batch per delivery"""
    outbox = EventOutbox()
    batch = await batch_store.add_batch(db, batch_in, outbox)
    await db.commit()
    await db.refresh(batch)

    await event_dispatcher.dispatch(outbox.drain())
    return build_batch_response(batch)


@router.get("/{batch_id}", response_model=BatchResponse)
async def get_batch(
    *,
    db: AsyncSession = Depends(get_db),
    batch_id: int) -> Any:
    batch = await batch_store.get_batch(db, batch_id)
    return build_batch_response(batch)


@router.get("/{batch_id}/allocations", response_model=List[BatchAllocationResponse])
async def list_batch_allocations(
    *,
    db: AsyncSession = Depends(get_db),
    batch_id: int) -> Any:
    """Ledger rows drawn from (or returned to) the batch, newest first"""
    await batch_store.get_batch(db, batch_id)
    rows = await allocation_ledger.list_batch_allocations(db, batch_id)
    return [allocation_ledger.build_allocation_response(r) for r in rows]

"""
Batch store
- products and stock-in (one batch per delivery)
- FIFO listings for stock and audit displays
- read helpers for stock and price displays
"""

from datetime import datetime, time
from typing import List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from medcure.core.errors import NotFoundError, ValidationError
from medcure.core.logging_config import get_logger
from medcure.models.batch import ProductBatch, BATCH_ACTIVE, compute_markup
from medcure.models.product import Product
from medcure.schemas.batch import BatchCreate
from medcure.schemas.product import ProductCreate
from medcure.services import price_recalculator
from medcure.services.fifo_allocator import fifo_batches_query
from medcure.services.events import EventOutbox

logger = get_logger(__name__)


# ===== Products =====

async def create_product(db: AsyncSession, product_in: ProductCreate) -> Product:
    """Create a product; it has no price until its first batch arrives"""
    product = Product(
        name=product_in.name.strip(),
        brand_name=product_in.brand_name,
        description=product_in.description,
        is_active=True)
    db.add(product)
    await db.flush()
    return product


async def get_product(db: AsyncSession, product_id: int) -> Product:
    product = await db.get(Product, product_id)
    if not product:
        raise NotFoundError("Product", product_id)
    return product


async def get_product_stock(db: AsyncSession, product_id: int) -> int:
    """Units on hand across active batches"""
    result = await db.execute(
        select(func.coalesce(func.sum(ProductBatch.quantity_remaining), 0)).where(
            ProductBatch.product_id == product_id,
            ProductBatch.status == BATCH_ACTIVE)
    )
    return int(result.scalar() or 0)


# ===== Batches =====

async def generate_batch_number(db: AsyncSession, product_id: int, received_at: datetime) -> str:
    """Batch number: BT + MMDDYY + per-product daily sequence"""
    day_start = datetime.combine(received_at.date(), time.min)
    day_end = datetime.combine(received_at.date(), time.max)

    result = await db.execute(
        select(func.count(ProductBatch.id)).where(
            ProductBatch.product_id == product_id,
            ProductBatch.created_at >= day_start,
            ProductBatch.created_at <= day_end)
    )
    count = result.scalar() or 0

    return f"BT{received_at.strftime('%m%d%y')}-{count + 1:03d}"


async def add_batch(db: AsyncSession, batch_in: BatchCreate, outbox: EventOutbox) -> ProductBatch:
    """Stock-in

    The new batch only becomes the price source when no older batch has
    stock left, which the recalculator decides from the stored state.
    """
    if batch_in.quantity <= 0:
        raise ValidationError("Batch quantity must be greater than 0")
    if batch_in.selling_price <= 0:
        raise ValidationError("Selling price must be greater than 0")
    if batch_in.purchase_price < 0:
        raise ValidationError("Purchase price cannot be negative")

    product = await get_product(db, batch_in.product_id)
    if not product.is_active:
        raise ValidationError(f"Product {product.id} is disabled")

    received_at = batch_in.received_at or datetime.utcnow()
    batch_number = await generate_batch_number(db, product.id, received_at)

    batch = ProductBatch(
        batch_number=batch_number,
        product_id=product.id,
        initial_quantity=batch_in.quantity,
        quantity_remaining=batch_in.quantity,
        purchase_price=batch_in.purchase_price,
        selling_price=batch_in.selling_price,
        markup_percentage=compute_markup(batch_in.purchase_price, batch_in.selling_price),
        status=BATCH_ACTIVE,
        supplier_name=batch_in.supplier_name,
        expiry_date=batch_in.expiry_date,
        notes=batch_in.notes,
        created_at=received_at)
    db.add(batch)
    await db.flush()

    logger.info(f"Stock-in {batch.batch_number}: product {product.id} +{batch.initial_quantity} @ {batch.selling_price}")

    await price_recalculator.recalculate_price(
        db, product.id, outbox, reason="stock_in", emit_out_of_stock=False)

    return batch


async def get_batch(db: AsyncSession, batch_id: int) -> ProductBatch:
    batch = await db.get(ProductBatch, batch_id)
    if not batch:
        raise NotFoundError("Batch", batch_id)
    return batch


async def list_fifo_batches(
    db: AsyncSession,
    product_id: int,
    include_depleted: bool = False) -> List[ProductBatch]:
    """Batches in FIFO order (depleted ones kept for audit when asked)"""
    result = await db.execute(
        fifo_batches_query(product_id, include_depleted).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())



"""
Price recalculator

The only code path that writes Product.displayed_unit_price. The price is
derived from stored batch state alone (selling price of the oldest active
batch with stock), so running it twice on the same state is a no-op.
When no batch has stock the last known price is kept, never zeroed.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medcure.core.errors import NotFoundError
from medcure.core.logging_config import get_logger
from medcure.models.price_history import PriceHistory
from medcure.models.product import Product
from medcure.schemas.events import OutOfStock, PriceChanged
from medcure.schemas.product import PriceRefreshSummary
from medcure.services.events import EventDispatcher, EventOutbox
from medcure.services.fifo_allocator import get_current_batch

logger = get_logger(__name__)


async def recalculate_price(
    db: AsyncSession,
    product_id: int,
    outbox: Optional[EventOutbox] = None,
    reason: str = "depletion",
    emit_out_of_stock: bool = True) -> Optional[Decimal]:
    """Align the displayed price with the oldest active batch

    Runs inside the caller's transaction. Returns the displayed price after
    the call (None only for a product that never had stock).
    """
    # product row lock serialises concurrent recalculations of the same product
    product = await db.get(Product, product_id, with_for_update=True, populate_existing=True)
    if not product:
        raise NotFoundError("Product", product_id)

    current = await get_current_batch(db, product_id)
    if current is None:
        logger.info(f"Product {product_id} is out of stock, keeping price {product.displayed_unit_price}")
        if outbox is not None and emit_out_of_stock:
            outbox.add(OutOfStock(product_id=product_id))
        return product.displayed_unit_price

    old_price = product.displayed_unit_price
    new_price = current.selling_price
    if old_price is not None and old_price == new_price:
        return old_price

    product.displayed_unit_price = new_price
    db.add(PriceHistory(
        product_id=product_id,
        old_price=old_price,
        new_price=new_price,
        batch_id=current.id,
        reason=reason))
    await db.flush()

    logger.info(f"Product {product_id} price {old_price} -> {new_price} (batch {current.batch_number}, {reason})")
    if outbox is not None:
        outbox.add(PriceChanged(product_id=product_id, old_price=old_price, new_price=new_price))
    return new_price


async def on_batch_depleted(
    db: AsyncSession,
    product_id: int,
    outbox: Optional[EventOutbox] = None) -> Optional[Decimal]:
    """Called in the transaction that depleted one of the product's batches"""
    return await recalculate_price(db, product_id, outbox, reason="depletion")


async def refresh_all_prices(session_factory, dispatcher: Optional[EventDispatcher] = None) -> PriceRefreshSummary:
    """Reconciliation sweep over every product, one short transaction each

    Repairs drift left by anything that bypassed the settlement path (manual
    database edits, restores). Out-of-stock products are counted, not announced.
    """
    summary = PriceRefreshSummary()

    async with session_factory() as db:
        result = await db.execute(select(Product.id).order_by(Product.id))
        product_ids = list(result.scalars().all())

    for product_id in product_ids:
        outbox = EventOutbox()
        async with session_factory() as db:
            before = (await db.get(Product, product_id)).displayed_unit_price
            after = await recalculate_price(
                db, product_id, outbox, reason="reconcile", emit_out_of_stock=False)
            if await get_current_batch(db, product_id) is None:
                summary.out_of_stock += 1
            await db.commit()

        summary.products_checked += 1
        if after != before:
            summary.prices_updated += 1
        if dispatcher is not None:
            await dispatcher.dispatch(outbox.drain())

    logger.info(
        f"Price reconciliation: {summary.products_checked} checked, "
        f"{summary.prices_updated} updated, {summary.out_of_stock} out of stock")
    return summary

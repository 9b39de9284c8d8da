"""
Allocation ledger - append-only batch allocation rows

Rows are only ever added. record_allocation snapshots the batch prices at
the moment of the draw; record_reversal cancels a row by appending its
negative. Sale totals are always the sum over the sale's rows.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medcure.models.allocation import BatchAllocation
from medcure.models.batch import ProductBatch
from medcure.models.product import Product
from medcure.models.sale import SaleItem
from medcure.schemas.batch import BatchAllocationResponse
from medcure.schemas.sale import SaleProfitDetail

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


@dataclass(frozen=True)
class SaleTotals:
    total_revenue: Decimal
    total_cogs: Decimal
    gross_profit: Decimal
    profit_margin_percentage: Decimal


def record_allocation(db: AsyncSession, sale_item: SaleItem, batch: ProductBatch, quantity: int) -> BatchAllocation:
    """Append the row for `quantity` units of `sale_item` drawn from `batch`"""
    purchase_price = batch.purchase_price
    selling_price = batch.selling_price
    cogs = purchase_price * quantity
    revenue = selling_price * quantity

    row = BatchAllocation(
        sale_id=sale_item.sale_id,
        sale_line_item_id=sale_item.id,
        batch_id=batch.id,
        product_id=batch.product_id,
        quantity_drawn=quantity,
        unit_purchase_price=purchase_price,
        unit_selling_price=selling_price,
        item_cogs=cogs,
        item_revenue=revenue,
        item_profit=revenue - cogs)
    db.add(row)
    return row


def record_reversal(db: AsyncSession, original: BatchAllocation) -> BatchAllocation:
    """Append the compensating row for `original`, same prices, negated amounts"""
    row = BatchAllocation(
        sale_id=original.sale_id,
        sale_line_item_id=original.sale_line_item_id,
        batch_id=original.batch_id,
        product_id=original.product_id,
        quantity_drawn=-original.quantity_drawn,
        unit_purchase_price=original.unit_purchase_price,
        unit_selling_price=original.unit_selling_price,
        item_cogs=-original.item_cogs,
        item_revenue=-original.item_revenue,
        item_profit=-original.item_profit,
        reversal_of_id=original.id)
    db.add(row)
    return row


def summarize(rows: Iterable[BatchAllocation]) -> SaleTotals:
    """Sale-level totals; margin is profit over revenue in percent"""
    revenue = ZERO
    cogs = ZERO
    for row in rows:
        revenue += row.item_revenue
        cogs += row.item_cogs
    profit = revenue - cogs
    margin = (profit / revenue * Decimal("100")).quantize(CENT) if revenue > 0 else ZERO
    return SaleTotals(
        total_revenue=revenue,
        total_cogs=cogs,
        gross_profit=profit,
        profit_margin_percentage=margin)


async def list_sale_allocations(
    db: AsyncSession,
    sale_id: str,
    include_reversals: bool = True) -> List[BatchAllocation]:
    query = select(BatchAllocation).where(BatchAllocation.sale_id == sale_id)
    if not include_reversals:
        query = query.where(BatchAllocation.reversal_of_id.is_(None))
    result = await db.execute(query.order_by(BatchAllocation.id.asc()))
    return list(result.scalars().all())


async def list_batch_allocations(db: AsyncSession, batch_id: int) -> List[BatchAllocation]:
    """Outbound trail of a batch, newest first"""
    result = await db.execute(
        select(BatchAllocation)
        .where(BatchAllocation.batch_id == batch_id)
        .order_by(BatchAllocation.id.desc())
    )
    return list(result.scalars().all())


async def get_sale_profit_details(db: AsyncSession, sale_id: str) -> List[SaleProfitDetail]:
    """Per-batch profit breakdown of a sale, in allocation order"""
    result = await db.execute(
        select(BatchAllocation, ProductBatch.batch_number, Product.name, Product.brand_name)
        .join(ProductBatch, ProductBatch.id == BatchAllocation.batch_id)
        .join(Product, Product.id == BatchAllocation.product_id)
        .where(BatchAllocation.sale_id == sale_id)
        .order_by(BatchAllocation.id.asc())
    )

    details = []
    for row, batch_number, name, brand_name in result.all():
        details.append(SaleProfitDetail(
            allocation_id=row.id,
            product_id=row.product_id,
            product_name=f"{name} ({brand_name})" if brand_name else name,
            batch_id=row.batch_id,
            batch_number=batch_number,
            quantity_sold=row.quantity_drawn,
            purchase_price=row.unit_purchase_price,
            selling_price=row.unit_selling_price,
            item_cogs=row.item_cogs,
            item_revenue=row.item_revenue,
            item_profit=row.item_profit,
            is_reversal=row.is_reversal))
    return details


def build_allocation_response(row: BatchAllocation) -> BatchAllocationResponse:
    return BatchAllocationResponse(
        id=row.id,
        sale_id=row.sale_id,
        sale_line_item_id=row.sale_line_item_id,
        batch_id=row.batch_id,
        product_id=row.product_id,
        quantity_drawn=row.quantity_drawn,
        unit_purchase_price=row.unit_purchase_price,
        unit_selling_price=row.unit_selling_price,
        item_cogs=row.item_cogs,
        item_revenue=row.item_revenue,
        item_profit=row.item_profit,
        reversal_of_id=row.reversal_of_id,
        created_at=row.created_at)

"""Sale settlement API"""

from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medcure.core.deps import get_db, get_settlement_service
from medcure.core.errors import NotFoundError
from medcure.models.sale import Sale, SaleItem
from medcure.schemas.sale import (
    SaleItemResponse, SaleProfitDetail, SaleResponse, SaleReversalResult,
    SaleSettlementResult, SettleSaleRequest, UndoSaleRequest
)
from medcure.services import allocation_ledger
from medcure.services.settlement import SaleSettlementService

router = APIRouter()


@router.post("/settle", response_model=SaleSettlementResult)
async def settle_sale(
    *,
    service: SaleSettlementService = Depends(get_settlement_service),
    sale_in: SettleSaleRequest) -> Any:
    """Settle a sale: every line is allocated FIFO, or the whole sale aborts"""
    return await service.settle_sale(sale_in.sale_id, sale_in.items)


@router.post("/{sale_id}/undo", response_model=SaleReversalResult)
async def undo_sale(
    *,
    service: SaleSettlementService = Depends(get_settlement_service),
    sale_id: str,
    undo_in: Optional[UndoSaleRequest] = Body(None)) -> Any:
    """Undo a committed sale and put the units back into their batches"""
    reason = undo_in.reason if undo_in else None
    return await service.undo_sale(sale_id, reason)


@router.get("/{sale_id}", response_model=SaleResponse)
async def get_sale(
    *,
    db: AsyncSession = Depends(get_db),
    sale_id: str) -> Any:
    sale = await db.get(Sale, sale_id)
    if not sale:
        raise NotFoundError("Sale", sale_id)

    result = await db.execute(
        select(SaleItem).where(SaleItem.sale_id == sale_id).order_by(SaleItem.line_no)
    )
    items = [
        SaleItemResponse(
            id=item.id,
            line_no=item.line_no,
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price=item.unit_price)
        for item in result.scalars().all()
    ]

    return SaleResponse(
        id=sale.id,
        status=sale.status,
        total_revenue=sale.total_revenue or 0,
        total_cogs=sale.total_cogs or 0,
        gross_profit=sale.gross_profit or 0,
        profit_margin_percentage=sale.profit_margin_percentage or 0,
        failure_reason=sale.failure_reason,
        reversal_reason=sale.reversal_reason,
        committed_at=sale.committed_at,
        reversed_at=sale.reversed_at,
        items=items)


@router.get("/{sale_id}/profit-details", response_model=List[SaleProfitDetail])
async def get_sale_profit_details(
    *,
    db: AsyncSession = Depends(get_db),
    sale_id: str) -> Any:
    """Per-batch COGS and profit, compensating rows included"""
    if not await db.get(Sale, sale_id):
        raise NotFoundError("Sale", sale_id)
    return await allocation_ledger.get_sale_profit_details(db, sale_id)

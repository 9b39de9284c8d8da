"""
Sale settlement

settle_sale runs every line of a sale through the FIFO allocator and batch
mutation inside one transaction:

    pending -> allocating -> committed     (single commit for the whole sale)
    pending -> allocating -> aborted       (full rollback, header marked aborted)

A lost race against another terminal rolls the attempt back and re-plans the
whole sale against fresh batch state, up to ALLOCATION_MAX_ATTEMPTS with
doubling backoff, then surfaces AllocationConflictError. Events collected
during the attempt are dispatched only after the commit.

undo_sale is the compensating action for a committed sale: units go back to
the batches they came from, negative ledger rows cancel the originals and
prices are recalculated, again as one transaction.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from medcure.core.config import settings
from medcure.core.errors import (
    AllocationConflictError, ConcurrentModificationError, InventoryError,
    InvalidSaleStateError, NotFoundError, PersistenceError, ValidationError
)
from medcure.core.logging_config import get_logger
from medcure.models.product import Product
from medcure.models.sale import (
    Sale, SaleItem,
    SALE_PENDING, SALE_ALLOCATING, SALE_COMMITTED, SALE_ABORTED, SALE_REVERSED
)
from medcure.schemas.sale import SaleLineItem, SaleReversalResult, SaleSettlementResult
from medcure.services import allocation_ledger, batch_mutation, price_recalculator
from medcure.services.events import EventDispatcher, EventOutbox, dispatcher as default_dispatcher
from medcure.services.fifo_allocator import allocate, validate_quantity

logger = get_logger(__name__)

T = TypeVar("T", SaleSettlementResult, SaleReversalResult)

# Driver errors that mean "lost a race", everything else is a storage failure
LOCK_SQLSTATES = {"40001", "40P01", "55P03"}
LOCK_MESSAGES = (
    "database is locked",
    "database table is locked",
    "deadlock",
    "could not serialize",
    "lock wait timeout",
    "could not obtain lock",
)


def is_lock_conflict(exc: BaseException) -> bool:
    """True for lost races: version mismatches, lock timeouts, deadlocks and serialization failures"""
    if isinstance(exc, (ConcurrentModificationError, StaleDataError)):
        return True
    if not isinstance(exc, OperationalError):
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in LOCK_SQLSTATES:
        return True
    message = str(orig).lower()
    return any(m in message for m in LOCK_MESSAGES)


class SaleSettlementService:
    """Settles and undoes sales; one instance can serve many requests"""

    def __init__(
        self,
        session_factory,
        dispatcher: Optional[EventDispatcher] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        undo_window_hours: Optional[int] = None):
        self.session_factory = session_factory
        self.dispatcher = dispatcher or default_dispatcher
        self.max_attempts = max_attempts or settings.ALLOCATION_MAX_ATTEMPTS
        self.backoff_seconds = settings.ALLOCATION_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        self.undo_window_hours = settings.UNDO_WINDOW_HOURS if undo_window_hours is None else undo_window_hours

    # ===== settle =====

    async def settle_sale(self, sale_id: str, line_items: Sequence[SaleLineItem]) -> SaleSettlementResult:
        """Allocate and commit every line of the sale, or nothing

        Raises:
            ValidationError: bad sale id, no lines or a non-positive quantity (nothing touched)
            NotFoundError: unknown product
            InsufficientStockError: a line cannot be covered
            InvalidSaleStateError: the sale was already committed or reversed
            AllocationConflictError: conflicts outlasted every attempt
            PersistenceError: any other storage failure
        """
        sale_id = self._validate_sale_id(sale_id)
        if not line_items:
            raise ValidationError("A sale needs at least one line item")
        items = [SaleLineItem(product_id=i.product_id, quantity=validate_quantity(i.quantity)) for i in line_items]

        async def work(db: AsyncSession, outbox: EventOutbox) -> SaleSettlementResult:
            return await self._settle_once(db, sale_id, items, outbox)

        result = await self._run(sale_id, "settle", work, record_abort=True)
        logger.info(
            f"Sale {sale_id} committed: revenue {result.total_revenue}, cogs {result.total_cogs}, "
            f"profit {result.gross_profit} ({result.attempts} attempt(s))")
        return result

    async def _settle_once(
        self,
        db: AsyncSession,
        sale_id: str,
        items: List[SaleLineItem],
        outbox: EventOutbox) -> SaleSettlementResult:
        sale = await db.get(Sale, sale_id, with_for_update=True, populate_existing=True)
        if sale is None:
            sale = Sale(id=sale_id, status=SALE_PENDING)
            db.add(sale)
        elif sale.status in (SALE_COMMITTED, SALE_REVERSED):
            raise InvalidSaleStateError(sale_id, sale.status, f"Sale {sale_id} is already {sale.status}")

        sale.status = SALE_ALLOCATING
        sale.failure_reason = None
        await db.flush()

        rows = []
        for line_no, item in enumerate(items, start=1):
            product = await db.get(Product, item.product_id)
            if not product:
                raise NotFoundError("Product", item.product_id)

            sale_item = SaleItem(
                sale_id=sale_id,
                line_no=line_no,
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price=product.displayed_unit_price)
            db.add(sale_item)
            await db.flush()

            plan = await allocate(db, item.product_id, item.quantity)
            rows.extend(await batch_mutation.apply_draws(db, plan, sale_item, outbox))

        totals = allocation_ledger.summarize(rows)
        sale.total_revenue = totals.total_revenue
        sale.total_cogs = totals.total_cogs
        sale.gross_profit = totals.gross_profit
        sale.profit_margin_percentage = totals.profit_margin_percentage
        sale.status = SALE_COMMITTED
        sale.committed_at = datetime.utcnow()
        await db.flush()

        return SaleSettlementResult(
            sale_id=sale_id,
            status=sale.status,
            total_revenue=totals.total_revenue,
            total_cogs=totals.total_cogs,
            gross_profit=totals.gross_profit,
            profit_margin_percentage=totals.profit_margin_percentage,
            committed_at=sale.committed_at,
            allocations=[allocation_ledger.build_allocation_response(r) for r in rows],
            events=outbox.events)

    # ===== undo =====

    async def undo_sale(self, sale_id: str, reason: Optional[str] = None) -> SaleReversalResult:
        """Reverse a committed sale

        Raises:
            NotFoundError: unknown sale
            InvalidSaleStateError: the sale is not committed, or is past the undo window
            AllocationConflictError / PersistenceError: as for settle_sale
        """
        sale_id = self._validate_sale_id(sale_id)

        async def work(db: AsyncSession, outbox: EventOutbox) -> SaleReversalResult:
            return await self._undo_once(db, sale_id, reason, outbox)

        result = await self._run(sale_id, "undo", work, record_abort=False)
        logger.info(f"Sale {sale_id} reversed ({len(result.compensating_allocations)} ledger rows)")
        return result

    async def _undo_once(
        self,
        db: AsyncSession,
        sale_id: str,
        reason: Optional[str],
        outbox: EventOutbox) -> SaleReversalResult:
        sale = await db.get(Sale, sale_id, with_for_update=True, populate_existing=True)
        if not sale:
            raise NotFoundError("Sale", sale_id)
        if sale.status != SALE_COMMITTED:
            raise InvalidSaleStateError(sale_id, sale.status, f"Only committed sales can be undone, sale {sale_id} is {sale.status}")
        if self.undo_window_hours and sale.committed_at is not None:
            if datetime.utcnow() - sale.committed_at > timedelta(hours=self.undo_window_hours):
                raise InvalidSaleStateError(
                    sale_id, sale.status,
                    f"Sale {sale_id} is older than {self.undo_window_hours} hours and can no longer be undone")

        originals = await allocation_ledger.list_sale_allocations(db, sale_id, include_reversals=False)
        reversals = await batch_mutation.restore_draws(db, originals)

        for product_id in sorted({row.product_id for row in originals}):
            await price_recalculator.recalculate_price(db, product_id, outbox, reason="sale_reversal")

        totals = allocation_ledger.summarize(originals + reversals)
        sale.total_revenue = totals.total_revenue
        sale.total_cogs = totals.total_cogs
        sale.gross_profit = totals.gross_profit
        sale.profit_margin_percentage = totals.profit_margin_percentage
        sale.status = SALE_REVERSED
        sale.reversed_at = datetime.utcnow()
        sale.reversal_reason = reason or "Sale undone"
        await db.flush()

        return SaleReversalResult(
            sale_id=sale_id,
            status=sale.status,
            reversed_at=sale.reversed_at,
            reversal_reason=sale.reversal_reason,
            compensating_allocations=[allocation_ledger.build_allocation_response(r) for r in reversals],
            events=outbox.events)

    # ===== unit of work =====

    async def _run(
        self,
        sale_id: str,
        operation: str,
        work: Callable[[AsyncSession, EventOutbox], Awaitable[T]],
        record_abort: bool) -> T:
        attempt = 0
        while True:
            attempt += 1
            outbox = EventOutbox()
            try:
                async with self.session_factory() as db:
                    result = await work(db, outbox)
                    await db.commit()
            except (ConcurrentModificationError, StaleDataError, OperationalError) as exc:
                if not is_lock_conflict(exc):
                    raise await self._storage_failure(sale_id, operation, exc, record_abort) from exc
                if attempt >= self.max_attempts:
                    logger.error(f"{operation} {sale_id}: conflict on attempt {attempt}, giving up: {exc}")
                    if record_abort:
                        await self._record_abort(sale_id, f"Allocation conflict after {attempt} attempts")
                    raise AllocationConflictError(sale_id, attempt) from exc
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(f"{operation} {sale_id}: conflict on attempt {attempt}, retrying in {delay:.3f}s: {exc}")
                await asyncio.sleep(delay)
                continue
            except InvalidSaleStateError:
                raise
            except InventoryError as exc:
                logger.info(f"{operation} {sale_id} aborted: {exc.message}")
                if record_abort:
                    await self._record_abort(sale_id, exc.message)
                raise
            except SQLAlchemyError as exc:
                raise await self._storage_failure(sale_id, operation, exc, record_abort) from exc

            result.attempts = attempt
            await self.dispatcher.dispatch(outbox.drain())
            return result

    async def _storage_failure(
        self,
        sale_id: str,
        operation: str,
        exc: SQLAlchemyError,
        record_abort: bool) -> PersistenceError:
        logger.error(f"{operation} {sale_id}: storage failure", exc_info=exc)
        if record_abort:
            await self._record_abort(sale_id, f"Storage failure: {exc.__class__.__name__}")
        return PersistenceError(f"Could not {operation} sale {sale_id}: {exc}")

    async def _record_abort(self, sale_id: str, reason: str) -> None:
        """Mark the sale aborted in its own short transaction

        Failing here must not mask the error that aborted the sale, so it is
        only logged.
        """
        try:
            async with self.session_factory() as db:
                sale = await db.get(Sale, sale_id)
                if sale is None:
                    sale = Sale(id=sale_id)
                    db.add(sale)
                elif sale.status in (SALE_COMMITTED, SALE_REVERSED):
                    return
                sale.status = SALE_ABORTED
                sale.failure_reason = reason[:500]
                await db.commit()
        except SQLAlchemyError:
            logger.exception(f"Could not record abort of sale {sale_id}")

    @staticmethod
    def _validate_sale_id(sale_id) -> str:
        if not isinstance(sale_id, str) or not sale_id.strip():
            raise ValidationError("Sale id is required")
        sale_id = sale_id.strip()
        if len(sale_id) > 64:
            raise ValidationError("Sale id is longer than 64 characters")
        return sale_id

"""
Concurrency and retry tests.

The race test needs real separate connections, so it runs against a SQLite
file instead of the shared in-memory connection. Retry behaviour is driven
deterministically by making batch mutation lose the race on purpose.
"""

import asyncio
import sqlite3
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import func, select, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import create_async_engine

from medcure.core.errors import (
    AllocationConflictError, ConcurrentModificationError, InsufficientStockError, PersistenceError
)
from medcure.db.base import Base
from medcure.db.session import build_session_factory
from medcure.models.allocation import BatchAllocation
from medcure.models.batch import ProductBatch, BATCH_DEPLETED
from medcure.models.sale import Sale, SALE_ABORTED, SALE_COMMITTED
from medcure.schemas.batch import BatchCreate
from medcure.schemas.product import ProductCreate
from medcure.schemas.sale import SaleLineItem, SaleSettlementResult
from medcure.services import batch_mutation, batch_store
from medcure.services.events import EventDispatcher, EventOutbox
from medcure.services.settlement import SaleSettlementService, is_lock_conflict


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'inventory.db'}",
        connect_args={"timeout": 15},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()


async def seed_single_batch(session_factory, quantity: int):
    async with session_factory() as db:
        product = await batch_store.create_product(db, ProductCreate(name="Insulin"))
        batch = await batch_store.add_batch(
            db,
            BatchCreate(product_id=product.id, quantity=quantity,
                        purchase_price=Decimal("20"), selling_price=Decimal("25")),
            EventOutbox())
        await db.commit()
        return product.id, batch.id


class TestConcurrentSales:
    """Two terminals racing for the last units"""

    async def test_exactly_one_sale_gets_the_last_units(self, file_session_factory):
        product_id, batch_id = await seed_single_batch(file_session_factory, 5)
        service = SaleSettlementService(
            file_session_factory, dispatcher=EventDispatcher(), max_attempts=3, backoff_seconds=0.01)
        items = [SaleLineItem(product_id=product_id, quantity=5)]

        outcomes = await asyncio.gather(
            service.settle_sale("T1-001", items),
            service.settle_sale("T2-001", items),
            return_exceptions=True,
        )

        successes = [o for o in outcomes if isinstance(o, SaleSettlementResult)]
        failures = [o for o in outcomes if not isinstance(o, SaleSettlementResult)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], (InsufficientStockError, AllocationConflictError))

        async with file_session_factory() as db:
            batch = await db.get(ProductBatch, batch_id)
            drawn = (await db.execute(
                select(func.sum(BatchAllocation.quantity_drawn)).where(BatchAllocation.batch_id == batch_id)
            )).scalar()
        assert batch.quantity_remaining == 0
        assert batch.status == BATCH_DEPLETED
        assert drawn == 5

    async def test_many_small_sales_never_oversell(self, file_session_factory):
        product_id, batch_id = await seed_single_batch(file_session_factory, 10)
        service = SaleSettlementService(
            file_session_factory, dispatcher=EventDispatcher(), max_attempts=5, backoff_seconds=0.01)

        outcomes = await asyncio.gather(
            *[service.settle_sale(f"T-{i}", [SaleLineItem(product_id=product_id, quantity=3)]) for i in range(6)],
            return_exceptions=True,
        )

        sold = sum(3 for o in outcomes if isinstance(o, SaleSettlementResult))
        for outcome in outcomes:
            if not isinstance(outcome, SaleSettlementResult):
                assert isinstance(outcome, (InsufficientStockError, AllocationConflictError))
        async with file_session_factory() as db:
            batch = await db.get(ProductBatch, batch_id)
        assert batch.quantity_remaining >= 0
        assert batch.quantity_remaining == 10 - sold
        assert sold <= 9


class TestRetry:
    """Lost races are re-planned up to the attempt limit"""

    async def test_conflict_is_retried(self, settlement_service, scenario_a, monkeypatch):
        product_id, _, _ = scenario_a
        real_apply = batch_mutation.apply_draws
        calls = []

        async def flaky_apply(db, plan, sale_item, outbox):
            calls.append(plan.as_pairs())
            if len(calls) == 1:
                raise ConcurrentModificationError("lost the race", batch_id=plan.batch_ids[0])
            return await real_apply(db, plan, sale_item, outbox)

        monkeypatch.setattr(batch_mutation, "apply_draws", flaky_apply)

        result = await settlement_service.settle_sale("R-1", [SaleLineItem(product_id=product_id, quantity=10)])

        assert result.status == SALE_COMMITTED
        assert result.attempts == 2
        assert len(calls) == 2

    async def test_gives_up_after_max_attempts(self, settlement_service, scenario_a, monkeypatch, load, delivered):
        product_id, batch_a, _ = scenario_a
        calls = []

        async def always_conflict(db, plan, sale_item, outbox):
            calls.append(1)
            raise ConcurrentModificationError("lost the race")

        monkeypatch.setattr(batch_mutation, "apply_draws", always_conflict)

        with pytest.raises(AllocationConflictError) as exc_info:
            await settlement_service.settle_sale("R-2", [SaleLineItem(product_id=product_id, quantity=10)])

        assert exc_info.value.attempts == 3
        assert exc_info.value.retryable
        assert len(calls) == 3
        assert (await load(ProductBatch, batch_a)).quantity_remaining == 100
        sale = await load(Sale, "R-2")
        assert sale.status == SALE_ABORTED
        assert "conflict" in sale.failure_reason
        assert delivered == []

    async def test_stale_version_is_a_conflict(self, db_session, session_factory, scenario_a):
        _, batch_a, _ = scenario_a
        batch = await db_session.get(ProductBatch, batch_a)

        async with session_factory() as other:
            competitor = await other.get(ProductBatch, batch_a)
            competitor.quantity_remaining -= 1
            await other.commit()

        batch.quantity_remaining -= 1
        with pytest.raises(ConcurrentModificationError):
            await batch_mutation.flush_batches(db_session)

    async def test_database_lock_is_retried(self, settlement_service, scenario_a, monkeypatch):
        product_id, batch_a, _ = scenario_a
        real_apply = batch_mutation.apply_draws
        calls = []

        async def locked_once(db, plan, sale_item, outbox):
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("UPDATE product_batches", {}, sqlite3.OperationalError("database is locked"))
            return await real_apply(db, plan, sale_item, outbox)

        monkeypatch.setattr(batch_mutation, "apply_draws", locked_once)

        result = await settlement_service.settle_sale("R-3", [SaleLineItem(product_id=product_id, quantity=10)])

        assert result.status == SALE_COMMITTED
        assert result.attempts == 2


class FakeDriverError(Exception):
    def __init__(self, message: str, sqlstate: str = None):
        super().__init__(message)
        self.sqlstate = sqlstate


def operational(message: str, sqlstate: str = None) -> OperationalError:
    return OperationalError("SELECT 1", {}, FakeDriverError(message, sqlstate))


class TestLockConflictDetection:
    """Which driver errors count as a lost race"""

    @pytest.mark.parametrize("exc", [
        ConcurrentModificationError("changed"),
        operational("database is locked"),
        operational("database table is locked: product_batches"),
        operational("deadlock detected"),
        operational("could not serialize access due to concurrent update"),
        operational("something", sqlstate="40P01"),
        operational("something", sqlstate="55P03"),
    ])
    def test_lock_errors(self, exc):
        assert is_lock_conflict(exc)

    @pytest.mark.parametrize("exc", [
        operational("no such table: sale_batch_allocations"),
        operational("disk I/O error"),
        operational("unable to open database file"),
        InsufficientStockError(requested=2, available=1),
    ])
    def test_other_errors(self, exc):
        assert not is_lock_conflict(exc)


class TestStorageFailure:
    """Non-lock storage errors fail the sale once, without retry"""

    async def test_missing_table_is_persistence_error(self, async_engine, settlement_service, scenario_a, load, delivered):
        product_id, batch_a, _ = scenario_a
        async with async_engine.begin() as conn:
            await conn.execute(text("DROP TABLE sale_batch_allocations"))

        with pytest.raises(PersistenceError):
            await settlement_service.settle_sale("P-1", [SaleLineItem(product_id=product_id, quantity=1)])

        assert (await load(ProductBatch, batch_a)).quantity_remaining == 100
        sale = await load(Sale, "P-1")
        assert sale.status == SALE_ABORTED
        assert sale.failure_reason == "Storage failure: OperationalError"
        assert delivered == []

    async def test_storage_failure_is_not_retried(self, settlement_service, scenario_a, monkeypatch):
        product_id, _, _ = scenario_a
        calls = []

        async def broken_disk(db, plan, sale_item, outbox):
            calls.append(1)
            raise OperationalError("UPDATE product_batches", {}, sqlite3.OperationalError("disk I/O error"))

        monkeypatch.setattr(batch_mutation, "apply_draws", broken_disk)

        with pytest.raises(PersistenceError):
            await settlement_service.settle_sale("P-2", [SaleLineItem(product_id=product_id, quantity=1)])

        assert len(calls) == 1

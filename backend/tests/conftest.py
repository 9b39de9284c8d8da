"""
Shared pytest fixtures.

Every test gets a fresh in-memory SQLite database (one shared connection via
StaticPool), a private event dispatcher that records what it delivers, and a
settlement service without retry backoff.
"""

from datetime import datetime
from decimal import Decimal
from typing import AsyncGenerator, List

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from medcure.db.base import Base
from medcure.db.session import build_session_factory
from medcure.models import Product, ProductBatch  # noqa: F401  registers every table
from medcure.schemas.batch import BatchCreate
from medcure.schemas.events import DomainEvent
from medcure.schemas.product import ProductCreate
from medcure.services import batch_store
from medcure.services.events import EventDispatcher, EventOutbox
from medcure.services.settlement import SaleSettlementService

DAY1 = datetime(2025, 1, 1, 9, 0, 0)
DAY2 = datetime(2025, 1, 2, 9, 0, 0)
DAY3 = datetime(2025, 1, 3, 9, 0, 0)


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def async_engine():
    """In-memory engine, schema created up front."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return build_session_factory(async_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ============================================================================
# EVENTS AND SERVICES
# ============================================================================


@pytest.fixture
def delivered() -> List[DomainEvent]:
    """Events the test dispatcher has handed to subscribers, in order."""
    return []


@pytest.fixture
def dispatcher(delivered) -> EventDispatcher:
    event_dispatcher = EventDispatcher()

    async def record(event: DomainEvent) -> None:
        delivered.append(event)

    event_dispatcher.subscribe(record)
    return event_dispatcher


@pytest.fixture
def settlement_service(session_factory, dispatcher) -> SaleSettlementService:
    return SaleSettlementService(
        session_factory,
        dispatcher=dispatcher,
        max_attempts=3,
        backoff_seconds=0,
        undo_window_hours=24,
    )


# ============================================================================
# DATA HELPERS
# ============================================================================


@pytest.fixture
def make_product(session_factory):
    """Create and commit a product, returns its id."""

    async def _make(name: str = "Paracetamol", brand_name: str = None) -> int:
        async with session_factory() as db:
            product = await batch_store.create_product(
                db, ProductCreate(name=name, brand_name=brand_name))
            await db.commit()
            return product.id

    return _make


@pytest.fixture
def stock_in(session_factory):
    """Receive a batch in its own committed transaction, returns the batch id."""

    async def _stock_in(
        product_id: int,
        quantity: int,
        purchase_price: str,
        selling_price: str,
        received_at: datetime = DAY1) -> int:
        async with session_factory() as db:
            batch = await batch_store.add_batch(
                db,
                BatchCreate(
                    product_id=product_id,
                    quantity=quantity,
                    purchase_price=Decimal(purchase_price),
                    selling_price=Decimal(selling_price),
                    received_at=received_at),
                EventOutbox())
            await db.commit()
            return batch.id

    return _stock_in


@pytest.fixture
def load(session_factory):
    """Read a fresh copy of a row in a throwaway session."""

    async def _load(model, ident):
        async with session_factory() as db:
            return await db.get(model, ident)

    return _load


@pytest_asyncio.fixture
async def scenario_a(make_product, stock_in):
    """Batch A: 100 @ cost 40 / price 50 (day 1); batch B: 200 @ cost 45 / price 60 (day 2)."""
    product_id = await make_product("Amoxicillin", "Amoxil")
    batch_a = await stock_in(product_id, 100, "40", "50", DAY1)
    batch_b = await stock_in(product_id, 200, "45", "60", DAY2)
    return product_id, batch_a, batch_b

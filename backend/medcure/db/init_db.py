import asyncio

from medcure.db.session import engine
from medcure.db.base import Base

# register every model on Base.metadata
from medcure.models import (  # noqa: F401
    Product, ProductBatch, Sale, SaleItem, BatchAllocation, PriceHistory
)


async def ensure_tables_exist(bind=None) -> None:
    """
    Create missing tables (called at application startup)
    """
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


if __name__ == "__main__":
    asyncio.run(ensure_tables_exist())

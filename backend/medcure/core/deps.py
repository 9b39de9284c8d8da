"""FastAPI dependencies"""
from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from medcure.db.session import SessionLocal
from medcure.services.events import EventDispatcher, dispatcher
from medcure.services.settlement import SaleSettlementService


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Database session dependency
    """
    async with SessionLocal() as session:
        yield session


def get_session_factory():
    """Session factory for services that open their own transactions"""
    return SessionLocal


def get_dispatcher() -> EventDispatcher:
    return dispatcher


def get_settlement_service(
    session_factory=Depends(get_session_factory),
    event_dispatcher: EventDispatcher = Depends(get_dispatcher)) -> SaleSettlementService:
    return SaleSettlementService(session_factory, dispatcher=event_dispatcher)

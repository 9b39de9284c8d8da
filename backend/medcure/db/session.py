import os
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from medcure.core.config import settings


def build_engine(database_uri: str):
    # SQL echo only when SQL_DEBUG=true
    return create_async_engine(
        database_uri,
        echo=os.getenv("SQL_DEBUG", "false").lower() == "true",
        future=True,
    )


def build_session_factory(bind) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
    )


engine = build_engine(settings.async_database_uri)

SessionLocal = build_session_factory(engine)

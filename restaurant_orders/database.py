"""
Database Connection Module
Handles the async SQLAlchemy engine, per-request sessions and the
transaction boundary every write path runs inside.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from restaurant_orders.core.config import get_settings
from restaurant_orders.core.exceptions import PersistenceError

logger = logging.getLogger(__name__)


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine with backend-appropriate pool settings.

    PostgreSQL gets a sized pool with pre-ping; SQLite (tests, local
    experiments) keeps SQLAlchemy's default pool, which rejects sizing args.
    """
    kwargs: dict[str, Any] = {"echo": echo}
    backend = make_url(database_url).get_backend_name()

    if backend.startswith("postgresql"):
        kwargs.update(pool_size=5, max_overflow=10, pool_pre_ping=True)
    elif backend.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}

    return create_async_engine(database_url, **kwargs)


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory; objects stay readable after commit."""
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
    )


_settings = get_settings()

engine = build_engine(_settings.database_url, echo=_settings.database_echo)
async_session_maker = build_session_maker(engine)


# Base class for all our models
class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    Dependency injection for FastAPI routes.
    Yields one database session per request and always releases it.
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def unit_of_work(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run a block of writes as one transaction on the request's session.

    Commits when the block finishes, rolls back on any exception,
    task cancellation included. SQLAlchemy failures are re-raised as
    PersistenceError with the driver message kept in ``detail``.

    Usage:
        async with unit_of_work(db):
            order = await intake.place_order(db, request)
    """
    try:
        async with db.begin():
            yield db
    except SQLAlchemyError as e:
        logger.error(f"Transaction rolled back: {e}")
        raise PersistenceError(
            "The order could not be saved",
            detail=str(e),
        ) from e


async def init_db(bind: AsyncEngine = engine) -> None:
    """
    Create all tables in database.
    Called once at application startup.
    """
    # Register every mapped class on Base.metadata before create_all
    from restaurant_orders import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created successfully")

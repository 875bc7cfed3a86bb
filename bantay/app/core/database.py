"""
Database layer — async SQLAlchemy 2.0 (asyncpg in production, aiosqlite in tests).

Provides:
    • Lazily created async engine and session factory
    • session_scope() unit-of-work helper (commit / rollback)
    • UTCDateTime column type (always returns tz-aware UTC datetimes)
    • within_box() bounding-box filter for lat/lon columns
    • Base model for ORM entities

Usage:
    from bantay.app.core.database import Base, session_scope

    async with session_scope() as session:
        session.add(record)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from sqlalchemy import DateTime, and_, or_, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from bantay.app.core.config import settings
from bantay.app.spatial.radius_utils import BoundingBox

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored as UTC.

    SQLite drops tzinfo on the way back; this re-attaches UTC so that
    comparisons against datetime.now(timezone.utc) stay valid on every backend.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime passed to a UTCDateTime column")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def within_box(lat_col, lon_col, box: BoundingBox):
    """
    SQL filter for rows whose (lat_col, lon_col) fall inside a BoundingBox.

    A box crossing the antimeridian contributes one longitude range per side.
    """
    lon_filter = or_(*(lon_col.between(lo, hi) for lo, hi in box.lon_ranges()))
    return and_(lat_col.between(box.min_lat, box.max_lat), lon_filter)


# ── Engine ──

def _build_engine(url: str, echo: bool = False) -> AsyncEngine:
    kwargs = {"echo": echo, "future": True}
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_pre_ping=True,
        )
    return create_async_engine(url, **kwargs)


def configure_database(url: Optional[str] = None, *, echo: Optional[bool] = None) -> AsyncEngine:
    """(Re)bind the module-level engine and session factory."""
    global _engine, _session_factory
    _engine = _build_engine(
        url or settings.DATABASE_URL,
        settings.DATABASE_ECHO if echo is None else echo,
    )
    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return _engine


def get_engine() -> AsyncEngine:
    if _engine is None:
        configure_database()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        configure_database()
    return _session_factory


@asynccontextmanager
async def session_scope(
    factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncIterator[AsyncSession]:
    """Yield a session; commit on success, roll back on error."""
    factory = factory or get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Lifecycle ──

async def init_db() -> None:
    """Create all tables (dev/test only — use migrations in production)."""
    # Import ORM modules so their tables are registered on Base.metadata
    from bantay.app.alerts import orm as _alerts_orm  # noqa: F401
    from bantay.app.rescue import orm as _rescue_orm  # noqa: F401
    from bantay.app.users import orm as _users_orm  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def ping_db() -> None:
    """Round-trip a trivial query; raises on connection failure."""
    async with get_engine().connect() as conn:
        await conn.execute(text("SELECT 1"))


async def close_db() -> None:
    """Dispose engine connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database connections closed")
    _engine = None
    _session_factory = None

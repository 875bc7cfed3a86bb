"""
identity.py — Human-readable daily sequence codes.

    ALT-20261019-001    third alert of the day → ALT-20261019-003
    RR-20261019-014     fourteenth rescue request of the day

The sequence is "records created since local midnight + 1", where local
midnight is taken in settings.TIMEZONE (the barangay's wall clock, not UTC).

Two writers creating records in the same instant can compute the same
number. The code column is UNIQUE, so the loser's INSERT fails with an
IntegrityError; create_with_daily_code() then recounts (the winner's row is
now visible) and tries again, up to settings.ALERT_CODE_MAX_ATTEMPTS times.
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, timezone
from typing import Awaitable, Callable, Optional, Tuple, TypeVar
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bantay.app.core.config import settings
from bantay.app.core.database import session_scope
from bantay.app.core.errors import ConcurrentModificationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def local_day_bounds(now: datetime) -> Tuple[datetime, datetime, str]:
    """Return (start_utc, end_utc, 'YYYYMMDD') of the local day containing now."""
    tz = ZoneInfo(settings.TIMEZONE)
    local_now = now.astimezone(tz)
    start_local = datetime.combine(local_now.date(), time.min, tzinfo=tz)
    end_local = start_local + timedelta(days=1)
    return (
        start_local.astimezone(timezone.utc),
        end_local.astimezone(timezone.utc),
        local_now.strftime("%Y%m%d"),
    )


def format_daily_code(prefix: str, day: str, sequence: int) -> str:
    return f"{prefix}-{day}-{sequence:03d}"


async def next_daily_code(
    session: AsyncSession,
    created_at_column,
    prefix: str,
    now: datetime,
) -> str:
    """Count today's rows on the given created_at column and return the next code."""
    start, end, day = local_day_bounds(now)
    count = await session.scalar(
        select(func.count()).where(created_at_column >= start, created_at_column < end)
    )
    return format_daily_code(prefix, day, (count or 0) + 1)


async def create_with_daily_code(
    factory: async_sessionmaker[AsyncSession],
    created_at_column,
    prefix: str,
    build: Callable[[AsyncSession, str], Awaitable[T]],
    *,
    now: Optional[datetime] = None,
) -> T:
    """
    Insert a record whose identity is the next daily code.

    ``build(session, code)`` must add the record (and any side rows) to the
    session and return it; flushing and commit happen here.
    """
    now = now or datetime.now(timezone.utc)
    last_code = ""
    for attempt in range(1, settings.ALERT_CODE_MAX_ATTEMPTS + 1):
        try:
            async with session_scope(factory) as session:
                last_code = await next_daily_code(session, created_at_column, prefix, now)
                record = await build(session, last_code)
                await session.flush()
            return record
        except IntegrityError:
            logger.warning(
                "Daily code %s already taken (attempt %d/%d) — recounting",
                last_code, attempt, settings.ALERT_CODE_MAX_ATTEMPTS,
            )
    raise ConcurrentModificationError(prefix, last_code)

"""
acknowledgments.py — Idempotent "I'm safe" acknowledgments from residents.

One acknowledgment per (alert, user), enforced by a UNIQUE constraint.
Repeating the call returns the first record unchanged. When two requests
for the same user race, the loser's INSERT fails and it returns the
winner's row, so callers never see a duplicate or an error.

Only live alerts (active, published, unexpired) accept acknowledgments.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bantay.app.alerts.orm import AlertAcknowledgment, AlertRecord
from bantay.app.core.database import session_scope
from bantay.app.core.errors import ExpiredAlertError, InactiveAlertError, NotFoundError
from bantay.app.spatial.radius_utils import Coordinate

logger = logging.getLogger(__name__)


class AcknowledgmentTracker:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._factory = session_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _alert(self, session: AsyncSession, code: str) -> AlertRecord:
        record = await session.scalar(select(AlertRecord).where(AlertRecord.code == code))
        if record is None:
            raise NotFoundError("Alert", code=code)
        return record

    @staticmethod
    async def _existing(session: AsyncSession, alert_id: int, user_id: str) -> Optional[AlertAcknowledgment]:
        return await session.scalar(
            select(AlertAcknowledgment).where(
                AlertAcknowledgment.alert_id == alert_id,
                AlertAcknowledgment.user_id == user_id,
            )
        )

    async def acknowledge(
        self,
        code: str,
        user_id: str,
        location: Optional[Coordinate] = None,
    ) -> Tuple[AlertAcknowledgment, bool]:
        """
        Record that user_id has seen the alert.

        Returns
        -------
        (AlertAcknowledgment, created)
            ``created`` is False when the user had already acknowledged.

        Raises
        ------
        NotFoundError
        InactiveAlertError
            Deactivated or not yet published.
        ExpiredAlertError
        """
        now = self._clock()
        try:
            async with session_scope(self._factory) as session:
                alert = await self._alert(session, code)
                if not alert.is_active:
                    raise InactiveAlertError(code)
                if not alert.is_published:
                    raise InactiveAlertError(code, reason="alert is not published")
                if alert.is_expired(now):
                    raise ExpiredAlertError(code)

                existing = await self._existing(session, alert.id, user_id)
                if existing is not None:
                    return existing, False

                ack = AlertAcknowledgment(
                    alert_id=alert.id,
                    user_id=user_id,
                    acknowledged_at=now,
                    latitude=location.latitude if location else None,
                    longitude=location.longitude if location else None,
                )
                session.add(ack)
                await session.flush()
        except IntegrityError:
            # concurrent acknowledgment by the same user won the insert
            async with self._factory() as session:
                alert = await self._alert(session, code)
                existing = await self._existing(session, alert.id, user_id)
            if existing is None:
                raise
            return existing, False

        logger.info(
            "Alert %s acknowledged by %s", code, user_id,
            extra={"alert_code": code, "user_id": user_id},
        )
        return ack, True

    async def count(self, code: str) -> int:
        async with self._factory() as session:
            alert = await self._alert(session, code)
            return await session.scalar(
                select(func.count()).where(AlertAcknowledgment.alert_id == alert.id)
            ) or 0

    async def list_for_alert(self, code: str) -> List[AlertAcknowledgment]:
        async with self._factory() as session:
            alert = await self._alert(session, code)
            stmt = (
                select(AlertAcknowledgment)
                .where(AlertAcknowledgment.alert_id == alert.id)
                .order_by(AlertAcknowledgment.acknowledged_at, AlertAcknowledgment.id)
            )
            return list((await session.scalars(stmt)).all())

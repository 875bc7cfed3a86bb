"""
alert_service.py — Alert orchestration: lifecycle + dispatch + acknowledgments.

This is the coordinator the API talks to:
    1. Lifecycle manager validates and commits state changes
    2. publish() resolves the audience inside the publish transaction
    3. After commit, dispatch is submitted as a background task
    4. The publish caller gets the committed alert and the recipient
       count immediately; delivery outcomes land in the delivery rows
    5. Residents acknowledge through the acknowledgment tracker

═══════════════════════════════════════════════════════════════════════════
ORCHESTRATION FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  Official publishes │
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  1. Compare-and-set │  is_published = true, audit "published"
    │     (one winner)    │  loser → AlreadyPublishedError
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  2. Geo-fence       │  barangay-wide / sitio list / radius
    │     Resolution      │
    └─────────┬───────────┘
              │  commit
              ▼
    ┌─────────────────────┐
    │  3. Dispatch task   │  web feed, SMS, email, push
    │     (detached)      │  per-recipient rows + atomic counters
    └─────────────────────┘
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bantay.app.alerts import statistics as alert_stats
from bantay.app.alerts.acknowledgments import AcknowledgmentTracker
from bantay.app.alerts.channels.web_feed import AlertFeedHub
from bantay.app.alerts.dispatcher import AlertDispatcher, RetryConfig, Transport
from bantay.app.alerts.lifecycle import AlertLifecycleManager
from bantay.app.alerts.models import AlertChannel, AlertContent, Recipient
from bantay.app.alerts.orm import AlertAcknowledgment, AlertRecord
from bantay.app.core.auth import Actor
from bantay.app.spatial.radius_utils import Coordinate

logger = logging.getLogger(__name__)


@dataclass
class PublishResult:
    alert: AlertRecord
    recipients: List[Recipient]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert": self.alert.to_dict(),
            "recipient_count": len(self.recipients),
            "dispatch": "submitted",
        }


class AlertService:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        transports: Optional[Dict[AlertChannel, Transport]] = None,
        feed: Optional[AlertFeedHub] = None,
        retry: Optional[RetryConfig] = None,
        clock=None,
    ):
        self.session_factory = session_factory
        self.feed = feed or AlertFeedHub()
        self.lifecycle = AlertLifecycleManager(session_factory, clock=clock)
        self.acknowledgments = AcknowledgmentTracker(session_factory, clock=clock)
        self.dispatcher = AlertDispatcher(
            session_factory, transports=transports, feed=self.feed, retry=retry,
        )

    # ── Lifecycle ──

    async def create(self, content: AlertContent, actor: Actor) -> AlertRecord:
        return await self.lifecycle.create(content, actor)

    async def update_draft(self, code: str, changes: Dict[str, Any], actor: Actor) -> AlertRecord:
        return await self.lifecycle.update_draft(code, changes, actor)

    async def publish(self, code: str, actor: Actor) -> PublishResult:
        """Publish, then hand the audience to the dispatcher without waiting."""
        record, recipients = await self.lifecycle.publish(code, actor)
        channels = [AlertChannel(c) for c in record.channels or []]
        self.dispatcher.submit(record.id, record.to_payload(), recipients, channels)
        return PublishResult(alert=record, recipients=recipients)

    async def extend(self, code: str, new_expiry: datetime, actor: Actor, reason: Optional[str] = None) -> AlertRecord:
        return await self.lifecycle.extend(code, new_expiry, actor, reason)

    async def deactivate(self, code: str, actor: Actor, reason: Optional[str] = None) -> AlertRecord:
        return await self.lifecycle.deactivate(code, actor, reason)

    # ── Acknowledgments ──

    async def acknowledge(
        self,
        code: str,
        actor: Actor,
        location: Optional[Coordinate] = None,
    ) -> Tuple[AlertAcknowledgment, bool]:
        return await self.acknowledgments.acknowledge(code, actor.user_id, location)

    # ── Reads ──

    async def get(self, code: str) -> AlertRecord:
        return await self.lifecycle.get(code)

    async def statistics(self, code: str) -> Dict[str, Any]:
        async with self.session_factory() as session:
            return await alert_stats.alert_statistics(session, code)

    async def summary(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> Dict[str, Any]:
        async with self.session_factory() as session:
            return await alert_stats.summary_statistics(session, start=start, end=end)

    async def shutdown(self) -> None:
        """Let in-flight dispatches finish, then close feed connections."""
        if self.dispatcher.in_flight:
            logger.info("Waiting for %d dispatch task(s)", self.dispatcher.in_flight)
        await self.dispatcher.drain()
        await self.feed.close_all()

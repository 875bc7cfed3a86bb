"""
dispatcher.py — Background fan-out of a published alert to its recipients.

═══════════════════════════════════════════════════════════════════════════
DISPATCH FLOW
═══════════════════════════════════════════════════════════════════════════

    publish() commits
          │
          ▼
    submit() ── asyncio task (tracked, never awaited by the publisher)
          │
          ├── web feed     one broadcast to connected dashboards
          │                → alerts.web_displayed = true
          │
          ├── SMS   ┐
          ├── email ├──▶  for each recipient with a usable address:
          └── push  ┘       1. INSERT delivery row (pending)   ── own txn
                            2. transport.send (+ optional retry)
                            3. UPDATE row → sent | failed      ── own txn
                          then: UPDATE alerts SET <counter> = <counter> + n

          ▼
    UPDATE alerts SET total_recipients = N, dispatch_completed_at = now

Failure isolation: anything that goes wrong for one recipient, whether a
transport error, an exception or even a failed status write, is logged as a
DeliveryError and the loop moves on. Nothing propagates to the publisher.

═══════════════════════════════════════════════════════════════════════════
RETRY
═══════════════════════════════════════════════════════════════════════════

    DISPATCH_MAX_RETRIES = 0 (default) → exactly one attempt per recipient

    delay(attempt) = DISPATCH_BACKOFF_BASE_SECONDS × 2^(attempt − 1)

    Example (base = 2s, 3 retries): 2s, 4s, 8s
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bantay.app.alerts.channels import email_alert, sms_gateway, web_push
from bantay.app.alerts.channels.web_feed import AlertFeedHub
from bantay.app.alerts.models import (
    PER_RECIPIENT_CHANNELS,
    AlertChannel,
    AlertPayload,
    ChannelReport,
    DeliveryAttempt,
    DeliveryStatus,
    DispatchReport,
    Recipient,
)
from bantay.app.alerts.orm import AlertDelivery, AlertRecord
from bantay.app.core.config import settings
from bantay.app.core.database import session_scope
from bantay.app.core.errors import DeliveryError

logger = logging.getLogger(__name__)

Transport = Callable[[AlertPayload, Recipient, str], Awaitable[DeliveryAttempt]]


# ═══════════════════════════════════════════════════════════════════════════
# Retry Configuration
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RetryConfig:
    """Retry parameters shared by all per-recipient channels."""
    max_retries: int = 0
    backoff_base_seconds: float = 2.0
    backoff_type: str = "exponential"  # "exponential" or "linear"

    @classmethod
    def from_settings(cls) -> "RetryConfig":
        return cls(
            max_retries=max(0, settings.DISPATCH_MAX_RETRIES),
            backoff_base_seconds=settings.DISPATCH_BACKOFF_BASE_SECONDS,
        )


def compute_backoff(config: RetryConfig, attempt: int) -> float:
    """
    Delay before the next retry.

    Parameters
    ----------
    config : RetryConfig
    attempt : int
        Attempt that just failed (1-based).

    Returns
    -------
    float
        Delay in seconds.
    """
    if config.backoff_type == "exponential":
        return config.backoff_base_seconds * (2 ** (attempt - 1))
    return config.backoff_base_seconds * attempt


# ═══════════════════════════════════════════════════════════════════════════
# Channel Registry
# ═══════════════════════════════════════════════════════════════════════════

DEFAULT_TRANSPORTS: Dict[AlertChannel, Transport] = {
    AlertChannel.SMS:   sms_gateway.send,
    AlertChannel.EMAIL: email_alert.send,
    AlertChannel.PUSH:  web_push.send,
}

# Aggregate counter column per channel
_COUNTER_COLUMNS = {
    AlertChannel.SMS:   AlertRecord.sms_sent,
    AlertChannel.EMAIL: AlertRecord.emails_sent,
    AlertChannel.PUSH:  AlertRecord.push_sent,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertDispatcher:
    """
    Runs dispatch jobs as detached asyncio tasks and keeps track of them
    so shutdown (and tests) can wait for in-flight work with drain().
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        transports: Optional[Dict[AlertChannel, Transport]] = None,
        feed: Optional[AlertFeedHub] = None,
        retry: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._factory = session_factory
        self._transports = {**DEFAULT_TRANSPORTS, **(transports or {})}
        self._feed = feed
        self._retry = retry or RetryConfig.from_settings()
        self._sleep = sleep
        self._tasks: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # ───────────────────────────────────────────────────────────────────
    # Task management
    # ───────────────────────────────────────────────────────────────────

    def submit(
        self,
        alert_id: int,
        payload: AlertPayload,
        recipients: Sequence[Recipient],
        channels: Sequence[AlertChannel],
    ) -> asyncio.Task:
        """Start dispatch in the background and return the task."""
        task = asyncio.create_task(
            self._run(alert_id, payload, list(recipients), list(channels)),
            name=f"dispatch-{payload.alert_code}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(
            "Dispatch submitted for %s: %d recipients via %s",
            payload.alert_code, len(recipients), ", ".join(c.value for c in channels),
            extra={"alert_code": payload.alert_code, "recipient_count": len(recipients)},
        )
        return task

    async def drain(self) -> None:
        """Wait for every in-flight dispatch task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self, alert_id, payload, recipients, channels) -> Optional[DispatchReport]:
        try:
            return await self.dispatch(alert_id, payload, recipients, channels)
        except Exception:
            logger.exception(
                "Dispatch for %s aborted", payload.alert_code,
                extra={"alert_code": payload.alert_code},
            )
            return None

    # ───────────────────────────────────────────────────────────────────
    # Dispatch
    # ───────────────────────────────────────────────────────────────────

    async def dispatch(
        self,
        alert_id: int,
        payload: AlertPayload,
        recipients: List[Recipient],
        channels: Sequence[AlertChannel],
    ) -> DispatchReport:
        """Deliver to every recipient on every enabled channel."""
        report = DispatchReport(alert_code=payload.alert_code, total_recipients=len(recipients))

        if AlertChannel.WEB in channels:
            await self._display_on_feed(alert_id, payload)

        for channel in PER_RECIPIENT_CHANNELS:
            if channel not in channels:
                continue
            channel_report = await self._dispatch_channel(alert_id, payload, channel, recipients)
            report.channels.append(channel_report)
            if channel_report.sent:
                await self._increment(alert_id, channel, channel_report.sent)

        report.completed_at = _utcnow()
        async with session_scope(self._factory) as session:
            await session.execute(
                update(AlertRecord)
                .where(AlertRecord.id == alert_id)
                .values(
                    total_recipients=len(recipients),
                    dispatch_completed_at=report.completed_at,
                )
            )

        logger.info(
            "Dispatch complete for %s: %s",
            payload.alert_code,
            ", ".join(f"{c.channel.value} {c.sent}/{c.attempted}" for c in report.channels) or "no channels",
            extra={"alert_code": payload.alert_code, "recipient_count": len(recipients)},
        )
        return report

    async def _display_on_feed(self, alert_id: int, payload: AlertPayload) -> None:
        try:
            viewers = await self._feed.publish_alert(payload) if self._feed else 0
            async with session_scope(self._factory) as session:
                await session.execute(
                    update(AlertRecord).where(AlertRecord.id == alert_id).values(web_displayed=True)
                )
            logger.info(
                "[WEB] Alert %s on live feed (%d viewers)", payload.alert_code, viewers,
                extra={"alert_code": payload.alert_code, "channel": "web"},
            )
        except Exception as exc:
            logger.warning(
                "%s", DeliveryError(payload.alert_code, "web", "feed", str(exc)).message,
                extra={"alert_code": payload.alert_code, "channel": "web"},
            )

    async def _dispatch_channel(
        self,
        alert_id: int,
        payload: AlertPayload,
        channel: AlertChannel,
        recipients: List[Recipient],
    ) -> ChannelReport:
        report = ChannelReport(channel=channel)

        for recipient in recipients:
            address = recipient.address_for(channel)
            if not address:
                report.skipped += 1
                continue

            report.attempted += 1
            try:
                delivery_id = await self._record_pending(alert_id, channel, recipient, address)
                attempt = await self._deliver(channel, payload, recipient, address)
                await self._record_outcome(delivery_id, attempt)
            except Exception as exc:
                report.failed += 1
                logger.error(
                    "%s", DeliveryError(payload.alert_code, channel.value, recipient.user_id, str(exc)).message,
                    extra={"alert_code": payload.alert_code, "channel": channel.value},
                )
                continue

            if attempt.succeeded:
                report.sent += 1
            else:
                report.failed += 1
                logger.warning(
                    "%s", DeliveryError(
                        payload.alert_code, channel.value, recipient.user_id,
                        attempt.error_message or "unknown error",
                    ).message,
                    extra={"alert_code": payload.alert_code, "channel": channel.value},
                )

        return report

    async def _deliver(
        self,
        channel: AlertChannel,
        payload: AlertPayload,
        recipient: Recipient,
        address: str,
    ) -> DeliveryAttempt:
        """One attempt plus up to max_retries retries; never raises."""
        transport = self._transports.get(channel)
        if transport is None:
            return DeliveryAttempt(
                channel=channel,
                recipient_id=recipient.user_id,
                address=address,
                status=DeliveryStatus.FAILED,
                error_message=f"No transport for channel: {channel.value}",
                completed_at=_utcnow(),
            )

        attempt: Optional[DeliveryAttempt] = None
        for number in range(1, self._retry.max_retries + 2):
            try:
                attempt = await transport(payload, recipient, address)
            except Exception as exc:
                attempt = DeliveryAttempt(
                    channel=channel,
                    recipient_id=recipient.user_id,
                    address=address,
                    status=DeliveryStatus.FAILED,
                    error_message=str(exc) or exc.__class__.__name__,
                    completed_at=_utcnow(),
                )
            attempt.retry_count = number - 1
            if attempt.succeeded or number > self._retry.max_retries:
                break

            delay = compute_backoff(self._retry, number)
            logger.info(
                "Retry %d/%d for %s via %s in %.1fs",
                number, self._retry.max_retries, recipient.user_id, channel.value, delay,
            )
            await self._sleep(delay)

        return attempt

    # ───────────────────────────────────────────────────────────────────
    # Persistence (each call is its own short transaction)
    # ───────────────────────────────────────────────────────────────────

    async def _record_pending(
        self,
        alert_id: int,
        channel: AlertChannel,
        recipient: Recipient,
        address: str,
    ) -> int:
        async with session_scope(self._factory) as session:
            row = AlertDelivery(
                alert_id=alert_id,
                channel=channel.value,
                user_id=recipient.user_id,
                recipient=address,
                status=DeliveryStatus.PENDING.value,
            )
            session.add(row)
            await session.flush()
            return row.id

    async def _record_outcome(self, delivery_id: int, attempt: DeliveryAttempt) -> None:
        values = {
            "status": attempt.status.value,
            "attempts": attempt.retry_count + 1,
            "error": attempt.error_message if not attempt.succeeded else None,
            "provider_response": attempt.provider_response or None,
        }
        if attempt.succeeded:
            values["sent_at"] = attempt.completed_at or _utcnow()
        if attempt.status == DeliveryStatus.DELIVERED:
            values["delivered_at"] = attempt.completed_at or _utcnow()

        async with session_scope(self._factory) as session:
            await session.execute(
                update(AlertDelivery).where(AlertDelivery.id == delivery_id).values(**values)
            )

    async def _increment(self, alert_id: int, channel: AlertChannel, count: int) -> None:
        column = _COUNTER_COLUMNS[channel]
        async with session_scope(self._factory) as session:
            await session.execute(
                update(AlertRecord)
                .where(AlertRecord.id == alert_id)
                .values({column: column + count})
            )

"""
statistics.py — Delivery and acknowledgment statistics.

Per alert:
    recipients, per-channel sent / failed / pending counts (from the
    delivery rows), acknowledgment count and rate.

Summary over an optional created_at range:
    number of alerts, breakdown by type and severity, summed recipients
    and channel counters, total acknowledgments.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bantay.app.alerts.models import PER_RECIPIENT_CHANNELS, DeliveryStatus
from bantay.app.alerts.orm import AlertAcknowledgment, AlertDelivery, AlertRecord
from bantay.app.core.errors import NotFoundError, ValidationError


async def alert_statistics(session: AsyncSession, code: str) -> Dict[str, Any]:
    alert = await session.scalar(select(AlertRecord).where(AlertRecord.code == code))
    if alert is None:
        raise NotFoundError("Alert", code=code)

    rows = await session.execute(
        select(AlertDelivery.channel, AlertDelivery.status, func.count())
        .where(AlertDelivery.alert_id == alert.id)
        .group_by(AlertDelivery.channel, AlertDelivery.status)
    )
    channels: Dict[str, Dict[str, int]] = {
        c.value: {s.value: 0 for s in DeliveryStatus} for c in PER_RECIPIENT_CHANNELS
    }
    for channel, status, n in rows:
        channels.setdefault(channel, {s.value: 0 for s in DeliveryStatus})[status] = n

    acks = await session.scalar(
        select(func.count()).where(AlertAcknowledgment.alert_id == alert.id)
    ) or 0
    total = alert.total_recipients

    return {
        "alert_id": alert.code,
        "total_recipients": total,
        "sms_sent": alert.sms_sent,
        "emails_sent": alert.emails_sent,
        "push_notifications_sent": alert.push_sent,
        "web_displayed": alert.web_displayed,
        "channels": channels,
        "acknowledgments": acks,
        "acknowledgment_rate": round(acks / total, 4) if total else 0.0,
        "dispatch_completed": alert.dispatch_completed_at is not None,
    }


async def summary_statistics(
    session: AsyncSession,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Dict[str, Any]:
    if start and end and start > end:
        raise ValidationError("start must not be after end", field="start")

    conditions = []
    if start:
        conditions.append(AlertRecord.created_at >= start)
    if end:
        conditions.append(AlertRecord.created_at <= end)

    totals = (await session.execute(
        select(
            func.count(AlertRecord.id),
            func.coalesce(func.sum(AlertRecord.total_recipients), 0),
            func.coalesce(func.sum(AlertRecord.sms_sent), 0),
            func.coalesce(func.sum(AlertRecord.emails_sent), 0),
            func.coalesce(func.sum(AlertRecord.push_sent), 0),
        ).where(*conditions)
    )).one()

    by_type = dict((await session.execute(
        select(AlertRecord.alert_type, func.count()).where(*conditions).group_by(AlertRecord.alert_type)
    )).all())
    by_severity = dict((await session.execute(
        select(AlertRecord.severity, func.count()).where(*conditions).group_by(AlertRecord.severity)
    )).all())
    acks = await session.scalar(
        select(func.count(AlertAcknowledgment.id))
        .join(AlertRecord, AlertRecord.id == AlertAcknowledgment.alert_id)
        .where(*conditions)
    ) or 0

    return {
        "total_alerts": totals[0],
        "by_type": by_type,
        "by_severity": by_severity,
        "total_recipients": int(totals[1]),
        "total_sms": int(totals[2]),
        "total_emails": int(totals[3]),
        "total_push": int(totals[4]),
        "total_acknowledgments": acks,
        "range": {
            "start": start.isoformat() if start else None,
            "end": end.isoformat() if end else None,
        },
    }

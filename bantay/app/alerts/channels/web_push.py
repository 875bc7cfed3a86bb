"""
web_push.py — Push notification channel.

Residents using the barangay app receive a push notification keyed by
their user id. Push-service credentials are not provisioned yet, so every
send is simulated: the notification body is built and logged, and the
attempt is reported as SENT.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from bantay.app.alerts.models import (
    AlertChannel,
    AlertPayload,
    AlertSeverity,
    DeliveryAttempt,
    DeliveryStatus,
    Recipient,
)

logger = logging.getLogger(__name__)

_URGENT = (AlertSeverity.WARNING, AlertSeverity.CRITICAL)


def build_notification(payload: AlertPayload) -> dict:
    urgent = payload.severity in _URGENT
    return {
        "title": payload.title,
        "body": payload.message,
        "tag": payload.alert_code,
        "data": {
            "alert_id": payload.alert_code,
            "severity": payload.severity.value,
            "alert_type": payload.alert_type.value,
            "url": f"/alerts/{payload.alert_code}",
        },
        "actions": [{"action": "acknowledge", "title": "I'm Safe"}],
        "requireInteraction": urgent,
        "vibrate": [200, 100, 200] if urgent else [100],
    }


async def send(
    payload: AlertPayload,
    recipient: Recipient,
    address: str,
) -> DeliveryAttempt:
    """Send (simulate) a push notification to one recipient."""
    attempt = DeliveryAttempt(
        channel=AlertChannel.PUSH,
        recipient_id=recipient.user_id,
        address=address,
    )
    try:
        notification = build_notification(payload)
        logger.info(
            "[PUSH] Alert %s → %s (%s): %s",
            payload.alert_code, recipient.user_id, recipient.name, payload.title,
            extra={"alert_code": payload.alert_code, "channel": "push"},
        )
        attempt.status = DeliveryStatus.SENT
        attempt.provider_response = {
            "mode": "simulated",
            "payload_size": len(str(notification)),
        }
    except Exception as exc:
        logger.error("[PUSH] Failed for %s: %s", recipient.user_id, exc)
        attempt.status = DeliveryStatus.FAILED
        attempt.error_message = str(exc)

    attempt.completed_at = datetime.now(timezone.utc)
    return attempt

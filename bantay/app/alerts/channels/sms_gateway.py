"""
sms_gateway.py — SMS delivery channel via the Semaphore gateway.

Delivery mechanism:
    • Primary: HTTP form POST to Semaphore (Philippine SMS aggregator)
    • Sender name registered with Semaphore (settings.SMS_SENDER_NAME)
    • No truncation here; Semaphore splits long bodies into segments

═══════════════════════════════════════════════════════════════════════════
SMS GATEWAY ARCHITECTURE
═══════════════════════════════════════════════════════════════════════════

    App  →  HTTP POST (form)  →  Semaphore API  →  Carrier  →  Handset

    POST https://semaphore.co/api/v4/messages
        apikey      account key
        number      09XXXXXXXXX / +639XXXXXXXXX
        message     text body
        sendername  approved sender name

    Response 200: [{"message_id": ..., "status": "Pending", ...}]
    Response 4xx: error object, treated as FAILED

    SMS_PROVIDER=simulation (the default) logs and reports SENT without
    touching the network.

═══════════════════════════════════════════════════════════════════════════
MESSAGE TEMPLATE
═══════════════════════════════════════════════════════════════════════════

    "ALERT: {title} - {message}. Stay safe!"
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx

from bantay.app.alerts.models import (
    AlertChannel,
    AlertPayload,
    DeliveryAttempt,
    DeliveryStatus,
    Recipient,
)
from bantay.app.core.config import settings

logger = logging.getLogger(__name__)

# GSM 7-bit single-segment length, used for segment estimates only
SMS_SEGMENT_LENGTH = 160


def format_sms(payload: AlertPayload) -> str:
    return f"ALERT: {payload.title} - {payload.message}. Stay safe!"


async def _post_semaphore(
    number: str,
    body: str,
    client: Optional[httpx.AsyncClient],
) -> dict:
    if not settings.SEMAPHORE_API_KEY:
        raise RuntimeError("SEMAPHORE_API_KEY is not configured")

    form = {
        "apikey": settings.SEMAPHORE_API_KEY,
        "number": number,
        "message": body,
        "sendername": settings.SMS_SENDER_NAME,
    }
    if client is not None:
        response = await client.post(settings.SEMAPHORE_API_URL, data=form)
    else:
        async with httpx.AsyncClient(timeout=settings.SMS_TIMEOUT_SECONDS) as c:
            response = await c.post(settings.SEMAPHORE_API_URL, data=form)

    response.raise_for_status()
    data = response.json()
    first = data[0] if isinstance(data, list) and data else data
    return first if isinstance(first, dict) else {"raw": data}


async def send(
    payload: AlertPayload,
    recipient: Recipient,
    address: str,
    *,
    provider: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> DeliveryAttempt:
    """
    Send an SMS alert to a recipient.

    Parameters
    ----------
    payload : AlertPayload
        Published alert snapshot.
    recipient : Recipient
        Resolved user; ``address`` is their phone number.
    address : str
        Phone number to send to.
    provider : str | None
        "simulation" or "semaphore"; defaults to settings.SMS_PROVIDER.
    client : httpx.AsyncClient | None
        Shared client; a short-lived one is opened when omitted.

    Returns
    -------
    DeliveryAttempt
    """
    provider = provider or settings.SMS_PROVIDER
    attempt = DeliveryAttempt(
        channel=AlertChannel.SMS,
        recipient_id=recipient.user_id,
        address=address,
    )
    body = format_sms(payload)

    try:
        if provider == "simulation":
            logger.info(
                "[SMS] Alert %s → %s (%s): %d chars",
                payload.alert_code, address, recipient.name, len(body),
                extra={"alert_code": payload.alert_code, "channel": "sms"},
            )
            attempt.provider_response = {
                "mode": "simulated",
                "segments": 1 + (len(body) - 1) // SMS_SEGMENT_LENGTH,
            }
            attempt.status = DeliveryStatus.SENT

        elif provider == "semaphore":
            result = await _post_semaphore(address, body, client)
            attempt.provider_response = result
            attempt.status = DeliveryStatus.SENT
            logger.info(
                "[SMS/Semaphore] Alert %s → %s: message_id=%s",
                payload.alert_code, address, result.get("message_id"),
                extra={"alert_code": payload.alert_code, "channel": "sms"},
            )

        else:
            attempt.status = DeliveryStatus.FAILED
            attempt.error_message = f"Unknown SMS provider: {provider}"

    except Exception as exc:
        logger.error("[SMS] Failed for %s: %s", recipient.user_id, exc)
        attempt.status = DeliveryStatus.FAILED
        attempt.error_message = str(exc) or exc.__class__.__name__

    attempt.completed_at = datetime.now(timezone.utc)
    return attempt

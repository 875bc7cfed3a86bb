"""
email_alert.py — Email alert delivery channel.

Delivery mechanism:
    • SMTP with STARTTLS (smtplib, run in a worker thread)
    • multipart/alternative: plain text + HTML with action steps
    • EMAIL_PROVIDER=simulation (default) only logs

═══════════════════════════════════════════════════════════════════════════
EMAIL TEMPLATE STRUCTURE
═══════════════════════════════════════════════════════════════════════════

    Subject: [SEVERITY] Barangay {name} Alert: {title}
    Body:
        ┌─────────────────────────────────────────┐
        │  {ALERT TYPE} ALERT — severity banner     │
        ├─────────────────────────────────────────┤
        │  {message}                                │
        │  Immediate actions / Preparation          │
        │  Evacuation centers (when required)       │
        │  Valid until {expires_at}                 │
        └─────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Any, Dict, List, Optional

from bantay.app.alerts.models import (
    AlertChannel,
    AlertPayload,
    AlertSeverity,
    DeliveryAttempt,
    DeliveryStatus,
    Recipient,
)
from bantay.app.core.config import settings

logger = logging.getLogger(__name__)

# Severity → banner colour
_SEVERITY_COLOURS = {
    AlertSeverity.INFO: "#17a2b8",
    AlertSeverity.WATCH: "#ffc107",
    AlertSeverity.WARNING: "#dc3545",
    AlertSeverity.CRITICAL: "#343a40",
}


def build_subject(payload: AlertPayload) -> str:
    return (
        f"[{payload.severity.value.upper()}] Barangay {settings.BARANGAY_NAME} "
        f"Alert: {payload.title}"
    )


def _html_list(items: List[str]) -> str:
    return "".join(f"<li>{escape(str(i))}</li>" for i in items)


def _evacuation_centers(instructions: Dict[str, Any]) -> List[str]:
    evacuation = instructions.get("evacuation") or {}
    if not evacuation.get("required"):
        return []
    centers = []
    for c in evacuation.get("centers") or []:
        if isinstance(c, dict):
            centers.append(" — ".join(str(v) for v in (c.get("name"), c.get("address")) if v))
        else:
            centers.append(str(c))
    return centers


def build_html_body(payload: AlertPayload) -> str:
    """Render the HTML email body."""
    colour = _SEVERITY_COLOURS.get(payload.severity, "#17a2b8")
    instructions = payload.instructions or {}
    sections = []

    immediate = instructions.get("immediate") or []
    if immediate:
        sections.append(f"<h4>Immediate actions</h4><ul>{_html_list(immediate)}</ul>")
    preparation = instructions.get("preparation") or []
    if preparation:
        sections.append(f"<h4>Preparation</h4><ul>{_html_list(preparation)}</ul>")
    centers = _evacuation_centers(instructions)
    if centers:
        sections.append(f"<h4>Evacuation centers</h4><ul>{_html_list(centers)}</ul>")

    return f"""
    <div style="font-family:Arial,sans-serif;max-width:600px;margin:auto;">
      <div style="background:{colour};color:white;padding:16px;border-radius:8px 8px 0 0;">
        <h2 style="margin:0;">{escape(payload.alert_type.value.upper())} ALERT</h2>
        <p style="margin:4px 0 0;">Severity: {payload.severity.value.upper()} | Ref: {payload.alert_code}</p>
      </div>
      <div style="border:1px solid #ddd;border-top:none;padding:16px;border-radius:0 0 8px 8px;">
        <h3>{escape(payload.title)}</h3>
        <p>{escape(payload.message)}</p>
        {''.join(sections)}
        <hr>
        <p><strong>Valid until:</strong> {payload.expires_at.strftime('%Y-%m-%d %H:%M UTC')}</p>
        <p style="color:#777;font-size:12px;">Barangay {escape(settings.BARANGAY_NAME)} Disaster Risk Reduction Office</p>
      </div>
    </div>
    """


def build_plain_body(payload: AlertPayload) -> str:
    instructions = payload.instructions or {}
    lines = [
        f"{payload.alert_type.value.upper()} ALERT ({payload.severity.value.upper()})",
        "",
        payload.title,
        payload.message,
    ]
    for heading, key in (("Immediate actions", "immediate"), ("Preparation", "preparation")):
        items = instructions.get(key) or []
        if items:
            lines += ["", f"{heading}:"] + [f"  - {i}" for i in items]
    centers = _evacuation_centers(instructions)
    if centers:
        lines += ["", "Evacuation centers:"] + [f"  - {c}" for c in centers]
    lines += ["", f"Valid until: {payload.expires_at.strftime('%Y-%m-%d %H:%M UTC')}"]
    return "\n".join(lines)


def _send_smtp(to: str, subject: str, plain: str, html: str) -> None:
    """Blocking SMTP send — executed via asyncio.to_thread."""
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{settings.SMTP_FROM_NAME} <{settings.SMTP_FROM_EMAIL}>"
    msg["To"] = to
    msg.attach(MIMEText(plain, "plain", "utf-8"))
    msg.attach(MIMEText(html, "html", "utf-8"))

    with smtplib.SMTP(
        settings.SMTP_HOST, settings.SMTP_PORT, timeout=settings.SMTP_TIMEOUT_SECONDS,
    ) as server:
        server.ehlo()
        if settings.SMTP_PORT != 25:
            server.starttls()
            server.ehlo()
        if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
            server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.sendmail(settings.SMTP_FROM_EMAIL, [to], msg.as_string())


async def send(
    payload: AlertPayload,
    recipient: Recipient,
    address: str,
    *,
    provider: Optional[str] = None,
) -> DeliveryAttempt:
    """
    Send an email alert to a recipient.

    Parameters
    ----------
    payload : AlertPayload
    recipient : Recipient
    address : str
        Email address to send to.
    provider : str | None
        "simulation" or "smtp"; defaults to settings.EMAIL_PROVIDER.

    Returns
    -------
    DeliveryAttempt
    """
    provider = provider or settings.EMAIL_PROVIDER
    attempt = DeliveryAttempt(
        channel=AlertChannel.EMAIL,
        recipient_id=recipient.user_id,
        address=address,
    )

    try:
        subject = build_subject(payload)

        if provider == "simulation":
            logger.info(
                "[EMAIL] Alert %s → %s (%s): Subject='%s'",
                payload.alert_code, address, recipient.name, subject,
                extra={"alert_code": payload.alert_code, "channel": "email"},
            )
            attempt.provider_response = {"mode": "simulated", "subject": subject}
            attempt.status = DeliveryStatus.SENT

        elif provider == "smtp":
            await asyncio.to_thread(
                _send_smtp, address, subject,
                build_plain_body(payload), build_html_body(payload),
            )
            attempt.provider_response = {"mode": "smtp", "host": settings.SMTP_HOST}
            attempt.status = DeliveryStatus.SENT

        else:
            attempt.status = DeliveryStatus.FAILED
            attempt.error_message = f"Unknown email provider: {provider}"

    except Exception as exc:
        logger.error("[EMAIL] Failed for %s: %s", recipient.user_id, exc)
        attempt.status = DeliveryStatus.FAILED
        attempt.error_message = str(exc) or exc.__class__.__name__

    attempt.completed_at = datetime.now(timezone.utc)
    return attempt

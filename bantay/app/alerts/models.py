"""
models.py — Shared data structures for the alert lifecycle.

Defines:
    • AlertType / AlertSeverity — content enums
    • TargetType / TargetArea  — who an alert is addressed to
    • AlertChannel             — delivery channel enum
    • DeliveryStatus           — per-recipient delivery tracking
    • TransitionType           — audit trail entry kinds
    • AlertContent             — validated draft content
    • AlertPayload             — published snapshot rendered by channels
    • Recipient                — a resolved user with contact info
    • DeliveryAttempt          — single send attempt record
    • ChannelReport / DispatchReport — per-channel and overall outcome

═══════════════════════════════════════════════════════════════════════════
ALERT STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

    Draft ──publish──▶ Published ──deactivate──▶ Deactivated
      │                  │   ▲
      │                  └───┘ extend (expires_at moves forward)
      └──deactivate──▶ Deactivated

    Expired is derived, never stored: is_expired = now > expires_at.
    An expired alert accepts only deactivate().

═══════════════════════════════════════════════════════════════════════════
SEVERITY ORDERING
═══════════════════════════════════════════════════════════════════════════

    Severity    Rank    Listing order
    ────────    ────    ─────────────
    critical    4       first
    warning     3
    watch       2
    info        1       last
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from bantay.app.core.config import settings
from bantay.app.core.errors import ValidationError
from bantay.app.spatial.radius_utils import Coordinate

TITLE_MAX_LENGTH = 200
MESSAGE_MAX_LENGTH = 2000


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertType(str, Enum):
    FLOOD      = "flood"
    LANDSLIDE  = "landslide"
    STORM      = "storm"
    EARTHQUAKE = "earthquake"
    FIRE       = "fire"
    HEALTH     = "health"
    SECURITY   = "security"
    GENERAL    = "general"
    EVACUATION = "evacuation"


class AlertSeverity(str, Enum):
    INFO     = "info"
    WATCH    = "watch"
    WARNING  = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    AlertSeverity.INFO: 1,
    AlertSeverity.WATCH: 2,
    AlertSeverity.WARNING: 3,
    AlertSeverity.CRITICAL: 4,
}


class TargetType(str, Enum):
    BARANGAY_WIDE = "barangay_wide"
    SPECIFIC      = "specific"   # named sitios / sub-areas
    RADIUS        = "radius"     # circle around a point


class AlertChannel(str, Enum):
    """Available broadcasting channels."""
    SMS   = "sms"
    EMAIL = "email"
    PUSH  = "push"
    WEB   = "web"     # live feed on the barangay dashboard


# Channels with one delivery record per recipient
PER_RECIPIENT_CHANNELS = (AlertChannel.SMS, AlertChannel.EMAIL, AlertChannel.PUSH)


class DeliveryStatus(str, Enum):
    """Delivery state per recipient per channel."""
    PENDING   = "pending"     # recorded, send not yet attempted
    SENT      = "sent"        # transport accepted the message
    DELIVERED = "delivered"   # carrier / provider receipt
    FAILED    = "failed"      # single attempt (plus any retries) failed


class TransitionType(str, Enum):
    CREATED     = "created"
    MODIFIED    = "modified"
    PUBLISHED   = "published"
    EXTENDED    = "extended"
    DEACTIVATED = "deactivated"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_enum(enum_cls, value: Any, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(
            f"{field_name} must be one of: {allowed}",
            field=field_name,
            value=value,
        ) from None


# ═══════════════════════════════════════════════════════════════════════════
# Targeting
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class TargetArea:
    """
    Alert audience definition.

    barangay_wide — every active resident
    specific      — residents whose registered sitio is in ``areas``
    radius        — residents within ``radius_km`` of ``center``
    """
    type: TargetType = TargetType.BARANGAY_WIDE
    areas: List[str] = field(default_factory=list)
    center: Optional[Coordinate] = None
    radius_km: Optional[float] = None

    def validate(self) -> "TargetArea":
        self.type = _parse_enum(TargetType, self.type, "target_area.type")

        if self.type == TargetType.SPECIFIC:
            cleaned = [a.strip() for a in self.areas if a and a.strip()]
            if not cleaned:
                raise ValidationError(
                    "Specific targeting needs at least one area",
                    field="target_area.areas",
                )
            # keep first occurrence order
            self.areas = list(dict.fromkeys(cleaned))

        elif self.type == TargetType.RADIUS:
            if self.center is None:
                raise ValidationError(
                    "Radius targeting needs a center point",
                    field="target_area.center",
                )
            validate_radius(self.radius_km)

        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "areas": list(self.areas),
            "center": self.center.to_geojson() if self.center else None,
            "radius_km": self.radius_km,
        }


def validate_radius(radius_km: Optional[float]) -> float:
    """Radius must lie in [ALERT_MIN_RADIUS_KM, ALERT_MAX_RADIUS_KM]."""
    lo, hi = settings.ALERT_MIN_RADIUS_KM, settings.ALERT_MAX_RADIUS_KM
    if radius_km is None or not (lo <= radius_km <= hi):
        raise ValidationError(
            f"Radius must be between {lo} and {hi} km",
            field="target_area.radius_km",
            value=radius_km,
        )
    return radius_km


# ═══════════════════════════════════════════════════════════════════════════
# Content
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class AlertContent:
    """
    Draft content as submitted by an official.

    validate() normalises enums and text and raises ValidationError on the
    first problem found.
    """
    title: str
    message: str
    alert_type: Any
    severity: Any
    expires_at: Optional[datetime]
    target_area: TargetArea = field(default_factory=TargetArea)
    instructions: Dict[str, Any] = field(default_factory=dict)
    channels: List[Any] = field(default_factory=lambda: list(AlertChannel))

    def validate(self, now: Optional[datetime] = None) -> "AlertContent":
        now = now or _now()

        self.title = (self.title or "").strip()
        self.message = (self.message or "").strip()
        if not self.title:
            raise ValidationError("Alert title is required", field="title")
        if len(self.title) > TITLE_MAX_LENGTH:
            raise ValidationError(
                f"Alert title cannot exceed {TITLE_MAX_LENGTH} characters",
                field="title",
            )
        if not self.message:
            raise ValidationError("Alert message is required", field="message")
        if len(self.message) > MESSAGE_MAX_LENGTH:
            raise ValidationError(
                f"Alert message cannot exceed {MESSAGE_MAX_LENGTH} characters",
                field="message",
            )

        self.alert_type = _parse_enum(AlertType, self.alert_type, "alert_type")
        self.severity = _parse_enum(AlertSeverity, self.severity, "severity")

        if self.expires_at is None:
            raise ValidationError("Expiry time is required", field="expires_at")
        if self.expires_at.tzinfo is None:
            raise ValidationError("Expiry time must include a timezone", field="expires_at")
        if self.expires_at <= now:
            raise ValidationError("Expiry time must be in the future", field="expires_at")

        self.target_area = self.target_area.validate()
        self.channels = [_parse_enum(AlertChannel, c, "channels") for c in self.channels]
        self.channels = list(dict.fromkeys(self.channels))
        return self


# ═══════════════════════════════════════════════════════════════════════════
# Recipients & Delivery
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Recipient:
    """A resolved in-scope user with contact details and channel opt-ins."""
    user_id: str
    name: str = ""
    phone_number: Optional[str] = None
    email: Optional[str] = None
    notify_sms: bool = True
    notify_email: bool = True
    notify_push: bool = True

    def address_for(self, channel: AlertChannel) -> Optional[str]:
        """
        Contact address for a channel, or None when the user cannot be
        reached on it (missing contact or opted out).
        """
        if channel == AlertChannel.SMS:
            return self.phone_number if self.notify_sms and self.phone_number else None
        if channel == AlertChannel.EMAIL:
            return self.email if self.notify_email and self.email else None
        if channel == AlertChannel.PUSH:
            return self.user_id if self.notify_push else None
        return None


@dataclass(frozen=True)
class AlertPayload:
    """
    Immutable snapshot of a published alert, handed to every channel.

    Channels render from this snapshot only; they never touch the database.
    """
    alert_code: str
    title: str
    message: str
    alert_type: AlertType
    severity: AlertSeverity
    expires_at: datetime
    published_at: Optional[datetime] = None
    target_area: Optional[TargetArea] = None
    instructions: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_code": self.alert_code,
            "title": self.title,
            "message": self.message,
            "alert_type": self.alert_type.value,
            "severity": self.severity.value,
            "expires_at": self.expires_at.isoformat(),
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "target_area": self.target_area.to_dict() if self.target_area else None,
            "instructions": self.instructions,
        }


@dataclass
class DeliveryAttempt:
    """Outcome of sending to one recipient via one channel."""
    channel: AlertChannel = AlertChannel.SMS
    recipient_id: str = ""
    address: str = ""
    status: DeliveryStatus = DeliveryStatus.PENDING
    completed_at: Optional[datetime] = None
    retry_count: int = 0
    error_message: Optional[str] = None
    provider_response: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status in (DeliveryStatus.SENT, DeliveryStatus.DELIVERED)


@dataclass
class ChannelReport:
    channel: AlertChannel
    attempted: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0   # in scope but no usable contact for this channel


@dataclass
class DispatchReport:
    """Final outcome of one dispatch run for a published alert."""
    alert_code: str
    total_recipients: int = 0
    channels: List[ChannelReport] = field(default_factory=list)
    completed_at: Optional[datetime] = None

"""
ORM tables for the alert lifecycle.

    alerts                  scalar alert fields + optimistic-lock version
    alert_target_areas      sitio names for "specific" targeting
    alert_deliveries        one row per (alert, channel, recipient)
    alert_audit_entries     append-only transition log
    alert_acknowledgments   one row per (alert, user), UNIQUE

Everything that grows with the audience lives in a side table so that the
alert row itself is only ever touched by short compare-and-set updates.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bantay.app.alerts.models import (
    AlertChannel,
    AlertPayload,
    AlertSeverity,
    AlertType,
    DeliveryStatus,
    TargetArea,
    TargetType,
)
from bantay.app.core.database import Base, UTCDateTime
from bantay.app.spatial.radius_utils import Coordinate


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class AlertRecord(Base):
    __tablename__ = "alerts"
    __table_args__ = (
        Index("ix_alerts_listing", "is_active", "is_published", "expires_at"),
        Index("ix_alerts_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(20), unique=True)

    # ── Content ──
    title: Mapped[str] = mapped_column(String(200))
    message: Mapped[str] = mapped_column(Text)
    alert_type: Mapped[str] = mapped_column(String(16))
    severity: Mapped[str] = mapped_column(String(16))
    severity_rank: Mapped[int] = mapped_column(Integer)
    instructions: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    channels: Mapped[List[str]] = mapped_column(JSON, default=list)

    # ── Targeting ──
    target_type: Mapped[str] = mapped_column(String(16), default=TargetType.BARANGAY_WIDE.value)
    center_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    center_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    radius_km: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # ── Lifecycle ──
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_published: Mapped[bool] = mapped_column(Boolean, default=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime())
    created_by: Mapped[str] = mapped_column(String(32))
    authorized_by: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    deactivated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_now)
    version: Mapped[int] = mapped_column(Integer, default=1)

    # ── Delivery statistics ──
    total_recipients: Mapped[int] = mapped_column(Integer, default=0)
    sms_sent: Mapped[int] = mapped_column(Integer, default=0)
    emails_sent: Mapped[int] = mapped_column(Integer, default=0)
    push_sent: Mapped[int] = mapped_column(Integer, default=0)
    web_displayed: Mapped[bool] = mapped_column(Boolean, default=False)
    dispatch_completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    target_areas: Mapped[List["AlertTargetArea"]] = relationship(
        back_populates="alert",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="AlertTargetArea.position",
    )
    audit_entries: Mapped[List["AlertAuditEntry"]] = relationship(
        back_populates="alert",
        cascade="all, delete-orphan",
        lazy="raise",
        order_by="AlertAuditEntry.id",
    )
    acknowledgments: Mapped[List["AlertAcknowledgment"]] = relationship(
        back_populates="alert",
        cascade="all, delete-orphan",
        lazy="raise",
        order_by="AlertAcknowledgment.id",
    )
    deliveries: Mapped[List["AlertDelivery"]] = relationship(
        back_populates="alert",
        cascade="all, delete-orphan",
        lazy="raise",
        order_by="AlertDelivery.id",
    )

    # ── Derived ──

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or _now()) > self.expires_at

    def time_remaining(self, now: Optional[datetime] = None) -> int:
        """Whole seconds until expiry, never negative."""
        return max(0, int((self.expires_at - (now or _now())).total_seconds()))

    @property
    def area_names(self) -> List[str]:
        return [a.area for a in self.target_areas]

    def target(self) -> TargetArea:
        center = None
        if self.center_latitude is not None and self.center_longitude is not None:
            center = Coordinate(self.center_latitude, self.center_longitude)
        return TargetArea(
            type=TargetType(self.target_type),
            areas=self.area_names,
            center=center,
            radius_km=self.radius_km,
        )

    def to_payload(self) -> AlertPayload:
        return AlertPayload(
            alert_code=self.code,
            title=self.title,
            message=self.message,
            alert_type=AlertType(self.alert_type),
            severity=AlertSeverity(self.severity),
            expires_at=self.expires_at,
            published_at=self.published_at,
            target_area=self.target(),
            instructions=dict(self.instructions or {}),
        )

    def _loaded(self, name: str) -> bool:
        return name not in inspect(self).unloaded

    def to_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Read model. Side-table collections appear only when the caller
        loaded them (see AlertLifecycleManager.get).
        """
        now = now or _now()
        data: Dict[str, Any] = {
            "alert_id": self.code,
            "title": self.title,
            "message": self.message,
            "alert_type": self.alert_type,
            "severity": self.severity,
            "target_area": self.target().to_dict(),
            "instructions": self.instructions or {},
            "channels": list(self.channels or []),
            "is_active": self.is_active,
            "is_published": self.is_published,
            "is_expired": self.is_expired(now),
            "time_remaining": self.time_remaining(now),
            "expires_at": _iso(self.expires_at),
            "created_by": self.created_by,
            "authorized_by": self.authorized_by,
            "published_at": _iso(self.published_at),
            "deactivated_at": _iso(self.deactivated_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "version": self.version,
            "statistics": {
                "total_recipients": self.total_recipients,
                "sms_sent": self.sms_sent,
                "emails_sent": self.emails_sent,
                "push_notifications_sent": self.push_sent,
                "web_displayed": self.web_displayed,
                "dispatch_completed_at": _iso(self.dispatch_completed_at),
            },
        }
        if self._loaded("acknowledgments"):
            data["statistics"]["acknowledgments"] = len(self.acknowledgments)
            data["acknowledgments"] = [a.to_dict() for a in self.acknowledgments]
        if self._loaded("audit_entries"):
            data["update_history"] = [e.to_dict() for e in self.audit_entries]
        if self._loaded("deliveries"):
            grouped: Dict[str, List[Dict[str, Any]]] = {c.value: [] for c in AlertChannel}
            for d in self.deliveries:
                grouped.setdefault(d.channel, []).append(d.to_dict())
            data["deliveries"] = {k: v for k, v in grouped.items() if v}
        return data


class AlertTargetArea(Base):
    __tablename__ = "alert_target_areas"
    __table_args__ = (
        UniqueConstraint("alert_id", "area", name="uq_alert_target_area"),
        Index("ix_alert_target_areas_area", "area"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    alert_id: Mapped[int] = mapped_column(ForeignKey("alerts.id", ondelete="CASCADE"))
    area: Mapped[str] = mapped_column(String(100))
    position: Mapped[int] = mapped_column(Integer, default=0)

    alert: Mapped[AlertRecord] = relationship(back_populates="target_areas")


class AlertDelivery(Base):
    __tablename__ = "alert_deliveries"
    __table_args__ = (
        UniqueConstraint("alert_id", "channel", "user_id", name="uq_alert_delivery"),
        Index("ix_alert_deliveries_alert_channel", "alert_id", "channel"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    alert_id: Mapped[int] = mapped_column(ForeignKey("alerts.id", ondelete="CASCADE"))
    channel: Mapped[str] = mapped_column(String(8))
    user_id: Mapped[str] = mapped_column(String(32))
    recipient: Mapped[str] = mapped_column(String(254))  # phone / email / user id
    status: Mapped[str] = mapped_column(String(16), default=DeliveryStatus.PENDING.value)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    provider_response: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_now)

    alert: Mapped[AlertRecord] = relationship(back_populates="deliveries")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "recipient": self.recipient,
            "status": self.status,
            "attempts": self.attempts,
            "sent_at": _iso(self.sent_at),
            "delivered_at": _iso(self.delivered_at),
            "error": self.error,
            "provider_response": self.provider_response,
        }


class AlertAuditEntry(Base):
    __tablename__ = "alert_audit_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    alert_id: Mapped[int] = mapped_column(
        ForeignKey("alerts.id", ondelete="CASCADE"), index=True
    )
    actor_id: Mapped[str] = mapped_column(String(32))
    transition: Mapped[str] = mapped_column(String(16))
    changes: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_now)

    alert: Mapped[AlertRecord] = relationship(back_populates="audit_entries")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actor": self.actor_id,
            "type": self.transition,
            "changes": self.changes or {},
            "notes": self.notes,
            "timestamp": _iso(self.created_at),
        }


class AlertAcknowledgment(Base):
    __tablename__ = "alert_acknowledgments"
    __table_args__ = (
        UniqueConstraint("alert_id", "user_id", name="uq_alert_acknowledgment"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    alert_id: Mapped[int] = mapped_column(ForeignKey("alerts.id", ondelete="CASCADE"))
    user_id: Mapped[str] = mapped_column(String(32))
    acknowledged_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_now)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    alert: Mapped[AlertRecord] = relationship(back_populates="acknowledgments")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "acknowledged_at": _iso(self.acknowledged_at),
            "location": (
                {"latitude": self.latitude, "longitude": self.longitude}
                if self.latitude is not None and self.longitude is not None
                else None
            ),
        }

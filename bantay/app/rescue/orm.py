"""ORM tables for rescue requests, their status history and notes."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, Float, ForeignKey, Index, Integer, String, Text, inspect
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bantay.app.core.config import settings
from bantay.app.core.database import Base, UTCDateTime
from bantay.app.rescue.models import RescueStatus


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class RescueRequestRecord(Base):
    __tablename__ = "rescue_requests"
    __table_args__ = (
        Index("ix_rescue_status_created", "status", "created_at"),
        Index("ix_rescue_lat_lon", "latitude", "longitude"),
        Index("ix_rescue_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_number: Mapped[str] = mapped_column(String(20), unique=True)
    requester_id: Mapped[str] = mapped_column(String(32), index=True)

    # ── Contact ──
    contact_name: Mapped[str] = mapped_column(String(120))
    contact_phone: Mapped[str] = mapped_column(String(20))
    alternate_contact_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    alternate_contact_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # ── Location ──
    latitude: Mapped[float] = mapped_column(Float)
    longitude: Mapped[float] = mapped_column(Float)
    street: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    sitio: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    barangay: Mapped[str] = mapped_column(String(100), default=lambda: settings.BARANGAY_NAME)
    landmarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # ── Emergency ──
    emergency_type: Mapped[str] = mapped_column(String(16))
    severity: Mapped[str] = mapped_column(String(16), default="medium")
    description: Mapped[str] = mapped_column(Text)
    priority: Mapped[int] = mapped_column(Integer, default=3)
    adults: Mapped[int] = mapped_column(Integer, default=0)
    children: Mapped[int] = mapped_column(Integer, default=0)
    seniors: Mapped[int] = mapped_column(Integer, default=0)
    disabled: Mapped[int] = mapped_column(Integer, default=0)
    has_injuries: Mapped[bool] = mapped_column(Boolean, default=False)
    injury_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    has_chronic_conditions: Mapped[bool] = mapped_column(Boolean, default=False)
    medication_needed: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # ── Handling ──
    status: Mapped[str] = mapped_column(String(16), default=RescueStatus.PENDING.value)
    assigned_responder_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    assigned_team: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    estimated_arrival: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    completed_by: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    outcome: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    final_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_now)
    version: Mapped[int] = mapped_column(Integer, default=1)

    status_history: Mapped[List["RescueStatusChange"]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        lazy="raise",
        order_by="RescueStatusChange.id",
    )
    notes: Mapped[List["RescueNote"]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        lazy="raise",
        order_by="RescueNote.id",
    )

    @property
    def total_persons_affected(self) -> int:
        return self.adults + self.children + self.seniors + self.disabled

    def to_dict(self, *, include_internal: bool = False, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or _now()
        data: Dict[str, Any] = {
            "request_number": self.request_number,
            "requester_id": self.requester_id,
            "contact": {
                "name": self.contact_name,
                "phone_number": self.contact_phone,
                "alternate": (
                    {"name": self.alternate_contact_name, "phone_number": self.alternate_contact_phone}
                    if self.alternate_contact_name or self.alternate_contact_phone else None
                ),
            },
            "location": {"latitude": self.latitude, "longitude": self.longitude},
            "address": {
                "street": self.street,
                "sitio": self.sitio,
                "barangay": self.barangay,
                "landmarks": self.landmarks,
            },
            "emergency_type": self.emergency_type,
            "severity": self.severity,
            "description": self.description,
            "priority": self.priority,
            "persons_affected": {
                "adults": self.adults,
                "children": self.children,
                "seniors": self.seniors,
                "disabled": self.disabled,
                "total": self.total_persons_affected,
            },
            "medical_info": {
                "has_injuries": self.has_injuries,
                "injury_description": self.injury_description,
                "has_chronic_conditions": self.has_chronic_conditions,
                "medication_needed": self.medication_needed,
            },
            "status": self.status,
            "assigned_to": {
                "responder_id": self.assigned_responder_id,
                "team": self.assigned_team,
                "assigned_at": _iso(self.assigned_at),
                "estimated_arrival": _iso(self.estimated_arrival),
            },
            "completion": (
                {
                    "completed_at": _iso(self.completed_at),
                    "completed_by": self.completed_by,
                    "outcome": self.outcome,
                    "final_notes": self.final_notes,
                }
                if self.completed_at else None
            ),
            "elapsed_seconds": max(0, int((now - self.created_at).total_seconds())),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        unloaded = inspect(self).unloaded
        if "status_history" not in unloaded:
            data["status_history"] = [h.to_dict() for h in self.status_history]
        if "notes" not in unloaded:
            data["notes"] = [
                n.to_dict() for n in self.notes if include_internal or not n.is_internal
            ]
        return data


class RescueStatusChange(Base):
    __tablename__ = "rescue_status_changes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[int] = mapped_column(
        ForeignKey("rescue_requests.id", ondelete="CASCADE"), index=True
    )
    previous_status: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    status: Mapped[str] = mapped_column(String(16))
    actor_id: Mapped[str] = mapped_column(String(32))
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_now)

    request: Mapped[RescueRequestRecord] = relationship(back_populates="status_history")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "previous_status": self.previous_status,
            "status": self.status,
            "updated_by": self.actor_id,
            "notes": self.notes,
            "updated_at": _iso(self.created_at),
        }


class RescueNote(Base):
    __tablename__ = "rescue_notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[int] = mapped_column(
        ForeignKey("rescue_requests.id", ondelete="CASCADE"), index=True
    )
    author_id: Mapped[str] = mapped_column(String(32))
    content: Mapped[str] = mapped_column(Text)
    is_internal: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_now)

    request: Mapped[RescueRequestRecord] = relationship(back_populates="notes")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "author": self.author_id,
            "content": self.content,
            "is_internal": self.is_internal,
            "created_at": _iso(self.created_at),
        }

"""ORM model for the user directory."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Float, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from bantay.app.core.database import Base, UTCDateTime


class UserRole(str, Enum):
    ADMIN     = "admin"
    OFFICIAL  = "official"
    RESIDENT  = "resident"
    RESPONDER = "responder"


def _user_id() -> str:
    return f"USR-{uuid.uuid4().hex[:12].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class UserRecord(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("ix_users_active_area", "is_active", "area"),
        Index("ix_users_active_lat_lon", "is_active", "latitude", "longitude"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_user_id)
    name: Mapped[str] = mapped_column(String(120))
    role: Mapped[str] = mapped_column(String(16), default=UserRole.RESIDENT.value)
    phone_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(254), nullable=True)
    area: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)  # sitio
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Per-channel opt-in
    notify_sms: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_email: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_push: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_now)

    def to_dict(self) -> dict:
        return {
            "user_id": self.id,
            "name": self.name,
            "role": self.role,
            "phone_number": self.phone_number,
            "email": self.email,
            "area": self.area,
            "location": (
                {"latitude": self.latitude, "longitude": self.longitude}
                if self.latitude is not None and self.longitude is not None
                else None
            ),
            "is_active": self.is_active,
            "preferences": {
                "sms": self.notify_sms,
                "email": self.notify_email,
                "push": self.notify_push,
            },
        }

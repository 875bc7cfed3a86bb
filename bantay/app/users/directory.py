"""
directory.py — User directory: registration and targeting queries.

The alert recipient resolver needs three questions answered:

    all active users                        (barangay-wide alerts)
    active users whose sitio is in a list   (specific-area alerts)
    active users within R km of a point     (radius alerts)

Radius queries load only the rows inside the circle's bounding box and
then apply the exact haversine test, the same two-stage filter used by
the alert geo-fence.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bantay.app.core.database import session_scope, within_box
from bantay.app.core.errors import NotFoundError, ValidationError
from bantay.app.spatial.radius_utils import Coordinate, bounding_box, is_inside_radius
from bantay.app.users.orm import UserRecord, UserRole

logger = logging.getLogger(__name__)

# Philippine mobile numbers: +639XXXXXXXXX, 09XXXXXXXXX or 9XXXXXXXXX
PHONE_PATTERN = re.compile(r"^(\+63|0)?[0-9]{10}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")


def _validate_registration(
    name: str,
    role: str,
    phone_number: Optional[str],
    email: Optional[str],
    latitude: Optional[float],
    longitude: Optional[float],
) -> None:
    if not name or not name.strip():
        raise ValidationError("Name is required", field="name")
    if role not in {r.value for r in UserRole}:
        raise ValidationError(
            f"Role must be one of: {', '.join(r.value for r in UserRole)}",
            field="role",
        )
    if phone_number and not PHONE_PATTERN.match(phone_number):
        raise ValidationError("Invalid Philippine phone number", field="phone_number")
    if email and not EMAIL_PATTERN.match(email):
        raise ValidationError("Invalid email address", field="email")
    if (latitude is None) != (longitude is None):
        raise ValidationError("Latitude and longitude must be given together", field="location")
    if latitude is not None:
        try:
            Coordinate(latitude, longitude)
        except ValueError as exc:
            raise ValidationError(str(exc), field="location") from exc


async def register_user(
    factory: async_sessionmaker[AsyncSession],
    *,
    name: str,
    role: str = UserRole.RESIDENT.value,
    phone_number: Optional[str] = None,
    email: Optional[str] = None,
    area: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    is_active: bool = True,
    notify_sms: bool = True,
    notify_email: bool = True,
    notify_push: bool = True,
) -> UserRecord:
    """Validate and insert a directory entry."""
    _validate_registration(name, role, phone_number, email, latitude, longitude)

    user = UserRecord(
        name=name.strip(),
        role=role,
        phone_number=phone_number,
        email=email.lower() if email else None,
        area=area,
        latitude=latitude,
        longitude=longitude,
        is_active=is_active,
        notify_sms=notify_sms,
        notify_email=notify_email,
        notify_push=notify_push,
    )
    async with session_scope(factory) as session:
        session.add(user)
    logger.info("Registered %s %s (area=%s)", role, user.id, area, extra={"user_id": user.id})
    return user


async def get_user(session: AsyncSession, user_id: str) -> UserRecord:
    user = await session.get(UserRecord, user_id)
    if user is None:
        raise NotFoundError("User", user_id=user_id)
    return user


async def list_users(
    session: AsyncSession,
    *,
    active_only: bool = False,
    role: Optional[str] = None,
) -> List[UserRecord]:
    stmt = select(UserRecord).order_by(UserRecord.created_at)
    if active_only:
        stmt = stmt.where(UserRecord.is_active.is_(True))
    if role:
        stmt = stmt.where(UserRecord.role == role)
    return list((await session.scalars(stmt)).all())


async def find_active(session: AsyncSession) -> List[UserRecord]:
    return await list_users(session, active_only=True)


async def find_active_in_areas(session: AsyncSession, areas: Sequence[str]) -> List[UserRecord]:
    if not areas:
        return []
    stmt = (
        select(UserRecord)
        .where(UserRecord.is_active.is_(True), UserRecord.area.in_(list(areas)))
        .order_by(UserRecord.created_at)
    )
    return list((await session.scalars(stmt)).all())


async def find_active_within_radius(
    session: AsyncSession,
    center: Coordinate,
    radius_km: float,
) -> List[UserRecord]:
    """Active users whose registered location is within radius_km (inclusive)."""
    box = bounding_box(center, radius_km)
    stmt = (
        select(UserRecord)
        .where(
            UserRecord.is_active.is_(True),
            UserRecord.latitude.is_not(None),
            UserRecord.longitude.is_not(None),
            within_box(UserRecord.latitude, UserRecord.longitude, box),
        )
        .order_by(UserRecord.created_at)
    )
    candidates = (await session.scalars(stmt)).all()

    inside = [
        u for u in candidates
        if is_inside_radius(center, Coordinate(u.latitude, u.longitude), radius_km)[0]
    ]
    logger.debug(
        "Radius query: %d candidates in bbox, %d inside %.2f km",
        len(candidates), len(inside), radius_km,
    )
    return inside

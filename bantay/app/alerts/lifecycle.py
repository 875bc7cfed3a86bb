"""
lifecycle.py — Alert lifecycle manager: draft → published → deactivated.

═══════════════════════════════════════════════════════════════════════════
OPERATIONS
═══════════════════════════════════════════════════════════════════════════

    Operation       Allowed when                      Audit entry
    ─────────────   ───────────────────────────────   ───────────
    create          issuer role, valid content         created
    update_draft    active, unpublished, unexpired     modified
    publish         active, unpublished, unexpired     published
    extend          active, unexpired                  extended
    deactivate      active (expired is fine)           deactivated

═══════════════════════════════════════════════════════════════════════════
CONCURRENCY
═══════════════════════════════════════════════════════════════════════════

Every mutation is a compare-and-set on alerts.version:

    UPDATE alerts SET ..., version = version + 1
     WHERE id = :id AND version = :version_read

Zero rows updated means someone else changed the alert between our read
and our write. For publish the alert is re-read: if it is now published
the caller gets AlreadyPublishedError (exactly one publisher wins and
exactly one "published" audit entry exists); otherwise
ConcurrentModificationError, which the caller may retry.

No database lock is held across network calls. Dispatch happens after the
publish transaction has committed (see alert_service).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import delete, exists, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from bantay.app.alerts.geo_fence import resolve_recipients
from bantay.app.alerts.models import (
    AlertContent,
    Recipient,
    TargetArea,
    TargetType,
    TransitionType,
    validate_radius,
)
from bantay.app.alerts.orm import AlertAuditEntry, AlertRecord, AlertTargetArea
from bantay.app.core import cache
from bantay.app.core.auth import ALERT_ISSUER_ROLES, Actor, require_role
from bantay.app.core.config import settings
from bantay.app.core.database import session_scope, within_box
from bantay.app.core.errors import (
    AlreadyPublishedError,
    ConcurrentModificationError,
    ExpiredAlertError,
    InactiveAlertError,
    NotFoundError,
    ValidationError,
)
from bantay.app.core.identity import create_with_daily_code
from bantay.app.spatial.radius_utils import Coordinate, bounding_box, haversine

logger = logging.getLogger(__name__)

ALERT_CODE_PREFIX = "ALT"

_EDITABLE_FIELDS = (
    "title", "message", "alert_type", "severity",
    "expires_at", "target_area", "instructions", "channels",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, TargetArea):
        return value.to_dict()
    if hasattr(value, "value"):  # enums
        return value.value
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def _content_of(record: AlertRecord) -> AlertContent:
    return AlertContent(
        title=record.title,
        message=record.message,
        alert_type=record.alert_type,
        severity=record.severity,
        expires_at=record.expires_at,
        target_area=record.target(),
        instructions=dict(record.instructions or {}),
        channels=list(record.channels or []),
    )


def _content_columns(content: AlertContent) -> Dict[str, Any]:
    target = content.target_area
    center = target.center if target.type == TargetType.RADIUS else None
    return {
        "title": content.title,
        "message": content.message,
        "alert_type": content.alert_type.value,
        "severity": content.severity.value,
        "severity_rank": content.severity.rank,
        "instructions": content.instructions or {},
        "channels": [c.value for c in content.channels],
        "expires_at": content.expires_at,
        "target_type": target.type.value,
        "center_latitude": center.latitude if center else None,
        "center_longitude": center.longitude if center else None,
        "radius_km": target.radius_km if target.type == TargetType.RADIUS else None,
    }


def _area_rows(alert_id: Optional[int], target: TargetArea) -> List[AlertTargetArea]:
    if target.type != TargetType.SPECIFIC:
        return []
    return [
        AlertTargetArea(alert_id=alert_id, area=area, position=i)
        for i, area in enumerate(target.areas)
    ]


class AlertLifecycleManager:
    """
    Owns every state change of an alert and its audit trail.

    Parameters
    ----------
    session_factory : async_sessionmaker
        Each public operation runs in its own unit of work.
    clock : callable | None
        Returns the current tz-aware UTC time; injectable for tests.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._factory = session_factory
        self._clock = clock or _utcnow

    # ───────────────────────────────────────────────────────────────────
    # Helpers
    # ───────────────────────────────────────────────────────────────────

    async def _load(self, session: AsyncSession, code: str, *, detail: bool = False) -> AlertRecord:
        stmt = select(AlertRecord).where(AlertRecord.code == code)
        if detail:
            stmt = stmt.options(
                selectinload(AlertRecord.audit_entries),
                selectinload(AlertRecord.acknowledgments),
                selectinload(AlertRecord.deliveries),
            )
        stmt = stmt.execution_options(populate_existing=True)
        record = (await session.scalars(stmt)).first()
        if record is None:
            raise NotFoundError("Alert", code=code)
        return record

    async def _compare_and_set(
        self,
        session: AsyncSession,
        record: AlertRecord,
        values: Dict[str, Any],
    ) -> bool:
        now = self._clock()
        result = await session.execute(
            update(AlertRecord)
            .where(AlertRecord.id == record.id, AlertRecord.version == record.version)
            .values(**values, version=AlertRecord.version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _audit(
        self,
        session: AsyncSession,
        record: AlertRecord,
        actor: Actor,
        transition: TransitionType,
        changes: Optional[Dict[str, Any]] = None,
        notes: Optional[str] = None,
    ) -> None:
        session.add(AlertAuditEntry(
            alert_id=record.id,
            actor_id=actor.user_id,
            transition=transition.value,
            changes=changes or {},
            notes=notes,
            created_at=self._clock(),
        ))

    def _ensure_mutable(self, record: AlertRecord, now: datetime) -> None:
        if not record.is_active:
            raise InactiveAlertError(record.code)
        if record.is_expired(now):
            raise ExpiredAlertError(record.code)

    # ───────────────────────────────────────────────────────────────────
    # Mutations
    # ───────────────────────────────────────────────────────────────────

    async def create(self, content: AlertContent, actor: Actor) -> AlertRecord:
        """
        Validate content and persist an unpublished, active draft.

        Raises
        ------
        AuthorizationError
            Actor is not an admin or official.
        ValidationError
            Missing / invalid field, past expiry or bad target area.
        """
        require_role(actor, ALERT_ISSUER_ROLES, "create alerts")
        now = self._clock()
        content.validate(now)
        columns = _content_columns(content)

        async def build(session: AsyncSession, code: str) -> AlertRecord:
            record = AlertRecord(
                code=code,
                created_by=actor.user_id,
                created_at=now,
                updated_at=now,
                is_active=True,
                is_published=False,
                version=1,
                **columns,
            )
            record.target_areas = _area_rows(None, content.target_area)
            record.audit_entries = [AlertAuditEntry(
                actor_id=actor.user_id,
                transition=TransitionType.CREATED.value,
                changes={},
                notes="Alert created",
                created_at=now,
            )]
            session.add(record)
            return record

        record = await create_with_daily_code(
            self._factory, AlertRecord.created_at, ALERT_CODE_PREFIX, build, now=now,
        )
        logger.info(
            "Alert %s drafted by %s: [%s/%s] %s",
            record.code, actor.user_id, record.alert_type, record.severity, record.title,
            extra={"alert_code": record.code, "user_id": actor.user_id},
        )
        return record

    async def update_draft(self, code: str, changes: Dict[str, Any], actor: Actor) -> AlertRecord:
        """Edit an unpublished draft; audit lists old/new per changed field."""
        require_role(actor, ALERT_ISSUER_ROLES, "edit alerts")
        unknown = set(changes) - set(_EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Fields cannot be edited: {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
            )
        now = self._clock()

        async with session_scope(self._factory) as session:
            record = await self._load(session, code)
            if record.is_published:
                raise AlreadyPublishedError(code)
            self._ensure_mutable(record, now)

            before = _content_of(record)
            content = _content_of(record)
            for name, value in changes.items():
                setattr(content, name, value)
            content.validate(now)

            diff: Dict[str, Any] = {}
            for name in changes:
                old = _jsonable(getattr(before, name))
                new = _jsonable(getattr(content, name))
                if old != new:
                    diff[name] = {"old": old, "new": new}
            if not diff:
                return record

            if not await self._compare_and_set(session, record, _content_columns(content)):
                raise ConcurrentModificationError("Alert", code)

            if "target_area" in diff:
                await session.execute(
                    delete(AlertTargetArea).where(AlertTargetArea.alert_id == record.id)
                )
                # detach the stale area rows along with the record
                session.expunge(record)
                session.add_all(_area_rows(record.id, content.target_area))

            self._audit(session, record, actor, TransitionType.MODIFIED, diff)
            await session.flush()
            record = await self._load(session, code)

        logger.info(
            "Alert %s draft modified by %s: %s",
            code, actor.user_id, ", ".join(diff),
            extra={"alert_code": code, "user_id": actor.user_id},
        )
        return record

    async def publish(self, code: str, actor: Actor) -> Tuple[AlertRecord, List[Recipient]]:
        """
        Mark an alert published and resolve its audience.

        Returns
        -------
        (AlertRecord, list[Recipient])
            The committed alert and the recipients to dispatch to.

        Raises
        ------
        NotFoundError, AlreadyPublishedError, InactiveAlertError,
        ExpiredAlertError, ValidationError, ConcurrentModificationError
        """
        require_role(actor, ALERT_ISSUER_ROLES, "publish alerts")
        now = self._clock()

        async with session_scope(self._factory) as session:
            record = await self._load(session, code)
            if record.is_published:
                raise AlreadyPublishedError(code)
            self._ensure_mutable(record, now)
            _content_of(record).validate(now)

            won = await self._compare_and_set(session, record, {
                "is_published": True,
                "authorized_by": actor.user_id,
                "published_at": now,
            })
            if not won:
                current = await self._load(session, code)
                if current.is_published:
                    raise AlreadyPublishedError(code)
                raise ConcurrentModificationError("Alert", code)

            self._audit(
                session, record, actor, TransitionType.PUBLISHED,
                {"is_published": {"old": False, "new": True}},
                notes="Alert published",
            )
            record = await self._load(session, code)
            recipients = await resolve_recipients(session, record.target())

        await cache.invalidate_alert_listings()
        logger.info(
            "Alert %s published by %s → %d recipients",
            code, actor.user_id, len(recipients),
            extra={"alert_code": code, "user_id": actor.user_id,
                   "recipient_count": len(recipients)},
        )
        return record, recipients

    async def extend(
        self,
        code: str,
        new_expiry: datetime,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> AlertRecord:
        """Move expires_at; new_expiry must be strictly in the future."""
        require_role(actor, ALERT_ISSUER_ROLES, "extend alerts")
        now = self._clock()

        async with session_scope(self._factory) as session:
            record = await self._load(session, code)
            self._ensure_mutable(record, now)
            if new_expiry is None or new_expiry.tzinfo is None:
                raise ValidationError("New expiry must include a timezone", field="expires_at")
            if new_expiry <= now:
                raise ValidationError("New expiry must be in the future", field="expires_at")

            old_expiry = record.expires_at
            if not await self._compare_and_set(session, record, {"expires_at": new_expiry}):
                raise ConcurrentModificationError("Alert", code)
            self._audit(
                session, record, actor, TransitionType.EXTENDED,
                {"expires_at": {"old": old_expiry.isoformat(), "new": new_expiry.isoformat()}},
                notes=reason,
            )
            record = await self._load(session, code)

        if record.is_published:
            await cache.invalidate_alert_listings()
        logger.info(
            "Alert %s extended by %s: %s → %s",
            code, actor.user_id, old_expiry.isoformat(), new_expiry.isoformat(),
            extra={"alert_code": code, "user_id": actor.user_id},
        )
        return record

    async def deactivate(self, code: str, actor: Actor, reason: Optional[str] = None) -> AlertRecord:
        """Take an alert out of circulation; acknowledgments stop."""
        require_role(actor, ALERT_ISSUER_ROLES, "deactivate alerts")
        now = self._clock()

        async with session_scope(self._factory) as session:
            record = await self._load(session, code)
            if not record.is_active:
                raise InactiveAlertError(code, reason="alert is already deactivated")

            if not await self._compare_and_set(session, record, {
                "is_active": False,
                "deactivated_at": now,
            }):
                raise ConcurrentModificationError("Alert", code)
            self._audit(
                session, record, actor, TransitionType.DEACTIVATED,
                {"is_active": {"old": True, "new": False}},
                notes=reason,
            )
            record = await self._load(session, code)

        await cache.invalidate_alert_listings()
        logger.info(
            "Alert %s deactivated by %s (%s)",
            code, actor.user_id, reason or "no reason given",
            extra={"alert_code": code, "user_id": actor.user_id},
        )
        return record

    # ───────────────────────────────────────────────────────────────────
    # Reads
    # ───────────────────────────────────────────────────────────────────

    async def get(self, code: str, *, detail: bool = True) -> AlertRecord:
        """Alert with audit trail, acknowledgments and deliveries loaded."""
        async with self._factory() as session:
            return await self._load(session, code, detail=detail)

    async def list_alerts(
        self,
        *,
        active: Optional[bool] = None,
        published: Optional[bool] = None,
        alert_type: Optional[str] = None,
        severity: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[AlertRecord]:
        stmt = select(AlertRecord)
        if active is not None:
            stmt = stmt.where(AlertRecord.is_active.is_(active))
        if published is not None:
            stmt = stmt.where(AlertRecord.is_published.is_(published))
        if alert_type:
            stmt = stmt.where(AlertRecord.alert_type == alert_type)
        if severity:
            stmt = stmt.where(AlertRecord.severity == severity)
        stmt = stmt.order_by(AlertRecord.created_at.desc(), AlertRecord.id.desc())
        stmt = stmt.limit(limit).offset(offset)
        async with self._factory() as session:
            return list((await session.scalars(stmt)).all())

    def _live(self, now: datetime):
        return (
            AlertRecord.is_active.is_(True),
            AlertRecord.is_published.is_(True),
            AlertRecord.expires_at > now,
        )

    @staticmethod
    def _listing_order():
        return (AlertRecord.severity_rank.desc(), AlertRecord.created_at.desc(), AlertRecord.id.desc())

    async def _cached_listing(self, key: str, records: List[AlertRecord], now: datetime) -> List[Dict[str, Any]]:
        items = [r.to_dict(now) for r in records]
        if records:
            # never serve an alert past its expiry from cache
            soonest = min(r.time_remaining(now) for r in records)
            ttl = min(settings.CACHE_TTL, soonest)
        else:
            ttl = settings.CACHE_TTL
        if ttl > 0:
            await cache.cache_set(key, items, ttl=ttl)
        return items

    async def list_active_for_area(self, area: str) -> List[Dict[str, Any]]:
        """
        Live alerts reaching a sitio: barangay-wide ones plus specific
        alerts listing it. Critical first, then newest.
        """
        area = (area or "").strip()
        if not area:
            raise ValidationError("Area is required", field="area")
        key = cache.listing_key("active", area=area)
        cached = await cache.cache_get(key)
        if cached is not None:
            return cached

        now = self._clock()
        area_match = exists().where(
            AlertTargetArea.alert_id == AlertRecord.id,
            AlertTargetArea.area == area,
        )
        stmt = (
            select(AlertRecord)
            .where(*self._live(now))
            .where(or_(
                AlertRecord.target_type == TargetType.BARANGAY_WIDE.value,
                (AlertRecord.target_type == TargetType.SPECIFIC.value) & area_match,
            ))
            .order_by(*self._listing_order())
        )
        async with self._factory() as session:
            records = list((await session.scalars(stmt)).all())
        return await self._cached_listing(key, records, now)

    async def list_within_radius(self, latitude: float, longitude: float, radius_km: float) -> List[Dict[str, Any]]:
        """
        Live alerts near a point: barangay-wide ones plus radius alerts
        whose center lies within radius_km of (latitude, longitude).
        """
        validate_radius(radius_km)
        try:
            point = Coordinate(latitude, longitude)
        except ValueError as exc:
            raise ValidationError(str(exc), field="location") from exc

        key = cache.listing_key("nearby", lat=round(latitude, 5), lon=round(longitude, 5), r=radius_km)
        cached = await cache.cache_get(key)
        if cached is not None:
            return cached

        now = self._clock()
        box = bounding_box(point, radius_km)
        stmt = (
            select(AlertRecord)
            .where(*self._live(now))
            .where(or_(
                AlertRecord.target_type == TargetType.BARANGAY_WIDE.value,
                (AlertRecord.target_type == TargetType.RADIUS.value)
                & within_box(AlertRecord.center_latitude, AlertRecord.center_longitude, box),
            ))
            .order_by(*self._listing_order())
        )
        async with self._factory() as session:
            candidates = (await session.scalars(stmt)).all()

        records = [
            r for r in candidates
            if r.target_type == TargetType.BARANGAY_WIDE.value
            or haversine(point, Coordinate(r.center_latitude, r.center_longitude)) <= radius_km
        ]
        return await self._cached_listing(key, records, now)

"""
service.py — Rescue request workflow.

Residents submit requests with GPS coordinates; officials and responders
move them through the status table in models.py. Every status change is
appended to the request's history together with the previous status, and
reaching "completed" stamps the completion info.

Status changes use the same compare-and-set on ``version`` as alerts, so
two responders updating the same request cannot silently overwrite each
other.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from bantay.app.core.auth import RESCUE_HANDLER_ROLES, Actor, require_role
from bantay.app.core.database import session_scope, within_box
from bantay.app.core.errors import (
    AuthorizationError,
    ConcurrentModificationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from bantay.app.core.identity import create_with_daily_code
from bantay.app.rescue.models import (
    CompletionOutcome,
    RescueRequestInput,
    RescueStatus,
    can_transition,
    parse_choice,
)
from bantay.app.rescue.orm import RescueNote, RescueRequestRecord, RescueStatusChange
from bantay.app.spatial.radius_utils import Coordinate, bounding_box, is_inside_radius
from bantay.app.users import directory

logger = logging.getLogger(__name__)

REQUEST_NUMBER_PREFIX = "RR"
NEARBY_MAX_RADIUS_KM = 50.0


class RescueRequestService:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._factory = session_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ───────────────────────────────────────────────────────────────────
    # Helpers
    # ───────────────────────────────────────────────────────────────────

    async def _load(self, session: AsyncSession, number: str) -> RescueRequestRecord:
        stmt = (
            select(RescueRequestRecord)
            .where(RescueRequestRecord.request_number == number)
            .options(
                selectinload(RescueRequestRecord.status_history),
                selectinload(RescueRequestRecord.notes),
            )
            .execution_options(populate_existing=True)
        )
        record = (await session.scalars(stmt)).first()
        if record is None:
            raise NotFoundError("Rescue request", request_number=number)
        return record

    async def _compare_and_set(
        self,
        session: AsyncSession,
        record: RescueRequestRecord,
        values: Dict[str, Any],
    ) -> None:
        result = await session.execute(
            update(RescueRequestRecord)
            .where(
                RescueRequestRecord.id == record.id,
                RescueRequestRecord.version == record.version,
            )
            .values(**values, version=RescueRequestRecord.version + 1, updated_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentModificationError("Rescue request", record.request_number)

    # ───────────────────────────────────────────────────────────────────
    # Mutations
    # ───────────────────────────────────────────────────────────────────

    async def create(self, data: RescueRequestInput, actor: Actor) -> RescueRequestRecord:
        """Submit a new request; numbered RR-YYYYMMDD-NNN."""
        data.validate()
        now = self._clock()

        async def build(session: AsyncSession, number: str) -> RescueRequestRecord:
            record = RescueRequestRecord(
                request_number=number,
                requester_id=actor.user_id,
                contact_name=data.contact_name,
                contact_phone=data.contact_phone,
                alternate_contact_name=data.alternate_contact_name,
                alternate_contact_phone=data.alternate_contact_phone,
                latitude=data.latitude,
                longitude=data.longitude,
                street=data.street,
                sitio=data.sitio,
                landmarks=data.landmarks,
                emergency_type=data.emergency_type.value,
                severity=data.severity.value,
                description=data.description,
                priority=data.priority,
                has_injuries=data.has_injuries,
                injury_description=data.injury_description,
                has_chronic_conditions=data.has_chronic_conditions,
                medication_needed=data.medication_needed,
                status=RescueStatus.PENDING.value,
                created_at=now,
                updated_at=now,
                version=1,
                **data.persons(),
            )
            record.status_history = [RescueStatusChange(
                previous_status=None,
                status=RescueStatus.PENDING.value,
                actor_id=actor.user_id,
                notes="Request submitted",
                created_at=now,
            )]
            record.notes = []
            session.add(record)
            return record

        record = await create_with_daily_code(
            self._factory, RescueRequestRecord.created_at, REQUEST_NUMBER_PREFIX, build, now=now,
        )
        logger.info(
            "Rescue request %s: %s (%s) at (%.5f, %.5f), %d persons",
            record.request_number, record.emergency_type, record.severity,
            record.latitude, record.longitude, record.total_persons_affected,
            extra={"request_number": record.request_number, "user_id": actor.user_id},
        )
        return record

    async def update_status(
        self,
        number: str,
        status: Any,
        actor: Actor,
        *,
        notes: Optional[str] = None,
        outcome: Optional[Any] = None,
        final_notes: Optional[str] = None,
    ) -> RescueRequestRecord:
        """
        Move a request to a new status.

        Raises
        ------
        AuthorizationError
            Actor is not an admin, official or responder.
        InvalidTransitionError
            Not allowed from the current status (terminal states are final).
        ValidationError
            Unknown status or completion outcome.
        """
        require_role(actor, RESCUE_HANDLER_ROLES, "update rescue requests")
        requested = parse_choice(RescueStatus, status, "status")
        if outcome is not None:
            outcome = parse_choice(CompletionOutcome, outcome, "outcome")
        now = self._clock()

        async with session_scope(self._factory) as session:
            record = await self._load(session, number)
            current = RescueStatus(record.status)
            if not can_transition(current, requested):
                raise InvalidTransitionError("Rescue request", current.value, requested.value)

            values: Dict[str, Any] = {"status": requested.value}
            if requested == RescueStatus.COMPLETED:
                values.update(
                    completed_at=now,
                    completed_by=actor.user_id,
                    outcome=outcome.value if outcome else None,
                    final_notes=final_notes,
                )
            await self._compare_and_set(session, record, values)
            session.add(RescueStatusChange(
                request_id=record.id,
                previous_status=current.value,
                status=requested.value,
                actor_id=actor.user_id,
                notes=notes,
                created_at=now,
            ))
            await session.flush()
            record = await self._load(session, number)

        logger.info(
            "Rescue request %s: %s → %s by %s",
            number, current.value, requested.value, actor.user_id,
            extra={"request_number": number, "user_id": actor.user_id},
        )
        return record

    async def assign_responder(
        self,
        number: str,
        responder_id: str,
        actor: Actor,
        *,
        team: Optional[str] = None,
        estimated_arrival: Optional[datetime] = None,
    ) -> RescueRequestRecord:
        """Assign a responder; a pending request becomes acknowledged."""
        require_role(actor, RESCUE_HANDLER_ROLES, "assign responders")
        now = self._clock()

        async with session_scope(self._factory) as session:
            responder = await directory.get_user(session, responder_id)
            if responder.role not in RESCUE_HANDLER_ROLES or not responder.is_active:
                raise ValidationError(
                    "Assignee must be an active responder or official",
                    field="responder_id",
                )

            record = await self._load(session, number)
            current = RescueStatus(record.status)
            if current not in (RescueStatus.PENDING, RescueStatus.ACKNOWLEDGED):
                raise InvalidTransitionError(
                    "Rescue request", current.value, RescueStatus.ACKNOWLEDGED.value,
                )

            await self._compare_and_set(session, record, {
                "status": RescueStatus.ACKNOWLEDGED.value,
                "assigned_responder_id": responder_id,
                "assigned_team": team,
                "assigned_at": now,
                "estimated_arrival": estimated_arrival,
            })
            session.add(RescueStatusChange(
                request_id=record.id,
                previous_status=current.value,
                status=RescueStatus.ACKNOWLEDGED.value,
                actor_id=actor.user_id,
                notes="Responder assigned" if current == RescueStatus.PENDING else "Responder reassigned",
                created_at=now,
            ))
            await session.flush()
            record = await self._load(session, number)

        logger.info(
            "Rescue request %s assigned to %s", number, responder_id,
            extra={"request_number": number, "user_id": actor.user_id},
        )
        return record

    async def add_note(
        self,
        number: str,
        actor: Actor,
        content: str,
        *,
        is_internal: bool = False,
    ) -> RescueNote:
        """Append a note. Requesters may add public notes to their own request."""
        content = (content or "").strip()
        if not content:
            raise ValidationError("Note content is required", field="content")
        handler = actor.has_role(RESCUE_HANDLER_ROLES)

        async with session_scope(self._factory) as session:
            record = await self._load(session, number)
            if not handler and (record.requester_id != actor.user_id or is_internal):
                raise AuthorizationError("add notes to this rescue request", actor.role)
            note = RescueNote(
                request_id=record.id,
                author_id=actor.user_id,
                content=content,
                is_internal=is_internal,
                created_at=self._clock(),
            )
            session.add(note)
            await session.flush()
        return note

    # ───────────────────────────────────────────────────────────────────
    # Reads
    # ───────────────────────────────────────────────────────────────────

    async def get(self, number: str, actor: Actor) -> RescueRequestRecord:
        async with self._factory() as session:
            record = await self._load(session, number)
        if not actor.has_role(RESCUE_HANDLER_ROLES) and record.requester_id != actor.user_id:
            raise AuthorizationError("view this rescue request", actor.role)
        return record

    async def list_by_status(
        self,
        actor: Actor,
        status: Optional[Any] = None,
        *,
        limit: int = 50,
    ) -> List[RescueRequestRecord]:
        """Open queue, highest priority first, then newest."""
        require_role(actor, RESCUE_HANDLER_ROLES, "list rescue requests")
        stmt = select(RescueRequestRecord)
        if status is not None:
            status = parse_choice(RescueStatus, status, "status")
            stmt = stmt.where(RescueRequestRecord.status == status.value)
        stmt = stmt.order_by(
            RescueRequestRecord.priority.desc(),
            RescueRequestRecord.created_at.desc(),
            RescueRequestRecord.id.desc(),
        ).limit(limit)
        async with self._factory() as session:
            return list((await session.scalars(stmt)).all())

    async def list_within_radius(
        self,
        actor: Actor,
        latitude: float,
        longitude: float,
        radius_km: float,
        *,
        status: Optional[Any] = None,
    ) -> List[Dict[str, Any]]:
        """Requests within radius_km of a point, each with its distance."""
        require_role(actor, RESCUE_HANDLER_ROLES, "list rescue requests")
        if not 0 < radius_km <= NEARBY_MAX_RADIUS_KM:
            raise ValidationError(
                f"Radius must be greater than 0 and at most {NEARBY_MAX_RADIUS_KM} km",
                field="radius_km",
            )
        try:
            center = Coordinate(latitude, longitude)
        except ValueError as exc:
            raise ValidationError(str(exc), field="location") from exc

        box = bounding_box(center, radius_km)
        stmt = select(RescueRequestRecord).where(
            within_box(RescueRequestRecord.latitude, RescueRequestRecord.longitude, box),
        )
        if status is not None:
            status = parse_choice(RescueStatus, status, "status")
            stmt = stmt.where(RescueRequestRecord.status == status.value)
        stmt = stmt.order_by(
            RescueRequestRecord.priority.desc(),
            RescueRequestRecord.created_at.desc(),
        )
        async with self._factory() as session:
            candidates = (await session.scalars(stmt)).all()

        results = []
        for record in candidates:
            inside, distance = is_inside_radius(
                center, Coordinate(record.latitude, record.longitude), radius_km,
            )
            if inside:
                results.append({"request": record, "distance_km": round(distance, 3)})
        return results

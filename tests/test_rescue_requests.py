"""
test_rescue_requests.py — Rescue request intake and status workflow.

Covers:
    • Input validation (phone, coordinates, enums, counts, priority)
    • Daily RR- numbers and the initial history entry
    • Status transitions (allowed, refused, terminal)
    • Responder assignment
    • Notes: public vs internal, requester permissions
    • Access rules and the queue / nearby listings

Run with:
    pytest tests/test_rescue_requests.py -v
"""

import logging

import pytest

from bantay.app.core.errors import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from bantay.app.core.identity import local_day_bounds
from bantay.app.rescue.models import (
    ALLOWED_TRANSITIONS,
    RescueRequestInput,
    RescueStatus,
    can_transition,
)
from bantay.app.spatial.radius_utils import Coordinate, destination_point

from conftest import HALL, utcnow


def _make_input(**overrides) -> RescueRequestInput:
    fields = dict(
        contact_name="Maria Santos",
        contact_phone="09181234567",
        latitude=HALL.latitude,
        longitude=HALL.longitude,
        emergency_type="trapped",
        severity="high",
        description="Family of five on the roof, water rising",
        priority=4,
        sitio="Sitio Baybay",
        adults=2,
        children=3,
    )
    fields.update(overrides)
    return RescueRequestInput(**fields)


# ═══════════════════════════════════════════════════════════════════════════
# Validation & transitions table
# ═══════════════════════════════════════════════════════════════════════════

class TestInputValidation:

    def test_valid(self):
        data = _make_input().validate()
        assert data.emergency_type.value == "trapped"
        assert sum(data.persons().values()) == 5

    @pytest.mark.parametrize("phone", ["12345", "0917-123-4567", ""])
    def test_bad_phone(self, phone):
        with pytest.raises(ValidationError):
            _make_input(contact_phone=phone).validate()

    @pytest.mark.parametrize("phone", ["09181234567", "+639181234567", "9181234567"])
    def test_phone_formats(self, phone):
        _make_input(contact_phone=phone).validate()

    def test_bad_coordinates(self):
        with pytest.raises(ValidationError):
            _make_input(latitude=120.0).validate()

    def test_unknown_emergency_type(self):
        with pytest.raises(ValidationError):
            _make_input(emergency_type="alien_invasion").validate()

    def test_negative_count(self):
        with pytest.raises(ValidationError):
            _make_input(children=-1).validate()

    @pytest.mark.parametrize("priority", [0, 6])
    def test_priority_range(self, priority):
        with pytest.raises(ValidationError):
            _make_input(priority=priority).validate()

    def test_description_too_long(self):
        with pytest.raises(ValidationError):
            _make_input(description="x" * 1001).validate()


class TestTransitionTable:

    def test_terminal_states_have_no_exits(self):
        for status in RescueStatus:
            assert bool(ALLOWED_TRANSITIONS[status]) is not status.is_terminal

    def test_no_going_back(self):
        assert not can_transition(RescueStatus.DISPATCHED, RescueStatus.PENDING)
        assert not can_transition(RescueStatus.IN_PROGRESS, RescueStatus.ACKNOWLEDGED)

    def test_cancel_from_any_open_state(self):
        for status in RescueStatus:
            if not status.is_terminal:
                assert can_transition(status, RescueStatus.CANCELLED)


# ═══════════════════════════════════════════════════════════════════════════
# Service
# ═══════════════════════════════════════════════════════════════════════════

class TestCreate:

    async def test_numbering_and_history(self, rescue_service, people):
        day = local_day_bounds(utcnow())[2]
        resident = people.residents[1]
        first = await rescue_service.create(_make_input(), resident)
        second = await rescue_service.create(_make_input(), resident)

        assert first.request_number == f"RR-{day}-001"
        assert second.request_number == f"RR-{day}-002"
        assert first.status == "pending"
        assert first.requester_id == resident.user_id

        body = first.to_dict()
        assert body["persons_affected"]["total"] == 5
        assert body["address"]["barangay"] == "Malagutay"
        assert body["status_history"][0]["notes"] == "Request submitted"

    async def test_invalid_rejected(self, rescue_service, people):
        with pytest.raises(ValidationError):
            await rescue_service.create(_make_input(contact_phone="123"), people.residents[0])

    async def test_creation_logged_at_info(self, rescue_service, people, caplog):
        caplog.set_level(logging.INFO, logger="bantay.app.rescue.service")
        record = await rescue_service.create(_make_input(), people.residents[1])
        entries = [r for r in caplog.records if record.request_number in r.getMessage()]
        assert [r.levelno for r in entries] == [logging.INFO]

class TestStatusWorkflow:

    async def test_full_rescue(self, rescue_service, people):
        record = await rescue_service.create(_make_input(), people.residents[1])
        number = record.request_number
        responder = people.responder

        for status in ("dispatched", "in_progress"):
            record = await rescue_service.update_status(number, status, responder)
        record = await rescue_service.update_status(
            number, "completed", responder,
            notes="All five evacuated", outcome="successful", final_notes="Brought to the school",
        )

        assert record.status == "completed"
        body = record.to_dict()
        assert body["completion"]["outcome"] == "successful"
        assert body["completion"]["completed_by"] == responder.user_id
        assert [h["status"] for h in body["status_history"]] == [
            "pending", "dispatched", "in_progress", "completed",
        ]
        assert body["status_history"][-1]["previous_status"] == "in_progress"

    async def test_invalid_transition(self, rescue_service, people):
        record = await rescue_service.create(_make_input(), people.residents[1])
        with pytest.raises(InvalidTransitionError):
            await rescue_service.update_status(record.request_number, "in_progress", people.official)

    async def test_terminal_is_final(self, rescue_service, people):
        record = await rescue_service.create(_make_input(), people.residents[1])
        await rescue_service.update_status(record.request_number, "cancelled", people.official)
        with pytest.raises(InvalidTransitionError):
            await rescue_service.update_status(record.request_number, "dispatched", people.official)

    async def test_unknown_status(self, rescue_service, people):
        record = await rescue_service.create(_make_input(), people.residents[1])
        with pytest.raises(ValidationError):
            await rescue_service.update_status(record.request_number, "teleported", people.official)

    async def test_resident_cannot_change_status(self, rescue_service, people):
        record = await rescue_service.create(_make_input(), people.residents[1])
        with pytest.raises(AuthorizationError):
            await rescue_service.update_status(record.request_number, "cancelled", people.residents[1])

    async def test_unknown_request(self, rescue_service, people):
        with pytest.raises(NotFoundError):
            await rescue_service.update_status("RR-19990101-001", "cancelled", people.official)


class TestAssignment:

    async def test_assign_acknowledges(self, rescue_service, people):
        record = await rescue_service.create(_make_input(), people.residents[1])
        record = await rescue_service.assign_responder(
            record.request_number, people.responder.user_id, people.official, team="Team Alpha",
        )
        assert record.status == "acknowledged"
        assert record.assigned_responder_id == people.responder.user_id
        assert record.to_dict()["assigned_to"]["team"] == "Team Alpha"
        assert record.to_dict()["status_history"][-1]["notes"] == "Responder assigned"

    async def test_reassign(self, rescue_service, people):
        record = await rescue_service.create(_make_input(), people.residents[1])
        await rescue_service.assign_responder(record.request_number, people.responder.user_id, people.official)
        record = await rescue_service.assign_responder(
            record.request_number, people.official.user_id, people.admin,
        )
        assert record.assigned_responder_id == people.official.user_id
        assert record.to_dict()["status_history"][-1]["notes"] == "Responder reassigned"

    async def test_resident_cannot_be_assigned(self, rescue_service, people):
        record = await rescue_service.create(_make_input(), people.residents[1])
        with pytest.raises(ValidationError):
            await rescue_service.assign_responder(
                record.request_number, people.residents[0].user_id, people.official,
            )

    async def test_cannot_assign_after_dispatch(self, rescue_service, people):
        record = await rescue_service.create(_make_input(), people.residents[1])
        await rescue_service.update_status(record.request_number, "dispatched", people.official)
        with pytest.raises(InvalidTransitionError):
            await rescue_service.assign_responder(
                record.request_number, people.responder.user_id, people.official,
            )


class TestNotes:

    async def test_internal_notes_hidden_from_requester(self, rescue_service, people):
        requester = people.residents[1]
        record = await rescue_service.create(_make_input(), requester)
        number = record.request_number
        await rescue_service.add_note(number, people.responder, "Boat en route")
        await rescue_service.add_note(number, people.responder, "Caller sounds injured", is_internal=True)
        await rescue_service.add_note(number, requester, "We moved to the neighbour's roof")

        mine = await rescue_service.get(number, requester)
        public = mine.to_dict()["notes"]
        assert [n["content"] for n in public] == ["Boat en route", "We moved to the neighbour's roof"]

        full = (await rescue_service.get(number, people.responder)).to_dict(include_internal=True)
        assert len(full["notes"]) == 3

    async def test_requester_cannot_add_internal(self, rescue_service, people):
        requester = people.residents[1]
        record = await rescue_service.create(_make_input(), requester)
        with pytest.raises(AuthorizationError):
            await rescue_service.add_note(record.request_number, requester, "secret", is_internal=True)

    async def test_other_resident_cannot_add(self, rescue_service, people):
        record = await rescue_service.create(_make_input(), people.residents[1])
        with pytest.raises(AuthorizationError):
            await rescue_service.add_note(record.request_number, people.residents[0], "hello")

    async def test_blank_note(self, rescue_service, people):
        record = await rescue_service.create(_make_input(), people.residents[1])
        with pytest.raises(ValidationError):
            await rescue_service.add_note(record.request_number, people.official, "   ")


class TestReads:

    async def test_other_resident_cannot_view(self, rescue_service, people):
        record = await rescue_service.create(_make_input(), people.residents[1])
        with pytest.raises(AuthorizationError):
            await rescue_service.get(record.request_number, people.residents[0])

    async def test_queue_by_priority(self, rescue_service, people):
        low = await rescue_service.create(_make_input(priority=1), people.residents[0])
        high = await rescue_service.create(_make_input(priority=5), people.residents[1])
        mid = await rescue_service.create(_make_input(priority=3), people.residents[2])
        await rescue_service.update_status(mid.request_number, "cancelled", people.official)

        queue = await rescue_service.list_by_status(people.responder)
        assert [r.request_number for r in queue] == [high.request_number, mid.request_number, low.request_number]
        pending = await rescue_service.list_by_status(people.responder, "pending")
        assert [r.request_number for r in pending] == [high.request_number, low.request_number]

    async def test_queue_requires_handler(self, rescue_service, people):
        with pytest.raises(AuthorizationError):
            await rescue_service.list_by_status(people.residents[0])

    async def test_nearby(self, rescue_service, people):
        near_spot = destination_point(HALL, 90, 1.0)
        far_spot = destination_point(HALL, 90, 8.0)
        near = await rescue_service.create(
            _make_input(latitude=near_spot.latitude, longitude=near_spot.longitude), people.residents[0],
        )
        await rescue_service.create(
            _make_input(latitude=far_spot.latitude, longitude=far_spot.longitude), people.residents[1],
        )

        results = await rescue_service.list_within_radius(people.responder, HALL.latitude, HALL.longitude, 5.0)
        assert [r["request"].request_number for r in results] == [near.request_number]
        assert results[0]["distance_km"] == pytest.approx(1.0, abs=0.001)

    async def test_nearby_across_antimeridian(self, rescue_service, people):
        center = Coordinate(9.8, 179.95)
        spot = destination_point(center, 90, 10.0)
        across = await rescue_service.create(
            _make_input(latitude=spot.latitude, longitude=spot.longitude), people.residents[0],
        )
        results = await rescue_service.list_within_radius(people.responder, 9.8, 179.95, 20.0)
        assert [r["request"].request_number for r in results] == [across.request_number]

    @pytest.mark.parametrize("radius", [0, 60])
    async def test_nearby_radius_bounds(self, rescue_service, people, radius):
        with pytest.raises(ValidationError):
            await rescue_service.list_within_radius(people.responder, HALL.latitude, HALL.longitude, radius)

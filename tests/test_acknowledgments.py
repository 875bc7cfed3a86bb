"""
test_acknowledgments.py — Resident "I've seen it" acknowledgments.

Covers:
    • First acknowledgment recorded with optional location
    • Idempotency (one row per user per alert)
    • Drafts, deactivated and expired alerts refuse acknowledgments
    • Counting and listing
    • Simultaneous acknowledgments by one user

Run with:
    pytest tests/test_acknowledgments.py -v
"""

import asyncio
from datetime import timedelta

import pytest

from bantay.app.alerts.acknowledgments import AcknowledgmentTracker
from bantay.app.alerts.lifecycle import AlertLifecycleManager
from bantay.app.core.errors import ExpiredAlertError, InactiveAlertError, NotFoundError
from bantay.app.spatial.radius_utils import Coordinate

from conftest import HALL, make_content, utcnow


@pytest.fixture
def lifecycle(session_factory):
    return AlertLifecycleManager(session_factory)


@pytest.fixture
def tracker(session_factory):
    return AcknowledgmentTracker(session_factory)


async def _published(lifecycle, actor, hours: float = 2.0) -> str:
    record = await lifecycle.create(make_content(hours=hours), actor)
    await lifecycle.publish(record.code, actor)
    return record.code


class TestAcknowledge:

    async def test_first_acknowledgment(self, lifecycle, tracker, people):
        code = await _published(lifecycle, people.official)
        ack, created = await tracker.acknowledge(code, people.residents[0].user_id, HALL)
        assert created is True
        assert ack.to_dict()["location"] == {"latitude": HALL.latitude, "longitude": HALL.longitude}

    async def test_without_location(self, lifecycle, tracker, people):
        code = await _published(lifecycle, people.official)
        ack, _ = await tracker.acknowledge(code, people.residents[0].user_id)
        assert ack.to_dict()["location"] is None

    async def test_repeat_returns_original(self, lifecycle, tracker, people):
        code = await _published(lifecycle, people.official)
        user = people.residents[0].user_id
        first, _ = await tracker.acknowledge(code, user, HALL)
        second, created = await tracker.acknowledge(code, user, Coordinate(9.9, 123.9))

        assert created is False
        assert second.latitude == HALL.latitude
        assert await tracker.count(code) == 1

    async def test_draft_refused(self, lifecycle, tracker, people):
        record = await lifecycle.create(make_content(), people.official)
        with pytest.raises(InactiveAlertError):
            await tracker.acknowledge(record.code, people.residents[0].user_id)

    async def test_deactivated_refused(self, lifecycle, tracker, people):
        code = await _published(lifecycle, people.official)
        await lifecycle.deactivate(code, people.official)
        with pytest.raises(InactiveAlertError) as exc:
            await tracker.acknowledge(code, people.residents[0].user_id)
        assert exc.value.error_code == "INACTIVE_ALERT"
        assert await tracker.count(code) == 0

    async def test_expired_refused(self, lifecycle, session_factory, people):
        code = await _published(lifecycle, people.official, hours=1)
        later = AcknowledgmentTracker(session_factory, clock=lambda: utcnow() + timedelta(hours=2))
        with pytest.raises(ExpiredAlertError) as exc:
            await later.acknowledge(code, people.residents[0].user_id)
        assert exc.value.error_code == "EXPIRED_ALERT"

    async def test_unknown_alert(self, tracker, people):
        with pytest.raises(NotFoundError):
            await tracker.acknowledge("ALT-19990101-001", people.residents[0].user_id)


class TestListing:

    async def test_count_and_list(self, lifecycle, tracker, people):
        code = await _published(lifecycle, people.official)
        for resident in people.residents:
            await tracker.acknowledge(code, resident.user_id)

        assert await tracker.count(code) == 3
        acks = await tracker.list_for_alert(code)
        assert [a.user_id for a in acks] == [r.user_id for r in people.residents]

    async def test_acknowledgments_on_alert_detail(self, lifecycle, tracker, people):
        code = await _published(lifecycle, people.official)
        await tracker.acknowledge(code, people.residents[1].user_id)
        detail = (await lifecycle.get(code)).to_dict()
        assert detail["statistics"]["acknowledgments"] == 1
        assert detail["acknowledgments"][0]["user_id"] == people.residents[1].user_id


class _RivalAcknowledgesFirst(AcknowledgmentTracker):
    """Lets a rival acknowledgment commit after our duplicate check came back empty."""

    def __init__(self, session_factory, rival):
        super().__init__(session_factory)
        self._rival = rival

    async def _existing(self, session, alert_id, user_id):
        if self._rival is not None:
            rival, self._rival = self._rival, None
            await rival()
            return None
        return await super()._existing(session, alert_id, user_id)


class TestConcurrentAcknowledgments:

    async def test_same_user_many_times(self, lifecycle, tracker, people):
        code = await _published(lifecycle, people.official)
        user = people.residents[0].user_id

        results = await asyncio.gather(*(tracker.acknowledge(code, user, HALL) for _ in range(5)))

        assert sorted(created for _, created in results) == [False, False, False, False, True]
        assert len({ack.id for ack, _ in results}) == 1
        assert await tracker.count(code) == 1

    async def test_insert_race_returns_winner(self, lifecycle, tracker, session_factory, people):
        code = await _published(lifecycle, people.official)
        user = people.residents[0].user_id
        racing = _RivalAcknowledgesFirst(session_factory, lambda: tracker.acknowledge(code, user, HALL))

        ack, created = await racing.acknowledge(code, user, Coordinate(9.9, 123.9))

        assert created is False
        assert ack.latitude == HALL.latitude
        assert await tracker.count(code) == 1

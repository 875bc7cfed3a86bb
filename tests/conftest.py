"""Shared fixtures: throwaway SQLite database, seeded directory, fake transports, API client."""

import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Force test config BEFORE any app imports
os.environ["CACHE_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"
os.environ["SMS_PROVIDER"] = "simulation"
os.environ["EMAIL_PROVIDER"] = "simulation"
os.environ["DISPATCH_MAX_RETRIES"] = "0"

from bantay.app.alerts.alert_service import AlertService
from bantay.app.alerts.models import (
    AlertChannel,
    AlertContent,
    AlertPayload,
    DeliveryAttempt,
    DeliveryStatus,
    Recipient,
    TargetArea,
)
from bantay.app.core import database
from bantay.app.core.auth import Actor
from bantay.app.rescue.service import RescueRequestService
from bantay.app.spatial.radius_utils import Coordinate
from bantay.app.users import directory


# Barangay hall, Malagutay
HALL = Coordinate(9.8012, 123.7905)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_content(
    title: str = "Flood Warning: Malagutay River",
    severity: str = "warning",
    alert_type: str = "flood",
    hours: float = 2.0,
    target: Optional[TargetArea] = None,
    channels: Optional[List[str]] = None,
) -> AlertContent:
    """Draft content expiring `hours` from now."""
    return AlertContent(
        title=title,
        message="River level rising. Residents near the riverbank prepare to evacuate.",
        alert_type=alert_type,
        severity=severity,
        expires_at=utcnow() + timedelta(hours=hours),
        target_area=target or TargetArea(),
        instructions={"immediate": ["Move to higher ground"]},
        channels=channels if channels is not None else [c.value for c in AlertChannel],
    )


# ═══════════════════════════════════════════════════════════════════════════
# Fake transports
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class RecordingTransport:
    """
    Stands in for a delivery channel.

    Succeeds for everyone except user ids in ``fail_for`` (returned as a
    failed attempt) and ``raise_for`` (raises, as a broken client would).
    """
    channel: AlertChannel
    fail_for: Set[str] = field(default_factory=set)
    raise_for: Set[str] = field(default_factory=set)
    calls: List[str] = field(default_factory=list)

    async def __call__(self, payload: AlertPayload, recipient: Recipient, address: str) -> DeliveryAttempt:
        self.calls.append(recipient.user_id)
        if recipient.user_id in self.raise_for:
            raise ConnectionError("gateway unreachable")
        failed = recipient.user_id in self.fail_for
        return DeliveryAttempt(
            channel=self.channel,
            recipient_id=recipient.user_id,
            address=address,
            status=DeliveryStatus.FAILED if failed else DeliveryStatus.SENT,
            error_message="rejected by provider" if failed else None,
            provider_response={} if failed else {"message_id": f"{self.channel.value}-{recipient.user_id}"},
            completed_at=utcnow(),
        )


@pytest.fixture
def transports() -> Dict[AlertChannel, RecordingTransport]:
    return {
        AlertChannel.SMS: RecordingTransport(AlertChannel.SMS),
        AlertChannel.EMAIL: RecordingTransport(AlertChannel.EMAIL),
        AlertChannel.PUSH: RecordingTransport(AlertChannel.PUSH),
    }


# ═══════════════════════════════════════════════════════════════════════════
# Database & directory
# ═══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh SQLite file per test, bound as the module-level engine."""
    database.configure_database(f"sqlite+aiosqlite:///{tmp_path / 'bantay.db'}", echo=False)
    await database.init_db()
    yield database.get_session_factory()
    await database.close_db()


@dataclass
class Directory:
    admin: Actor
    official: Actor
    responder: Actor
    residents: List[Actor]
    inactive: Actor


async def _register(factory, **kwargs) -> Actor:
    user = await directory.register_user(factory, **kwargs)
    return Actor(user_id=user.id, role=user.role, name=user.name)


@pytest_asyncio.fixture
async def people(session_factory) -> Directory:
    """
    admin, official, responder, three residents and one inactive resident.

    resident 0 — Sitio Centro, at the hall, phone + email
    resident 1 — Sitio Baybay, ~3 km north, phone only
    resident 2 — Sitio Centro, at the hall, email only, SMS opted out
    """
    f = session_factory
    admin = await _register(f, name="Admin", role="admin", email="admin@example.com")
    official = await _register(f, name="Kapitan Reyes", role="official", phone_number="09170000001")
    responder = await _register(f, name="Rescuer Cruz", role="responder", phone_number="09170000002")
    r0 = await _register(
        f, name="Juan Dela Cruz", phone_number="09171234567", email="juan@example.com",
        area="Sitio Centro", latitude=HALL.latitude, longitude=HALL.longitude,
    )
    r1 = await _register(
        f, name="Maria Santos", phone_number="09181234567",
        area="Sitio Baybay", latitude=HALL.latitude + 0.027, longitude=HALL.longitude,
    )
    r2 = await _register(
        f, name="Pedro Garcia", email="pedro@example.com", notify_sms=False,
        area="Sitio Centro", latitude=HALL.latitude, longitude=HALL.longitude,
    )
    inactive = await _register(
        f, name="Moved Away", phone_number="09191234567", area="Sitio Centro",
        latitude=HALL.latitude, longitude=HALL.longitude, is_active=False,
    )
    return Directory(admin, official, responder, [r0, r1, r2], inactive)


# ═══════════════════════════════════════════════════════════════════════════
# Services & HTTP client
# ═══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def alert_service(session_factory, transports):
    service = AlertService(session_factory, transports=transports)
    yield service
    await service.shutdown()


@pytest_asyncio.fixture
async def rescue_service(session_factory):
    return RescueRequestService(session_factory)


@pytest_asyncio.fixture
async def client(session_factory, alert_service, rescue_service):
    from bantay.app.main import create_app

    app = create_app(
        session_factory=session_factory,
        alert_service=alert_service,
        rescue_service=rescue_service,
    )
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def as_user(actor: Actor) -> Dict[str, str]:
    return {"X-User-Id": actor.user_id}

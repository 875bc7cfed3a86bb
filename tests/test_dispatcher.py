"""
test_dispatcher.py — Background multi-channel dispatch.

Covers:
    • Publish returns before delivery; drain() waits for it
    • Per-recipient delivery rows and aggregate counters
    • Contact gaps / opt-outs skipped, never failed
    • One recipient failing (or raising) never blocks the others
    • Channel selection and web feed display
    • Retry with injectable sleep and exponential / linear backoff
    • End-to-end flood scenario with acknowledgments and statistics

Run with:
    pytest tests/test_dispatcher.py -v
"""

from dataclasses import dataclass, field
from typing import List

import pytest

from bantay.app.alerts.dispatcher import AlertDispatcher, RetryConfig, compute_backoff
from bantay.app.alerts.models import (
    AlertChannel,
    AlertPayload,
    DeliveryAttempt,
    DeliveryStatus,
    Recipient,
    TargetArea,
)
from bantay.app.core.errors import InactiveAlertError

from conftest import make_content, utcnow


SITIOS = TargetArea(type="specific", areas=["Sitio Centro", "Sitio Baybay"])


async def _publish_and_drain(service, actor, **kwargs):
    record = await service.create(make_content(**kwargs), actor)
    result = await service.publish(record.code, actor)
    await service.dispatcher.drain()
    return result


# ═══════════════════════════════════════════════════════════════════════════
# Backoff
# ═══════════════════════════════════════════════════════════════════════════

class TestBackoff:

    def test_exponential(self):
        config = RetryConfig(max_retries=3, backoff_base_seconds=2.0)
        assert [compute_backoff(config, n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]

    def test_linear(self):
        config = RetryConfig(max_retries=3, backoff_base_seconds=1.5, backoff_type="linear")
        assert [compute_backoff(config, n) for n in (1, 2, 3)] == [1.5, 3.0, 4.5]

    def test_default_is_single_attempt(self):
        assert RetryConfig.from_settings().max_retries == 0


# ═══════════════════════════════════════════════════════════════════════════
# Dispatch through the service
# ═══════════════════════════════════════════════════════════════════════════

class TestDispatch:

    async def test_publish_does_not_wait_for_delivery(self, alert_service, people):
        record = await alert_service.create(make_content(), people.official)
        result = await alert_service.publish(record.code, people.official)
        body = result.to_dict()
        assert body["dispatch"] == "submitted"
        assert body["recipient_count"] == 6
        await alert_service.dispatcher.drain()
        assert alert_service.dispatcher.in_flight == 0

    async def test_counters_and_rows(self, alert_service, people, transports):
        result = await _publish_and_drain(alert_service, people.official)
        code = result.alert.code

        stats = await alert_service.statistics(code)
        assert stats["total_recipients"] == 6
        # phones: official, responder, resident 0, resident 1
        assert stats["sms_sent"] == 4
        # emails: admin, resident 0, resident 2
        assert stats["emails_sent"] == 3
        assert stats["push_notifications_sent"] == 6
        assert stats["web_displayed"] is True
        assert stats["dispatch_completed"] is True
        assert stats["channels"]["sms"]["sent"] == 4
        assert stats["channels"]["sms"]["pending"] == 0

        full = (await alert_service.get(code)).to_dict()
        assert len(full["deliveries"]["sms"]) == 4
        assert all(d["status"] == "sent" and d["attempts"] == 1 for d in full["deliveries"]["email"])
        assert len(transports[AlertChannel.PUSH].calls) == 6

    async def test_opted_out_user_gets_no_sms(self, alert_service, people, transports):
        await _publish_and_drain(alert_service, people.official, target=SITIOS)
        assert people.residents[2].user_id not in transports[AlertChannel.SMS].calls
        assert people.residents[2].user_id in transports[AlertChannel.EMAIL].calls

    async def test_failure_is_isolated(self, alert_service, people, transports):
        middle = people.residents[1].user_id
        transports[AlertChannel.PUSH].fail_for.add(middle)

        result = await _publish_and_drain(alert_service, people.official, target=SITIOS)
        stats = await alert_service.statistics(result.alert.code)
        assert stats["channels"]["push"] == {"pending": 0, "sent": 2, "delivered": 0, "failed": 1}
        assert stats["push_notifications_sent"] == 2
        assert transports[AlertChannel.PUSH].calls == [r.user_id for r in people.residents]

        rows = (await alert_service.get(result.alert.code)).to_dict()["deliveries"]["push"]
        failed = [d for d in rows if d["status"] == "failed"]
        assert [d["user_id"] for d in failed] == [middle]
        assert failed[0]["error"] == "rejected by provider"
        assert failed[0]["provider_response"] is None
        sent = next(d for d in rows if d["user_id"] == people.residents[0].user_id)
        assert sent["provider_response"] == {"message_id": f"push-{people.residents[0].user_id}"}

    async def test_raising_transport_is_isolated(self, alert_service, people, transports):
        middle = people.residents[1].user_id
        transports[AlertChannel.SMS].raise_for.add(middle)

        result = await _publish_and_drain(alert_service, people.official, target=SITIOS)
        stats = await alert_service.statistics(result.alert.code)
        assert stats["channels"]["sms"]["sent"] == 1
        assert stats["channels"]["sms"]["failed"] == 1
        # the other channels still ran
        assert stats["emails_sent"] == 2
        assert stats["dispatch_completed"] is True

    async def test_only_selected_channels(self, alert_service, people, transports):
        result = await _publish_and_drain(alert_service, people.official, channels=["sms"])
        stats = await alert_service.statistics(result.alert.code)
        assert stats["sms_sent"] == 4
        assert stats["emails_sent"] == 0
        assert stats["web_displayed"] is False
        assert transports[AlertChannel.EMAIL].calls == []

    async def test_no_recipients(self, alert_service, people):
        target = TargetArea(type="specific", areas=["Sitio Wala"])
        result = await _publish_and_drain(alert_service, people.official, target=target)
        stats = await alert_service.statistics(result.alert.code)
        assert stats["total_recipients"] == 0
        assert stats["acknowledgment_rate"] == 0.0
        assert stats["dispatch_completed"] is True


# ═══════════════════════════════════════════════════════════════════════════
# Retry
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class FlakyTransport:
    failures: int
    calls: int = 0

    async def __call__(self, payload, recipient, address) -> DeliveryAttempt:
        self.calls += 1
        status = DeliveryStatus.FAILED if self.calls <= self.failures else DeliveryStatus.SENT
        return DeliveryAttempt(
            channel=AlertChannel.SMS,
            recipient_id=recipient.user_id,
            address=address,
            status=status,
            error_message="timeout" if status == DeliveryStatus.FAILED else None,
            completed_at=utcnow(),
        )


@dataclass
class SleepRecorder:
    delays: List[float] = field(default_factory=list)

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _payload() -> AlertPayload:
    content = make_content().validate()
    return AlertPayload(
        alert_code="ALT-TEST-001",
        title=content.title,
        message=content.message,
        alert_type=content.alert_type,
        severity=content.severity,
        expires_at=content.expires_at,
    )


class TestRetry:

    async def test_retries_until_success(self, session_factory):
        flaky = FlakyTransport(failures=2)
        sleep = SleepRecorder()
        dispatcher = AlertDispatcher(
            session_factory,
            transports={AlertChannel.SMS: flaky},
            retry=RetryConfig(max_retries=3, backoff_base_seconds=1.0),
            sleep=sleep,
        )
        recipient = Recipient(user_id="USR-1", phone_number="09171234567")
        attempt = await dispatcher._deliver(AlertChannel.SMS, _payload(), recipient, "09171234567")

        assert attempt.succeeded
        assert attempt.retry_count == 2
        assert flaky.calls == 3
        assert sleep.delays == [1.0, 2.0]

    async def test_gives_up_after_max_retries(self, session_factory):
        flaky = FlakyTransport(failures=10)
        sleep = SleepRecorder()
        dispatcher = AlertDispatcher(
            session_factory,
            transports={AlertChannel.SMS: flaky},
            retry=RetryConfig(max_retries=2, backoff_base_seconds=1.0),
            sleep=sleep,
        )
        recipient = Recipient(user_id="USR-1", phone_number="09171234567")
        attempt = await dispatcher._deliver(AlertChannel.SMS, _payload(), recipient, "09171234567")

        assert attempt.status == DeliveryStatus.FAILED
        assert flaky.calls == 3
        assert len(sleep.delays) == 2

    async def test_single_attempt_by_default(self, session_factory):
        flaky = FlakyTransport(failures=1)
        sleep = SleepRecorder()
        dispatcher = AlertDispatcher(session_factory, transports={AlertChannel.SMS: flaky}, sleep=sleep)
        recipient = Recipient(user_id="USR-1", phone_number="09171234567")
        attempt = await dispatcher._deliver(AlertChannel.SMS, _payload(), recipient, "09171234567")

        assert not attempt.succeeded
        assert flaky.calls == 1
        assert sleep.delays == []


# ═══════════════════════════════════════════════════════════════════════════
# End-to-end
# ═══════════════════════════════════════════════════════════════════════════

class TestFloodScenario:

    async def test_river_flood_alert(self, alert_service, people):
        """Official warns two sitios, residents acknowledge, alert is lifted."""
        official = people.official
        record = await alert_service.create(
            make_content(severity="critical", target=SITIOS), official,
        )
        result = await alert_service.publish(record.code, official)
        assert result.to_dict()["recipient_count"] == 3
        await alert_service.dispatcher.drain()

        ack, created = await alert_service.acknowledge(record.code, people.residents[0])
        assert created
        again, created_again = await alert_service.acknowledge(record.code, people.residents[0])
        assert not created_again
        assert again.acknowledged_at == ack.acknowledged_at

        stats = await alert_service.statistics(record.code)
        assert stats["acknowledgments"] == 1
        assert stats["acknowledgment_rate"] == pytest.approx(0.3333)

        await alert_service.deactivate(record.code, official, "Water level back to normal")
        with pytest.raises(InactiveAlertError):
            await alert_service.acknowledge(record.code, people.residents[1])

        summary = await alert_service.summary()
        assert summary["total_alerts"] == 1
        assert summary["by_severity"] == {"critical": 1}
        assert summary["total_acknowledgments"] == 1
        assert summary["total_recipients"] == 3

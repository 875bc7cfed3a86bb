"""
test_api.py — HTTP surface of the alert, rescue and directory routers.

Covers:
    • X-User-Id resolution (missing, unknown, deactivated)
    • Error envelope and status codes (401 / 403 / 404 / 409 / 422)
    • Alert create → patch → publish → acknowledge → deactivate
    • Live listings and statistics endpoints
    • Rescue request endpoints, internal note visibility
    • User registration rules
    • Root and liveness endpoints

Run with:
    pytest tests/test_api.py -v
"""

from datetime import timedelta

from bantay.app.core.config import settings

from conftest import HALL, as_user, utcnow


def _alert_body(**overrides):
    body = {
        "title": "Flood Warning: Malagutay River",
        "message": "River level rising. Residents near the riverbank prepare to evacuate.",
        "alert_type": "flood",
        "severity": "warning",
        "expires_at": (utcnow() + timedelta(hours=2)).isoformat(),
        "target_area": {"type": "specific", "areas": ["Sitio Centro"]},
        "instructions": {
            "immediate": ["Move to higher ground"],
            "evacuation": {"required": True, "centers": [{"name": "Malagutay Elementary School"}]},
        },
    }
    body.update(overrides)
    return body


def _rescue_body(**overrides):
    body = {
        "contact_name": "Maria Santos",
        "contact_phone": "09181234567",
        "location": {"latitude": HALL.latitude, "longitude": HALL.longitude},
        "emergency_type": "flood",
        "severity": "high",
        "description": "Water at chest level inside the house",
        "priority": 4,
        "persons_affected": {"adults": 2, "seniors": 1},
    }
    body.update(overrides)
    return body


async def _create_alert(client, actor, **overrides):
    resp = await client.post("/api/v1/alerts", json=_alert_body(**overrides), headers=as_user(actor))
    assert resp.status_code == 201, resp.text
    return resp.json()["alert_id"]


# ═══════════════════════════════════════════════════════════════════════════
# Acting user
# ═══════════════════════════════════════════════════════════════════════════

class TestActor:

    async def test_missing_header(self, client, people):
        resp = await client.post("/api/v1/alerts", json=_alert_body())
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "AUTHENTICATION_REQUIRED"

    async def test_unknown_user(self, client, people):
        resp = await client.post("/api/v1/alerts", json=_alert_body(), headers={"X-User-Id": "USR-NOPE"})
        assert resp.status_code == 401

    async def test_deactivated_user(self, client, people):
        resp = await client.post("/api/v1/alerts", json=_alert_body(), headers=as_user(people.inactive))
        assert resp.status_code == 401

    async def test_resident_forbidden(self, client, people):
        resp = await client.post("/api/v1/alerts", json=_alert_body(), headers=as_user(people.residents[0]))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "FORBIDDEN"


# ═══════════════════════════════════════════════════════════════════════════
# Alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertEndpoints:

    async def test_create_returns_draft(self, client, people):
        resp = await client.post("/api/v1/alerts", json=_alert_body(), headers=as_user(people.official))
        assert resp.status_code == 201
        body = resp.json()
        assert body["alert_id"].startswith("ALT-")
        assert body["is_published"] is False
        assert body["channels"] == ["sms", "email", "push", "web"]
        assert body["target_area"]["areas"] == ["Sitio Centro"]
        assert body["instructions"]["evacuation"]["required"] is True

    async def test_validation_envelope(self, client, people):
        past = (utcnow() - timedelta(hours=1)).isoformat()
        resp = await client.post("/api/v1/alerts", json=_alert_body(expires_at=past), headers=as_user(people.official))
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["field"] == "expires_at"

    async def test_radius_out_of_range(self, client, people):
        target = {"type": "radius", "center": {"latitude": HALL.latitude, "longitude": HALL.longitude}, "radius_km": 75}
        resp = await client.post("/api/v1/alerts", json=_alert_body(target_area=target), headers=as_user(people.official))
        assert resp.status_code == 422

    async def test_not_found(self, client, people):
        resp = await client.get("/api/v1/alerts/ALT-19990101-001")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    async def test_patch_draft(self, client, people):
        code = await _create_alert(client, people.official)
        resp = await client.patch(
            f"/api/v1/alerts/{code}", json={"severity": "critical"}, headers=as_user(people.official),
        )
        assert resp.status_code == 200
        assert resp.json()["severity"] == "critical"

        detail = (await client.get(f"/api/v1/alerts/{code}")).json()
        assert detail["update_history"][-1]["changes"] == {"severity": {"old": "warning", "new": "critical"}}

    async def test_publish_flow(self, client, people, alert_service):
        code = await _create_alert(client, people.official)

        resp = await client.post(f"/api/v1/alerts/{code}/publish", headers=as_user(people.official))
        assert resp.status_code == 202
        assert resp.json()["recipient_count"] == 2
        await alert_service.dispatcher.drain()

        again = await client.post(f"/api/v1/alerts/{code}/publish", headers=as_user(people.admin))
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "ALREADY_PUBLISHED"

        patch = await client.patch(f"/api/v1/alerts/{code}", json={"title": "x"}, headers=as_user(people.official))
        assert patch.status_code == 409

        detail = (await client.get(f"/api/v1/alerts/{code}")).json()
        assert detail["statistics"]["total_recipients"] == 2
        assert [h["type"] for h in detail["update_history"]] == ["created", "published"]
        assert set(detail["deliveries"]) >= {"sms", "email", "push"}

    async def test_acknowledge(self, client, people):
        code = await _create_alert(client, people.official)
        await client.post(f"/api/v1/alerts/{code}/publish", headers=as_user(people.official))
        resident = as_user(people.residents[0])

        first = await client.post(
            f"/api/v1/alerts/{code}/acknowledge",
            json={"location": {"latitude": HALL.latitude, "longitude": HALL.longitude}},
            headers=resident,
        )
        assert first.status_code == 201
        assert first.json()["created"] is True

        second = await client.post(f"/api/v1/alerts/{code}/acknowledge", headers=resident)
        assert second.status_code == 200
        assert second.json()["acknowledgment"] == first.json()["acknowledgment"]

    async def test_acknowledge_draft_conflict(self, client, people):
        code = await _create_alert(client, people.official)
        resp = await client.post(f"/api/v1/alerts/{code}/acknowledge", headers=as_user(people.residents[0]))
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "INACTIVE_ALERT"

    async def test_extend_and_deactivate(self, client, people):
        code = await _create_alert(client, people.official)
        await client.post(f"/api/v1/alerts/{code}/publish", headers=as_user(people.official))

        new_expiry = (utcnow() + timedelta(hours=8)).isoformat()
        resp = await client.post(
            f"/api/v1/alerts/{code}/extend",
            json={"expires_at": new_expiry, "reason": "Heavy rain continues"},
            headers=as_user(people.official),
        )
        assert resp.status_code == 200
        assert resp.json()["time_remaining"] > 7 * 3600

        resp = await client.post(f"/api/v1/alerts/{code}/deactivate", headers=as_user(people.official))
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False

        resp = await client.post(
            f"/api/v1/alerts/{code}/deactivate", json={"reason": "again"}, headers=as_user(people.official),
        )
        assert resp.status_code == 409

    async def test_active_listing(self, client, people):
        code = await _create_alert(client, people.official, severity="critical")
        await _create_alert(client, people.official)  # stays a draft
        await client.post(f"/api/v1/alerts/{code}/publish", headers=as_user(people.official))

        resp = await client.get("/api/v1/alerts/active", params={"area": "Sitio Centro"})
        assert resp.status_code == 200
        assert [a["alert_id"] for a in resp.json()["alerts"]] == [code]

        other = await client.get("/api/v1/alerts/active", params={"area": "Sitio Baybay"})
        assert other.json()["count"] == 0

    async def test_nearby_listing(self, client, people):
        code = await _create_alert(
            client, people.official,
            target_area={"type": "radius", "center": {"latitude": HALL.latitude, "longitude": HALL.longitude}, "radius_km": 1.0},
        )
        await client.post(f"/api/v1/alerts/{code}/publish", headers=as_user(people.official))

        resp = await client.get(
            "/api/v1/alerts/nearby", params={"lat": HALL.latitude, "lon": HALL.longitude, "radius_km": 2.0},
        )
        assert resp.status_code == 200
        assert [a["alert_id"] for a in resp.json()["alerts"]] == [code]

    async def test_statistics(self, client, people, alert_service):
        code = await _create_alert(client, people.official)
        await client.post(f"/api/v1/alerts/{code}/publish", headers=as_user(people.official))
        await alert_service.dispatcher.drain()
        await client.post(f"/api/v1/alerts/{code}/acknowledge", headers=as_user(people.residents[2]))

        stats = (await client.get(f"/api/v1/alerts/{code}/statistics")).json()
        assert stats["acknowledgments"] == 1
        assert stats["acknowledgment_rate"] == 0.5

        summary = (await client.get("/api/v1/alerts/statistics/summary")).json()
        assert summary["total_alerts"] == 1
        assert summary["by_type"] == {"flood": 1}

    async def test_list_filters(self, client, people):
        code = await _create_alert(client, people.official, alert_type="storm")
        await _create_alert(client, people.official)
        resp = await client.get("/api/v1/alerts", params={"alert_type": "storm"})
        assert [a["alert_id"] for a in resp.json()["alerts"]] == [code]


# ═══════════════════════════════════════════════════════════════════════════
# Rescue requests
# ═══════════════════════════════════════════════════════════════════════════

class TestRescueEndpoints:

    async def test_submit_and_track(self, client, people):
        resident = as_user(people.residents[1])
        resp = await client.post("/api/v1/rescue-requests", json=_rescue_body(), headers=resident)
        assert resp.status_code == 201
        number = resp.json()["request_number"]
        assert resp.json()["persons_affected"]["total"] == 3

        official = as_user(people.official)
        resp = await client.post(
            f"/api/v1/rescue-requests/{number}/assign",
            json={"responder_id": people.responder.user_id, "team": "Team Alpha"},
            headers=official,
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "acknowledged"

        await client.post(
            f"/api/v1/rescue-requests/{number}/notes",
            json={"content": "Check for hypothermia", "is_internal": True},
            headers=official,
        )
        mine = (await client.get(f"/api/v1/rescue-requests/{number}", headers=resident)).json()
        assert mine["notes"] == []
        theirs = (await client.get(f"/api/v1/rescue-requests/{number}", headers=official)).json()
        assert len(theirs["notes"]) == 1

    async def test_invalid_transition(self, client, people):
        resp = await client.post(
            "/api/v1/rescue-requests", json=_rescue_body(), headers=as_user(people.residents[1]),
        )
        number = resp.json()["request_number"]
        resp = await client.post(
            f"/api/v1/rescue-requests/{number}/status",
            json={"status": "completed"},
            headers=as_user(people.responder),
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "INVALID_TRANSITION"

    async def test_bad_phone(self, client, people):
        resp = await client.post(
            "/api/v1/rescue-requests", json=_rescue_body(contact_phone="555"), headers=as_user(people.residents[1]),
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["details"]["field"] == "contact_phone"

    async def test_queue_and_nearby(self, client, people):
        await client.post("/api/v1/rescue-requests", json=_rescue_body(), headers=as_user(people.residents[1]))

        queue = await client.get("/api/v1/rescue-requests", params={"status": "pending"}, headers=as_user(people.responder))
        assert queue.json()["count"] == 1

        nearby = await client.get(
            "/api/v1/rescue-requests/nearby",
            params={"lat": HALL.latitude, "lon": HALL.longitude, "radius_km": 1},
            headers=as_user(people.responder),
        )
        body = nearby.json()
        assert body["count"] == 1
        assert body["requests"][0]["distance"] == "0 m"

        forbidden = await client.get("/api/v1/rescue-requests", headers=as_user(people.residents[0]))
        assert forbidden.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════
# Directory
# ═══════════════════════════════════════════════════════════════════════════

class TestUserEndpoints:

    async def test_resident_self_registration(self, client, people):
        resp = await client.post(
            "/api/v1/users",
            json={"name": "Ana Lim", "phone_number": "09201234567", "area": "Sitio Proper"},
        )
        assert resp.status_code == 201
        assert resp.json()["role"] == "resident"

    async def test_official_needs_admin(self, client, people):
        body = {"name": "New Kagawad", "role": "official"}
        anon = await client.post("/api/v1/users", json=body)
        assert anon.status_code == 401
        by_resident = await client.post("/api/v1/users", json=body, headers=as_user(people.residents[0]))
        assert by_resident.status_code == 403
        by_admin = await client.post("/api/v1/users", json=body, headers=as_user(people.admin))
        assert by_admin.status_code == 201

    async def test_invalid_phone(self, client, people):
        resp = await client.post("/api/v1/users", json={"name": "Bad Phone", "phone_number": "12"})
        assert resp.status_code == 422

    async def test_view_rules(self, client, people):
        me = people.residents[0]
        own = await client.get(f"/api/v1/users/{me.user_id}", headers=as_user(me))
        assert own.status_code == 200
        other = await client.get(f"/api/v1/users/{people.admin.user_id}", headers=as_user(me))
        assert other.status_code == 403
        listing = await client.get("/api/v1/users", params={"role": "resident"}, headers=as_user(people.official))
        # three active residents plus the inactive one
        assert listing.json()["count"] == 4


class TestRoot:

    async def test_root(self, client):
        body = (await client.get("/")).json()
        assert "alert-lifecycle" in body["modules"]

    async def test_liveness(self, client):
        assert (await client.get("/health/live")).json() == {"status": "alive"}

    async def test_readiness(self, client, session_factory):
        response = await client.get("/health/ready")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        names = [c["name"] for c in body["components"]]
        assert names == ["database", "redis", "sms_gateway", "email", "dispatch"]

    async def test_degraded_without_sms_key(self, client, monkeypatch):
        monkeypatch.setattr(settings, "SMS_PROVIDER", "semaphore")
        monkeypatch.setattr(settings, "SEMAPHORE_API_KEY", None)
        body = (await client.get("/health")).json()
        assert body["status"] == "degraded"
        sms = next(c for c in body["components"] if c["name"] == "sms_gateway")
        assert "SEMAPHORE_API_KEY" in sms["message"]

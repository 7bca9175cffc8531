#!/usr/bin/env python3
"""
HTTP surface tests: routing, error mapping and the API key gate.
"""

from unittest.mock import patch

import httpx
import pytest

from app.api.deps import get_clock
from app.core.config import settings
from app.db.session import get_session
from app.main import app
from app.services import booking
from conftest import ORG_ID

BASE = f"/organizations/{ORG_ID}"

PAYLOAD = {
    "client_info": {"name": "Jane Doe", "phone": "+1-587-555-0123"},
    "service_info": {"name": "Cut", "duration": 30},
    "starts_at": "2025-09-02T10:00:00Z",
    "duration": 30,
}


@pytest.fixture
async def client(session_factory, clock):
    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_clock] = lambda: clock
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def salon(make_org, make_staff, generate):
    await make_org()
    staff = await make_staff()
    await generate("staff", staff.id)
    return staff.id


class TestAppointmentsApi:

    async def test_create_and_fetch(self, client, salon):
        resp = await client.post(f"{BASE}/appointments", json=PAYLOAD)
        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "confirmed"
        assert body["staff_id"] == salon
        assert body["org_id"] == ORG_ID
        assert "X-Correlation-ID" in resp.headers

        fetched = await client.get(f"{BASE}/appointments/{body['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["starts_at"] == PAYLOAD["starts_at"]

    async def test_slot_conflict_maps_to_409(self, client, salon):
        await client.post(f"{BASE}/appointments", json=PAYLOAD)
        resp = await client.post(f"{BASE}/appointments", json={**PAYLOAD, "preferred_staff_id": salon})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "staff_unavailable"

    async def test_missing_configuration_maps_to_404(self, client):
        resp = await client.post("/organizations/unknown/appointments", json=PAYLOAD)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "config_not_found"

    async def test_past_instant_maps_to_422(self, client, salon):
        resp = await client.post(f"{BASE}/appointments", json={**PAYLOAD, "starts_at": "2025-08-01T10:00:00Z"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "past_date"

    async def test_malformed_body_rejected(self, client, salon):
        resp = await client.post(f"{BASE}/appointments", json={"starts_at": "2025-09-02T10:00:00Z"})
        assert resp.status_code == 422

    async def test_unknown_appointment(self, client):
        resp = await client.get(f"{BASE}/appointments/nope")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    async def test_cancel_then_stats(self, client, salon):
        created = (await client.post(f"{BASE}/appointments", json=PAYLOAD)).json()
        resp = await client.post(f"{BASE}/appointments/{created['id']}/cancel", json={"cancelled_by": "client"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"

        stats = await client.get(f"{BASE}/appointments/stats", params={"start": "2025-09-02", "end": "2025-09-02"})
        assert stats.json()["by_status"]["cancelled"] == 1

    async def test_reschedule(self, client, salon):
        created = (await client.post(f"{BASE}/appointments", json=PAYLOAD)).json()
        resp = await client.post(
            f"{BASE}/appointments/{created['id']}/reschedule",
            json={"new_starts_at": "2025-09-02T15:00:00Z", "rescheduled_by": "client"},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "rescheduled"
        assert len(resp.json()["rescheduling_history"]) == 1

    async def test_unexpected_error_is_opaque(self, client):
        with patch.object(booking, "get_appointment", side_effect=RuntimeError("boom")):
            resp = await client.get(f"{BASE}/appointments/anything")
        assert resp.status_code == 500
        error = resp.json()["error"]
        assert error["code"] == "internal_error"
        assert "boom" not in error["message"]
        assert error["details"]["ref"]


class TestAvailabilityApi:

    async def test_generate_and_search(self, client, make_staff):
        staff = await make_staff()
        resp = await client.post(
            f"{BASE}/availability/staff/{staff.id}/generate",
            json={"start_date": "2025-09-02", "end_date": "2025-09-03", "slot_duration": 30},
        )
        assert resp.status_code == 200
        assert resp.json()["created"] == ["2025-09-02", "2025-09-03"]

        search = await client.get(
            f"{BASE}/availability/search", params={"date": "2025-09-02", "duration": 30, "start_time": "10:00"}
        )
        assert search.status_code == 200
        [result] = search.json()
        assert result["entity_id"] == staff.id
        assert [s["start_time"] for s in result["slots"]] == ["10:00"]

    async def test_generate_inactive_entity(self, client, make_staff):
        staff = await make_staff(is_active=False)
        resp = await client.post(
            f"{BASE}/availability/staff/{staff.id}/generate",
            json={"start_date": "2025-09-02", "end_date": "2025-09-02"},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "inactive_entity"

    async def test_block_and_read_back(self, client, make_staff, generate):
        staff = await make_staff()
        await generate("staff", staff.id)
        resp = await client.post(
            f"{BASE}/availability/staff/{staff.id}/block",
            json={"date": "2025-09-02", "start_time": "09:00", "end_time": "09:30", "reason": "maintenance"},
        )
        assert resp.status_code == 200
        first = resp.json()["time_slots"][0]
        assert first["reason_unavailable"] == "maintenance"

        days = await client.get(
            f"{BASE}/availability/staff/{staff.id}", params={"start": "2025-09-01", "end": "2025-09-05"}
        )
        assert [d["date"] for d in days.json()] == ["2025-09-02"]

    async def test_sweep(self, client):
        resp = await client.post(f"{BASE}/reservations/sweep")
        assert resp.json() == {"released": 0}


class TestApiKeyGate:

    async def test_key_required_when_configured(self, client):
        with patch.object(settings, "API_KEY", "s3cret"):
            denied = await client.get(f"{BASE}/appointments/nope")
            allowed = await client.get(f"{BASE}/appointments/nope", headers={"X-API-Key": "s3cret"})
            health = await client.get("/healthz")
        assert denied.status_code == 401
        assert denied.json()["error"]["code"] == "unauthorized"
        assert allowed.status_code == 404
        assert health.status_code == 200

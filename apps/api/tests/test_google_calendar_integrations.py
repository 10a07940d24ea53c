from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest


def _connected(db, staff, calendar_id: str | None = "primary"):
    from app.core.encryption import encrypt_token
    from app.db.enums import ConnectionStatus
    from app.db.models import StaffCalendarConnection

    connection = StaffCalendarConnection(
        tenant_id=staff.tenant_id,
        staff_id=staff.id,
        access_token_encrypted=encrypt_token("access-1"),
        refresh_token_encrypted=encrypt_token("refresh-1"),
        token_expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        selected_calendar_id=calendar_id,
        connection_status=ConnectionStatus.CONNECTED.value,
    )
    db.add(connection)
    db.commit()
    return connection


AVAILABILITY_PARAMS = {"timeMin": "2024-01-01T00:00:00Z", "timeMax": "2024-01-08T00:00:00Z"}


@pytest.mark.asyncio
async def test_availability_returns_busy_intervals(authed_client, db, test_staff, monkeypatch):
    from app.services import google_calendar_client
    from app.services.google_calendar_client import BusyInterval

    connection = _connected(db, test_staff)
    seen: list[tuple] = []

    async def _free_busy(access_token, calendar_id, time_min, time_max, **kwargs):
        seen.append((calendar_id, time_min, time_max))
        return [BusyInterval(
            start=datetime(2024, 1, 2, 15, 0, tzinfo=timezone.utc),
            end=datetime(2024, 1, 2, 16, 0, tzinfo=timezone.utc),
        )]

    monkeypatch.setattr(google_calendar_client, "query_free_busy", _free_busy)

    response = await authed_client.get("/integrations/google-calendar/availability", params=AVAILABILITY_PARAMS)

    assert response.status_code == 200
    data = response.json()
    assert data["connected"] is True
    assert [b["start"][:16] for b in data["busy"]] == ["2024-01-02T15:00"]
    assert seen[0][0] == "primary"
    db.refresh(connection)
    assert connection.last_sync_at is not None


@pytest.mark.asyncio
async def test_availability_without_connection_is_empty(authed_client):
    response = await authed_client.get("/integrations/google-calendar/availability", params=AVAILABILITY_PARAMS)

    assert response.status_code == 200
    assert response.json()["connected"] is False
    assert response.json()["busy"] == []


@pytest.mark.asyncio
async def test_availability_without_selected_calendar(authed_client, db, test_staff):
    _connected(db, test_staff, calendar_id=None)

    response = await authed_client.get("/integrations/google-calendar/availability", params=AVAILABILITY_PARAMS)

    assert response.json()["connected"] is True
    assert response.json()["calendar_selected"] is False


@pytest.mark.asyncio
async def test_availability_revoked_auth_flags_reconnect(authed_client, db, test_staff, monkeypatch):
    from app.db.enums import ConnectionStatus
    from app.services import google_calendar_client
    from app.services.errors import ProviderApiError

    connection = _connected(db, test_staff)

    async def _free_busy(*args, **kwargs):
        raise ProviderApiError("Google freeBusy failed with HTTP 401", status_code=401)

    monkeypatch.setattr(google_calendar_client, "query_free_busy", _free_busy)

    response = await authed_client.get("/integrations/google-calendar/availability", params=AVAILABILITY_PARAMS)

    assert response.status_code == 200
    assert response.json()["needs_reconnect"] is True
    db.refresh(connection)
    assert connection.connection_status == ConnectionStatus.NEEDS_RECONNECT.value


@pytest.mark.asyncio
async def test_availability_rejects_foreign_staff_and_bad_range(authed_client):
    import uuid

    foreign = await authed_client.get(
        "/integrations/google-calendar/availability",
        params={**AVAILABILITY_PARAMS, "staffId": str(uuid.uuid4())},
    )
    backwards = await authed_client.get(
        "/integrations/google-calendar/availability",
        params={"timeMin": "2024-01-08T00:00:00Z", "timeMax": "2024-01-01T00:00:00Z"},
    )

    assert foreign.status_code == 404
    assert backwards.status_code == 422


@pytest.mark.asyncio
async def test_list_calendars_includes_selection(authed_client, db, test_staff, monkeypatch):
    from app.services import google_calendar_client
    from app.services.google_calendar_client import CalendarSummary

    _connected(db, test_staff, calendar_id="team@example.com")

    async def _list(access_token, **kwargs):
        return [
            CalendarSummary(id="me@example.com", summary="Me", primary=True),
            CalendarSummary(id="team@example.com", summary="Team"),
        ]

    monkeypatch.setattr(google_calendar_client, "list_calendars", _list)

    response = await authed_client.get("/integrations/google-calendar/calendars")

    assert response.status_code == 200
    data = response.json()
    assert [c["id"] for c in data["calendars"]] == ["me@example.com", "team@example.com"]
    assert data["selected_calendar_id"] == "team@example.com"


@pytest.mark.asyncio
async def test_list_calendars_provider_error_is_502(authed_client, db, test_staff, monkeypatch):
    from app.services import google_calendar_client
    from app.services.errors import ProviderApiError

    _connected(db, test_staff)

    async def _list(*args, **kwargs):
        raise ProviderApiError("Google calendarList failed with HTTP 500", status_code=500)

    monkeypatch.setattr(google_calendar_client, "list_calendars", _list)

    response = await authed_client.get("/integrations/google-calendar/calendars")
    assert response.status_code == 502


@pytest.mark.asyncio
async def test_push_endpoint_creates_event(authed_client, db, test_staff, monkeypatch):
    from app.db.models import Appointment
    from app.services import google_calendar_client

    _connected(db, test_staff)
    appointment = Appointment(
        tenant_id=test_staff.tenant_id,
        staff_id=test_staff.id,
        start_at=datetime(2024, 1, 8, 14, 0, tzinfo=timezone.utc),
        end_at=datetime(2024, 1, 8, 14, 50, tzinfo=timezone.utc),
        title="Intake session",
    )
    db.add(appointment)
    db.commit()

    async def _insert(access_token, calendar_id, body, **kwargs):
        return {"id": "evt-9", **body}

    monkeypatch.setattr(google_calendar_client, "insert_event", _insert)

    response = await authed_client.post(
        f"/integrations/google-calendar/appointments/{appointment.id}/push",
        json={"action": "create"},
    )

    assert response.status_code == 200
    assert response.json() == {
        "synced": True,
        "action": "create",
        "google_event_id": "evt-9",
        "reason": None,
    }


@pytest.mark.asyncio
async def test_push_endpoint_unknown_appointment(authed_client):
    import uuid

    response = await authed_client.post(f"/integrations/google-calendar/appointments/{uuid.uuid4()}/push")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_internal_push_sweep_requires_secret(client, monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "INTERNAL_SECRET", "secret")

    wrong = await client.post("/internal/scheduled/push-appointments", headers={"X-Internal-Secret": "nope"})
    ok = await client.post("/internal/scheduled/push-appointments", headers={"X-Internal-Secret": "secret"})

    assert wrong.status_code == 403
    assert ok.status_code == 200
    assert ok.json() == {"pushed": 0, "removed": 0, "failed": 0}

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


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


def _appointment(db, staff, start_at: datetime):
    from app.db.models import Appointment

    row = Appointment(
        tenant_id=staff.tenant_id,
        staff_id=staff.id,
        start_at=start_at,
        end_at=start_at + timedelta(minutes=50),
        title="Intake session",
        customer_name="Client A",
        description="Private clinical notes",
    )
    db.add(row)
    db.commit()
    return row


class _FakeCalendar:
    """In-memory Google events store behind a MockTransport."""

    def __init__(self):
        self.events: dict[str, dict] = {}
        self.deleted: list[str] = []
        self.fail_status: int | None = None
        self._next = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"error": {"code": self.fail_status}})

        path = request.url.path
        if request.method == "POST" and path.endswith("/events"):
            self._next += 1
            event_id = f"evt-{self._next}"
            self.events[event_id] = {**json.loads(request.content), "id": event_id}
            return httpx.Response(200, json=self.events[event_id])

        event_id = path.rsplit("/", 1)[-1]
        if request.method == "PATCH":
            if event_id not in self.events:
                return httpx.Response(404, json={"error": {"code": 404}})
            self.events[event_id].update(json.loads(request.content))
            return httpx.Response(200, json=self.events[event_id])
        if request.method == "DELETE":
            self.deleted.append(event_id)
            if self.events.pop(event_id, None) is None:
                return httpx.Response(410)
            return httpx.Response(204)
        return httpx.Response(404)


@pytest.mark.asyncio
async def test_push_creates_then_updates_same_event(db, test_staff):
    from app.db.enums import SyncAction, SyncStatus
    from app.services import appointment_sync_service

    _connected(db, test_staff)
    appointment = _appointment(db, test_staff, datetime(2024, 1, 8, 14, 0, tzinfo=timezone.utc))
    google = _FakeCalendar()
    transport = httpx.MockTransport(google)

    created = await appointment_sync_service.push_appointment(
        db, appointment, SyncAction.CREATE, transport=transport
    )
    appointment.start_at = datetime(2024, 1, 8, 15, 0, tzinfo=timezone.utc)
    appointment.end_at = datetime(2024, 1, 8, 15, 50, tzinfo=timezone.utc)
    db.commit()
    updated = await appointment_sync_service.push_appointment(
        db, appointment, SyncAction.CREATE, transport=transport
    )

    log = appointment_sync_service.get_log(db, appointment.id, test_staff.id)
    assert created.synced and updated.synced
    assert created.google_event_id == updated.google_event_id == "evt-1"
    assert list(google.events) == ["evt-1"]
    assert google.events["evt-1"]["start"]["dateTime"] == "2024-01-08T15:00:00+00:00"
    assert log.sync_status == SyncStatus.SYNCED.value
    assert log.google_calendar_id == "primary"


@pytest.mark.asyncio
async def test_pushed_event_is_opaque_and_tagged(db, test_staff):
    from app.core.config import settings
    from app.db.enums import PUSHED_EVENT_PROPERTY
    from app.services import appointment_sync_service

    _connected(db, test_staff)
    appointment = _appointment(db, test_staff, datetime(2024, 1, 8, 14, 0, tzinfo=timezone.utc))
    google = _FakeCalendar()

    await appointment_sync_service.push_appointment(db, appointment, transport=httpx.MockTransport(google))

    event = google.events["evt-1"]
    assert event["summary"] == settings.GOOGLE_PUSHED_EVENT_SUMMARY
    assert "description" not in event
    assert "Client A" not in json.dumps(event)
    assert event["extendedProperties"]["private"][PUSHED_EVENT_PROPERTY] == str(appointment.id)


@pytest.mark.asyncio
async def test_event_removed_on_google_is_recreated(db, test_staff):
    from app.services import appointment_sync_service

    _connected(db, test_staff)
    appointment = _appointment(db, test_staff, datetime(2024, 1, 8, 14, 0, tzinfo=timezone.utc))
    google = _FakeCalendar()
    transport = httpx.MockTransport(google)

    await appointment_sync_service.push_appointment(db, appointment, transport=transport)
    google.events.clear()
    outcome = await appointment_sync_service.push_appointment(db, appointment, transport=transport)

    assert outcome.synced is True
    assert outcome.google_event_id == "evt-2"
    assert list(google.events) == ["evt-2"]


@pytest.mark.asyncio
async def test_cancelled_appointment_is_pushed_as_delete(db, test_staff):
    from app.db.enums import AppointmentStatus, SyncAction
    from app.services import appointment_sync_service

    _connected(db, test_staff)
    appointment = _appointment(db, test_staff, datetime(2024, 1, 8, 14, 0, tzinfo=timezone.utc))
    google = _FakeCalendar()
    transport = httpx.MockTransport(google)
    await appointment_sync_service.push_appointment(db, appointment, transport=transport)

    appointment.status = AppointmentStatus.CANCELLED.value
    db.commit()
    outcome = await appointment_sync_service.push_appointment(
        db, appointment, SyncAction.UPDATE, transport=transport
    )

    assert outcome.synced is True
    assert outcome.action == SyncAction.DELETE
    assert google.events == {}
    assert appointment_sync_service.get_log(db, appointment.id, test_staff.id) is None


@pytest.mark.asyncio
async def test_delete_of_event_already_gone_succeeds(db, test_staff):
    from app.db.enums import SyncAction
    from app.services import appointment_sync_service

    _connected(db, test_staff)
    appointment = _appointment(db, test_staff, datetime(2024, 1, 8, 14, 0, tzinfo=timezone.utc))
    google = _FakeCalendar()
    transport = httpx.MockTransport(google)
    await appointment_sync_service.push_appointment(db, appointment, transport=transport)
    google.events.clear()

    outcome = await appointment_sync_service.push_appointment(
        db, appointment, SyncAction.DELETE, transport=transport
    )

    assert outcome.synced is True
    assert google.deleted == ["evt-1"]


@pytest.mark.asyncio
async def test_push_without_connection_is_skipped(db, test_staff):
    from app.services import appointment_sync_service

    appointment = _appointment(db, test_staff, datetime(2024, 1, 8, 14, 0, tzinfo=timezone.utc))

    outcome = await appointment_sync_service.push_appointment(db, appointment)

    assert outcome.synced is False
    assert outcome.reason == "no_calendar_connection"


@pytest.mark.asyncio
async def test_provider_failure_is_recorded_and_401_flags_reconnect(db, test_staff):
    from app.db.enums import ConnectionStatus, SyncStatus
    from app.services import appointment_sync_service

    connection = _connected(db, test_staff)
    appointment = _appointment(db, test_staff, datetime(2024, 1, 8, 14, 0, tzinfo=timezone.utc))
    google = _FakeCalendar()
    google.fail_status = 401

    outcome = await appointment_sync_service.push_appointment(
        db, appointment, transport=httpx.MockTransport(google)
    )

    log = appointment_sync_service.get_log(db, appointment.id, test_staff.id)
    db.refresh(connection)
    assert outcome.synced is False
    assert outcome.reason == "provider_error"
    assert log.sync_status == SyncStatus.FAILED.value
    assert log.retry_count == 1
    assert connection.connection_status == ConnectionStatus.NEEDS_RECONNECT.value


@pytest.mark.asyncio
async def test_sweep_pushes_changes_and_removes_orphans(db, test_staff):
    from app.db.enums import AppointmentStatus
    from app.services import appointment_sync_service

    connection = _connected(db, test_staff)
    _appointment(db, test_staff, NOW - timedelta(days=2))
    first = _appointment(db, test_staff, NOW + timedelta(days=1))
    second = _appointment(db, test_staff, NOW + timedelta(days=8))
    google = _FakeCalendar()
    transport = httpx.MockTransport(google)

    initial = await appointment_sync_service.push_staff_appointments(db, connection, now=NOW, transport=transport)
    repeat = await appointment_sync_service.push_staff_appointments(db, connection, now=NOW, transport=transport)

    first.status = AppointmentStatus.CANCELLED.value
    db.delete(second)
    db.commit()
    cleanup = await appointment_sync_service.push_staff_appointments(db, connection, now=NOW, transport=transport)

    assert (initial.pushed, initial.removed, initial.failed) == (2, 0, 0)
    assert (repeat.pushed, repeat.removed) == (0, 0)
    assert (cleanup.pushed, cleanup.removed) == (0, 2)
    assert google.events == {}


@pytest.mark.asyncio
async def test_sweep_skips_connection_without_calendar(db, test_staff):
    from app.services import appointment_sync_service

    connection = _connected(db, test_staff, calendar_id=None)
    _appointment(db, test_staff, NOW + timedelta(days=1))

    result = await appointment_sync_service.push_staff_appointments(db, connection, now=NOW)

    assert (result.pushed, result.removed, result.failed) == (0, 0, 0)

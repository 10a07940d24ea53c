from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _connected(db, staff):
    from app.core.encryption import encrypt_token
    from app.db.enums import ConnectionStatus
    from app.db.models import StaffCalendarConnection

    connection = StaffCalendarConnection(
        tenant_id=staff.tenant_id,
        staff_id=staff.id,
        access_token_encrypted=encrypt_token("access-1"),
        refresh_token_encrypted=encrypt_token("refresh-1"),
        token_expires_at=NOW + timedelta(hours=1),
        connection_status=ConnectionStatus.CONNECTED.value,
    )
    db.add(connection)
    db.commit()
    return connection


class _FakeGoogle:
    """Records watch/stop calls made through a MockTransport."""

    def __init__(self):
        self.watched: list[dict] = []
        self.stopped: list[dict] = []
        self.watch_status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/events/watch"):
            if self.watch_status != 200:
                return httpx.Response(self.watch_status, json={"error": {"code": self.watch_status}})
            body = json.loads(request.content)
            self.watched.append(body)
            return httpx.Response(200, json={"id": body["id"], "resourceId": f"res-{len(self.watched)}"})
        if request.url.path.endswith("/channels/stop"):
            self.stopped.append(json.loads(request.content))
            return httpx.Response(204)
        # Token endpoint and anything else
        return httpx.Response(404)


@pytest.mark.asyncio
async def test_start_watch_replaces_existing_channel(db, test_staff):
    from app.core.config import settings
    from app.services import calendar_watch_service

    connection = _connected(db, test_staff)
    google = _FakeGoogle()
    transport = httpx.MockTransport(google)

    first = await calendar_watch_service.start_watch(db, connection, now=NOW, transport=transport)
    first_id = first.channel_id
    second = await calendar_watch_service.start_watch(db, connection, now=NOW, transport=transport)

    channels = calendar_watch_service.list_channels(db, test_staff.id)
    assert [c.channel_id for c in channels] == [second.channel_id]
    assert google.stopped == [{"id": first_id, "resourceId": "res-1"}]
    assert google.watched[0]["address"] == settings.google_webhook_url
    assert second.sync_token is None
    assert second.expiration == NOW + timedelta(days=settings.GOOGLE_WATCH_TTL_DAYS)
    assert connection.selected_calendar_id == "primary"


@pytest.mark.asyncio
async def test_start_watch_token_failure_marks_reconnect(db, test_staff):
    from app.db.enums import ConnectionStatus
    from app.services import calendar_watch_service
    from app.services.errors import TokenRefreshFailure

    connection = _connected(db, test_staff)
    connection.token_expires_at = NOW - timedelta(hours=1)
    connection.refresh_token_encrypted = None
    db.commit()

    with pytest.raises(TokenRefreshFailure):
        await calendar_watch_service.start_watch(db, connection, now=NOW)

    db.refresh(connection)
    assert connection.connection_status == ConnectionStatus.NEEDS_RECONNECT.value


@pytest.mark.asyncio
async def test_stop_watch_removes_channels_and_google_blocks(db, test_staff):
    from app.services import busy_block_sync_service, calendar_watch_service

    connection = _connected(db, test_staff)
    google = _FakeGoogle()
    transport = httpx.MockTransport(google)
    await calendar_watch_service.start_watch(db, connection, now=NOW, transport=transport)
    busy_block_sync_service.upsert_block(
        db, test_staff.tenant_id, test_staff.id, "evt-1",
        NOW + timedelta(days=1), NOW + timedelta(days=1, hours=1),
    )
    db.commit()

    stopped = await calendar_watch_service.stop_watch(db, connection, transport=transport)

    assert stopped == 1
    assert calendar_watch_service.list_channels(db, test_staff.id) == []
    assert busy_block_sync_service.list_staff_blocks(
        db, test_staff.tenant_id, test_staff.id, NOW, NOW + timedelta(days=7)
    ) == []


@pytest.mark.asyncio
async def test_start_watch_rejected_keeps_existing_channel(db, test_staff):
    from app.services import calendar_watch_service
    from app.services.errors import ProviderApiError

    connection = _connected(db, test_staff)
    google = _FakeGoogle()
    transport = httpx.MockTransport(google)
    first = await calendar_watch_service.start_watch(db, connection, now=NOW, transport=transport)
    first_id = first.channel_id

    google.watch_status = 500
    with pytest.raises(ProviderApiError):
        await calendar_watch_service.start_watch(db, connection, now=NOW, transport=transport)

    db.expire_all()
    channels = calendar_watch_service.list_channels(db, test_staff.id)
    assert [c.channel_id for c in channels] == [first_id]
    assert google.stopped == []

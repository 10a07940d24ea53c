from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _connection(db, staff, expires_at, refresh_token: str | None = "refresh-1"):
    from app.core.encryption import encrypt_token
    from app.db.enums import ConnectionStatus
    from app.db.models import StaffCalendarConnection

    connection = StaffCalendarConnection(
        tenant_id=staff.tenant_id,
        staff_id=staff.id,
        access_token_encrypted=encrypt_token("access-old"),
        refresh_token_encrypted=encrypt_token(refresh_token) if refresh_token else None,
        token_expires_at=expires_at,
        connection_status=ConnectionStatus.CONNECTED.value,
    )
    db.add(connection)
    db.commit()
    return connection


@pytest.mark.asyncio
async def test_unexpired_token_is_returned_without_refresh(db, test_staff):
    from app.services import calendar_token_service

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("refresh should not be called")

    connection = _connection(db, test_staff, NOW + timedelta(hours=1))

    token = await calendar_token_service.get_valid_access_token(
        db, connection, now=NOW, transport=httpx.MockTransport(handler)
    )
    assert token == "access-old"


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_and_stored_encrypted(db, test_staff):
    from app.core.encryption import decrypt_token
    from app.services import calendar_token_service

    def handler(request: httpx.Request) -> httpx.Response:
        assert b"grant_type=refresh_token" in request.content
        return httpx.Response(200, json={"access_token": "access-new", "expires_in": 1800})

    connection = _connection(db, test_staff, NOW + timedelta(minutes=1))

    token = await calendar_token_service.get_valid_access_token(
        db, connection, now=NOW, transport=httpx.MockTransport(handler)
    )

    assert token == "access-new"
    assert decrypt_token(connection.access_token_encrypted) == "access-new"
    assert connection.token_expires_at == NOW + timedelta(minutes=30)


@pytest.mark.asyncio
async def test_rejected_refresh_raises(db, test_staff):
    from app.services import calendar_token_service
    from app.services.errors import TokenRefreshFailure

    transport = httpx.MockTransport(lambda request: httpx.Response(400, json={"error": "invalid_grant"}))
    connection = _connection(db, test_staff, NOW - timedelta(hours=1))

    with pytest.raises(TokenRefreshFailure):
        await calendar_token_service.get_valid_access_token(db, connection, now=NOW, transport=transport)


@pytest.mark.asyncio
async def test_missing_refresh_token_raises(db, test_staff):
    from app.services import calendar_token_service
    from app.services.errors import TokenRefreshFailure

    connection = _connection(db, test_staff, NOW - timedelta(hours=1), refresh_token=None)

    with pytest.raises(TokenRefreshFailure):
        await calendar_token_service.get_valid_access_token(db, connection, now=NOW)


def test_mark_needs_reconnect(db, test_staff):
    from app.db.enums import ConnectionStatus
    from app.services import calendar_token_service

    connection = _connection(db, test_staff, NOW)

    calendar_token_service.mark_needs_reconnect(db, connection, "x" * 800)

    db.refresh(connection)
    assert connection.connection_status == ConnectionStatus.NEEDS_RECONNECT.value
    assert len(connection.last_error) == 500


def test_tokens_from_previous_key_stay_readable(monkeypatch):
    from cryptography.fernet import Fernet

    from app.core.config import settings
    from app.core.encryption import decrypt_token, encrypt_token

    old_key = settings.FERNET_KEY
    stored = encrypt_token("refresh-before-rotation")

    monkeypatch.setattr(settings, "FERNET_KEY", Fernet.generate_key().decode())
    monkeypatch.setattr(settings, "FERNET_KEY_PREVIOUS", old_key)

    assert decrypt_token(stored) == "refresh-before-rotation"
    assert decrypt_token(encrypt_token("fresh")) == "fresh"


def test_unknown_key_is_rejected(monkeypatch):
    from cryptography.fernet import Fernet

    from app.core.config import settings
    from app.core.encryption import decrypt_token, encrypt_token

    stored = encrypt_token("secret")
    monkeypatch.setattr(settings, "FERNET_KEY", Fernet.generate_key().decode())

    with pytest.raises(ValueError):
        decrypt_token(stored)

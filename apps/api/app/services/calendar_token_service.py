"""Access-token capability for external calendar connections.

The synchronizer only depends on two operations: "give me a currently valid
access token" and "mark this connection as needing reconnect".
"""

import logging
from datetime import datetime, timedelta, timezone

import httpx
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.encryption import decrypt_token, encrypt_token
from app.core.structured_logging import build_log_context
from app.db.enums import CalendarProvider, ConnectionStatus
from app.db.models import StaffCalendarConnection
from app.services.errors import TokenRefreshFailure

logger = logging.getLogger(__name__)

# Refresh slightly before Google's stated expiry
EXPIRY_SKEW = timedelta(minutes=2)


def get_connection(
    db: Session,
    staff_id,
    provider: str = CalendarProvider.GOOGLE.value,
) -> StaffCalendarConnection | None:
    """Get a staff member's calendar connection for a provider."""
    return db.query(StaffCalendarConnection).filter(
        StaffCalendarConnection.staff_id == staff_id,
        StaffCalendarConnection.provider == provider,
    ).first()


async def _refresh_access_token(
    refresh_token: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict:
    """Exchange a refresh token for a new access token."""
    try:
        async with httpx.AsyncClient(
            timeout=settings.GOOGLE_API_TIMEOUT_SECONDS,
            transport=transport,
        ) as client:
            response = await client.post(
                settings.GOOGLE_TOKEN_URL,
                data={
                    "client_id": settings.GOOGLE_CLIENT_ID,
                    "client_secret": settings.GOOGLE_CLIENT_SECRET,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
    except httpx.HTTPError as exc:
        raise TokenRefreshFailure(f"Token refresh request failed: {type(exc).__name__}") from exc

    if response.status_code != 200:
        raise TokenRefreshFailure(f"Token refresh rejected with HTTP {response.status_code}")

    data = response.json()
    if not data.get("access_token"):
        raise TokenRefreshFailure("Token refresh response has no access_token")
    return data


async def get_valid_access_token(
    db: Session,
    connection: StaffCalendarConnection,
    now: datetime | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """
    Return a usable access token for ``connection``, refreshing if expired.

    A refreshed token is re-encrypted and stored (flushed, not committed).

    Raises:
        TokenRefreshFailure: no usable token and refresh was impossible or failed
    """
    now = now or datetime.now(timezone.utc)

    expires_at = connection.token_expires_at
    if connection.access_token_encrypted and expires_at and expires_at - EXPIRY_SKEW > now:
        try:
            return decrypt_token(connection.access_token_encrypted)
        except ValueError:
            logger.warning(
                "Stored access token unreadable, refreshing %s",
                build_log_context(staff_id=str(connection.staff_id)),
            )

    if not connection.refresh_token_encrypted:
        raise TokenRefreshFailure("No refresh token stored for connection")

    try:
        refresh_token = decrypt_token(connection.refresh_token_encrypted)
    except ValueError as exc:
        raise TokenRefreshFailure("Stored refresh token is unreadable") from exc

    data = await _refresh_access_token(refresh_token, transport=transport)

    access_token = data["access_token"]
    connection.access_token_encrypted = encrypt_token(access_token)
    connection.token_expires_at = now + timedelta(seconds=int(data.get("expires_in", 3600)))
    if data.get("refresh_token"):
        connection.refresh_token_encrypted = encrypt_token(data["refresh_token"])
    db.flush()
    return access_token


def mark_needs_reconnect(
    db: Session,
    connection: StaffCalendarConnection,
    reason: str,
) -> None:
    """Flag a connection as degraded so the UI can prompt the user to reconnect."""
    connection.connection_status = ConnectionStatus.NEEDS_RECONNECT.value
    connection.last_error = reason[:500]
    db.commit()
    logger.warning(
        "Calendar connection marked needs_reconnect %s",
        build_log_context(tenant_id=str(connection.tenant_id), staff_id=str(connection.staff_id)),
    )

"""Live availability and calendar listing for a staff member's Google connection.

Both degrade instead of failing: a missing or broken connection comes back as
an empty result with flags the UI can act on.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

import httpx
from sqlalchemy.orm import Session

from app.core.structured_logging import build_log_context
from app.db.base import utcnow
from app.db.enums import ConnectionStatus
from app.db.models import StaffCalendarConnection
from app.services import calendar_token_service, google_calendar_client
from app.services.errors import ProviderApiError, TokenRefreshFailure
from app.services.google_calendar_client import BusyInterval, CalendarSummary

logger = logging.getLogger(__name__)


@dataclass
class Availability:
    connected: bool
    calendar_selected: bool = False
    needs_reconnect: bool = False
    error: str | None = None
    busy: list[BusyInterval] = field(default_factory=list)


async def _access_token(
    db: Session,
    connection: StaffCalendarConnection,
    now: datetime | None,
    transport: httpx.AsyncBaseTransport | None,
) -> str:
    try:
        return await calendar_token_service.get_valid_access_token(
            db, connection, now=now, transport=transport
        )
    except TokenRefreshFailure as exc:
        db.rollback()
        calendar_token_service.mark_needs_reconnect(db, connection, str(exc))
        raise


async def get_availability(
    db: Session,
    connection: StaffCalendarConnection | None,
    time_min: datetime,
    time_max: datetime,
    now: datetime | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Availability:
    """Busy intervals of the selected calendar between ``time_min`` and ``time_max``."""
    if connection is None or connection.connection_status != ConnectionStatus.CONNECTED.value:
        return Availability(connected=False)
    if not connection.selected_calendar_id:
        return Availability(connected=True, calendar_selected=False)

    try:
        access_token = await _access_token(db, connection, now, transport)
    except TokenRefreshFailure:
        return Availability(connected=False, calendar_selected=True, needs_reconnect=True)

    try:
        busy = await google_calendar_client.query_free_busy(
            access_token, connection.selected_calendar_id, time_min, time_max, transport=transport
        )
    except ProviderApiError as exc:
        db.commit()
        logger.warning(
            "Google freeBusy failed (status=%s) %s",
            exc.status_code,
            build_log_context(tenant_id=str(connection.tenant_id), staff_id=str(connection.staff_id)),
        )
        if exc.status_code == 401:
            calendar_token_service.mark_needs_reconnect(db, connection, "Google auth revoked")
            return Availability(connected=False, calendar_selected=True, needs_reconnect=True)
        return Availability(connected=True, calendar_selected=True, error="Failed to fetch availability")

    connection.last_sync_at = now or utcnow()
    db.commit()
    return Availability(connected=True, calendar_selected=True, busy=busy)


async def list_calendars(
    db: Session,
    connection: StaffCalendarConnection,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[CalendarSummary]:
    """
    Calendars visible to the connected account.

    Raises:
        TokenRefreshFailure: no valid access token (connection marked needs_reconnect)
        ProviderApiError: Google rejected the request (401 also marks needs_reconnect)
    """
    access_token = await _access_token(db, connection, None, transport)
    try:
        calendars = await google_calendar_client.list_calendars(access_token, transport=transport)
    except ProviderApiError as exc:
        db.commit()
        if exc.status_code == 401:
            calendar_token_service.mark_needs_reconnect(db, connection, "Google auth revoked")
        raise
    db.commit()
    return calendars

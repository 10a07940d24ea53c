"""Calendar integrations router.

Google Calendar connection endpoints: status, the push-notification watch
that feeds busy blocks, live availability, calendar list and the outbound
push of appointments.
"""
import logging
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.deps import get_current_session, get_db
from app.db.enums import ConnectionStatus, SyncAction
from app.db.models import Appointment, Staff
from app.schemas.auth import UserSession
from app.services import (
    appointment_sync_service,
    calendar_availability_service,
    calendar_token_service,
    calendar_watch_service,
)
from app.services.errors import ProviderApiError, TokenRefreshFailure

router = APIRouter(prefix="/integrations", tags=["Integrations"])
logger = logging.getLogger(__name__)


# ============================================================================
# Models
# ============================================================================

class CalendarConnectionStatus(BaseModel):
    """Status of a staff member's calendar connection."""
    provider: str
    connected: bool
    connection_status: str | None = None
    calendar_id: str | None = None
    last_sync_at: datetime | None = None
    last_error: str | None = None
    watch_channels: int = 0


class WatchStartRequest(BaseModel):
    calendar_id: str | None = None


class WatchResponse(BaseModel):
    channel_id: str
    calendar_id: str
    expiration: datetime


class WatchStopResponse(BaseModel):
    channels_stopped: int


class CalendarListItem(BaseModel):
    id: str
    summary: str
    primary: bool = False
    access_role: str | None = None
    time_zone: str | None = None


class CalendarListResponse(BaseModel):
    calendars: list[CalendarListItem]
    selected_calendar_id: str | None = None


class BusyIntervalRead(BaseModel):
    start: datetime
    end: datetime


class AvailabilityResponse(BaseModel):
    """Busy time only; no event details leave Google."""
    connected: bool
    calendar_selected: bool = False
    needs_reconnect: bool = False
    error: str | None = None
    busy: list[BusyIntervalRead] = []


class AppointmentPushRequest(BaseModel):
    action: SyncAction = SyncAction.UPDATE


class AppointmentPushResponse(BaseModel):
    synced: bool
    action: SyncAction
    google_event_id: str | None = None
    reason: str | None = None


class PushSweepResponse(BaseModel):
    pushed: int
    removed: int
    failed: int


def _require_connection(db: Session, session: UserSession):
    connection = calendar_token_service.get_connection(db, session.staff_id)
    if not connection or connection.connection_status == ConnectionStatus.DISCONNECTED.value:
        raise HTTPException(status_code=404, detail="Google Calendar is not connected")
    return connection


# ============================================================================
# Endpoints
# ============================================================================

@router.get("/google-calendar", response_model=CalendarConnectionStatus)
def google_calendar_status(
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    """Connection health; ``needs_reconnect`` means the user must re-authorize."""
    connection = calendar_token_service.get_connection(db, session.staff_id)
    if not connection:
        return CalendarConnectionStatus(provider="google", connected=False)
    return CalendarConnectionStatus(
        provider=connection.provider,
        connected=connection.connection_status == ConnectionStatus.CONNECTED.value,
        connection_status=connection.connection_status,
        calendar_id=connection.selected_calendar_id,
        last_sync_at=connection.last_sync_at,
        last_error=connection.last_error,
        watch_channels=len(calendar_watch_service.list_channels(db, session.staff_id)),
    )


@router.post("/google-calendar/watch", response_model=WatchResponse)
async def start_google_calendar_watch(
    body: WatchStartRequest | None = None,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    """Start (or replace) the push channel for the caller's selected calendar."""
    connection = _require_connection(db, session)
    if connection.connection_status != ConnectionStatus.CONNECTED.value:
        raise HTTPException(status_code=409, detail="Google Calendar needs to be reconnected")

    try:
        channel = await calendar_watch_service.start_watch(
            db,
            connection,
            calendar_id=body.calendar_id if body else None,
        )
    except TokenRefreshFailure:
        raise HTTPException(status_code=409, detail="Google Calendar needs to be reconnected")
    except ProviderApiError as e:
        logger.warning("Google watch start failed: status=%s", e.status_code)
        raise HTTPException(status_code=502, detail="Google Calendar rejected the watch request")

    return WatchResponse(
        channel_id=channel.channel_id,
        calendar_id=channel.calendar_id,
        expiration=channel.expiration,
    )


@router.delete("/google-calendar/watch", response_model=WatchStopResponse)
async def stop_google_calendar_watch(
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    """Stop push channels and remove the caller's synced busy blocks."""
    connection = _require_connection(db, session)
    stopped = await calendar_watch_service.stop_watch(db, connection)
    return WatchStopResponse(channels_stopped=stopped)


@router.get("/google-calendar/calendars", response_model=CalendarListResponse)
async def list_google_calendars(
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    """Calendars of the connected account, to choose which one is synced."""
    connection = _require_connection(db, session)
    try:
        calendars = await calendar_availability_service.list_calendars(db, connection)
    except TokenRefreshFailure:
        raise HTTPException(status_code=409, detail="Google Calendar needs to be reconnected")
    except ProviderApiError as e:
        if e.status_code == 401:
            raise HTTPException(status_code=409, detail="Google Calendar needs to be reconnected")
        raise HTTPException(status_code=502, detail="Failed to list calendars")
    return CalendarListResponse(
        calendars=[
            CalendarListItem(
                id=c.id,
                summary=c.summary,
                primary=c.primary,
                access_role=c.access_role,
                time_zone=c.time_zone,
            )
            for c in calendars
        ],
        selected_calendar_id=connection.selected_calendar_id,
    )


@router.get("/google-calendar/availability", response_model=AvailabilityResponse)
async def google_calendar_availability(
    time_min: datetime = Query(..., alias="timeMin"),
    time_max: datetime = Query(..., alias="timeMax"),
    staff_id: UUID | None = Query(None, alias="staffId"),
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    """Live free/busy of a staff member's selected calendar (defaults to the caller)."""
    if time_min.tzinfo is None or time_max.tzinfo is None:
        raise HTTPException(status_code=422, detail="timeMin and timeMax need a UTC offset")
    if time_max <= time_min:
        raise HTTPException(status_code=422, detail="timeMax must be after timeMin")

    staff_id = staff_id or session.staff_id
    in_tenant = db.query(Staff.id).filter(
        Staff.id == staff_id,
        Staff.tenant_id == session.tenant_id,
    ).first()
    if not in_tenant:
        raise HTTPException(status_code=404, detail="Staff member not found")

    connection = calendar_token_service.get_connection(db, staff_id)
    availability = await calendar_availability_service.get_availability(
        db, connection, time_min, time_max
    )
    return AvailabilityResponse(
        connected=availability.connected,
        calendar_selected=availability.calendar_selected,
        needs_reconnect=availability.needs_reconnect,
        error=availability.error,
        busy=[BusyIntervalRead(start=b.start, end=b.end) for b in availability.busy],
    )


@router.post(
    "/google-calendar/appointments/{appointment_id}/push",
    response_model=AppointmentPushResponse,
)
async def push_appointment_to_google(
    appointment_id: UUID,
    body: AppointmentPushRequest | None = None,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    """Create, update or delete the opaque Google event mirroring one appointment."""
    appointment = db.query(Appointment).filter(
        Appointment.id == appointment_id,
        Appointment.tenant_id == session.tenant_id,
    ).first()
    if not appointment:
        raise HTTPException(status_code=404, detail="Appointment not found")

    body = body or AppointmentPushRequest()
    outcome = await appointment_sync_service.push_appointment(db, appointment, body.action)
    return AppointmentPushResponse(
        synced=outcome.synced,
        action=outcome.action,
        google_event_id=outcome.google_event_id,
        reason=outcome.reason,
    )


@router.post("/google-calendar/push", response_model=PushSweepResponse)
async def push_my_appointments(
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    """Push the caller's upcoming appointments and remove events of cancelled ones."""
    connection = _require_connection(db, session)
    if connection.connection_status != ConnectionStatus.CONNECTED.value:
        raise HTTPException(status_code=409, detail="Google Calendar needs to be reconnected")
    try:
        result = await appointment_sync_service.push_staff_appointments(db, connection)
    except TokenRefreshFailure:
        raise HTTPException(status_code=409, detail="Google Calendar needs to be reconnected")
    return PushSweepResponse(pushed=result.pushed, removed=result.removed, failed=result.failed)

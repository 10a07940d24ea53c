"""Appointment push service - mirror internal appointments onto a staff member's Google calendar.

Pushed events are opaque: only GOOGLE_PUSHED_EVENT_SUMMARY and the time range
leave the system, plus a private extended property carrying the appointment
id so the inbound sync can recognise its own events. Each (appointment,
staff) pair has one CalendarSyncLog row holding the Google event id, so a
repeated push updates the event instead of creating a second one.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.base import utcnow
from app.db.enums import (
    PUSHED_EVENT_PROPERTY,
    AppointmentStatus,
    ConnectionStatus,
    SyncAction,
    SyncStatus,
)
from app.db.models import Appointment, CalendarSyncLog, StaffCalendarConnection
from app.services import calendar_token_service, google_calendar_client
from app.services.errors import ProviderApiError, TokenRefreshFailure

logger = logging.getLogger(__name__)


# =============================================================================
# Types
# =============================================================================

@dataclass
class PushOutcome:
    synced: bool
    action: SyncAction
    google_event_id: str | None = None
    reason: str | None = None


@dataclass
class PushSweepResult:
    pushed: int = 0
    removed: int = 0
    failed: int = 0


# =============================================================================
# Helpers
# =============================================================================

def _event_body(appointment: Appointment) -> dict[str, Any]:
    return {
        "summary": settings.GOOGLE_PUSHED_EVENT_SUMMARY,
        "start": {"dateTime": appointment.start_at.isoformat(), "timeZone": "UTC"},
        "end": {"dateTime": appointment.end_at.isoformat(), "timeZone": "UTC"},
        "transparency": "opaque",
        "extendedProperties": {"private": {PUSHED_EVENT_PROPERTY: str(appointment.id)}},
    }


def get_log(db: Session, appointment_id: UUID, staff_id: UUID) -> CalendarSyncLog | None:
    return db.query(CalendarSyncLog).filter(
        CalendarSyncLog.appointment_id == appointment_id,
        CalendarSyncLog.staff_id == staff_id,
    ).first()


def _pushable_connection(db: Session, staff_id: UUID | None) -> StaffCalendarConnection | None:
    if staff_id is None:
        return None
    connection = calendar_token_service.get_connection(db, staff_id)
    if (
        connection is None
        or connection.connection_status != ConnectionStatus.CONNECTED.value
        or not connection.selected_calendar_id
    ):
        return None
    return connection


def _record_failure(
    db: Session,
    tenant_id: UUID,
    appointment_id: UUID,
    staff_id: UUID,
    calendar_id: str | None,
    message: str,
) -> None:
    log = get_log(db, appointment_id, staff_id)
    if log is None:
        log = CalendarSyncLog(
            tenant_id=tenant_id,
            appointment_id=appointment_id,
            staff_id=staff_id,
            google_calendar_id=calendar_id,
            retry_count=0,
        )
        db.add(log)
    log.sync_status = SyncStatus.FAILED.value
    log.error_message = message[:500]
    log.retry_count = (log.retry_count or 0) + 1
    db.commit()


async def _write_event(
    db: Session,
    connection: StaffCalendarConnection,
    access_token: str,
    appointment: Appointment,
    log: CalendarSyncLog | None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> CalendarSyncLog:
    """Create or update the Google event for ``appointment``. Does not commit."""
    calendar_id = connection.selected_calendar_id
    body = _event_body(appointment)
    event = None

    if log is not None and log.google_event_id:
        if log.google_calendar_id == calendar_id:
            try:
                event = await google_calendar_client.patch_event(
                    access_token, calendar_id, log.google_event_id, body, transport=transport
                )
            except ProviderApiError as exc:
                # Removed on Google's side; recreated below
                if exc.status_code not in (404, 410):
                    raise
        else:
            try:
                await google_calendar_client.delete_event(
                    access_token, log.google_calendar_id, log.google_event_id, transport=transport
                )
            except ProviderApiError as exc:
                logger.warning(
                    "Could not remove event from previous calendar (status=%s) %s",
                    exc.status_code,
                    build_log_context(staff_id=str(connection.staff_id)),
                )

    if event is None:
        event = await google_calendar_client.insert_event(
            access_token, calendar_id, body, transport=transport
        )

    if log is None:
        log = CalendarSyncLog(
            tenant_id=appointment.tenant_id,
            appointment_id=appointment.id,
            staff_id=connection.staff_id,
        )
        db.add(log)
    log.google_event_id = event["id"]
    log.google_calendar_id = calendar_id
    log.sync_status = SyncStatus.SYNCED.value
    log.last_synced_at = utcnow()
    log.error_message = None
    log.retry_count = 0
    return log


async def _remove_event(
    db: Session,
    access_token: str,
    log: CalendarSyncLog,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """Delete the pushed event (already-gone counts as done) and drop its log. Does not commit."""
    if log.google_event_id and log.google_calendar_id:
        await google_calendar_client.delete_event(
            access_token, log.google_calendar_id, log.google_event_id, transport=transport
        )
    db.delete(log)


# =============================================================================
# Single appointment
# =============================================================================

async def push_appointment(
    db: Session,
    appointment: Appointment,
    action: SyncAction = SyncAction.UPDATE,
    transport: httpx.AsyncBaseTransport | None = None,
) -> PushOutcome:
    """
    Push one appointment to its staff member's selected Google calendar.

    create and update both converge on "the event exists with the current
    times"; a cancelled appointment is always pushed as a delete. Missing
    connections and provider failures come back as an unsynced outcome
    rather than an exception; failures are recorded on the sync log.
    """
    if action != SyncAction.DELETE and appointment.status == AppointmentStatus.CANCELLED.value:
        action = SyncAction.DELETE

    connection = _pushable_connection(db, appointment.staff_id)
    if connection is None:
        return PushOutcome(synced=False, action=action, reason="no_calendar_connection")

    tenant_id, appointment_id, staff_id = appointment.tenant_id, appointment.id, connection.staff_id
    calendar_id = connection.selected_calendar_id
    log_context = build_log_context(tenant_id=str(tenant_id), staff_id=str(staff_id))

    try:
        access_token = await calendar_token_service.get_valid_access_token(
            db, connection, transport=transport
        )
    except TokenRefreshFailure as exc:
        db.rollback()
        _record_failure(db, tenant_id, appointment_id, staff_id, calendar_id, "Token refresh failed")
        calendar_token_service.mark_needs_reconnect(db, connection, str(exc))
        return PushOutcome(synced=False, action=action, reason="needs_reconnect")

    log = get_log(db, appointment_id, staff_id)
    try:
        if action == SyncAction.DELETE:
            if log is not None:
                await _remove_event(db, access_token, log, transport=transport)
            db.commit()
            logger.info("Pushed appointment removed from Google %s", log_context)
            return PushOutcome(synced=True, action=action)

        log = await _write_event(db, connection, access_token, appointment, log, transport=transport)
        db.commit()
    except ProviderApiError as exc:
        db.rollback()
        _record_failure(db, tenant_id, appointment_id, staff_id, calendar_id, str(exc))
        if exc.status_code == 401:
            calendar_token_service.mark_needs_reconnect(db, connection, "Google auth revoked during push")
        logger.warning("Appointment push failed (status=%s) %s", exc.status_code, log_context)
        return PushOutcome(synced=False, action=action, reason="provider_error")

    logger.info("Appointment pushed to Google %s", log_context)
    return PushOutcome(synced=True, action=action, google_event_id=log.google_event_id)


# =============================================================================
# Sweep
# =============================================================================

def _needs_push(log: CalendarSyncLog | None, appointment: Appointment, calendar_id: str) -> bool:
    if log is None:
        return True
    if log.sync_status == SyncStatus.FAILED.value:
        return log.retry_count < settings.GOOGLE_PUSH_MAX_RETRIES
    if log.sync_status != SyncStatus.SYNCED.value or log.google_calendar_id != calendar_id:
        return True
    return log.last_synced_at is None or (
        appointment.updated_at is not None and appointment.updated_at > log.last_synced_at
    )


async def push_staff_appointments(
    db: Session,
    connection: StaffCalendarConnection,
    now: datetime | None = None,
    horizon_days: int | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> PushSweepResult:
    """
    Bring the staff member's Google calendar in line with their appointments.

    Upcoming scheduled appointments (up to ``horizon_days`` ahead) that were
    never pushed, failed, or changed since their last push are written.
    Pushed events whose appointment was cancelled, deleted or reassigned to
    someone else are removed. Past appointments are left alone.

    Raises:
        TokenRefreshFailure: no valid access token (connection marked needs_reconnect)
    """
    result = PushSweepResult()
    if (
        connection.connection_status != ConnectionStatus.CONNECTED.value
        or not connection.selected_calendar_id
    ):
        return result

    now = now or utcnow()
    horizon_days = horizon_days or settings.MATERIALIZE_HORIZON_DAYS
    log_context = build_log_context(
        tenant_id=str(connection.tenant_id), staff_id=str(connection.staff_id)
    )

    try:
        access_token = await calendar_token_service.get_valid_access_token(
            db, connection, now=now, transport=transport
        )
    except TokenRefreshFailure as exc:
        db.rollback()
        calendar_token_service.mark_needs_reconnect(db, connection, str(exc))
        raise

    upcoming = db.query(Appointment).filter(
        Appointment.tenant_id == connection.tenant_id,
        Appointment.staff_id == connection.staff_id,
        Appointment.status == AppointmentStatus.SCHEDULED.value,
        Appointment.start_at >= now,
        Appointment.start_at < now + timedelta(days=horizon_days),
    ).order_by(Appointment.start_at).all()
    logs = {
        log.appointment_id: log
        for log in db.query(CalendarSyncLog).filter(
            CalendarSyncLog.staff_id == connection.staff_id,
        ).all()
    }

    for appointment in upcoming:
        log = logs.pop(appointment.id, None)
        if not _needs_push(log, appointment, connection.selected_calendar_id):
            continue
        try:
            await _write_event(db, connection, access_token, appointment, log, transport=transport)
            db.commit()
            result.pushed += 1
        except ProviderApiError as exc:
            db.rollback()
            result.failed += 1
            _record_failure(
                db, appointment.tenant_id, appointment.id, connection.staff_id,
                connection.selected_calendar_id, str(exc),
            )
            if exc.status_code == 401:
                calendar_token_service.mark_needs_reconnect(db, connection, "Google auth revoked during push")
                return result

    for appointment_id, log in logs.items():
        appointment = db.get(Appointment, appointment_id)
        if (
            appointment is not None
            and appointment.status != AppointmentStatus.CANCELLED.value
            and appointment.staff_id == log.staff_id
        ):
            continue
        try:
            await _remove_event(db, access_token, log, transport=transport)
            db.commit()
            result.removed += 1
        except ProviderApiError as exc:
            db.rollback()
            result.failed += 1
            logger.warning("Could not remove pushed event (status=%s) %s", exc.status_code, log_context)

    logger.info(
        "Appointment push sweep: pushed=%s removed=%s failed=%s %s",
        result.pushed,
        result.removed,
        result.failed,
        log_context,
    )
    return result


async def push_all_connections(
    db: Session,
    now: datetime | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> PushSweepResult:
    """Run the push sweep for every connected staff calendar; one bad connection never stops the rest."""
    connections = db.query(StaffCalendarConnection).filter(
        StaffCalendarConnection.connection_status == ConnectionStatus.CONNECTED.value,
        StaffCalendarConnection.selected_calendar_id.isnot(None),
    ).all()

    total = PushSweepResult()
    for connection in connections:
        try:
            outcome = await push_staff_appointments(db, connection, now=now, transport=transport)
        except TokenRefreshFailure:
            total.failed += 1
            continue
        total.pushed += outcome.pushed
        total.removed += outcome.removed
        total.failed += outcome.failed
    return total

"""Calendar service - unified calendar query for a tenant.

Handles:
- Resolving the requested window (defaults anchored to "now" in the caller's zone)
- Loading materialized appointments and active series
- Expanding each series and reconciling virtual occurrences with stored rows

get_calendar is read-only. materialize_window is the write path: it persists
the virtual occurrences a query of the same window would return.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.base import utcnow
from app.db.enums import AppointmentStatus
from app.db.models import Appointment, AppointmentSeries
from app.schemas.calendar import CalendarEvent
from app.services import recurrence_service, timezone_service
from app.services.materialization_service import persist_virtual_entries
from app.services.errors import InvalidTimezoneInput, SchedulingError
from app.services.reconciliation_service import (
    CalendarEntry,
    MaterializedEntry,
    VirtualEntry,
    pending_persistence,
    reconcile,
    virtual_entries_for,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Window resolution
# =============================================================================

def _parse_bound(value: date | datetime | str, zone: str, is_end: bool) -> datetime:
    """
    Read one window bound as a UTC instant.

    Date-only values cover whole local days: a start begins at local
    midnight, an end runs to the last instant of that local day. Naive
    datetimes are local wall clock in ``zone``.
    """
    if isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            value = timezone_service.parse_local_date(text)
        else:
            try:
                value = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError as exc:
                raise InvalidTimezoneInput(f"Invalid date/time: {value!r}") from exc

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc)
        return timezone_service.local_to_utc(value, zone)

    return timezone_service.to_utc_instant(value, time.max if is_end else time.min, zone)


def resolve_window(
    start: date | datetime | str | None,
    end: date | datetime | str | None,
    zone: str | None = None,
    now: datetime | None = None,
) -> tuple[datetime, datetime, str]:
    """
    Resolve a calendar query window to UTC bounds.

    Missing bounds default to CALENDAR_LOOKBACK_DAYS before and
    CALENDAR_LOOKAHEAD_MONTHS after "now" in the caller's zone.

    Returns:
        (window_start_utc, window_end_utc, zone)

    Raises:
        InvalidTimezoneInput: unknown zone or unparseable bound
    """
    zone = zone or settings.CALENDAR_DEFAULT_TIMEZONE
    timezone_service.get_zone(zone)
    now = now or datetime.now(timezone.utc)
    local_now = timezone_service.now_local(zone, now)

    if start is None:
        window_start = timezone_service.local_to_utc(
            local_now - timedelta(days=settings.CALENDAR_LOOKBACK_DAYS), zone
        )
    else:
        window_start = _parse_bound(start, zone, is_end=False)

    if end is None:
        window_end = timezone_service.local_to_utc(
            local_now + relativedelta(months=settings.CALENDAR_LOOKAHEAD_MONTHS), zone
        )
    else:
        window_end = _parse_bound(end, zone, is_end=True)

    return window_start, window_end, zone


# =============================================================================
# Query
# =============================================================================

def _virtual_candidates(
    series_list: list[AppointmentSeries],
    window_start: datetime,
    window_end: datetime,
    now: datetime,
) -> list[VirtualEntry]:
    """Expand every series, skipping (and logging) the ones that cannot be expanded."""
    candidates: list[VirtualEntry] = []
    for series in series_list:
        try:
            occurrences = recurrence_service.expand_series(series, window_start, window_end, now=now)
        except SchedulingError as exc:
            logger.warning(
                "Skipping series with invalid recurrence: %s (%s)",
                type(exc).__name__,
                build_log_context(tenant_id=str(series.tenant_id), series_id=str(series.id)),
            )
            continue
        candidates.extend(virtual_entries_for(series, occurrences))
    return candidates


def get_calendar(
    db: Session,
    tenant_id: UUID,
    window_start: date | datetime | str | None = None,
    window_end: date | datetime | str | None = None,
    timezone: str | None = None,
    now: datetime | None = None,
    include_cancelled: bool = False,
) -> list[CalendarEntry]:
    """
    Return the tenant's calendar for a window, sorted by start instant.

    Materialized rows are authoritative; virtual occurrences fill in what
    has not been persisted yet. A series whose rule or zone is broken is
    omitted from the result rather than failing the query.
    """
    now = now or utcnow()
    start_utc, end_utc, _ = resolve_window(window_start, window_end, timezone, now)
    tolerance = timedelta(seconds=settings.RECONCILE_TOLERANCE_SECONDS)

    if start_utc > end_utc:
        return []

    # Rows just outside the window still suppress candidates at its edges
    rows = db.query(Appointment).filter(
        Appointment.tenant_id == tenant_id,
        Appointment.start_at >= start_utc - tolerance,
        Appointment.start_at <= end_utc + tolerance,
    ).all()

    series_list = db.query(AppointmentSeries).filter(
        AppointmentSeries.tenant_id == tenant_id,
        AppointmentSeries.active == True,  # noqa: E712
    ).order_by(AppointmentSeries.created_at).all()

    candidates = _virtual_candidates(series_list, start_utc, end_utc, now)
    entries = reconcile(rows, candidates, tolerance=tolerance, include_cancelled=include_cancelled)

    return [
        entry
        for entry in entries
        if entry.is_virtual or start_utc <= entry.start_at <= end_utc
    ]


def materialize_window(
    db: Session,
    tenant_id: UUID,
    window_start: date | datetime | str | None = None,
    window_end: date | datetime | str | None = None,
    timezone: str | None = None,
    now: datetime | None = None,
) -> int:
    """
    Persist every virtual occurrence of the tenant's calendar window.

    Returns the number of rows inserted. Series watermarks are not moved,
    so the horizon sweep still fills anything before the window.
    """
    entries = get_calendar(db, tenant_id, window_start, window_end, timezone, now=now)
    pending = pending_persistence(entries)
    inserted = persist_virtual_entries(db, pending)
    logger.info(
        "Materialized calendar window: pending=%s inserted=%s %s",
        len(pending),
        inserted,
        build_log_context(tenant_id=str(tenant_id)),
    )
    return inserted


# =============================================================================
# Response mapping
# =============================================================================

def to_calendar_event(entry: CalendarEntry) -> CalendarEvent:
    """Map a reconciled entry to its API representation."""
    if isinstance(entry, MaterializedEntry):
        row = entry.row
        return CalendarEvent(
            id=entry.id,
            title=row.title,
            start_at=row.start_at,
            end_at=row.end_at,
            status=row.status,
            priority=row.priority,
            customer_name=row.customer_name,
            service_type=row.service_type,
            estimated_cost=row.estimated_cost,
            actual_cost=row.actual_cost,
            series_id=row.series_id,
            appointment_type=entry.kind.value,
            description=row.description,
            additional_info=row.notes,
            completion_notes=row.completion_notes,
            customer_id=row.customer_id,
            staff_id=row.staff_id,
            is_virtual=False,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    series = entry.series
    return CalendarEvent(
        id=entry.id,
        title=series.title,
        start_at=entry.start_at,
        end_at=entry.end_at,
        status=AppointmentStatus.SCHEDULED.value,
        priority=series.priority,
        customer_name=series.customer_name,
        service_type=series.service_type,
        estimated_cost=series.estimated_cost,
        series_id=series.id,
        appointment_type=entry.kind.value,
        description=series.description,
        additional_info=series.notes,
        customer_id=series.customer_id,
        staff_id=series.staff_id,
        is_virtual=True,
        created_at=series.created_at,
        updated_at=series.updated_at,
    )

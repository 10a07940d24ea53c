"""Series service - create, edit and cancel recurring appointment series."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.base import utcnow
from app.db.enums import AppointmentStatus, EditScope, ExceptionChangeType
from app.db.models import Appointment, AppointmentException, AppointmentSeries, Staff
from app.schemas.series import SeriesCreate, SeriesUpdate
from app.services import recurrence_service, timezone_service
from app.services.materialization_service import upsert_occurrences

logger = logging.getLogger(__name__)

RECURRENCE_FIELDS = {
    "rrule",
    "local_start_time",
    "duration_minutes",
    "timezone",
    "until_date",
    "generation_cap_days",
}
NULLABLE_FIELDS = {
    "until_date",
    "generation_cap_days",
    "staff_id",
    "service_type",
    "estimated_cost",
    "description",
    "notes",
}
DESCRIPTIVE_FIELDS = {
    "title",
    "customer_name",
    "staff_id",
    "service_type",
    "priority",
    "estimated_cost",
    "description",
    "notes",
}


@dataclass
class CancelOutcome:
    scope: EditScope
    cancelled_count: int
    series_active: bool
    until_date: date | None


# =============================================================================
# Lookup
# =============================================================================

def get_series(db: Session, tenant_id: UUID, series_id: UUID) -> AppointmentSeries | None:
    """Get a series scoped to its tenant."""
    return db.query(AppointmentSeries).filter(
        AppointmentSeries.id == series_id,
        AppointmentSeries.tenant_id == tenant_id,
    ).first()


def _validate_staff(db: Session, tenant_id: UUID, staff_id: UUID | None) -> None:
    if staff_id is None:
        return
    exists = db.query(Staff.id).filter(
        Staff.id == staff_id,
        Staff.tenant_id == tenant_id,
    ).first()
    if not exists:
        raise ValueError("Staff member not found in this practice")


def _tolerance() -> timedelta:
    return timedelta(seconds=settings.RECONCILE_TOLERANCE_SECONDS)


# =============================================================================
# Create / update
# =============================================================================

def create_series(db: Session, tenant_id: UUID, data: SeriesCreate) -> AppointmentSeries:
    """
    Create a recurring series.

    Raises:
        InvalidTimezoneInput: unknown zone
        InvalidRecurrenceRule: rule cannot be expanded
        ValueError: staff member outside the tenant, or until date before start
    """
    timezone_service.get_zone(data.timezone)
    recurrence_service.validate_rule(data.rrule, data.start_date, data.local_start_time)
    _validate_staff(db, tenant_id, data.staff_id)
    if data.until_date is not None and data.until_date < data.start_date:
        raise ValueError("until_date must not be before start_date")

    series = AppointmentSeries(
        tenant_id=tenant_id,
        rrule=recurrence_service.normalize_rule(data.rrule),
        start_date=data.start_date,
        local_start_time=data.local_start_time.replace(tzinfo=None),
        duration_minutes=data.duration_minutes,
        timezone=data.timezone,
        until_date=data.until_date,
        generation_cap_days=data.generation_cap_days,
        active=True,
        title=data.title,
        customer_id=data.customer_id,
        customer_name=data.customer_name,
        staff_id=data.staff_id,
        service_type=data.service_type,
        priority=data.priority.value,
        estimated_cost=data.estimated_cost,
        description=data.description,
        notes=data.notes,
    )
    db.add(series)
    db.commit()
    db.refresh(series)
    logger.info(
        "Series created %s",
        build_log_context(tenant_id=str(tenant_id), series_id=str(series.id)),
    )
    return series


def update_series(
    db: Session,
    series: AppointmentSeries,
    data: SeriesUpdate,
    now: datetime | None = None,
) -> AppointmentSeries:
    """
    Edit a series.

    Descriptive edits are copied onto future scheduled occurrences. Recurrence
    edits delete future scheduled occurrences and move the watermark back to
    the last kept occurrence at or before ``now``, so the new rule regenerates
    everything after it. Future cancelled rows stay behind to suppress their
    candidates but never hold the watermark.
    """
    now = now or utcnow()
    changes = {
        name: value
        for name, value in data.model_dump(exclude_unset=True).items()
        if value is not None or name in NULLABLE_FIELDS
    }
    if "priority" in changes and changes["priority"] is not None:
        changes["priority"] = changes["priority"].value
    if changes.get("local_start_time") is not None:
        changes["local_start_time"] = changes["local_start_time"].replace(tzinfo=None)
    if changes.get("rrule") is not None:
        changes["rrule"] = recurrence_service.normalize_rule(changes["rrule"])

    zone = changes.get("timezone") or series.timezone
    timezone_service.get_zone(zone)
    recurrence_service.validate_rule(
        changes.get("rrule") or series.rrule,
        series.start_date,
        changes.get("local_start_time") or series.local_start_time,
    )
    if "staff_id" in changes:
        _validate_staff(db, series.tenant_id, changes["staff_id"])
    if changes.get("until_date") is not None and changes["until_date"] < series.start_date:
        raise ValueError("until_date must not be before start_date")

    recurrence_changed = any(
        name in RECURRENCE_FIELDS and getattr(series, name) != value
        for name, value in changes.items()
    )
    for name, value in changes.items():
        setattr(series, name, value)

    future_rows = db.query(Appointment).filter(
        Appointment.series_id == series.id,
        Appointment.status == AppointmentStatus.SCHEDULED.value,
        Appointment.start_at > now,
    )

    if recurrence_changed:
        removed = future_rows.delete(synchronize_session=False)
        series.last_generated_until = db.query(func.max(Appointment.start_at)).filter(
            Appointment.series_id == series.id,
            Appointment.start_at <= now,
            Appointment.status != AppointmentStatus.CANCELLED.value,
        ).scalar()
        logger.info(
            "Series recurrence edited, removed %s future occurrences %s",
            removed,
            build_log_context(tenant_id=str(series.tenant_id), series_id=str(series.id)),
        )
    else:
        descriptive = {k: v for k, v in changes.items() if k in DESCRIPTIVE_FIELDS}
        if descriptive:
            future_rows.update(descriptive, synchronize_session=False)

    db.commit()
    db.refresh(series)
    return series


def deactivate_series(db: Session, series: AppointmentSeries) -> AppointmentSeries:
    """Soft-deactivate a series; its rows are kept."""
    series.active = False
    db.commit()
    db.refresh(series)
    return series


# =============================================================================
# Per-occurrence actions
# =============================================================================

def _match_occurrence(series: AppointmentSeries, occurrence_start: datetime) -> datetime | None:
    """UTC instant of the rule occurrence within tolerance of ``occurrence_start``, if any."""
    local = timezone_service.to_local_datetime(occurrence_start, series.timezone)
    slack = _tolerance()
    candidates = recurrence_service.expand(
        series.rrule,
        recurrence_service.series_start_local(series),
        local - slack - timedelta(hours=1),
        local + slack + timedelta(hours=1),
        until_date=series.until_date,
    )
    for candidate in candidates:
        instant = timezone_service.local_to_utc(candidate, series.timezone)
        if abs(instant - occurrence_start) < slack:
            return instant
    return None


def _cancel_rows(query) -> int:
    return query.filter(
        Appointment.status == AppointmentStatus.SCHEDULED.value,
    ).update({"status": AppointmentStatus.CANCELLED.value}, synchronize_session=False)


def cancel_occurrence(
    db: Session,
    series: AppointmentSeries,
    occurrence_start: datetime,
    scope: EditScope = EditScope.THIS_ONLY,
    notes: str | None = None,
) -> CancelOutcome:
    """
    Cancel an occurrence of a series (materialized or still virtual).

    - this_only: the occurrence is persisted (if needed) as cancelled and an
      exception is recorded; the cancelled row keeps suppressing the virtual one
    - this_and_future: the series ends the local day before the occurrence and
      scheduled rows from the occurrence on are cancelled
    - entire_series: the series is deactivated and all scheduled rows cancelled

    Completed and no-show rows are never touched.

    Raises:
        ValueError: ``occurrence_start`` is not an occurrence of the series
    """
    if occurrence_start.tzinfo is None:
        occurrence_start = occurrence_start.replace(tzinfo=timezone.utc)
    tolerance = _tolerance()
    series_rows = db.query(Appointment).filter(Appointment.series_id == series.id)
    log_context = build_log_context(tenant_id=str(series.tenant_id), series_id=str(series.id))

    if scope == EditScope.THIS_ONLY:
        row = series_rows.filter(
            Appointment.start_at > occurrence_start - tolerance,
            Appointment.start_at < occurrence_start + tolerance,
        ).first()
        if row is None:
            matched = _match_occurrence(series, occurrence_start)
            if matched is None:
                raise ValueError("Not an occurrence of this series")
            duration = timedelta(minutes=series.duration_minutes)
            upsert_occurrences(db, series, [(matched, matched + duration)])
            row = series_rows.filter(Appointment.start_at == matched).one()

        cancelled = 0
        if row.status == AppointmentStatus.SCHEDULED.value:
            row.status = AppointmentStatus.CANCELLED.value
            cancelled = 1
            db.add(AppointmentException(
                tenant_id=series.tenant_id,
                series_id=series.id,
                original_start_at=row.start_at,
                change_type=ExceptionChangeType.CANCELLED.value,
                notes=notes,
            ))

    elif scope == EditScope.THIS_AND_FUTURE:
        local_day, _ = timezone_service.to_local_wall_clock(occurrence_start, series.timezone)
        new_until = local_day - timedelta(days=1)
        if new_until < series.start_date:
            series.active = False
        elif series.until_date is None or new_until < series.until_date:
            series.until_date = new_until
        cancelled = _cancel_rows(
            series_rows.filter(Appointment.start_at > occurrence_start - tolerance)
        )

    else:
        series.active = False
        cancelled = _cancel_rows(series_rows)

    db.commit()
    db.refresh(series)
    logger.info("Series occurrence cancelled scope=%s count=%s %s", scope.value, cancelled, log_context)
    return CancelOutcome(
        scope=scope,
        cancelled_count=cancelled,
        series_active=series.active,
        until_date=series.until_date,
    )

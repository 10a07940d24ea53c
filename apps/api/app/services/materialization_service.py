"""Materialization service - persist series occurrences as appointment rows.

Every write is an INSERT ... ON CONFLICT DO NOTHING keyed on
(series_id, start_at), so concurrent or repeated runs converge instead of
duplicating rows.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Iterable
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.base import utcnow
from app.db.enums import AppointmentStatus
from app.db.models import Appointment, AppointmentSeries
from app.db.upsert import insert_for
from app.services import recurrence_service, timezone_service
from app.services.reconciliation_service import VirtualEntry

logger = logging.getLogger(__name__)

# Keeps multi-row VALUES under SQLite's bound-parameter limit
INSERT_CHUNK_SIZE = 50


# =============================================================================
# Types
# =============================================================================

@dataclass
class MaterializationResult:
    series_id: UUID
    generated: int = 0
    skipped: int = 0
    last_generated_until: datetime | None = None


@dataclass
class HorizonResult:
    series_processed: int = 0
    occurrences_created: int = 0
    errors: int = 0
    failed_series: list[UUID] = field(default_factory=list)


# =============================================================================
# Upsert
# =============================================================================

def _occurrence_values(series: AppointmentSeries, start_at: datetime, end_at: datetime) -> dict:
    """Row values for one occurrence, copying the series' descriptive fields."""
    return {
        "tenant_id": series.tenant_id,
        "series_id": series.id,
        "start_at": start_at,
        "end_at": end_at,
        "status": AppointmentStatus.SCHEDULED.value,
        "title": series.title,
        "customer_id": series.customer_id,
        "customer_name": series.customer_name,
        "staff_id": series.staff_id,
        "service_type": series.service_type,
        "priority": series.priority,
        "estimated_cost": series.estimated_cost,
        "description": series.description,
        "notes": series.notes,
    }


def upsert_occurrences(
    db: Session,
    series: AppointmentSeries,
    spans: Iterable[tuple[datetime, datetime]],
) -> int:
    """
    Insert occurrence rows for ``series``, ignoring ones that already exist.

    Returns the number of rows actually inserted. Does not commit.
    """
    values = [_occurrence_values(series, start_at, end_at) for start_at, end_at in spans]
    inserted = 0
    for offset in range(0, len(values), INSERT_CHUNK_SIZE):
        chunk = values[offset:offset + INSERT_CHUNK_SIZE]
        stmt = insert_for(db, Appointment).values(chunk).on_conflict_do_nothing(
            index_elements=["series_id", "start_at"],
        )
        result = db.execute(stmt)
        inserted += max(result.rowcount or 0, 0)
    return inserted


# =============================================================================
# Operations
# =============================================================================

def materialize_series(
    db: Session,
    series: AppointmentSeries,
    through: datetime | None = None,
    now: datetime | None = None,
    max_occurrences: int | None = None,
) -> MaterializationResult:
    """
    Persist occurrences of ``series`` from its watermark up to ``through``.

    ``through`` defaults to now + MATERIALIZE_HORIZON_DAYS; the series' cap
    and until date still apply. ``last_generated_until`` only moves forward,
    to the last materialized occurrence.

    Raises:
        InvalidRecurrenceRule / InvalidTimezoneInput: the series cannot be expanded
    """
    now = now or utcnow()
    through = through or now + timedelta(days=settings.MATERIALIZE_HORIZON_DAYS)
    limit = max_occurrences or settings.MATERIALIZE_MAX_OCCURRENCES

    series_start = timezone_service.to_utc_instant(series.start_date, time.min, series.timezone)
    occurrences = recurrence_service.expand_series(
        series, series_start, through, now=now, max_occurrences=limit
    )

    result = MaterializationResult(series_id=series.id)
    if occurrences:
        result.generated = upsert_occurrences(
            db, series, ((o.start_at, o.end_at) for o in occurrences)
        )
        result.skipped = len(occurrences) - result.generated

        last_start = occurrences[-1].start_at
        if series.last_generated_until is None or last_start > series.last_generated_until:
            series.last_generated_until = last_start

    db.commit()
    result.last_generated_until = series.last_generated_until

    logger.info(
        "Materialized series: generated=%s skipped=%s %s",
        result.generated,
        result.skipped,
        build_log_context(tenant_id=str(series.tenant_id), series_id=str(series.id)),
    )
    return result


def persist_virtual_entries(db: Session, entries: Iterable[VirtualEntry]) -> int:
    """
    Persist virtual entries from a reconcile result.

    The watermark is left alone: the entries may not be contiguous with
    what was materialized before, and the horizon sweep must still fill
    any gap.
    """
    by_series: dict[UUID, tuple[AppointmentSeries, list[tuple[datetime, datetime]]]] = {}
    for entry in entries:
        if not entry.needs_persistence:
            continue
        _, spans = by_series.setdefault(entry.series_id, (entry.series, []))
        spans.append((entry.start_at, entry.end_at))

    inserted = 0
    for series, spans in by_series.values():
        inserted += upsert_occurrences(db, series, spans)
    db.commit()
    return inserted


def extend_horizon(
    db: Session,
    horizon_days: int | None = None,
    batch_size: int | None = None,
    now: datetime | None = None,
) -> HorizonResult:
    """
    Materialize every active series up to now + ``horizon_days``.

    Series are processed in batches; a failing series is rolled back,
    counted and logged without stopping the sweep.
    """
    now = now or utcnow()
    horizon_days = horizon_days or settings.MATERIALIZE_HORIZON_DAYS
    batch_size = batch_size or settings.MATERIALIZE_BATCH_SIZE
    target = now + timedelta(days=horizon_days)

    series_ids = [
        row.id
        for row in db.query(AppointmentSeries.id).filter(
            AppointmentSeries.active == True,  # noqa: E712
            or_(
                AppointmentSeries.last_generated_until.is_(None),
                AppointmentSeries.last_generated_until < target,
            ),
            or_(
                AppointmentSeries.until_date.is_(None),
                AppointmentSeries.until_date >= now.date(),
            ),
        ).order_by(AppointmentSeries.created_at).all()
    ]

    result = HorizonResult()
    for offset in range(0, len(series_ids), batch_size):
        batch = db.query(AppointmentSeries).filter(
            AppointmentSeries.id.in_(series_ids[offset:offset + batch_size])
        ).all()
        for series in batch:
            try:
                outcome = materialize_series(db, series, through=target, now=now)
            except Exception:
                db.rollback()
                result.errors += 1
                result.failed_series.append(series.id)
                logger.exception(
                    "Horizon extension failed for series %s",
                    build_log_context(tenant_id=str(series.tenant_id), series_id=str(series.id)),
                )
                continue
            result.series_processed += 1
            result.occurrences_created += outcome.generated

    logger.info(
        "Horizon extension done: processed=%s created=%s errors=%s",
        result.series_processed,
        result.occurrences_created,
        result.errors,
    )
    return result

"""Series router - recurring appointment series management."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.deps import get_current_session, get_db, require_roles
from app.db.enums import Role
from app.schemas.auth import UserSession
from app.schemas.series import (
    MaterializeRequest,
    MaterializeResult,
    OccurrenceCancel,
    OccurrenceCancelResult,
    SeriesCreate,
    SeriesRead,
    SeriesUpdate,
)
from app.services import materialization_service, series_service
from app.services.errors import InvalidRecurrenceRule, InvalidTimezoneInput

router = APIRouter(prefix="/series", tags=["series"])


# =============================================================================
# Helper Functions
# =============================================================================

def _series_to_read(series) -> SeriesRead:
    """Convert AppointmentSeries model to read schema."""
    return SeriesRead(
        id=series.id,
        tenant_id=series.tenant_id,
        rrule=series.rrule,
        start_date=series.start_date,
        local_start_time=series.local_start_time,
        duration_minutes=series.duration_minutes,
        timezone=series.timezone,
        until_date=series.until_date,
        generation_cap_days=series.generation_cap_days,
        last_generated_until=series.last_generated_until,
        active=series.active,
        title=series.title,
        customer_id=series.customer_id,
        customer_name=series.customer_name,
        staff_id=series.staff_id,
        service_type=series.service_type,
        priority=series.priority,
        estimated_cost=series.estimated_cost,
        created_at=series.created_at,
        updated_at=series.updated_at,
    )


def _get_series_or_404(db: Session, session: UserSession, series_id: UUID):
    series = series_service.get_series(db, session.tenant_id, series_id)
    if not series:
        raise HTTPException(status_code=404, detail="Series not found")
    return series


# =============================================================================
# Endpoints
# =============================================================================

@router.post("", response_model=SeriesRead, status_code=201)
def create_series(
    data: SeriesCreate,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    """Create a recurring series. Occurrences show up virtually until materialized."""
    try:
        series = series_service.create_series(db, session.tenant_id, data)
    except (InvalidRecurrenceRule, InvalidTimezoneInput) as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _series_to_read(series)


@router.get("/{series_id}", response_model=SeriesRead)
def get_series(
    series_id: UUID,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    return _series_to_read(_get_series_or_404(db, session, series_id))


@router.patch("/{series_id}", response_model=SeriesRead)
def update_series(
    series_id: UUID,
    data: SeriesUpdate,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    """Edit a series. Recurrence changes regenerate future scheduled occurrences."""
    series = _get_series_or_404(db, session, series_id)
    if not series.active:
        raise HTTPException(status_code=409, detail="Series is no longer active")
    try:
        series = series_service.update_series(db, series, data)
    except (InvalidRecurrenceRule, InvalidTimezoneInput) as e:
        db.rollback()
        raise HTTPException(status_code=422, detail=str(e))
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    return _series_to_read(series)


@router.post("/{series_id}/cancel", response_model=OccurrenceCancelResult)
def cancel_occurrence(
    series_id: UUID,
    data: OccurrenceCancel,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    """Cancel one occurrence, it and all later ones, or the entire series."""
    series = _get_series_or_404(db, session, series_id)
    try:
        outcome = series_service.cancel_occurrence(
            db, series, data.occurrence_start_at, scope=data.scope, notes=data.notes
        )
    except (InvalidRecurrenceRule, InvalidTimezoneInput) as e:
        db.rollback()
        raise HTTPException(status_code=422, detail=str(e))
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    return OccurrenceCancelResult(
        scope=outcome.scope,
        cancelled_count=outcome.cancelled_count,
        series_active=outcome.series_active,
        until_date=outcome.until_date,
    )


@router.delete("/{series_id}", response_model=SeriesRead)
def deactivate_series(
    series_id: UUID,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    """Soft-deactivate a series. Existing appointments are kept."""
    series = _get_series_or_404(db, session, series_id)
    return _series_to_read(series_service.deactivate_series(db, series))


@router.post("/{series_id}/materialize", response_model=MaterializeResult)
def materialize_series(
    series_id: UUID,
    data: MaterializeRequest | None = None,
    db: Session = Depends(get_db),
    session: UserSession = Depends(require_roles([Role.STAFF, Role.BUSINESS_ADMIN])),
):
    """Persist occurrences up to ``through`` (defaults to the materialization horizon)."""
    series = _get_series_or_404(db, session, series_id)
    if not series.active:
        raise HTTPException(status_code=409, detail="Series is no longer active")
    data = data or MaterializeRequest()
    try:
        result = materialization_service.materialize_series(
            db, series, through=data.through, max_occurrences=data.max_occurrences
        )
    except (InvalidRecurrenceRule, InvalidTimezoneInput) as e:
        db.rollback()
        raise HTTPException(status_code=422, detail=str(e))
    return MaterializeResult(
        generated=result.generated,
        skipped=result.skipped,
        last_generated_until=result.last_generated_until,
    )

"""Calendar router - unified calendar query and busy blocks."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.deps import get_current_session, get_db, require_roles, resolve_tenant_scope
from app.db.enums import Role
from app.schemas.auth import UserSession
from app.schemas.calendar import (
    CalendarBlockRead,
    CalendarEvent,
    CalendarMaterializeResult,
    CalendarQuery,
)
from app.services import busy_block_sync_service, calendar_service
from app.services.errors import InvalidTimezoneInput

router = APIRouter(prefix="/calendar", tags=["calendar"])


def _run_query(db: Session, session: UserSession, query: CalendarQuery) -> list[CalendarEvent]:
    tenant_id = resolve_tenant_scope(session, query.tenant_id)
    try:
        entries = calendar_service.get_calendar(
            db,
            tenant_id,
            window_start=query.start_date,
            window_end=query.end_date,
            timezone=query.timezone or session.timezone,
            include_cancelled=query.include_cancelled,
        )
    except InvalidTimezoneInput as e:
        raise HTTPException(status_code=422, detail=str(e))
    return [calendar_service.to_calendar_event(entry) for entry in entries]


@router.get("", response_model=list[CalendarEvent])
def get_calendar(
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    timezone: str | None = Query(None),
    tenant_id: UUID | None = Query(None, alias="tenantId"),
    include_cancelled: bool = Query(False, alias="includeCancelled"),
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    """
    Unified calendar: materialized appointments plus virtual series occurrences.

    Defaults to 30 days back and 7 months forward from now in the caller's
    timezone. Sorted by start_at.
    """
    query = CalendarQuery(
        startDate=start_date,
        endDate=end_date,
        timezone=timezone,
        tenantId=tenant_id,
        includeCancelled=include_cancelled,
    )
    return _run_query(db, session, query)


@router.post("", response_model=list[CalendarEvent])
def post_calendar(
    query: CalendarQuery,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    """Same as GET /calendar with the parameters in a JSON body."""
    return _run_query(db, session, query)


@router.post("/materialize", response_model=CalendarMaterializeResult)
def materialize_calendar(
    query: CalendarQuery,
    db: Session = Depends(get_db),
    session: UserSession = Depends(require_roles([Role.STAFF, Role.BUSINESS_ADMIN])),
):
    """Persist the virtual occurrences of a calendar window as appointment rows."""
    tenant_id = resolve_tenant_scope(session, query.tenant_id)
    try:
        inserted = calendar_service.materialize_window(
            db,
            tenant_id,
            window_start=query.start_date,
            window_end=query.end_date,
            timezone=query.timezone or session.timezone,
        )
    except InvalidTimezoneInput as e:
        raise HTTPException(status_code=422, detail=str(e))
    return CalendarMaterializeResult(inserted=inserted)


@router.get("/blocks", response_model=list[CalendarBlockRead])
def list_blocks(
    staff_id: UUID | None = Query(None, alias="staffId"),
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    timezone: str | None = Query(None),
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    """Opaque busy blocks synced from external calendars, for availability checks."""
    try:
        start, end, _ = calendar_service.resolve_window(
            start_date, end_date, timezone or session.timezone
        )
    except InvalidTimezoneInput as e:
        raise HTTPException(status_code=422, detail=str(e))

    blocks = busy_block_sync_service.list_staff_blocks(
        db, session.tenant_id, staff_id, start, end
    )
    return [
        CalendarBlockRead(
            id=b.id,
            staff_id=b.staff_id,
            start_at=b.start_at,
            end_at=b.end_at,
            source=b.source,
            summary=b.summary,
        )
        for b in blocks
    ]

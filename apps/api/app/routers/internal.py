"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from external cron (Render/Railway/GH Actions).
"""
import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.deps import get_db
from app.services import appointment_sync_service, materialization_service


router = APIRouter(prefix="/internal/scheduled", tags=["internal"])
logger = logging.getLogger(__name__)


def verify_internal_secret(x_internal_secret: str = Header(...)):
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")


class ExtendHorizonRequest(BaseModel):
    horizon_days: int | None = Field(None, alias="horizonDays", ge=1, le=730)
    batch_size: int | None = Field(None, alias="batchSize", ge=1, le=500)


class ExtendHorizonResponse(BaseModel):
    series_processed: int
    occurrences_created: int
    errors: int


@router.post(
    "/extend-horizon",
    response_model=ExtendHorizonResponse,
    dependencies=[Depends(verify_internal_secret)],
)
def extend_horizon(
    body: ExtendHorizonRequest | None = None,
    db: Session = Depends(get_db),
):
    """
    Materialize occurrences of every active series up to the horizon.

    A failing series is counted in ``errors`` and does not stop the sweep.
    """
    body = body or ExtendHorizonRequest()
    result = materialization_service.extend_horizon(
        db,
        horizon_days=body.horizon_days,
        batch_size=body.batch_size,
    )
    return ExtendHorizonResponse(
        series_processed=result.series_processed,
        occurrences_created=result.occurrences_created,
        errors=result.errors,
    )


class PushAppointmentsResponse(BaseModel):
    pushed: int
    removed: int
    failed: int


@router.post(
    "/push-appointments",
    response_model=PushAppointmentsResponse,
    dependencies=[Depends(verify_internal_secret)],
)
async def push_appointments(db: Session = Depends(get_db)):
    """
    Push upcoming appointments of every connected staff calendar to Google.

    Also removes pushed events whose appointment was cancelled or deleted,
    for example by a recurrence edit. Run after extend-horizon.
    """
    result = await appointment_sync_service.push_all_connections(db)
    return PushAppointmentsResponse(
        pushed=result.pushed,
        removed=result.removed,
        failed=result.failed,
    )

"""Webhooks router - external calendar push notifications."""

import logging

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.deps import get_db
from app.core.structured_logging import build_log_context
from app.services import busy_block_sync_service

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/google-calendar")
async def receive_google_calendar_webhook(
    x_goog_channel_id: str | None = Header(None),
    x_goog_resource_state: str | None = Header(None),
    db: Session = Depends(get_db),
):
    """
    Receive a Google Calendar push notification.

    Always answers 200 so Google does not retry into a notification storm.
    The only exceptions are a missing channel id (400) and an unknown
    channel (404).
    """
    try:
        result = await busy_block_sync_service.process_push_notification(
            db,
            channel_id=x_goog_channel_id,
            resource_state=x_goog_resource_state,
        )
    except Exception:
        db.rollback()
        logger.exception(
            "Google Calendar webhook processing failed %s",
            build_log_context(channel_id=x_goog_channel_id, route="/webhooks/google-calendar"),
        )
        return JSONResponse(status_code=200, content={"status": "ok"})

    if result.status_code != 200:
        return JSONResponse(status_code=result.status_code, content={"detail": result.detail})
    return JSONResponse(status_code=200, content={"status": "ok", "detail": result.detail})

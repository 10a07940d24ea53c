"""Pydantic schemas for API request/response models."""

from app.schemas.auth import TokenPayload, UserSession
from app.schemas.calendar import CalendarBlockRead, CalendarEvent, CalendarQuery
from app.schemas.series import (
    MaterializeRequest,
    MaterializeResult,
    OccurrenceCancel,
    OccurrenceCancelResult,
    SeriesCreate,
    SeriesRead,
    SeriesUpdate,
)

__all__ = [
    "CalendarBlockRead",
    "CalendarEvent",
    "CalendarQuery",
    "MaterializeRequest",
    "MaterializeResult",
    "OccurrenceCancel",
    "OccurrenceCancelResult",
    "SeriesCreate",
    "SeriesRead",
    "SeriesUpdate",
    "TokenPayload",
    "UserSession",
]

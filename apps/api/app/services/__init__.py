"""Service layer modules."""

from app.services import (
    appointment_sync_service,
    busy_block_sync_service,
    calendar_availability_service,
    calendar_service,
    calendar_token_service,
    calendar_watch_service,
    google_calendar_client,
    materialization_service,
    reconciliation_service,
    recurrence_service,
    series_service,
    timezone_service,
)
from app.services.calendar_service import get_calendar, materialize_window, to_calendar_event
from app.services.materialization_service import extend_horizon, materialize_series
from app.services.reconciliation_service import reconcile

__all__ = [
    # Calendar query
    "get_calendar",
    "materialize_window",
    "to_calendar_event",
    "reconcile",
    # Materialization
    "materialize_series",
    "extend_horizon",
    # Service modules
    "appointment_sync_service",
    "busy_block_sync_service",
    "calendar_availability_service",
    "calendar_service",
    "calendar_token_service",
    "calendar_watch_service",
    "google_calendar_client",
    "materialization_service",
    "reconciliation_service",
    "recurrence_service",
    "series_service",
    "timezone_service",
]

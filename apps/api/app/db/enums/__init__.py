"""Enum definitions for application constants."""

from app.db.enums.appointments import (
    AppointmentKind,
    AppointmentPriority,
    AppointmentStatus,
    EditScope,
    ExceptionChangeType,
)
from app.db.enums.auth import Role
from app.db.enums.calendar import (
    BUSY_BLOCK_SUMMARY,
    PUSHED_EVENT_PROPERTY,
    BlockSource,
    CalendarProvider,
    ChannelSyncState,
    ConnectionStatus,
    SyncAction,
    SyncStatus,
)

__all__ = [
    "AppointmentKind",
    "AppointmentPriority",
    "AppointmentStatus",
    "BUSY_BLOCK_SUMMARY",
    "BlockSource",
    "CalendarProvider",
    "ChannelSyncState",
    "ConnectionStatus",
    "EditScope",
    "ExceptionChangeType",
    "PUSHED_EVENT_PROPERTY",
    "Role",
    "SyncAction",
    "SyncStatus",
]

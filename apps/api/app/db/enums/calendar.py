"""External calendar integration enums."""

from enum import Enum


class CalendarProvider(str, Enum):
    GOOGLE = "google"


class ConnectionStatus(str, Enum):
    """Staff calendar connection health."""

    CONNECTED = "connected"
    NEEDS_RECONNECT = "needs_reconnect"  # Token refresh failed; user must re-authorize
    DISCONNECTED = "disconnected"


class BlockSource(str, Enum):
    """Origin of a staff busy block."""

    GOOGLE = "google"


class ChannelSyncState(str, Enum):
    """
    Per-channel incremental sync state.

    Flow: uninitialized → syncing → synced
                              ↘ token_expired → uninitialized
    """

    UNINITIALIZED = "uninitialized"  # No sync token, next fetch is a bounded full sync
    SYNCING = "syncing"  # Fetch in progress
    SYNCED = "synced"  # Cursor stored
    TOKEN_EXPIRED = "token_expired"  # Provider rejected the cursor (HTTP 410)


class SyncStatus(str, Enum):
    """Outbound push state of one appointment."""

    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class SyncAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


# Label stored on every synced block; external event content is never persisted
BUSY_BLOCK_SUMMARY = "Busy"

# Private extended property that tags events pushed from here, so the inbound
# sync does not mirror them back as busy blocks
PUSHED_EVENT_PROPERTY = "practiceAppointmentId"

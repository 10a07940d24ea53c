"""Busy-block synchronizer - Google Calendar push notifications → staff busy blocks.

Per-channel state:
    uninitialized (no sync token) → syncing → synced (token stored)
                                        ↘ token_expired (HTTP 410) → uninitialized

Only the time range of an external event is ever stored, labelled "Busy".
Every failure scoped to one connection is absorbed here so the webhook can
acknowledge the notification.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, TypedDict
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.base import utcnow
from app.db.enums import (
    BUSY_BLOCK_SUMMARY,
    PUSHED_EVENT_PROPERTY,
    BlockSource,
    ChannelSyncState,
    ConnectionStatus,
)
from app.db.models import CalendarWatchChannel, StaffCalendarBlock
from app.db.upsert import insert_for
from app.services import calendar_token_service, google_calendar_client
from app.services.errors import ProviderApiError, SyncCursorExpired, TokenRefreshFailure

logger = logging.getLogger(__name__)

SYNC_RESOURCE_STATE = "sync"
DEFAULT_CALENDAR_ID = "primary"


# =============================================================================
# Types
# =============================================================================

class SyncCounts(TypedDict):
    upserted: int
    deleted: int
    skipped: int


@dataclass
class PushResult:
    """Outcome of one push notification; ``status_code`` is what the webhook returns."""
    status_code: int = 200
    detail: str = "ok"
    state: ChannelSyncState | None = None
    counts: SyncCounts | None = None


def channel_state(channel: CalendarWatchChannel) -> ChannelSyncState:
    """Resting state of a channel, derived from its stored cursor."""
    return ChannelSyncState.SYNCED if channel.sync_token else ChannelSyncState.UNINITIALIZED


# =============================================================================
# Block store
# =============================================================================

def upsert_block(
    db: Session,
    tenant_id: UUID,
    staff_id: UUID,
    external_event_id: str,
    start_at: datetime,
    end_at: datetime,
    source: BlockSource = BlockSource.GOOGLE,
) -> None:
    """Insert or move a busy block; idempotent on (staff, source, external event id)."""
    now = utcnow()
    stmt = insert_for(db, StaffCalendarBlock).values(
        tenant_id=tenant_id,
        staff_id=staff_id,
        source=source.value,
        external_event_id=external_event_id,
        start_at=start_at,
        end_at=end_at,
        summary=BUSY_BLOCK_SUMMARY,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["staff_id", "source", "external_event_id"],
        set_={
            "start_at": stmt.excluded.start_at,
            "end_at": stmt.excluded.end_at,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    db.execute(stmt)


def delete_block(
    db: Session,
    staff_id: UUID,
    external_event_id: str,
    source: BlockSource = BlockSource.GOOGLE,
) -> int:
    """Delete a busy block by its idempotency key. Returns rows removed (0 if absent)."""
    return db.query(StaffCalendarBlock).filter(
        StaffCalendarBlock.staff_id == staff_id,
        StaffCalendarBlock.source == source.value,
        StaffCalendarBlock.external_event_id == external_event_id,
    ).delete(synchronize_session=False)


def list_staff_blocks(
    db: Session,
    tenant_id: UUID,
    staff_id: UUID | None,
    start: datetime,
    end: datetime,
) -> list[StaffCalendarBlock]:
    """Busy blocks overlapping [start, end) for availability checks."""
    query = db.query(StaffCalendarBlock).filter(
        StaffCalendarBlock.tenant_id == tenant_id,
        StaffCalendarBlock.start_at < end,
        StaffCalendarBlock.end_at > start,
    )
    if staff_id is not None:
        query = query.filter(StaffCalendarBlock.staff_id == staff_id)
    return query.order_by(StaffCalendarBlock.start_at).all()


# =============================================================================
# Change application
# =============================================================================

def _parse_event_time(value: dict[str, Any] | None) -> datetime | None:
    """Timed events carry ``dateTime``; all-day events only ``date`` (returns None)."""
    if not value or not value.get("dateTime"):
        return None
    try:
        parsed = datetime.fromisoformat(value["dateTime"].replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    return parsed


def apply_event_changes(
    db: Session,
    channel: CalendarWatchChannel,
    events: Iterable[dict[str, Any]],
) -> SyncCounts:
    """
    Apply a batch of provider event changes to the staff member's block store.

    - cancelled → delete the block
    - timed (start and end dateTime) → upsert as an opaque "Busy" block
    - all-day, id-less or unreadable → skipped
    - events pushed from our own appointments → skipped, they are already on the calendar

    Does not commit.
    """
    counts = SyncCounts(upserted=0, deleted=0, skipped=0)
    for event in events:
        event_id = event.get("id")
        if not event_id:
            counts["skipped"] += 1
            continue

        if event.get("status") == "cancelled":
            counts["deleted"] += delete_block(db, channel.staff_id, event_id)
            continue

        private = (event.get("extendedProperties") or {}).get("private") or {}
        if private.get(PUSHED_EVENT_PROPERTY):
            counts["skipped"] += 1
            continue

        start_at = _parse_event_time(event.get("start"))
        end_at = _parse_event_time(event.get("end"))
        if start_at is None or end_at is None or end_at <= start_at:
            counts["skipped"] += 1
            continue

        upsert_block(db, channel.tenant_id, channel.staff_id, event_id, start_at, end_at)
        counts["upserted"] += 1
    return counts


# =============================================================================
# Push notification state machine
# =============================================================================

async def process_push_notification(
    db: Session,
    channel_id: str | None,
    resource_state: str | None,
    now: datetime | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> PushResult:
    """
    Handle one Google push notification.

    Only a missing channel id (400) or an unknown channel (404) produce a
    non-200 result. Token, cursor and provider failures are logged and
    acknowledged.
    """
    if resource_state == SYNC_RESOURCE_STATE:
        return PushResult(detail="sync acknowledged")

    if not channel_id:
        return PushResult(status_code=400, detail="Missing channel id")

    channel = db.query(CalendarWatchChannel).filter(
        CalendarWatchChannel.channel_id == channel_id,
    ).first()
    if not channel:
        logger.warning("Push notification for unknown channel %s", build_log_context(channel_id=channel_id))
        return PushResult(status_code=404, detail="Unknown channel")

    log_context = build_log_context(
        tenant_id=str(channel.tenant_id),
        staff_id=str(channel.staff_id),
        channel_id=channel_id,
    )

    connection = calendar_token_service.get_connection(db, channel.staff_id)
    if not connection or connection.connection_status != ConnectionStatus.CONNECTED.value:
        logger.info("Skipping push for inactive calendar connection %s", log_context)
        return PushResult(detail="connection inactive", state=channel_state(channel))

    now = now or utcnow()

    try:
        access_token = await calendar_token_service.get_valid_access_token(
            db, connection, now=now, transport=transport
        )
    except TokenRefreshFailure as exc:
        db.rollback()
        calendar_token_service.mark_needs_reconnect(db, connection, str(exc))
        return PushResult(detail="needs reconnect", state=channel_state(channel))

    logger.info("Channel %s → %s %s", channel_state(channel).value, ChannelSyncState.SYNCING.value, log_context)

    calendar_id = channel.calendar_id or connection.selected_calendar_id or DEFAULT_CALENDAR_ID
    try:
        if channel.sync_token:
            page = await google_calendar_client.list_events(
                access_token, calendar_id, sync_token=channel.sync_token, transport=transport
            )
        else:
            page = await google_calendar_client.list_events(
                access_token,
                calendar_id,
                time_min=now,
                time_max=now + timedelta(days=settings.GOOGLE_INITIAL_SYNC_DAYS),
                transport=transport,
            )
    except SyncCursorExpired:
        channel.sync_token = None
        db.commit()
        logger.warning("Sync token expired, cleared for full resync %s", log_context)
        return PushResult(detail="sync token expired", state=ChannelSyncState.TOKEN_EXPIRED)
    except ProviderApiError as exc:
        db.commit()  # keep a refreshed access token
        logger.warning("Google events fetch failed (status=%s) %s", exc.status_code, log_context)
        return PushResult(detail="provider error", state=channel_state(channel))

    counts = apply_event_changes(db, channel, page.items)
    if page.next_sync_token:
        channel.sync_token = page.next_sync_token
    connection.last_sync_at = now
    db.commit()

    logger.info(
        "Busy blocks synced: upserted=%s deleted=%s skipped=%s %s",
        counts["upserted"],
        counts["deleted"],
        counts["skipped"],
        log_context,
    )
    return PushResult(detail="synced", state=channel_state(channel), counts=counts)

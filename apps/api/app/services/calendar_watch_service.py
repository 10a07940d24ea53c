"""Google Calendar watch channels - start and stop push subscriptions for a staff member."""

import logging
import uuid
from datetime import datetime, timedelta

import httpx
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.base import utcnow
from app.db.enums import BlockSource
from app.db.models import CalendarWatchChannel, StaffCalendarBlock, StaffCalendarConnection
from app.services import calendar_token_service, google_calendar_client
from app.services.errors import ProviderApiError, TokenRefreshFailure

logger = logging.getLogger(__name__)


def list_channels(db: Session, staff_id) -> list[CalendarWatchChannel]:
    return db.query(CalendarWatchChannel).filter(
        CalendarWatchChannel.staff_id == staff_id,
    ).all()


async def _stop_channels(
    db: Session,
    connection: StaffCalendarConnection,
    channels: list[CalendarWatchChannel],
    access_token: str | None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    """Stop the given provider channels and delete their rows."""
    for channel in channels:
        if access_token:
            try:
                await google_calendar_client.stop_channel(
                    access_token, channel.channel_id, channel.resource_id, transport=transport
                )
            except ProviderApiError as exc:
                # The channel expires on its own; the row is removed either way
                logger.warning(
                    "Failed to stop channel (status=%s) %s",
                    exc.status_code,
                    build_log_context(staff_id=str(connection.staff_id), channel_id=channel.channel_id),
                )
        db.delete(channel)
    return len(channels)


async def start_watch(
    db: Session,
    connection: StaffCalendarConnection,
    calendar_id: str | None = None,
    webhook_url: str | None = None,
    now: datetime | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> CalendarWatchChannel:
    """
    Replace the staff member's watch channel with a fresh one.

    The new channel is registered before the old ones are stopped, so a
    rejected watch request leaves the current subscription in place.

    The new channel starts without a sync token, so its first change
    notification performs the bounded initial sync.

    Raises:
        TokenRefreshFailure: no valid access token (connection marked needs_reconnect)
        ProviderApiError: Google rejected the watch request
    """
    now = now or utcnow()
    calendar_id = calendar_id or connection.selected_calendar_id or "primary"
    webhook_url = webhook_url or settings.google_webhook_url

    try:
        access_token = await calendar_token_service.get_valid_access_token(
            db, connection, now=now, transport=transport
        )
    except TokenRefreshFailure as exc:
        db.rollback()
        calendar_token_service.mark_needs_reconnect(db, connection, str(exc))
        raise

    previous = list_channels(db, connection.staff_id)

    expiration = now + timedelta(days=settings.GOOGLE_WATCH_TTL_DAYS)
    try:
        watched = await google_calendar_client.watch_events(
            access_token,
            calendar_id,
            channel_id=str(uuid.uuid4()),
            webhook_url=webhook_url,
            expiration=expiration,
            transport=transport,
        )
    except ProviderApiError:
        # Existing channels stay untouched; only a refreshed token is kept
        db.commit()
        raise

    stopped = await _stop_channels(db, connection, previous, access_token, transport=transport)

    channel = CalendarWatchChannel(
        tenant_id=connection.tenant_id,
        staff_id=connection.staff_id,
        channel_id=watched.channel_id,
        resource_id=watched.resource_id,
        calendar_id=calendar_id,
        expiration=watched.expiration or expiration,
        sync_token=None,
    )
    db.add(channel)
    connection.selected_calendar_id = calendar_id
    db.commit()
    db.refresh(channel)

    logger.info(
        "Watch channel started (replaced=%s) %s",
        stopped,
        build_log_context(
            tenant_id=str(connection.tenant_id),
            staff_id=str(connection.staff_id),
            channel_id=channel.channel_id,
        ),
    )
    return channel


async def stop_watch(
    db: Session,
    connection: StaffCalendarConnection,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    """
    Stop all watch channels and remove every synced Google block of the staff member.

    Channel rows and blocks are removed even when no access token can be
    obtained. Returns the number of channels removed.
    """
    try:
        access_token = await calendar_token_service.get_valid_access_token(
            db, connection, transport=transport
        )
    except TokenRefreshFailure:
        db.rollback()
        access_token = None

    stopped = await _stop_channels(
        db, connection, list_channels(db, connection.staff_id), access_token, transport=transport
    )
    db.query(StaffCalendarBlock).filter(
        StaffCalendarBlock.staff_id == connection.staff_id,
        StaffCalendarBlock.source == BlockSource.GOOGLE.value,
    ).delete(synchronize_session=False)
    db.commit()

    logger.info(
        "Watch channels stopped (count=%s) %s",
        stopped,
        build_log_context(tenant_id=str(connection.tenant_id), staff_id=str(connection.staff_id)),
    )
    return stopped

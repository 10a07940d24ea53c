"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, utcnow
from app.db.enums import (
    BUSY_BLOCK_SUMMARY,
    BlockSource,
    CalendarProvider,
    ConnectionStatus,
    SyncStatus,
)


class StaffCalendarConnection(Base):
    """
    A staff member's OAuth link to an external calendar provider.

    Tokens are Fernet-encrypted at rest. connection_status flips to
    needs_reconnect when a refresh fails so the UI can prompt re-authorization.
    """

    __tablename__ = "staff_calendar_connections"
    __table_args__ = (
        UniqueConstraint("staff_id", "provider", name="uq_staff_calendar_connection"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    staff_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("staff.id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[str] = mapped_column(
        String(20), default=CalendarProvider.GOOGLE.value, nullable=False
    )
    access_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    selected_calendar_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    connection_status: Mapped[str] = mapped_column(
        String(30), default=ConnectionStatus.DISCONNECTED.value, nullable=False
    )
    last_sync_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )


class CalendarWatchChannel(Base):
    """
    Provider push-notification subscription for one staff calendar.

    sync_token is the provider's incremental cursor; NULL means the next
    notification performs a bounded full sync.
    """

    __tablename__ = "calendar_watch_channels"
    __table_args__ = (
        Index("idx_calendar_watch_channels_channel", "channel_id", unique=True),
        Index("idx_calendar_watch_channels_expiration", "expiration"),
        Index("idx_calendar_watch_channels_staff", "staff_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    staff_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("staff.id", ondelete="CASCADE"), nullable=False
    )
    channel_id: Mapped[str] = mapped_column(String(255), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False)
    calendar_id: Mapped[str] = mapped_column(String(255), nullable=False)
    expiration: Mapped[datetime] = mapped_column(nullable=False)
    sync_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


class StaffCalendarBlock(Base):
    """
    Opaque busy block mirrored from an external calendar event.

    Only the time range is stored; summary is always "Busy".
    (staff_id, source, external_event_id) is the idempotent upsert key.
    """

    __tablename__ = "staff_calendar_blocks"
    __table_args__ = (
        UniqueConstraint(
            "staff_id", "source", "external_event_id", name="uq_staff_calendar_blocks_dedup"
        ),
        Index("idx_staff_calendar_blocks_availability", "staff_id", "start_at", "end_at"),
        Index("idx_staff_calendar_blocks_tenant", "tenant_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    staff_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("staff.id", ondelete="CASCADE"), nullable=False
    )
    start_at: Mapped[datetime] = mapped_column(nullable=False)
    end_at: Mapped[datetime] = mapped_column(nullable=False)
    source: Mapped[str] = mapped_column(String(20), default=BlockSource.GOOGLE.value, nullable=False)
    external_event_id: Mapped[str] = mapped_column(String(1024), nullable=False)
    summary: Mapped[str] = mapped_column(String(50), default=BUSY_BLOCK_SUMMARY, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )


class CalendarSyncLog(Base):
    """
    Outbound push state of one appointment to a staff member's Google calendar.

    appointment_id carries no foreign key: when a recurrence edit deletes
    future rows, the log outlives the row so the pushed event can still be
    removed from Google.
    """

    __tablename__ = "calendar_sync_log"
    __table_args__ = (
        UniqueConstraint("appointment_id", "staff_id", name="uq_calendar_sync_log_appointment"),
        Index("idx_calendar_sync_log_staff", "staff_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    appointment_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    staff_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("staff.id", ondelete="CASCADE"), nullable=False
    )
    google_event_id: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    google_calendar_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sync_status: Mapped[str] = mapped_column(
        String(20), default=SyncStatus.PENDING.value, nullable=False
    )
    last_synced_at: Mapped[datetime | None] = mapped_column(nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

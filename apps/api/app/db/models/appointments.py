"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import date, datetime, time
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, utcnow
from app.db.enums import AppointmentPriority, AppointmentStatus

if TYPE_CHECKING:
    from app.db.models import Staff, Tenant


class AppointmentSeries(Base):
    """
    Recurring appointment template.

    Occurrences are computed from ``rrule`` in the series' local timezone.
    ``last_generated_until`` is the UTC watermark up to which occurrences have
    been materialized as Appointment rows. Deactivated (active=false) rather
    than deleted once occurrences exist.
    """

    __tablename__ = "appointment_series"
    __table_args__ = (
        Index("idx_appointment_series_tenant_active", "tenant_id", "active"),
        Index("idx_appointment_series_watermark", "active", "last_generated_until"),
        CheckConstraint("duration_minutes > 0", name="ck_appointment_series_duration"),
        CheckConstraint(
            "generation_cap_days IS NULL OR generation_cap_days > 0",
            name="ck_appointment_series_cap",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )

    # Recurrence (all rule math happens in local time)
    rrule: Mapped[str] = mapped_column(Text, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    local_start_time: Mapped[time] = mapped_column(Time, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    timezone: Mapped[str] = mapped_column(String(50), nullable=False)

    # Generation bounds
    until_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    generation_cap_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_generated_until: Mapped[datetime | None] = mapped_column(nullable=True)

    active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )

    # Descriptive fields copied onto generated occurrences
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    customer_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    staff_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("staff.id", ondelete="SET NULL"), nullable=True
    )
    service_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    priority: Mapped[str] = mapped_column(
        String(20), default=AppointmentPriority.MEDIUM.value, nullable=False
    )
    estimated_cost: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    # Relationships
    tenant: Mapped["Tenant"] = relationship(back_populates="series")
    staff: Mapped["Staff | None"] = relationship()
    appointments: Mapped[list["Appointment"]] = relationship(back_populates="series")


class Appointment(Base):
    """
    Materialized appointment.

    Either one concrete occurrence of a series or a standalone appointment
    (series_id is NULL). Once persisted it is authoritative over any virtual
    occurrence computed for the same series at the same approximate instant.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        # Materialization upserts on this key; NULL series_id rows never collide
        UniqueConstraint("series_id", "start_at", name="uq_appointments_series_start"),
        Index("idx_appointments_tenant_start", "tenant_id", "start_at"),
        Index("idx_appointments_series", "series_id"),
        Index("idx_appointments_staff_start", "staff_id", "start_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    series_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("appointment_series.id", ondelete="SET NULL"), nullable=True
    )

    # Scheduling (stored in UTC)
    start_at: Mapped[datetime] = mapped_column(nullable=False)
    end_at: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=AppointmentStatus.SCHEDULED.value,
        server_default=AppointmentStatus.SCHEDULED.value,
        nullable=False,
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    customer_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    staff_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("staff.id", ondelete="SET NULL"), nullable=True
    )
    service_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    priority: Mapped[str] = mapped_column(
        String(20), default=AppointmentPriority.MEDIUM.value, nullable=False
    )
    estimated_cost: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    actual_cost: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    completion_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    series: Mapped["AppointmentSeries | None"] = relationship(back_populates="appointments")


class AppointmentException(Base):
    """Audit record of a single occurrence deviating from its series' rule."""

    __tablename__ = "appointment_exceptions"
    __table_args__ = (Index("idx_appointment_exceptions_series", "series_id", "original_start_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    series_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointment_series.id", ondelete="CASCADE"), nullable=False
    )
    original_start_at: Mapped[datetime] = mapped_column(nullable=False)
    change_type: Mapped[str] = mapped_column(String(20), nullable=False)
    replacement_appointment_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

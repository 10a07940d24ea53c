"""Appointment series schemas."""

from datetime import date, datetime, time
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from app.db.enums import AppointmentPriority, EditScope


class SeriesCreate(BaseModel):
    """Schema for creating a recurring appointment series."""
    rrule: str = Field(..., min_length=1, max_length=500)
    start_date: date
    local_start_time: time
    duration_minutes: int = Field(60, ge=5, le=720)
    timezone: str = Field(..., min_length=1, max_length=50)
    until_date: date | None = None
    generation_cap_days: int | None = Field(None, ge=1, le=3650)
    title: str = Field(..., min_length=1, max_length=255)
    customer_id: UUID | None = None
    customer_name: str = Field("", max_length=255)
    staff_id: UUID | None = None
    service_type: str | None = Field(None, max_length=100)
    priority: AppointmentPriority = AppointmentPriority.MEDIUM
    estimated_cost: Decimal | None = Field(None, ge=0)
    description: str | None = None
    notes: str | None = None


class SeriesUpdate(BaseModel):
    """Schema for editing a series. Recurrence fields regenerate future occurrences."""
    rrule: str | None = Field(None, min_length=1, max_length=500)
    local_start_time: time | None = None
    duration_minutes: int | None = Field(None, ge=5, le=720)
    timezone: str | None = Field(None, min_length=1, max_length=50)
    until_date: date | None = None
    generation_cap_days: int | None = Field(None, ge=1, le=3650)
    title: str | None = Field(None, min_length=1, max_length=255)
    customer_name: str | None = Field(None, max_length=255)
    staff_id: UUID | None = None
    service_type: str | None = Field(None, max_length=100)
    priority: AppointmentPriority | None = None
    estimated_cost: Decimal | None = Field(None, ge=0)
    description: str | None = None
    notes: str | None = None


class SeriesRead(BaseModel):
    """Schema for reading a series."""
    id: UUID
    tenant_id: UUID
    rrule: str
    start_date: date
    local_start_time: time
    duration_minutes: int
    timezone: str
    until_date: date | None
    generation_cap_days: int | None
    last_generated_until: datetime | None
    active: bool
    title: str
    customer_id: UUID | None
    customer_name: str
    staff_id: UUID | None
    service_type: str | None
    priority: str
    estimated_cost: Decimal | None
    created_at: datetime
    updated_at: datetime


class OccurrenceCancel(BaseModel):
    """Cancel one occurrence (materialized or virtual) with a scope."""
    occurrence_start_at: datetime
    scope: EditScope = EditScope.THIS_ONLY
    notes: str | None = Field(None, max_length=1000)


class OccurrenceCancelResult(BaseModel):
    scope: EditScope
    cancelled_count: int
    series_active: bool
    until_date: date | None


class MaterializeRequest(BaseModel):
    """Materialize occurrences up to a point in time (defaults to the horizon)."""
    through: datetime | None = None
    max_occurrences: int | None = Field(None, ge=1, le=1000)


class MaterializeResult(BaseModel):
    generated: int
    skipped: int
    last_generated_until: datetime | None

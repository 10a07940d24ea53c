"""Calendar schemas - Pydantic models for the unified calendar API."""

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CalendarQuery(BaseModel):
    """Calendar window request (GET query params or POST body)."""
    model_config = ConfigDict(populate_by_name=True)

    start_date: str | None = Field(None, alias="startDate")
    end_date: str | None = Field(None, alias="endDate")
    timezone: str | None = None
    tenant_id: UUID | None = Field(None, alias="tenantId")
    include_cancelled: bool = Field(False, alias="includeCancelled")


class CalendarEvent(BaseModel):
    """One event on the unified calendar (materialized row or virtual occurrence)."""
    id: str
    title: str
    start_at: datetime
    end_at: datetime
    status: str
    priority: str
    customer_name: str
    service_type: str | None = None
    estimated_cost: Decimal | None = None
    actual_cost: Decimal | None = None
    series_id: UUID | None = None
    appointment_type: Literal["single", "occurrence"]
    description: str | None = None
    additional_info: str | None = None
    completion_notes: str | None = None
    customer_id: UUID | None = None
    staff_id: UUID | None = None
    is_virtual: bool = False
    created_at: datetime
    updated_at: datetime | None = None


class CalendarBlockRead(BaseModel):
    """Opaque busy block (no external event content)."""
    id: UUID
    staff_id: UUID
    start_at: datetime
    end_at: datetime
    source: str
    summary: str


class CalendarMaterializeResult(BaseModel):
    """Rows persisted from the virtual occurrences of a calendar window."""
    inserted: int

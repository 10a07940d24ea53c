"""SQLAlchemy ORM models (import all so they register with Base.metadata)."""

from app.db.models.tenancy import Staff, Tenant
from app.db.models.appointments import Appointment, AppointmentException, AppointmentSeries
from app.db.models.calendar import (
    CalendarSyncLog,
    CalendarWatchChannel,
    StaffCalendarBlock,
    StaffCalendarConnection,
)

__all__ = [
    "Appointment",
    "AppointmentException",
    "AppointmentSeries",
    "CalendarSyncLog",
    "CalendarWatchChannel",
    "Staff",
    "StaffCalendarBlock",
    "StaffCalendarConnection",
    "Tenant",
]

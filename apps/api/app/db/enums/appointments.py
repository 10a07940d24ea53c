"""Appointment and scheduling enums."""

from enum import Enum


class AppointmentStatus(str, Enum):
    """
    Appointment lifecycle status.

    Flow: scheduled → completed
              ↘ cancelled
              ↘ no_show
    """

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class AppointmentKind(str, Enum):
    """How a calendar event came to exist (the CalendarEvent ``appointment_type``)."""

    SINGLE = "single"  # Standalone appointment
    OCCURRENCE = "occurrence"  # Belongs to an appointment series


class AppointmentPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class EditScope(str, Enum):
    """Which part of a series a per-occurrence action applies to."""

    THIS_ONLY = "this_only"
    THIS_AND_FUTURE = "this_and_future"
    ENTIRE_SERIES = "entire_series"


class ExceptionChangeType(str, Enum):
    """Kinds of recorded deviations from a series' rule."""

    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"

"""Scheduling error taxonomy.

Series-scoped errors (bad rule, bad zone) and connection-scoped errors
(token refresh, provider API) are caught at the orchestration boundary so a
single broken series or staff connection never fails a whole tenant calendar
or webhook delivery.
"""

from __future__ import annotations


class SchedulingError(Exception):
    """Base class for calendar engine errors."""


class InvalidTimezoneInput(SchedulingError, ValueError):
    """Unknown IANA zone name or unparseable local date/time."""


class InvalidRecurrenceRule(SchedulingError, ValueError):
    """RRULE string could not be parsed. Recoverable: skip that series."""


class TokenRefreshFailure(SchedulingError):
    """Access token could not be obtained for an external calendar connection."""


class SyncCursorExpired(SchedulingError):
    """Provider rejected the stored incremental sync token (HTTP 410)."""


class ProviderApiError(SchedulingError):
    """Non-success response or transport failure from the calendar provider."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

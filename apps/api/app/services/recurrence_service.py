"""Recurrence expansion for appointment series.

Rules are evaluated against the series' local wall clock: DTSTART is the
series start date combined with its local start time, in no timezone. Each
resulting local occurrence is projected to UTC once, in expand_series.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from dateutil.rrule import rrule, rrulestr

from app.db.models import AppointmentSeries
from app.services import timezone_service
from app.services.errors import InvalidRecurrenceRule

logger = logging.getLogger(__name__)

# rrule.js and Google emit UNTIL in UTC ("...Z"); DTSTART here is floating local
# time, which dateutil refuses to mix with an aware UNTIL.
_UTC_UNTIL = re.compile(r"(UNTIL=\d{8}(?:T\d{6})?)Z", re.IGNORECASE)
_SKIPPED_PROPERTIES = ("DTSTART", "EXDATE", "RDATE", "EXRULE")


# =============================================================================
# Types
# =============================================================================

@dataclass(frozen=True)
class GenerationWindow:
    """Local wall-clock bounds (inclusive) within which a series is expanded."""
    start: datetime
    end: datetime


@dataclass(frozen=True)
class Occurrence:
    """One computed occurrence of a series."""
    series_id: UUID
    local_start: datetime
    start_at: datetime  # UTC
    end_at: datetime  # UTC


# =============================================================================
# Rule parsing
# =============================================================================

def normalize_rule(rule: str | None) -> str:
    """
    Reduce an RRULE value to its ``FREQ=...`` body.

    Accepts "FREQ=WEEKLY", "RRULE:FREQ=WEEKLY" or a multi-line iCalendar
    fragment (the RRULE line is used; DTSTART and friends are ignored because
    the series owns its anchor).
    """
    if not rule or not rule.strip():
        raise InvalidRecurrenceRule("Empty recurrence rule")

    body = None
    for line in rule.strip().splitlines():
        line = line.strip()
        upper = line.upper()
        if not line or upper.startswith(_SKIPPED_PROPERTIES):
            continue
        if upper.startswith("RRULE:"):
            body = line[len("RRULE:"):]
            break
        if "FREQ=" in upper:
            body = line
            break

    if body is None or "FREQ=" not in body.upper():
        raise InvalidRecurrenceRule(f"Recurrence rule has no FREQ: {rule!r}")
    return _UTC_UNTIL.sub(r"\1", body.upper())


def parse_rule(rule: str | None, dtstart: datetime) -> rrule:
    """
    Build a dateutil rrule anchored at ``dtstart`` (naive local).

    Raises:
        InvalidRecurrenceRule: rule is empty or malformed
    """
    body = normalize_rule(rule)
    try:
        parsed = rrulestr(body, dtstart=dtstart.replace(tzinfo=None))
    except (ValueError, KeyError, TypeError, IndexError) as exc:
        raise InvalidRecurrenceRule(f"Invalid recurrence rule {rule!r}: {exc}") from exc
    if not isinstance(parsed, rrule):
        raise InvalidRecurrenceRule(f"Unsupported recurrence rule: {rule!r}")
    return parsed


def validate_rule(rule: str, start_date: date, local_start_time: time) -> None:
    """Raise InvalidRecurrenceRule if ``rule`` cannot be expanded."""
    parse_rule(rule, datetime.combine(start_date, local_start_time))


# =============================================================================
# Expansion
# =============================================================================

def expand(
    rule: str,
    series_start_local: datetime,
    window_start_local: datetime,
    window_end_local: datetime,
    until_date: date | None = None,
    max_occurrences: int | None = None,
) -> list[datetime]:
    """
    Expand ``rule`` into local wall-clock occurrences inside the window.

    Bounds are inclusive; ``until_date`` is an inclusive local date that hard
    stops the series. Returns an ascending, duplicate-free list, empty when
    the window start is not before the effective end. Pure: every call builds
    its own rule object.

    Raises:
        InvalidRecurrenceRule: rule is empty or malformed
    """
    effective_end = window_end_local
    if until_date is not None:
        effective_end = min(effective_end, datetime.combine(until_date, time.max))

    if window_start_local >= effective_end:
        return []

    recurrence = parse_rule(rule, series_start_local)

    occurrences: list[datetime] = []
    previous: datetime | None = None
    for occurrence in recurrence:
        if occurrence > effective_end:
            break
        if occurrence < window_start_local or occurrence == previous:
            continue
        occurrences.append(occurrence)
        previous = occurrence
        if max_occurrences is not None and len(occurrences) >= max_occurrences:
            break
    return occurrences


def series_start_local(series: AppointmentSeries) -> datetime:
    """Series anchor: start date at its local start time (naive local)."""
    return datetime.combine(series.start_date, series.local_start_time)


def generation_window(
    series: AppointmentSeries,
    query_start_local: datetime,
    query_end_local: datetime,
    now: datetime,
) -> GenerationWindow | None:
    """
    Clamp a query window to what may be generated for ``series``.

    start = max(query start, last_generated_until + 1 day, series start date)
    end   = min(query end, now + generation_cap_days, end of until_date)

    Returns None when nothing is left to generate.
    """
    zone = series.timezone

    start = max(query_start_local, datetime.combine(series.start_date, time.min))
    if series.last_generated_until is not None:
        watermark = timezone_service.to_local_datetime(series.last_generated_until, zone)
        start = max(start, watermark + timedelta(days=1))

    end = query_end_local
    if series.generation_cap_days:
        cap_end = timezone_service.now_local(zone, now) + timedelta(days=series.generation_cap_days)
        end = min(end, cap_end)
    if series.until_date is not None:
        end = min(end, datetime.combine(series.until_date, time.max))

    if start >= end:
        return None
    return GenerationWindow(start=start, end=end)


def expand_series(
    series: AppointmentSeries,
    window_start: datetime,
    window_end: datetime,
    now: datetime | None = None,
    max_occurrences: int | None = None,
) -> list[Occurrence]:
    """
    Compute the occurrences of ``series`` between two UTC instants.

    The UTC query bounds are projected into the series' zone, the rule is
    expanded there, and each local occurrence is converted to UTC once.

    Raises:
        InvalidRecurrenceRule: the series rule is malformed
        InvalidTimezoneInput: the series zone is unknown
    """
    now = now or datetime.now(timezone.utc)
    zone = series.timezone

    window = generation_window(
        series,
        timezone_service.to_local_datetime(window_start, zone),
        timezone_service.to_local_datetime(window_end, zone),
        now,
    )
    if window is None:
        logger.debug("Series %s: no generation needed, window is empty", series.id)
        return []

    local_starts = expand(
        series.rrule,
        series_start_local(series),
        window.start,
        window.end,
        until_date=series.until_date,
        max_occurrences=max_occurrences,
    )

    cap_instant = None
    if series.generation_cap_days:
        cap_instant = now + timedelta(days=series.generation_cap_days)
    duration = timedelta(minutes=series.duration_minutes)

    occurrences: list[Occurrence] = []
    for local_start in local_starts:
        start_at = timezone_service.local_to_utc(local_start, zone)
        if cap_instant is not None and start_at > cap_instant:
            continue
        occurrences.append(
            Occurrence(
                series_id=series.id,
                local_start=local_start,
                start_at=start_at,
                end_at=start_at + duration,
            )
        )
    return occurrences

"""Reconciliation of materialized appointments with virtual series occurrences.

A calendar entry is a tagged variant: ``MaterializedEntry`` wraps a persisted
Appointment row, ``VirtualEntry`` is a computed occurrence identified by
(series id, UTC start). Materialized rows always win: a virtual candidate is
suppressed when its series already has a row within the tolerance window.

This module is a pure read-side merge. Persisting the virtual entries that
still need it is the caller's job (see materialization_service).
"""

from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Union
from uuid import UUID

from app.db.enums import AppointmentKind, AppointmentStatus
from app.db.models import Appointment, AppointmentSeries
from app.services.recurrence_service import Occurrence

DEFAULT_TOLERANCE = timedelta(seconds=60)


# =============================================================================
# Types
# =============================================================================

def virtual_occurrence_id(series_id: UUID, start_at: datetime) -> str:
    """
    Deterministic identifier for a not-yet-persisted occurrence.

    Stable across repeated queries so clients can diff calendar responses.
    """
    instant = start_at.astimezone(timezone.utc).isoformat()
    return f"virtual-{series_id}-{instant}"


@dataclass(frozen=True)
class MaterializedEntry:
    """A persisted appointment row."""
    row: Appointment

    @property
    def id(self) -> str:
        return str(self.row.id)

    @property
    def series_id(self) -> UUID | None:
        return self.row.series_id

    @property
    def start_at(self) -> datetime:
        return self.row.start_at

    @property
    def end_at(self) -> datetime:
        return self.row.end_at

    @property
    def kind(self) -> AppointmentKind:
        return AppointmentKind.OCCURRENCE if self.row.series_id else AppointmentKind.SINGLE

    @property
    def is_virtual(self) -> bool:
        return False


@dataclass(frozen=True)
class VirtualEntry:
    """A computed series occurrence with no backing row yet."""
    series_id: UUID
    start_at: datetime
    end_at: datetime
    series: AppointmentSeries = field(compare=False, repr=False)
    needs_persistence: bool = True

    @property
    def id(self) -> str:
        return virtual_occurrence_id(self.series_id, self.start_at)

    @property
    def kind(self) -> AppointmentKind:
        return AppointmentKind.OCCURRENCE

    @property
    def is_virtual(self) -> bool:
        return True


CalendarEntry = Union[MaterializedEntry, VirtualEntry]


def virtual_entries_for(series: AppointmentSeries, occurrences: Iterable[Occurrence]) -> list[VirtualEntry]:
    """Wrap expanded occurrences of ``series`` as virtual candidates."""
    return [
        VirtualEntry(
            series_id=series.id,
            start_at=occurrence.start_at,
            end_at=occurrence.end_at,
            series=series,
        )
        for occurrence in occurrences
    ]


# =============================================================================
# Merge
# =============================================================================

def _index_materialized_starts(rows: Iterable[Appointment]) -> dict[UUID, list[datetime]]:
    """series_id → sorted start instants of its materialized rows."""
    starts: dict[UUID, list[datetime]] = {}
    for row in rows:
        if row.series_id is None:
            continue
        starts.setdefault(row.series_id, []).append(row.start_at)
    for values in starts.values():
        values.sort()
    return starts


def _has_counterpart(starts: list[datetime], instant: datetime, tolerance: timedelta) -> bool:
    """True if any start in the sorted list is strictly within tolerance of instant."""
    position = bisect_left(starts, instant)
    for neighbour in starts[max(position - 1, 0):position + 1]:
        if abs(neighbour - instant) < tolerance:
            return True
    return False


def _sort_key(entry: CalendarEntry) -> tuple[datetime, int, str]:
    # Materialized rows render first when instants coincide
    return (entry.start_at, 1 if entry.is_virtual else 0, entry.id)


def reconcile(
    materialized_rows: Iterable[Appointment],
    virtual_candidates: Iterable[VirtualEntry],
    tolerance: timedelta = DEFAULT_TOLERANCE,
    include_cancelled: bool = False,
) -> list[CalendarEntry]:
    """
    Merge materialized rows and virtual candidates into one sorted list.

    - A virtual candidate is dropped when its series has a materialized row
      whose start is within ``tolerance`` of the candidate's start. Cancelled
      rows count: they record that the occurrence was removed.
    - Surviving candidates are flagged ``needs_persistence``.
    - Cancelled rows are left out of the output unless ``include_cancelled``.
    - Sorted by start instant; ties put materialized rows before virtual ones.
    """
    rows = list(materialized_rows)
    starts_by_series = _index_materialized_starts(rows)

    entries: list[CalendarEntry] = [
        MaterializedEntry(row)
        for row in rows
        if include_cancelled or row.status != AppointmentStatus.CANCELLED.value
    ]

    seen_virtual: set[str] = set()
    for candidate in virtual_candidates:
        starts = starts_by_series.get(candidate.series_id)
        if starts and _has_counterpart(starts, candidate.start_at, tolerance):
            continue
        if candidate.id in seen_virtual:
            continue
        seen_virtual.add(candidate.id)
        entries.append(candidate)

    entries.sort(key=_sort_key)
    return entries


def pending_persistence(entries: Iterable[CalendarEntry]) -> list[VirtualEntry]:
    """Virtual entries from a reconcile result that still need a backing row."""
    return [
        entry
        for entry in entries
        if isinstance(entry, VirtualEntry) and entry.needs_persistence
    ]

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.db.enums import AppointmentKind, AppointmentStatus
from app.db.models import Appointment, AppointmentSeries
from app.services.reconciliation_service import (
    MaterializedEntry,
    VirtualEntry,
    pending_persistence,
    reconcile,
    virtual_occurrence_id,
)

T = datetime(2024, 1, 8, 14, 0, tzinfo=timezone.utc)


def _series() -> AppointmentSeries:
    return AppointmentSeries(id=uuid.uuid4(), title="Weekly", customer_name="")


def _row(series_id, start_at, status=AppointmentStatus.SCHEDULED.value) -> Appointment:
    return Appointment(
        id=uuid.uuid4(),
        series_id=series_id,
        start_at=start_at,
        end_at=start_at + timedelta(minutes=50),
        status=status,
        title="Weekly",
    )


def _virtual(series, start_at) -> VirtualEntry:
    return VirtualEntry(
        series_id=series.id,
        start_at=start_at,
        end_at=start_at + timedelta(minutes=50),
        series=series,
    )


@pytest.mark.parametrize("offset", [timedelta(seconds=30), timedelta(seconds=-30)])
def test_candidate_within_tolerance_is_suppressed(offset):
    series = _series()
    row = _row(series.id, T)

    entries = reconcile([row], [_virtual(series, T + offset)])

    assert len(entries) == 1
    assert isinstance(entries[0], MaterializedEntry)


@pytest.mark.parametrize("offset", [timedelta(seconds=120), timedelta(seconds=-120)])
def test_candidate_outside_tolerance_is_kept(offset):
    series = _series()
    row = _row(series.id, T)

    entries = reconcile([row], [_virtual(series, T + offset)])

    assert len(entries) == 2
    assert pending_persistence(entries)[0].start_at == T + offset


def test_row_of_other_series_does_not_suppress():
    series, other = _series(), _series()
    entries = reconcile([_row(other.id, T)], [_virtual(series, T)])
    assert len(entries) == 2


def test_sorted_with_materialized_first_on_ties():
    series, other = _series(), _series()
    standalone = _row(None, T)
    later = _virtual(series, T + timedelta(hours=1))
    tie = _virtual(other, T)

    entries = reconcile([standalone], [later, tie])

    assert [e.start_at for e in entries] == [T, T, T + timedelta(hours=1)]
    assert entries[0].is_virtual is False
    assert entries[0].kind == AppointmentKind.SINGLE
    assert entries[1].is_virtual is True


def test_cancelled_row_suppresses_but_is_hidden():
    series = _series()
    cancelled = _row(series.id, T, status=AppointmentStatus.CANCELLED.value)

    assert reconcile([cancelled], [_virtual(series, T)]) == []

    shown = reconcile([cancelled], [_virtual(series, T)], include_cancelled=True)
    assert len(shown) == 1 and shown[0].row is cancelled


def test_duplicate_virtual_candidates_collapse():
    series = _series()
    entries = reconcile([], [_virtual(series, T), _virtual(series, T)])
    assert len(entries) == 1


def test_virtual_id_is_deterministic():
    series_id = uuid.UUID("11111111-1111-1111-1111-111111111111")
    eastern = T.astimezone(timezone(timedelta(hours=-5)))

    assert virtual_occurrence_id(series_id, T) == virtual_occurrence_id(series_id, eastern)
    assert virtual_occurrence_id(series_id, T) == (
        "virtual-11111111-1111-1111-1111-111111111111-2024-01-08T14:00:00+00:00"
    )


def test_reconcile_does_not_mutate_inputs():
    series = _series()
    rows = [_row(series.id, T)]
    candidates = [_virtual(series, T), _virtual(series, T + timedelta(days=7))]

    reconcile(rows, candidates)

    assert len(rows) == 1 and len(candidates) == 2

from datetime import date, datetime, time, timedelta, timezone

from app.db.enums import AppointmentStatus
from app.db.models import Appointment
from app.services import calendar_service

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _materialize(db, series, start_at, status=AppointmentStatus.SCHEDULED.value):
    row = Appointment(
        tenant_id=series.tenant_id,
        series_id=series.id,
        start_at=start_at,
        end_at=start_at + timedelta(minutes=series.duration_minutes),
        status=status,
        title=series.title,
        customer_name=series.customer_name,
    )
    db.add(row)
    db.commit()
    return row


def test_weekly_new_york_series_yields_four_virtual_occurrences(db, test_tenant, make_series):
    make_series()

    entries = calendar_service.get_calendar(
        db, test_tenant.id, "2024-01-01", "2024-01-22", "America/New_York", now=NOW
    )

    assert [e.start_at for e in entries] == [
        datetime(2024, 1, d, 14, 0, tzinfo=timezone.utc) for d in (1, 8, 15, 22)
    ]
    assert all(e.is_virtual for e in entries)


def test_repeated_queries_return_identical_ids(db, test_tenant, make_series):
    make_series()
    make_series(rrule="FREQ=DAILY;COUNT=5", local_start_time=time(13, 30))

    first = calendar_service.get_calendar(db, test_tenant.id, "2024-01-01", "2024-01-31", now=NOW)
    second = calendar_service.get_calendar(db, test_tenant.id, "2024-01-01", "2024-01-31", now=NOW)

    assert [e.id for e in first] == [e.id for e in second]
    assert [e.id for e in first] == [
        calendar_service.to_calendar_event(e).id for e in first
    ]


def test_materialized_row_replaces_virtual_occurrence(db, test_tenant, make_series):
    series = make_series()
    row = _materialize(db, series, datetime(2024, 1, 8, 14, 0, 20, tzinfo=timezone.utc))

    entries = calendar_service.get_calendar(db, test_tenant.id, "2024-01-01", "2024-01-22", now=NOW)

    assert len(entries) == 4
    assert [e.is_virtual for e in entries] == [True, False, True, True]
    assert entries[1].id == str(row.id)


def test_cancelled_occurrence_disappears(db, test_tenant, make_series):
    series = make_series()
    _materialize(
        db, series, datetime(2024, 1, 15, 14, 0, tzinfo=timezone.utc), AppointmentStatus.CANCELLED.value
    )

    entries = calendar_service.get_calendar(db, test_tenant.id, "2024-01-01", "2024-01-22", now=NOW)

    assert [e.start_at.day for e in entries] == [1, 8, 22]


def test_one_malformed_series_among_five_is_skipped(db, test_tenant, make_series, caplog):
    good = [make_series(title=f"Series {i}", local_start_time=time(9 + i, 0)) for i in range(4)]
    broken = make_series(rrule="FREQ=WHENEVER;BYDAY=ZZ")

    entries = calendar_service.get_calendar(db, test_tenant.id, "2024-01-01", "2024-01-22", now=NOW)

    series_ids = {e.series_id for e in entries}
    assert series_ids == {s.id for s in good}
    assert broken.id not in series_ids
    assert len(entries) == 16
    assert "Skipping series" in caplog.text


def test_series_with_unknown_zone_is_skipped(db, test_tenant, make_series):
    make_series()
    make_series(timezone="Atlantis/Capital")

    entries = calendar_service.get_calendar(db, test_tenant.id, "2024-01-01", "2024-01-22", now=NOW)

    assert len(entries) == 4


def test_inactive_and_foreign_series_are_excluded(db, test_tenant, make_series):
    from app.db.models import Tenant

    other = Tenant(name="Other Practice")
    db.add(other)
    db.commit()
    make_series(active=False)
    make_series(tenant_id=other.id)

    assert calendar_service.get_calendar(db, test_tenant.id, "2024-01-01", "2024-01-22", now=NOW) == []


def test_standalone_appointment_is_single(db, test_tenant):
    db.add(Appointment(
        tenant_id=test_tenant.id,
        start_at=datetime(2024, 1, 3, 15, 0, tzinfo=timezone.utc),
        end_at=datetime(2024, 1, 3, 16, 0, tzinfo=timezone.utc),
        title="Intake",
    ))
    db.commit()

    entries = calendar_service.get_calendar(db, test_tenant.id, "2024-01-01", "2024-01-22", now=NOW)
    event = calendar_service.to_calendar_event(entries[0])

    assert event.appointment_type == "single"
    assert event.is_virtual is False


def test_default_window_is_lookback_and_lookahead():
    start, end, zone = calendar_service.resolve_window(None, None, "America/New_York", now=NOW)

    assert zone == "America/New_York"
    assert start == NOW - timedelta(days=30)
    # 7 months on from 2024-01-01 07:00 local (EST) is 2024-08-01 07:00 local (EDT)
    assert end == datetime(2024, 8, 1, 11, 0, tzinfo=timezone.utc)


def test_date_only_end_covers_the_whole_local_day():
    start, end, _ = calendar_service.resolve_window("2024-01-01", "2024-01-22", "America/New_York")

    assert start == datetime(2024, 1, 1, 5, 0, tzinfo=timezone.utc)
    assert end.date() == date(2024, 1, 23)
    assert end > datetime(2024, 1, 23, 4, 59, tzinfo=timezone.utc)


def test_materialize_window_persists_only_virtual_occurrences(db, test_tenant, make_series):
    series = make_series()
    _materialize(db, series, datetime(2024, 1, 8, 14, 0, tzinfo=timezone.utc))

    inserted = calendar_service.materialize_window(db, test_tenant.id, "2024-01-01", "2024-01-22", now=NOW)
    again = calendar_service.materialize_window(db, test_tenant.id, "2024-01-01", "2024-01-22", now=NOW)

    rows = db.query(Appointment).filter(Appointment.series_id == series.id).count()
    assert inserted == 3
    assert again == 0
    assert rows == 4

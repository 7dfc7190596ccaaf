"""Tests for booking and busy-time overlap checks."""

from datetime import datetime, timedelta, timezone

from meeting_scheduler.models import Booking, BusyInterval
from meeting_scheduler.scheduling.conflicts import intervals_overlap, is_free, overlaps_busy


def _booking(time: str, duration: int) -> Booking:
    return Booking(
        id=1,
        organizer_id=1,
        attendee_name="Jan",
        attendee_email="jan@example.com",
        date="2025-03-03",
        time=time,
        duration_minutes=duration,
    )


def test_back_to_back_is_free():
    assert is_free([_booking("10:00", 30)], "10:30", 30)
    assert is_free([_booking("10:30", 30)], "10:00", 30)


def test_partial_overlap_conflicts():
    assert not is_free([_booking("10:00", 30)], "10:15", 30)
    assert not is_free([_booking("10:15", 30)], "10:00", 30)


def test_containment_conflicts_both_ways():
    assert not is_free([_booking("10:00", 120)], "10:30", 30)
    assert not is_free([_booking("10:30", 15)], "10:00", 60)


def test_same_start_conflicts():
    assert not is_free([_booking("10:00", 30)], "10:00", 30)


def test_no_bookings_is_free():
    assert is_free([], "10:00", 30)


def test_any_conflicting_booking_blocks():
    bookings = [_booking("09:00", 30), _booking("11:00", 60)]
    assert is_free(bookings, "09:30", 90)
    assert not is_free(bookings, "09:30", 91)


def test_intervals_overlap_is_half_open():
    assert not intervals_overlap(0, 30, 30, 60)
    assert intervals_overlap(0, 31, 30, 60)


def test_overlaps_busy_with_aware_datetimes():
    start = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)
    busy = [BusyInterval(start=start + timedelta(minutes=30), end=start + timedelta(hours=1))]

    assert not overlaps_busy(start, start + timedelta(minutes=30), busy)
    assert overlaps_busy(start, start + timedelta(minutes=45), busy)
    assert not overlaps_busy(start + timedelta(hours=1), start + timedelta(hours=2), busy)
    assert not overlaps_busy(start, start + timedelta(hours=1), [])

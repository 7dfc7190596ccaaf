"""
Overlap detection between candidate slots, bookings and busy intervals.

All intervals are half-open: [start, end). A booking ending exactly when
another starts does not conflict.
"""

from datetime import datetime
from typing import Any, Iterable

from meeting_scheduler.models import Booking, BusyInterval
from meeting_scheduler.scheduling.slots import parse_time


def intervals_overlap(start_a: Any, end_a: Any, start_b: Any, end_b: Any) -> bool:
    return start_a < end_b and end_a > start_b


def is_free(
    existing_bookings: Iterable[Booking],
    candidate_start: str,
    candidate_duration: int,
) -> bool:
    """
    True when [candidate_start, candidate_start + duration) overlaps none of
    `existing_bookings`.

    The caller supplies the bookings of one organizer on one date; times are
    compared as minutes since midnight.
    """
    slot_start = parse_time(candidate_start)
    slot_end = slot_start + candidate_duration

    for booking in existing_bookings:
        booking_start = parse_time(booking.time)
        booking_end = booking_start + booking.duration_minutes
        if intervals_overlap(slot_start, slot_end, booking_start, booking_end):
            return False
    return True


def overlaps_busy(
    slot_start: datetime, slot_end: datetime, busy_intervals: Iterable[BusyInterval]
) -> bool:
    """True when the slot instant range touches any externally busy interval."""
    return any(
        intervals_overlap(slot_start, slot_end, busy.start, busy.end)
        for busy in busy_intervals
    )

"""
Time-slot generation.

Turns a window of wall-clock time plus a meeting duration into the
candidate start times a guest can pick from.
"""

import re
from typing import List

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

MINUTES_PER_DAY = 24 * 60


def parse_time(value: str) -> int:
    """Convert `HH:MM` to minutes since midnight."""
    match = TIME_PATTERN.match(value or "")
    if not match:
        raise ValueError(f"time '{value}' must be in HH:MM format (e.g., 09:00)")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_minutes(minutes: int) -> str:
    """Convert minutes since midnight back to `HH:MM`."""
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}"


def generate_slots(start_time: str, end_time: str, duration_minutes: int) -> List[str]:
    """
    Candidate slot start times between `start_time` and `end_time`.

    Slots step by `duration_minutes` from `start_time`. A slot is kept only
    when it ends at or before `end_time`, so the last slot may end exactly
    on the boundary but never runs past it.

    Example:
        generate_slots("09:30", "11:00", 30) -> ["09:30", "10:00", "10:30"]
    """
    if duration_minutes <= 0:
        return []

    current = parse_time(start_time)
    end = parse_time(end_time)

    slots = []
    while current + duration_minutes <= end:
        slots.append(format_minutes(current))
        current += duration_minutes
    return slots

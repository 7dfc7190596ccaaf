from meeting_scheduler.scheduling.availability import resolve_windows, weekday_index
from meeting_scheduler.scheduling.conflicts import is_free, overlaps_busy
from meeting_scheduler.scheduling.slots import generate_slots

__all__ = [
    "generate_slots",
    "is_free",
    "overlaps_busy",
    "resolve_windows",
    "weekday_index",
]

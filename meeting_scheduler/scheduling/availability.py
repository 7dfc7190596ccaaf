"""
Availability rule resolution.

Decides which of an organizer's rules apply to a calendar date and turns
them into time windows for that date.
"""

from __future__ import annotations

import logging
from datetime import date as date_type
from typing import Any, Iterable, Optional, Union

from meeting_scheduler.models import (
    AvailabilityRule,
    DateRangeRule,
    TimeWindow,
    WeekdayRule,
)

logger = logging.getLogger(__name__)


def to_date(value: Union[str, date_type]) -> date_type:
    if isinstance(value, date_type):
        return value
    return date_type.fromisoformat(value)


def weekday_index(value: Union[str, date_type]) -> int:
    """Weekday of a date with 0=Sunday .. 6=Saturday."""
    return (to_date(value).weekday() + 1) % 7


def rule_applies(rule: Any, day: Union[str, date_type]) -> bool:
    if isinstance(rule, WeekdayRule):
        return rule.weekday == weekday_index(day)
    if isinstance(rule, DateRangeRule):
        day_str = to_date(day).isoformat()
        # Zero-padded ISO dates compare correctly as strings
        return rule.start_date <= day_str <= rule.end_date
    return False


def resolve_windows(
    rules: Iterable[Optional[AvailabilityRule]], day: Union[str, date_type]
) -> list[TimeWindow]:
    """
    Time windows that apply on `day`, in rule order.

    Windows are not merged: a morning and an evening rule on the same day
    yield two windows. Inert rules (None) contribute nothing.
    """
    return [
        TimeWindow(start_time=rule.start_time, end_time=rule.end_time)
        for rule in rules
        if rule is not None and rule_applies(rule, day)
    ]


def rule_from_row(row: dict[str, Any]) -> Optional[AvailabilityRule]:
    """Build the tagged rule variant from a stored availability row.

    A row carrying neither a weekday nor a complete date range is inert and
    maps to None instead of being read as a rule for every day.
    """
    weekday = row.get("day_of_week")
    if weekday is not None:
        return WeekdayRule(
            weekday=int(weekday),
            start_time=row["start_time"],
            end_time=row["end_time"],
        )

    start_date = row.get("start_date")
    end_date = row.get("end_date")
    if start_date and end_date:
        return DateRangeRule(
            start_date=str(start_date),
            end_date=str(end_date),
            start_time=row["start_time"],
            end_time=row["end_time"],
        )

    logger.debug(f"Ignoring inert availability row {row.get('id')}")
    return None


def rule_to_row(rule: AvailabilityRule) -> dict[str, Any]:
    if isinstance(rule, WeekdayRule):
        return {
            "day_of_week": rule.weekday,
            "start_date": None,
            "end_date": None,
            "start_time": rule.start_time,
            "end_time": rule.end_time,
        }
    return {
        "day_of_week": None,
        "start_date": rule.start_date,
        "end_date": rule.end_date,
        "start_time": rule.start_time,
        "end_time": rule.end_time,
    }

"""Input validation for booking requests and organizer settings."""

from __future__ import annotations

import re
from datetime import date
from typing import Any, Optional

from meeting_scheduler.errors import ValidationFailed
from meeting_scheduler.models import AvailabilityRule, DateRangeRule, WeekdayRule
from meeting_scheduler.scheduling.slots import MINUTES_PER_DAY, TIME_PATTERN, parse_time

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
USERNAME_PATTERN = re.compile(r"^[a-z0-9-]+$")

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100
DURATION_STEP = 15
DURATION_MIN = 15
DURATION_MAX = 480


def date_error(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        return "Date must be in YYYY-MM-DD format"
    try:
        date.fromisoformat(value)
    except ValueError:
        return f"'{value}' is not a valid calendar date"
    return None


def time_error(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not TIME_PATTERN.match(value):
        return "Time must be in HH:MM format"
    return None


def is_valid_email(value: Any) -> bool:
    return isinstance(value, str) and bool(EMAIL_PATTERN.match(value))


def is_valid_username(value: Any) -> bool:
    return isinstance(value, str) and bool(USERNAME_PATTERN.match(value))


def validate_date(value: Any, field: str = "date") -> str:
    error = date_error(value)
    if error:
        raise ValidationFailed({field: error})
    return value


def validate_request_duration(value: Any, field: str = "duration") -> int:
    """Per-request duration override: any positive number of minutes within a day."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationFailed({field: "Duration must be an integer number of minutes"})
    if value <= 0 or value > MINUTES_PER_DAY:
        raise ValidationFailed({field: "Duration must be between 1 and 1440 minutes"})
    return value


def validate_booking_request(
    attendee_name: Any,
    attendee_email: Any,
    booking_date: Any,
    booking_time: Any,
    duration_minutes: Any,
    attendee_phone: Any = None,
    duration_required: bool = True,
) -> None:
    """Collect every field problem at once so nothing is partially applied.

    With `duration_required=False` a None duration is accepted; the caller
    resolves it from the organizer's configuration afterwards.
    """
    errors: dict[str, str] = {}

    name = attendee_name.strip() if isinstance(attendee_name, str) else ""
    if len(name) < NAME_MIN_LENGTH:
        errors["attendee_name"] = (
            f"Name must be at least {NAME_MIN_LENGTH} characters long"
        )
    elif len(name) > NAME_MAX_LENGTH:
        errors["attendee_name"] = f"Name must be at most {NAME_MAX_LENGTH} characters"

    if not is_valid_email(attendee_email):
        errors["attendee_email"] = "Invalid email format"

    error = date_error(booking_date)
    if error:
        errors["date"] = error

    error = time_error(booking_time)
    if error:
        errors["time"] = error

    if duration_minutes is None and not duration_required:
        pass
    elif isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
        errors["duration"] = "Duration must be an integer number of minutes"
    elif duration_minutes <= 0:
        errors["duration"] = "Duration must be positive"
    elif "time" not in errors and parse_time(booking_time) + duration_minutes > MINUTES_PER_DAY:
        errors["duration"] = "Meeting must end on the same day it starts"

    if attendee_phone is not None and not isinstance(attendee_phone, str):
        errors["attendee_phone"] = "Phone must be text"

    if errors:
        raise ValidationFailed(errors)


def validate_meeting_duration(value: Any, field: str = "duration_minutes") -> int:
    """Stored durations are multiples of 15 between 15 and 480 minutes."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationFailed({field: "Duration must be an integer number of minutes"})
    if value < DURATION_MIN or value > DURATION_MAX or value % DURATION_STEP:
        raise ValidationFailed(
            {
                field: f"Duration must be a multiple of {DURATION_STEP} between "
                f"{DURATION_MIN} and {DURATION_MAX} minutes"
            }
        )
    return value


def validate_minimum_notice(value: Any, field: str = "minimum_notice_hours") -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationFailed({field: "Minimum notice must be a non-negative integer"})
    return value


def validate_rules(rules: list[AvailabilityRule]) -> None:
    errors: dict[str, str] = {}
    for index, rule in enumerate(rules):
        prefix = f"availability[{index}]"
        start_err = time_error(rule.start_time)
        end_err = time_error(rule.end_time)
        if start_err:
            errors[f"{prefix}.start_time"] = start_err
        if end_err:
            errors[f"{prefix}.end_time"] = end_err
        if not start_err and not end_err and parse_time(rule.start_time) >= parse_time(
            rule.end_time
        ):
            errors[f"{prefix}.end_time"] = "End time must be after start time"

        if isinstance(rule, WeekdayRule):
            if not 0 <= rule.weekday <= 6:
                errors[f"{prefix}.weekday"] = "Weekday must be between 0 and 6"
        elif isinstance(rule, DateRangeRule):
            start_date_err = date_error(rule.start_date)
            end_date_err = date_error(rule.end_date)
            if start_date_err:
                errors[f"{prefix}.start_date"] = start_date_err
            if end_date_err:
                errors[f"{prefix}.end_date"] = end_date_err
            if not start_date_err and not end_date_err and rule.start_date > rule.end_date:
                errors[f"{prefix}.end_date"] = "End date must not be before start date"
        else:
            errors[prefix] = "Rule must be a weekday rule or a date-range rule"

    if errors:
        raise ValidationFailed(errors)

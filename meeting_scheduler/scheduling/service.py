"""
Slot availability engine.

Combines availability rules, meeting duration, minimum notice, existing
bookings and external busy time into the slots a guest can pick from.
"""

from __future__ import annotations

import asyncio
import logging
from calendar import monthrange
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Iterable, Optional
from zoneinfo import ZoneInfo

from meeting_scheduler.config import DEFAULT_TIMEZONE
from meeting_scheduler.db.types import DatabaseInterface
from meeting_scheduler.errors import ConfigurationMissing, NotFound, ValidationFailed
from meeting_scheduler.models import (
    AvailabilityRule,
    Booking,
    BusyInterval,
    Organizer,
    Slot,
    TimeWindow,
)
from meeting_scheduler.scheduling import availability
from meeting_scheduler.scheduling.conflicts import is_free, overlaps_busy
from meeting_scheduler.scheduling.slots import generate_slots, parse_time
from meeting_scheduler.scheduling.validation import (
    validate_date,
    validate_minimum_notice,
    validate_request_duration,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SlotAvailabilityEngine:
    """Computes bookable slots for one date or a whole month.

    Args:
        database: Store for rules, settings, meeting types and bookings
        calendar: External calendar adapter, or None when no calendar
            integration is configured
        timezone: IANA name of the organizer timezone. Slot times are wall
            clock times in this zone.
        clock: Returns the current aware datetime; injectable for tests
    """

    def __init__(
        self,
        database: DatabaseInterface,
        calendar: Any = None,
        timezone: str = DEFAULT_TIMEZONE,
        clock: Optional[Clock] = None,
    ):
        self.database = database
        self.calendar = calendar
        self.tz = ZoneInfo(timezone)
        self.clock = clock or utc_now

    async def get_organizer(self, organizer_id: int) -> Organizer:
        organizer = await asyncio.to_thread(self.database.get_organizer, organizer_id)
        if not organizer:
            raise NotFound(f"Organizer {organizer_id} not found")
        return organizer

    async def resolve_windows(self, organizer_id: int, day: str) -> list[TimeWindow]:
        rules = await asyncio.to_thread(self.database.list_rules, organizer_id)
        return availability.resolve_windows(rules, day)

    async def resolve_meeting_parameters(
        self,
        organizer_id: int,
        duration: Optional[int] = None,
        meeting_type_slug: Optional[str] = None,
        minimum_notice_hours: Optional[int] = None,
    ) -> tuple[int, int]:
        """Meeting duration and minimum notice for a query or booking.

        Duration comes from the explicit value, then the named meeting
        type, then the organizer's settings, then the default meeting
        type. Minimum notice comes from the explicit value, then the
        settings, else 0.

        Raises:
            ValidationFailed: Explicit values out of range
            NotFound: Unknown meeting type slug
            ConfigurationMissing: No duration could be resolved
        """
        if duration is not None:
            duration = validate_request_duration(duration)
        if minimum_notice_hours is not None:
            minimum_notice_hours = validate_minimum_notice(minimum_notice_hours)

        if meeting_type_slug:
            meeting_type = await asyncio.to_thread(
                self.database.get_meeting_type_by_slug, organizer_id, meeting_type_slug
            )
            if not meeting_type:
                raise NotFound(f"Meeting type '{meeting_type_slug}' not found")
            if duration is None:
                duration = meeting_type.duration_minutes

        settings = await asyncio.to_thread(self.database.get_settings, organizer_id)
        if duration is None and settings:
            duration = settings.duration_minutes

        if duration is None:
            default_type = await asyncio.to_thread(
                self.database.get_default_meeting_type, organizer_id
            )
            if default_type:
                duration = default_type.duration_minutes

        if duration is None:
            raise ConfigurationMissing(
                f"Organizer {organizer_id} has no meeting duration configured"
            )

        if minimum_notice_hours is None:
            minimum_notice_hours = settings.minimum_notice_hours if settings else 0

        return duration, minimum_notice_hours

    def _slot_start(self, day: str, slot_time: str) -> datetime:
        minutes = parse_time(slot_time)
        return datetime.combine(
            date.fromisoformat(day), time(minutes // 60, minutes % 60), tzinfo=self.tz
        )

    def _earliest_start(self, minimum_notice_hours: int) -> datetime:
        return self.clock() + timedelta(hours=minimum_notice_hours)

    def _candidates(
        self,
        day: str,
        windows: Iterable[TimeWindow],
        duration: int,
        bookings: list[Booking],
        earliest: datetime,
    ) -> Iterable[tuple[str, bool]]:
        """(time, free of bookings) for every slot that clears minimum notice, in window order."""
        for window in windows:
            for slot_time in generate_slots(window.start_time, window.end_time, duration):
                if self._slot_start(day, slot_time) < earliest:
                    continue
                yield slot_time, is_free(bookings, slot_time, duration)

    def _is_busy(
        self, day: str, slot_time: str, duration: int, busy: list[BusyInterval]
    ) -> bool:
        if not busy:
            return False
        start = self._slot_start(day, slot_time)
        return overlaps_busy(start, start + timedelta(minutes=duration), busy)

    async def _fetch_busy(
        self, organizer_id: int, date_from: str, date_to: str
    ) -> list[BusyInterval]:
        if self.calendar is None:
            return []
        if not await self.calendar.is_connected(organizer_id):
            return []
        return await self.calendar.fetch_busy(organizer_id, date_from, date_to)

    async def get_slots_for_date(
        self,
        organizer_id: int,
        day: str,
        duration: Optional[int] = None,
        minimum_notice_hours: Optional[int] = None,
        meeting_type_slug: Optional[str] = None,
    ) -> list[Slot]:
        """All slots for `day` that clear minimum notice, sorted by time.

        A time reached through several windows is reported once and is
        available if it is free in any of them.
        """
        validate_date(day)
        await self.get_organizer(organizer_id)
        duration, minimum_notice_hours = await self.resolve_meeting_parameters(
            organizer_id, duration, meeting_type_slug, minimum_notice_hours
        )

        windows = await self.resolve_windows(organizer_id, day)
        if not windows:
            return []

        bookings = await asyncio.to_thread(
            self.database.list_bookings, organizer_id, day, day
        )
        earliest = self._earliest_start(minimum_notice_hours)

        slots: dict[str, bool] = {}
        for slot_time, free in self._candidates(day, windows, duration, bookings, earliest):
            slots[slot_time] = slots.get(slot_time, False) or free

        if any(slots.values()):
            busy = await self._fetch_busy(organizer_id, day, day)
            for slot_time, free in slots.items():
                if free and self._is_busy(day, slot_time, duration, busy):
                    slots[slot_time] = False

        return [Slot(time=t, available=slots[t]) for t in sorted(slots)]

    def _has_free_slot(
        self,
        day: str,
        rules: list[AvailabilityRule],
        duration: int,
        bookings: list[Booking],
        busy: list[BusyInterval],
        earliest: datetime,
    ) -> bool:
        windows = availability.resolve_windows(rules, day)
        for slot_time, free in self._candidates(day, windows, duration, bookings, earliest):
            if free and not self._is_busy(day, slot_time, duration, busy):
                return True
        return False

    async def get_slots_for_month(
        self,
        organizer_id: int,
        year: int,
        month: int,
        duration: Optional[int] = None,
        minimum_notice_hours: Optional[int] = None,
        meeting_type_slug: Optional[str] = None,
    ) -> dict[str, bool]:
        """Map every date of the month (1-based) to whether it has a free slot.

        Agrees with get_slots_for_date: a date maps to True exactly when
        that call would return at least one available slot.
        """
        errors = {}
        if isinstance(year, bool) or not isinstance(year, int) or not 1 <= year <= 9999:
            errors["year"] = "Year must be an integer between 1 and 9999"
        if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
            errors["month"] = "Month must be an integer between 1 and 12"
        if errors:
            raise ValidationFailed(errors)

        await self.get_organizer(organizer_id)
        duration, minimum_notice_hours = await self.resolve_meeting_parameters(
            organizer_id, duration, meeting_type_slug, minimum_notice_hours
        )

        days = [
            date(year, month, day_number).isoformat()
            for day_number in range(1, monthrange(year, month)[1] + 1)
        ]
        rules = await asyncio.to_thread(self.database.list_rules, organizer_id)
        if not rules:
            return {day: False for day in days}

        month_bookings = await asyncio.to_thread(
            self.database.list_bookings, organizer_id, days[0], days[-1]
        )
        bookings_by_day: dict[str, list[Booking]] = {}
        for booking in month_bookings:
            bookings_by_day.setdefault(booking.date, []).append(booking)

        busy = await self._fetch_busy(organizer_id, days[0], days[-1])
        earliest = self._earliest_start(minimum_notice_hours)

        result = {
            day: self._has_free_slot(
                day, rules, duration, bookings_by_day.get(day, []), busy, earliest
            )
            for day in days
        }
        logger.debug(
            f"Organizer {organizer_id} has {sum(result.values())} open days in {year}-{month:02d}"
        )
        return result

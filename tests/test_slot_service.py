"""Tests for the slot availability engine."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest

from conftest import MONDAY, WARSAW
from meeting_scheduler.calendar_client import GoogleCalendarAdapter
from meeting_scheduler.errors import (
    ConfigurationMissing,
    NotFound,
    SlotTaken,
    ValidationFailed,
)
from meeting_scheduler.models import BusyInterval, DateRangeRule, WeekdayRule
from meeting_scheduler.scheduling.service import SlotAvailabilityEngine


def _times(slots, available=None):
    return [s.time for s in slots if available is None or s.available is available]


def _book(database, organizer_id, day, time, duration):
    return database.insert_booking_if_free(
        organizer_id, "Jan Nowak", "jan@example.com", day, time, duration
    )


@pytest.mark.asyncio
async def test_end_to_end_scenario(slot_engine, reservations, monday_rule):
    slots = await slot_engine.get_slots_for_date(monday_rule.id, MONDAY)
    assert _times(slots) == ["09:00", "09:30", "10:00", "10:30"]
    assert all(s.available for s in slots)

    booking = await reservations.reserve(
        monday_rule.id, "Jan Nowak", "jan@example.com", MONDAY, "10:00", 30
    )
    assert booking.duration_minutes == 30

    slots = await slot_engine.get_slots_for_date(monday_rule.id, MONDAY)
    assert [(s.time, s.available) for s in slots] == [
        ("09:00", True),
        ("09:30", True),
        ("10:00", False),
        ("10:30", True),
    ]

    with pytest.raises(SlotTaken):
        await reservations.reserve(
            monday_rule.id, "Ewa Lis", "ewa@example.com", MONDAY, "10:00", 30
        )


@pytest.mark.asyncio
async def test_day_without_windows(slot_engine, monday_rule):
    assert await slot_engine.get_slots_for_date(monday_rule.id, "2025-03-04") == []


@pytest.mark.asyncio
async def test_longer_booking_blocks_every_overlapping_slot(
    slot_engine, database, monday_rule
):
    _book(database, monday_rule.id, MONDAY, "09:15", 60)

    slots = await slot_engine.get_slots_for_date(monday_rule.id, MONDAY)

    assert _times(slots, available=False) == ["09:00", "09:30", "10:00"]
    assert _times(slots, available=True) == ["10:30"]


class TestMinimumNotice:
    @pytest.mark.asyncio
    async def test_slot_inside_notice_window_is_omitted(self, slot_engine, clock, monday_rule):
        clock.now = datetime(2025, 3, 3, 5, 1, tzinfo=WARSAW)

        slots = await slot_engine.get_slots_for_date(
            monday_rule.id, MONDAY, minimum_notice_hours=4
        )

        # 09:00 starts 3h59m from now
        assert _times(slots) == ["09:30", "10:00", "10:30"]

    @pytest.mark.asyncio
    async def test_slot_just_past_notice_window_is_kept(self, slot_engine, clock, monday_rule):
        clock.now = datetime(2025, 3, 3, 4, 59, tzinfo=WARSAW)

        slots = await slot_engine.get_slots_for_date(
            monday_rule.id, MONDAY, minimum_notice_hours=4
        )

        # 09:00 starts 4h01m from now
        assert _times(slots) == ["09:00", "09:30", "10:00", "10:30"]

    @pytest.mark.asyncio
    async def test_notice_from_settings(self, slot_engine, clock, database, monday_rule):
        database.upsert_settings(monday_rule.id, 30, 2)
        clock.now = datetime(2025, 3, 3, 7, 45, tzinfo=WARSAW)

        slots = await slot_engine.get_slots_for_date(monday_rule.id, MONDAY)

        assert _times(slots) == ["10:00", "10:30"]

    @pytest.mark.asyncio
    async def test_clock_in_other_timezone(self, slot_engine, clock, monday_rule):
        # 08:30 UTC is 09:30 in Warsaw in winter
        clock.now = datetime.fromisoformat("2025-03-03T08:30:00+00:00")

        slots = await slot_engine.get_slots_for_date(monday_rule.id, MONDAY)

        assert _times(slots) == ["09:30", "10:00", "10:30"]

    @pytest.mark.asyncio
    async def test_past_dates_have_no_slots(self, slot_engine, clock, monday_rule):
        clock.now = datetime(2025, 3, 4, 8, 0, tzinfo=WARSAW)
        assert await slot_engine.get_slots_for_date(monday_rule.id, MONDAY) == []


class TestWindows:
    @pytest.mark.asyncio
    async def test_windows_are_merged_sorted_and_deduplicated(
        self, slot_engine, database, organizer
    ):
        database.upsert_settings(organizer.id, 30, 0)
        database.replace_rules(
            organizer.id,
            [
                WeekdayRule(1, "16:00", "17:00"),
                WeekdayRule(1, "09:00", "10:00"),
                DateRangeRule("2025-03-01", "2025-03-31", "09:30", "10:30"),
            ],
        )

        slots = await slot_engine.get_slots_for_date(organizer.id, MONDAY)

        assert _times(slots) == ["09:00", "09:30", "10:00", "16:00", "16:30"]

    @pytest.mark.asyncio
    async def test_date_range_rule(self, slot_engine, database, organizer):
        database.upsert_settings(organizer.id, 60, 0)
        database.replace_rules(
            organizer.id, [DateRangeRule("2025-03-05", "2025-03-06", "13:00", "15:00")]
        )

        assert _times(await slot_engine.get_slots_for_date(organizer.id, "2025-03-06")) == [
            "13:00",
            "14:00",
        ]
        assert await slot_engine.get_slots_for_date(organizer.id, "2025-03-07") == []


class TestExternalBusy:
    @pytest.mark.asyncio
    async def test_busy_interval_marks_overlapping_slots(
        self, slot_engine, fake_calendar, monday_rule
    ):
        fake_calendar.connected = True
        fake_calendar.busy = [
            BusyInterval(
                start=datetime(2025, 3, 3, 9, 45, tzinfo=WARSAW),
                end=datetime(2025, 3, 3, 10, 0, tzinfo=WARSAW),
            )
        ]

        slots = await slot_engine.get_slots_for_date(monday_rule.id, MONDAY)

        assert [(s.time, s.available) for s in slots] == [
            ("09:00", True),
            ("09:30", False),
            ("10:00", True),
            ("10:30", True),
        ]
        assert fake_calendar.fetch_calls == [(monday_rule.id, MONDAY, MONDAY)]

    @pytest.mark.asyncio
    async def test_busy_time_never_frees_a_booked_slot(
        self, slot_engine, fake_calendar, database, monday_rule
    ):
        _book(database, monday_rule.id, MONDAY, "10:00", 30)
        fake_calendar.connected = True
        fake_calendar.busy = []

        slots = await slot_engine.get_slots_for_date(monday_rule.id, MONDAY)

        assert _times(slots, available=False) == ["10:00"]

    @pytest.mark.asyncio
    async def test_disconnected_calendar_is_not_queried(
        self, slot_engine, fake_calendar, monday_rule
    ):
        fake_calendar.busy = [
            BusyInterval(
                start=datetime(2025, 3, 3, 0, 0, tzinfo=WARSAW),
                end=datetime(2025, 3, 4, 0, 0, tzinfo=WARSAW),
            )
        ]

        slots = await slot_engine.get_slots_for_date(monday_rule.id, MONDAY)

        assert all(s.available for s in slots)
        assert fake_calendar.fetch_calls == []

    @pytest.mark.asyncio
    async def test_failing_calendar_degrades_to_internal_bookings(
        self, database, clock, server_config, monday_rule, mock_calendar_service
    ):
        database.store_calendar_tokens(monday_rule.id, "access", "refresh", 4102444800)
        mock_calendar_service.freebusy().query().execute.side_effect = Exception(
            "503 backend error"
        )
        _book(database, monday_rule.id, MONDAY, "09:00", 30)

        adapter = GoogleCalendarAdapter(database, server_config)
        engine = SlotAvailabilityEngine(database, adapter, "Europe/Warsaw", clock=clock)

        slots = await engine.get_slots_for_date(monday_rule.id, MONDAY)

        assert [(s.time, s.available) for s in slots] == [
            ("09:00", False),
            ("09:30", True),
            ("10:00", True),
            ("10:30", True),
        ]


class TestMeetingParameters:
    @pytest.mark.asyncio
    async def test_unknown_organizer(self, slot_engine):
        with pytest.raises(NotFound):
            await slot_engine.get_slots_for_date(404, MONDAY, duration=30)

    @pytest.mark.asyncio
    async def test_missing_configuration(self, slot_engine, database, organizer):
        database.replace_rules(organizer.id, [WeekdayRule(1, "09:00", "11:00")])
        with pytest.raises(ConfigurationMissing):
            await slot_engine.get_slots_for_date(organizer.id, MONDAY)

    @pytest.mark.asyncio
    async def test_explicit_duration_without_settings(self, slot_engine, database, organizer):
        database.replace_rules(organizer.id, [WeekdayRule(1, "09:00", "11:00")])

        slots = await slot_engine.get_slots_for_date(organizer.id, MONDAY, duration=60)

        assert _times(slots) == ["09:00", "10:00"]

    @pytest.mark.asyncio
    async def test_meeting_type_duration_beats_settings(
        self, slot_engine, database, monday_rule
    ):
        database.create_meeting_type(monday_rule.id, "Consult", "consult", 60)

        slots = await slot_engine.get_slots_for_date(
            monday_rule.id, MONDAY, meeting_type_slug="consult"
        )

        assert _times(slots) == ["09:00", "10:00"]

    @pytest.mark.asyncio
    async def test_default_meeting_type_when_no_settings(
        self, slot_engine, database, organizer
    ):
        database.replace_rules(organizer.id, [WeekdayRule(1, "09:00", "11:00")])
        database.create_meeting_type(organizer.id, "Long", "long", 120, True)

        assert await slot_engine.resolve_meeting_parameters(organizer.id) == (120, 0)

    @pytest.mark.asyncio
    async def test_explicit_duration_keeps_stored_notice(
        self, slot_engine, database, monday_rule
    ):
        database.upsert_settings(monday_rule.id, 30, 12)

        assert await slot_engine.resolve_meeting_parameters(monday_rule.id, 45) == (45, 12)

    @pytest.mark.asyncio
    async def test_unknown_meeting_type(self, slot_engine, monday_rule):
        with pytest.raises(NotFound):
            await slot_engine.get_slots_for_date(
                monday_rule.id, MONDAY, meeting_type_slug="missing"
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("day", ["2025-02-30", "03-03-2025", ""])
    async def test_invalid_date(self, slot_engine, monday_rule, day):
        with pytest.raises(ValidationFailed):
            await slot_engine.get_slots_for_date(monday_rule.id, day)

    @pytest.mark.asyncio
    async def test_invalid_duration(self, slot_engine, monday_rule):
        with pytest.raises(ValidationFailed):
            await slot_engine.get_slots_for_date(monday_rule.id, MONDAY, duration=0)


class TestMonth:
    @pytest.mark.asyncio
    async def test_month_marks_open_days(self, slot_engine, monday_rule):
        days = await slot_engine.get_slots_for_month(monday_rule.id, 2025, 3)

        assert len(days) == 31
        assert [day for day, open_ in days.items() if open_] == [
            "2025-03-03",
            "2025-03-10",
            "2025-03-17",
            "2025-03-24",
            "2025-03-31",
        ]

    @pytest.mark.asyncio
    async def test_fully_booked_day_is_closed(self, slot_engine, database, monday_rule):
        _book(database, monday_rule.id, "2025-03-10", "09:00", 120)

        days = await slot_engine.get_slots_for_month(monday_rule.id, 2025, 3)

        assert days["2025-03-10"] is False
        assert days["2025-03-17"] is True

    @pytest.mark.asyncio
    async def test_february_in_leap_year(self, slot_engine, monday_rule):
        days = await slot_engine.get_slots_for_month(monday_rule.id, 2028, 2)
        assert len(days) == 29
        assert "2028-02-29" in days

    @pytest.mark.asyncio
    async def test_busy_fetched_once_for_the_month(
        self, slot_engine, fake_calendar, monday_rule
    ):
        fake_calendar.connected = True
        fake_calendar.busy = [
            BusyInterval(
                start=datetime(2025, 3, 17, 8, 0, tzinfo=WARSAW),
                end=datetime(2025, 3, 17, 12, 0, tzinfo=WARSAW),
            )
        ]

        days = await slot_engine.get_slots_for_month(monday_rule.id, 2025, 3)

        assert days["2025-03-17"] is False
        assert days["2025-03-24"] is True
        assert fake_calendar.fetch_calls == [(monday_rule.id, "2025-03-01", "2025-03-31")]

    @pytest.mark.asyncio
    async def test_month_agrees_with_single_dates(
        self, slot_engine, database, fake_calendar, clock, monday_rule
    ):
        database.replace_rules(
            monday_rule.id,
            [
                WeekdayRule(1, "09:00", "11:00"),
                WeekdayRule(3, "14:00", "15:00"),
                DateRangeRule("2025-03-20", "2025-03-22", "10:00", "10:30"),
            ],
        )
        _book(database, monday_rule.id, "2025-03-10", "09:00", 120)
        _book(database, monday_rule.id, "2025-03-12", "14:00", 30)
        _book(database, monday_rule.id, "2025-03-21", "10:00", 30)
        fake_calendar.connected = True
        fake_calendar.busy = [
            BusyInterval(
                start=datetime(2025, 3, 19, 14, 0, tzinfo=WARSAW),
                end=datetime(2025, 3, 19, 15, 0, tzinfo=WARSAW),
            )
        ]
        clock.now = datetime(2025, 3, 5, 14, 15, tzinfo=WARSAW)

        days = await slot_engine.get_slots_for_month(monday_rule.id, 2025, 3)

        for day, open_ in days.items():
            slots = await slot_engine.get_slots_for_date(monday_rule.id, day)
            assert open_ == any(s.available for s in slots), day

        assert days["2025-03-05"] is True
        assert days["2025-03-10"] is False
        assert days["2025-03-12"] is True
        assert days["2025-03-19"] is False
        assert days["2025-03-21"] is False
        assert days["2025-03-22"] is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("month", [0, 13])
    async def test_invalid_month(self, slot_engine, monday_rule, month):
        with pytest.raises(ValidationFailed):
            await slot_engine.get_slots_for_month(monday_rule.id, 2025, month)

    @pytest.mark.asyncio
    async def test_unknown_organizer(self, slot_engine):
        with pytest.raises(NotFound):
            await slot_engine.get_slots_for_month(404, 2025, 3, duration=30)

    @pytest.mark.asyncio
    async def test_no_rules(self, slot_engine, database, organizer):
        database.upsert_settings(organizer.id, 30, 0)
        days = await slot_engine.get_slots_for_month(organizer.id, 2025, 4)
        assert len(days) == 30
        assert not any(days.values())

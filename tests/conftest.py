"""Pytest fixtures for meeting scheduler tests."""

import logging
from datetime import datetime
from typing import Any, List, Optional
from unittest.mock import MagicMock, patch
from zoneinfo import ZoneInfo

import pytest

from meeting_scheduler.config import GoogleOAuthConfig, SchedulingConfig, ServerConfig
from meeting_scheduler.engine.database import SqliteDatabase
from meeting_scheduler.models import BusyInterval, ExternalEvent, WeekdayRule
from meeting_scheduler.notifications import EmailNotifier
from meeting_scheduler.scheduling.booking_flow import BookingFlow
from meeting_scheduler.scheduling.reservations import ReservationService
from meeting_scheduler.scheduling.service import SlotAvailabilityEngine

# Configure logging
logging.basicConfig(level=logging.INFO)

WARSAW = ZoneInfo("Europe/Warsaw")

# Monday
MONDAY = "2025-03-03"


class FixedClock:
    """Settable clock for minimum-notice tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeCalendar:
    """In-memory stand-in for GoogleCalendarAdapter."""

    def __init__(self):
        self.connected = False
        self.busy: List[BusyInterval] = []
        self.event: Optional[ExternalEvent] = ExternalEvent(
            event_id="evt-1", meeting_link="https://meet.google.com/abc-defg-hij"
        )
        self.create_error: Optional[Exception] = None
        self.fetch_calls: List[tuple] = []
        self.created: List[tuple] = []
        self.disconnected: List[int] = []

    async def is_connected(self, organizer_id: int) -> bool:
        return self.connected

    async def fetch_busy(self, organizer_id: int, date_from: str, date_to: str):
        self.fetch_calls.append((organizer_id, date_from, date_to))
        return list(self.busy)

    async def create_event(self, organizer_id: int, *args: Any) -> Optional[ExternalEvent]:
        self.created.append((organizer_id,) + args)
        if self.create_error:
            raise self.create_error
        return self.event

    async def list_upcoming_events(self, organizer_id: int, max_results: int = 10):
        return []

    async def disconnect(self, organizer_id: int) -> None:
        self.disconnected.append(organizer_id)
        self.connected = False


@pytest.fixture
def database(tmp_path):
    """Initialized SQLite store in a temporary directory."""
    db = SqliteDatabase(str(tmp_path / "scheduler.db"))
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def organizer(database):
    return database.create_organizer("anna", "anna@example.com", "Anna Kowalska")


@pytest.fixture
def monday_rule(database, organizer):
    """Monday 09:00-11:00 with 30 minute meetings and no minimum notice."""
    database.replace_rules(organizer.id, [WeekdayRule(1, "09:00", "11:00")])
    database.upsert_settings(organizer.id, 30, 0)
    return organizer


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 3, 1, 8, 0, tzinfo=WARSAW))


@pytest.fixture
def fake_calendar():
    return FakeCalendar()


@pytest.fixture
def slot_engine(database, fake_calendar, clock):
    return SlotAvailabilityEngine(database, fake_calendar, "Europe/Warsaw", clock=clock)


@pytest.fixture
def reservations(database):
    return ReservationService(database)


@pytest.fixture
def notifier():
    return MagicMock(spec=EmailNotifier)


@pytest.fixture
def booking_flow(database, slot_engine, reservations, fake_calendar, notifier):
    return BookingFlow(database, slot_engine, reservations, fake_calendar, notifier)


@pytest.fixture
def server_config():
    return ServerConfig(
        timezone="Europe/Warsaw",
        google=GoogleOAuthConfig(
            client_id="mock_client_id",
            client_secret="mock_client_secret",
            redirect_uri="http://localhost:8001/api/auth/google/callback",
        ),
        scheduling=SchedulingConfig(external_calendar_timeout_seconds=2.0),
    )


@pytest.fixture
def mock_calendar_service():
    """Create a mock Calendar API service with common responses."""
    with patch("meeting_scheduler.calendar_client.build") as mock_build:
        service = MagicMock()
        mock_build.return_value = service

        service.calendarList().list().execute.return_value = {
            "items": [{"id": "primary"}, {"id": "work@example.com"}]
        }

        service.freebusy().query().execute.return_value = {
            "calendars": {
                "primary": {
                    "busy": [
                        {"start": "2025-03-03T08:00:00Z", "end": "2025-03-03T08:30:00Z"}
                    ]
                },
                "work@example.com": {
                    "busy": [
                        {"start": "2025-03-03T10:00:00+01:00", "end": "2025-03-03T11:00:00+01:00"}
                    ]
                },
            }
        }

        service.events().insert().execute.return_value = {
            "id": "new_evt_123",
            "htmlLink": "https://calendar.google.com/event?id=new_evt_123",
            "hangoutLink": "https://meet.google.com/new-evt-123",
        }

        service.events().list().execute.return_value = {
            "items": [
                {
                    "id": "evt123",
                    "summary": "Mock Event",
                    "start": {"dateTime": "2025-03-03T10:00:00+01:00"},
                    "end": {"dateTime": "2025-03-03T11:00:00+01:00"},
                    "attendees": [{"email": "guest@example.com"}],
                    "conferenceData": {
                        "entryPoints": [{"uri": "https://meet.google.com/evt-123"}]
                    },
                }
            ]
        }

        yield service

"""Domain models for organizers, availability, meeting settings and bookings."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional, Union


@dataclass(frozen=True)
class Organizer:
    """The account offering bookable time."""

    id: int
    username: str
    email: str
    name: str
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Organizer":
        return cls(
            id=int(row["id"]),
            username=row["username"],
            email=row["email"],
            name=row["name"],
            created_at=_as_text(row.get("created_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class WeekdayRule:
    """Availability recurring every week on `weekday` (0=Sunday..6=Saturday)."""

    weekday: int
    start_time: str
    end_time: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": "weekday",
            "weekday": self.weekday,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }


@dataclass(frozen=True)
class DateRangeRule:
    """Availability on every date in [start_date, end_date], both inclusive."""

    start_date: str
    end_date: str
    start_time: str
    end_time: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": "date_range",
            "start_date": self.start_date,
            "end_date": self.end_date,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }


AvailabilityRule = Union[WeekdayRule, DateRangeRule]


@dataclass(frozen=True)
class TimeWindow:
    """Bookable hours on a single date, as wall-clock `HH:MM` strings."""

    start_time: str
    end_time: str


@dataclass(frozen=True)
class MeetingSettings:
    organizer_id: int
    duration_minutes: int
    minimum_notice_hours: int = 0

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "MeetingSettings":
        return cls(
            organizer_id=int(row["organizer_id"]),
            duration_minutes=int(row["duration_minutes"]),
            minimum_notice_hours=int(row.get("minimum_notice_hours") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MeetingType:
    """Named duration variant reachable under /<username>/<slug>."""

    id: int
    organizer_id: int
    name: str
    slug: str
    duration_minutes: int
    is_default: bool = False

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "MeetingType":
        return cls(
            id=int(row["id"]),
            organizer_id=int(row["organizer_id"]),
            name=row["name"],
            slug=row["slug"],
            duration_minutes=int(row["duration_minutes"]),
            is_default=bool(row.get("is_default")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Booking:
    id: int
    organizer_id: int
    attendee_name: str
    attendee_email: str
    date: str
    time: str
    duration_minutes: int
    attendee_phone: Optional[str] = None
    external_event_id: Optional[str] = None
    external_meeting_link: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Booking":
        return cls(
            id=int(row["id"]),
            organizer_id=int(row["organizer_id"]),
            attendee_name=row["attendee_name"],
            attendee_email=row["attendee_email"],
            date=_as_text(row["booking_date"]) or "",
            time=_as_text(row["booking_time"]) or "",
            duration_minutes=int(row["duration_minutes"]),
            attendee_phone=row.get("attendee_phone") or None,
            external_event_id=row.get("external_event_id") or None,
            external_meeting_link=row.get("external_meeting_link") or None,
            created_at=_as_text(row.get("created_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BusyInterval:
    """Externally sourced busy range. Both ends are timezone-aware."""

    start: datetime
    end: datetime


@dataclass(frozen=True)
class ExternalEvent:
    event_id: str
    meeting_link: str


@dataclass(frozen=True)
class StoredTokens:
    """OAuth credential for an organizer's external calendar.

    `expiry` is a unix timestamp in seconds; 0 means unknown.
    """

    organizer_id: int
    access_token: str
    refresh_token: str
    expiry: int = 0


@dataclass
class Slot:
    time: str
    available: bool

    def to_dict(self) -> dict[str, Any]:
        return {"time": self.time, "available": self.available}


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)

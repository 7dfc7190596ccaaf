"""Store interface shared by the SQLite and PostgreSQL backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from meeting_scheduler.models import (
    AvailabilityRule,
    Booking,
    MeetingSettings,
    MeetingType,
    Organizer,
    StoredTokens,
)


class DatabaseInterface(ABC):
    """Persistence for organizers, availability, settings, bookings and
    external calendar credentials.

    Every method is blocking; async callers run them with asyncio.to_thread.
    """

    @abstractmethod
    def initialize(self) -> None:
        """Create tables and indexes if they do not exist."""

    @abstractmethod
    def close(self) -> None: ...

    @abstractmethod
    @contextmanager
    def connection(self) -> Iterator[Any]: ...

    # Organizers

    @abstractmethod
    def create_organizer(self, username: str, email: str, name: str) -> Organizer: ...

    @abstractmethod
    def get_organizer(self, organizer_id: int) -> Optional[Organizer]: ...

    @abstractmethod
    def get_organizer_by_username(self, username: str) -> Optional[Organizer]: ...

    # Availability rules

    @abstractmethod
    def list_rules(self, organizer_id: int) -> list[AvailabilityRule]:
        """Rules in insertion order. Inert rows are skipped."""

    @abstractmethod
    def replace_rules(self, organizer_id: int, rules: list[AvailabilityRule]) -> None:
        """Clear the organizer's rules and insert `rules` in one transaction."""

    # Meeting settings

    @abstractmethod
    def get_settings(self, organizer_id: int) -> Optional[MeetingSettings]: ...

    @abstractmethod
    def upsert_settings(
        self, organizer_id: int, duration_minutes: int, minimum_notice_hours: int
    ) -> MeetingSettings: ...

    # Meeting types

    @abstractmethod
    def list_meeting_types(self, organizer_id: int) -> list[MeetingType]: ...

    @abstractmethod
    def get_meeting_type_by_slug(
        self, organizer_id: int, slug: str
    ) -> Optional[MeetingType]: ...

    @abstractmethod
    def get_default_meeting_type(self, organizer_id: int) -> Optional[MeetingType]: ...

    @abstractmethod
    def create_meeting_type(
        self,
        organizer_id: int,
        name: str,
        slug: str,
        duration_minutes: int,
        is_default: bool = False,
    ) -> MeetingType:
        """Insert a meeting type. Flagging it default clears the previous default."""

    @abstractmethod
    def update_meeting_type(
        self,
        meeting_type_id: int,
        name: str,
        slug: str,
        duration_minutes: int,
        is_default: bool = False,
    ) -> Optional[MeetingType]: ...

    @abstractmethod
    def delete_meeting_type(self, meeting_type_id: int) -> bool: ...

    # Bookings

    @abstractmethod
    def list_bookings(
        self,
        organizer_id: int,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> list[Booking]:
        """Bookings ordered by date and time; bounds are inclusive."""

    @abstractmethod
    def insert_booking_if_free(
        self,
        organizer_id: int,
        attendee_name: str,
        attendee_email: str,
        booking_date: str,
        booking_time: str,
        duration_minutes: int,
        attendee_phone: Optional[str] = None,
    ) -> Optional[Booking]:
        """Atomically re-check the slot and insert the booking.

        Returns None, without writing, when the interval overlaps an existing
        booking of the organizer on that date. Concurrent callers for the
        same organizer and date are serialized by the backend.
        """

    @abstractmethod
    def attach_external_event(
        self, booking_id: int, event_id: str, meeting_link: str
    ) -> Optional[Booking]: ...

    # External calendar credentials

    @abstractmethod
    def get_calendar_tokens(self, organizer_id: int) -> Optional[StoredTokens]: ...

    @abstractmethod
    def store_calendar_tokens(
        self,
        organizer_id: int,
        access_token: str,
        refresh_token: Optional[str],
        expiry: int,
    ) -> None:
        """Upsert credentials. A missing refresh token keeps the stored one."""

    @abstractmethod
    def delete_calendar_tokens(self, organizer_id: int) -> None: ...

"""Table definitions for both store backends.

Dates are stored as `YYYY-MM-DD` text and times as `HH:MM` text in the
organizer's timezone, so both backends compare them lexically.
"""

from typing import Any

SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS organizers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS availability (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    organizer_id INTEGER NOT NULL,
    day_of_week INTEGER,
    start_date TEXT,
    end_date TEXT,
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    FOREIGN KEY (organizer_id) REFERENCES organizers(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS meeting_settings (
    organizer_id INTEGER PRIMARY KEY,
    duration_minutes INTEGER NOT NULL,
    minimum_notice_hours INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (organizer_id) REFERENCES organizers(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS meeting_types (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    organizer_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    slug TEXT NOT NULL,
    duration_minutes INTEGER NOT NULL,
    is_default INTEGER NOT NULL DEFAULT 0,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (organizer_id, slug),
    FOREIGN KEY (organizer_id) REFERENCES organizers(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS bookings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    organizer_id INTEGER NOT NULL,
    attendee_name TEXT NOT NULL,
    attendee_email TEXT NOT NULL,
    attendee_phone TEXT,
    booking_date TEXT NOT NULL,
    booking_time TEXT NOT NULL,
    duration_minutes INTEGER NOT NULL,
    external_event_id TEXT,
    external_meeting_link TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (organizer_id, booking_date, booking_time),
    FOREIGN KEY (organizer_id) REFERENCES organizers(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS calendar_tokens (
    organizer_id INTEGER PRIMARY KEY,
    access_token TEXT NOT NULL,
    refresh_token TEXT NOT NULL,
    expiry INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (organizer_id) REFERENCES organizers(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_availability_organizer ON availability(organizer_id);
CREATE INDEX IF NOT EXISTS idx_bookings_organizer_date ON bookings(organizer_id, booking_date);
CREATE UNIQUE INDEX IF NOT EXISTS idx_meeting_types_default
    ON meeting_types(organizer_id) WHERE is_default = 1;
"""


def initialize_core_schema(cur: Any) -> None:
    """Create the PostgreSQL tables."""
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS organizers (
            id SERIAL PRIMARY KEY,
            username TEXT NOT NULL UNIQUE,
            email TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS availability (
            id SERIAL PRIMARY KEY,
            organizer_id INTEGER NOT NULL REFERENCES organizers(id) ON DELETE CASCADE,
            day_of_week INTEGER,
            start_date TEXT,
            end_date TEXT,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS meeting_settings (
            organizer_id INTEGER PRIMARY KEY REFERENCES organizers(id) ON DELETE CASCADE,
            duration_minutes INTEGER NOT NULL,
            minimum_notice_hours INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ DEFAULT NOW()
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS meeting_types (
            id SERIAL PRIMARY KEY,
            organizer_id INTEGER NOT NULL REFERENCES organizers(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            slug TEXT NOT NULL,
            duration_minutes INTEGER NOT NULL,
            is_default BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            UNIQUE (organizer_id, slug)
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS bookings (
            id SERIAL PRIMARY KEY,
            organizer_id INTEGER NOT NULL REFERENCES organizers(id) ON DELETE CASCADE,
            attendee_name TEXT NOT NULL,
            attendee_email TEXT NOT NULL,
            attendee_phone TEXT,
            booking_date TEXT NOT NULL,
            booking_time TEXT NOT NULL,
            duration_minutes INTEGER NOT NULL,
            external_event_id TEXT,
            external_meeting_link TEXT,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            UNIQUE (organizer_id, booking_date, booking_time)
        )
        """
    )


def initialize_calendar_schema(cur: Any) -> None:
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS calendar_tokens (
            organizer_id INTEGER PRIMARY KEY REFERENCES organizers(id) ON DELETE CASCADE,
            access_token TEXT NOT NULL,
            refresh_token TEXT NOT NULL,
            expiry BIGINT NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ DEFAULT NOW()
        )
        """
    )


def create_indexes(cur: Any) -> None:
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_availability_organizer ON availability(organizer_id)"
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_bookings_organizer_date ON bookings(organizer_id, booking_date)"
    )
    cur.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_meeting_types_default
        ON meeting_types(organizer_id) WHERE is_default
        """
    )

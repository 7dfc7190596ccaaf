"""Organizer and meeting settings queries for PostgreSQL."""

from __future__ import annotations

from typing import Optional

from psycopg import errors as pg_errors
from psycopg.rows import dict_row

from meeting_scheduler.db.types import DatabaseInterface
from meeting_scheduler.errors import ValidationFailed
from meeting_scheduler.models import MeetingSettings, Organizer


def create_organizer(
    db: DatabaseInterface, username: str, email: str, name: str
) -> Organizer:
    try:
        with db.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    """
                    INSERT INTO organizers (username, email, name)
                    VALUES (%s, %s, %s)
                    RETURNING *
                    """,
                    (username, email, name),
                )
                row = cur.fetchone()
            conn.commit()
    except pg_errors.UniqueViolation as e:
        raise ValidationFailed(
            {"username": "Username or email is already registered"}
        ) from e
    return Organizer.from_row(row)


def get_organizer(db: DatabaseInterface, organizer_id: int) -> Optional[Organizer]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute("SELECT * FROM organizers WHERE id = %s", (organizer_id,))
            row = cur.fetchone()
            return Organizer.from_row(row) if row else None


def get_organizer_by_username(
    db: DatabaseInterface, username: str
) -> Optional[Organizer]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute("SELECT * FROM organizers WHERE username = %s", (username,))
            row = cur.fetchone()
            return Organizer.from_row(row) if row else None


def get_settings(db: DatabaseInterface, organizer_id: int) -> Optional[MeetingSettings]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                "SELECT * FROM meeting_settings WHERE organizer_id = %s",
                (organizer_id,),
            )
            row = cur.fetchone()
            return MeetingSettings.from_row(row) if row else None


def upsert_settings(
    db: DatabaseInterface,
    organizer_id: int,
    duration_minutes: int,
    minimum_notice_hours: int,
) -> MeetingSettings:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                INSERT INTO meeting_settings (organizer_id, duration_minutes, minimum_notice_hours)
                VALUES (%s, %s, %s)
                ON CONFLICT (organizer_id) DO UPDATE SET
                    duration_minutes = EXCLUDED.duration_minutes,
                    minimum_notice_hours = EXCLUDED.minimum_notice_hours,
                    updated_at = NOW()
                RETURNING *
                """,
                (organizer_id, duration_minutes, minimum_notice_hours),
            )
            row = cur.fetchone()
        conn.commit()
    return MeetingSettings.from_row(row)

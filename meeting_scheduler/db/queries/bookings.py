"""Booking queries for PostgreSQL."""

from __future__ import annotations

from typing import Any, Optional

from psycopg import errors as pg_errors
from psycopg.rows import dict_row

from meeting_scheduler.db.types import DatabaseInterface
from meeting_scheduler.models import Booking
from meeting_scheduler.scheduling.conflicts import is_free


def list_bookings(
    db: DatabaseInterface,
    organizer_id: int,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
) -> list[Booking]:
    conditions = ["organizer_id = %s"]
    params: list[Any] = [organizer_id]
    if date_from:
        conditions.append("booking_date >= %s")
        params.append(date_from)
    if date_to:
        conditions.append("booking_date <= %s")
        params.append(date_to)

    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                SELECT * FROM bookings
                WHERE {" AND ".join(conditions)}
                ORDER BY booking_date, booking_time
                """,
                params,
            )
            return [Booking.from_row(row) for row in cur.fetchall()]


def insert_booking_if_free(
    db: DatabaseInterface,
    organizer_id: int,
    attendee_name: str,
    attendee_email: str,
    booking_date: str,
    booking_time: str,
    duration_minutes: int,
    attendee_phone: Optional[str] = None,
) -> Optional[Booking]:
    """Check and insert under a transaction-scoped advisory lock.

    The lock key covers one organizer and one date, so reservations for
    other dates or organizers never wait on each other.
    """
    lock_key = f"bookings:{organizer_id}:{booking_date}"
    try:
        with db.connection() as conn:
            with conn.transaction():
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (lock_key,))
                    cur.execute(
                        """
                        SELECT * FROM bookings
                        WHERE organizer_id = %s AND booking_date = %s
                        """,
                        (organizer_id, booking_date),
                    )
                    existing = [Booking.from_row(row) for row in cur.fetchall()]
                    if not is_free(existing, booking_time, duration_minutes):
                        return None

                    cur.execute(
                        """
                        INSERT INTO bookings
                            (organizer_id, attendee_name, attendee_email, attendee_phone,
                             booking_date, booking_time, duration_minutes)
                        VALUES (%s, %s, %s, %s, %s, %s, %s)
                        RETURNING *
                        """,
                        (
                            organizer_id,
                            attendee_name,
                            attendee_email,
                            attendee_phone,
                            booking_date,
                            booking_time,
                            duration_minutes,
                        ),
                    )
                    row = cur.fetchone()
    except pg_errors.UniqueViolation:
        return None
    return Booking.from_row(row)


def attach_external_event(
    db: DatabaseInterface, booking_id: int, event_id: str, meeting_link: str
) -> Optional[Booking]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                UPDATE bookings
                SET external_event_id = %s, external_meeting_link = %s
                WHERE id = %s
                RETURNING *
                """,
                (event_id, meeting_link, booking_id),
            )
            row = cur.fetchone()
        conn.commit()
    return Booking.from_row(row) if row else None

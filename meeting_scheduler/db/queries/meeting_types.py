"""Meeting type queries for PostgreSQL."""

from __future__ import annotations

from typing import Optional

from psycopg import errors as pg_errors
from psycopg.rows import dict_row

from meeting_scheduler.db.types import DatabaseInterface
from meeting_scheduler.errors import ValidationFailed
from meeting_scheduler.models import MeetingType

SLUG_TAKEN = {"slug": "Slug is already in use"}


def list_meeting_types(db: DatabaseInterface, organizer_id: int) -> list[MeetingType]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT * FROM meeting_types
                WHERE organizer_id = %s
                ORDER BY is_default DESC, duration_minutes, id
                """,
                (organizer_id,),
            )
            return [MeetingType.from_row(row) for row in cur.fetchall()]


def get_meeting_type_by_slug(
    db: DatabaseInterface, organizer_id: int, slug: str
) -> Optional[MeetingType]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                "SELECT * FROM meeting_types WHERE organizer_id = %s AND slug = %s",
                (organizer_id, slug),
            )
            row = cur.fetchone()
            return MeetingType.from_row(row) if row else None


def get_default_meeting_type(
    db: DatabaseInterface, organizer_id: int
) -> Optional[MeetingType]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT * FROM meeting_types
                WHERE organizer_id = %s AND is_default
                LIMIT 1
                """,
                (organizer_id,),
            )
            row = cur.fetchone()
            return MeetingType.from_row(row) if row else None


def create_meeting_type(
    db: DatabaseInterface,
    organizer_id: int,
    name: str,
    slug: str,
    duration_minutes: int,
    is_default: bool = False,
) -> MeetingType:
    try:
        with db.connection() as conn:
            with conn.transaction():
                with conn.cursor(row_factory=dict_row) as cur:
                    if is_default:
                        cur.execute(
                            "UPDATE meeting_types SET is_default = FALSE WHERE organizer_id = %s",
                            (organizer_id,),
                        )
                    cur.execute(
                        """
                        INSERT INTO meeting_types
                            (organizer_id, name, slug, duration_minutes, is_default)
                        VALUES (%s, %s, %s, %s, %s)
                        RETURNING *
                        """,
                        (organizer_id, name, slug, duration_minutes, is_default),
                    )
                    row = cur.fetchone()
    except pg_errors.UniqueViolation as e:
        raise ValidationFailed(dict(SLUG_TAKEN)) from e
    return MeetingType.from_row(row)


def update_meeting_type(
    db: DatabaseInterface,
    meeting_type_id: int,
    name: str,
    slug: str,
    duration_minutes: int,
    is_default: bool = False,
) -> Optional[MeetingType]:
    try:
        with db.connection() as conn:
            with conn.transaction():
                with conn.cursor(row_factory=dict_row) as cur:
                    if is_default:
                        cur.execute(
                            """
                            UPDATE meeting_types SET is_default = FALSE
                            WHERE organizer_id = (
                                SELECT organizer_id FROM meeting_types WHERE id = %s
                            ) AND id <> %s
                            """,
                            (meeting_type_id, meeting_type_id),
                        )
                    cur.execute(
                        """
                        UPDATE meeting_types
                        SET name = %s, slug = %s, duration_minutes = %s, is_default = %s
                        WHERE id = %s
                        RETURNING *
                        """,
                        (name, slug, duration_minutes, is_default, meeting_type_id),
                    )
                    row = cur.fetchone()
    except pg_errors.UniqueViolation as e:
        raise ValidationFailed(dict(SLUG_TAKEN)) from e
    return MeetingType.from_row(row) if row else None


def delete_meeting_type(db: DatabaseInterface, meeting_type_id: int) -> bool:
    with db.connection() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM meeting_types WHERE id = %s", (meeting_type_id,))
            deleted = cur.rowcount > 0
        conn.commit()
    return deleted

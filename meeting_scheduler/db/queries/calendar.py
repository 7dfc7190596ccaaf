"""External calendar credential queries for PostgreSQL."""

from __future__ import annotations

from typing import Optional

from psycopg.rows import dict_row

from meeting_scheduler.db.types import DatabaseInterface
from meeting_scheduler.models import StoredTokens


def get_calendar_tokens(
    db: DatabaseInterface, organizer_id: int
) -> Optional[StoredTokens]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                "SELECT * FROM calendar_tokens WHERE organizer_id = %s",
                (organizer_id,),
            )
            row = cur.fetchone()
    if not row:
        return None
    return StoredTokens(
        organizer_id=int(row["organizer_id"]),
        access_token=row["access_token"],
        refresh_token=row["refresh_token"] or "",
        expiry=int(row["expiry"] or 0),
    )


def store_calendar_tokens(
    db: DatabaseInterface,
    organizer_id: int,
    access_token: str,
    refresh_token: Optional[str],
    expiry: int,
) -> None:
    with db.connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO calendar_tokens (organizer_id, access_token, refresh_token, expiry)
                VALUES (%s, %s, COALESCE(%s, ''), %s)
                ON CONFLICT (organizer_id) DO UPDATE SET
                    access_token = EXCLUDED.access_token,
                    refresh_token = COALESCE(
                        NULLIF(EXCLUDED.refresh_token, ''), calendar_tokens.refresh_token
                    ),
                    expiry = EXCLUDED.expiry,
                    updated_at = NOW()
                """,
                (organizer_id, access_token, refresh_token, expiry),
            )
        conn.commit()


def delete_calendar_tokens(db: DatabaseInterface, organizer_id: int) -> None:
    with db.connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "DELETE FROM calendar_tokens WHERE organizer_id = %s", (organizer_id,)
            )
        conn.commit()

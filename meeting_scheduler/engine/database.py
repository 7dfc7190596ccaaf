from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import psycopg

from meeting_scheduler.config import DatabaseBackend, DatabaseConfig, PostgresConfig
from meeting_scheduler.db import schema
from meeting_scheduler.db.queries import availability as availability_q
from meeting_scheduler.db.queries import bookings as booking_q
from meeting_scheduler.db.queries import calendar as calendar_q
from meeting_scheduler.db.queries import meeting_types as meeting_type_q
from meeting_scheduler.db.queries import organizers as organizer_q
from meeting_scheduler.db.types import DatabaseInterface
from meeting_scheduler.errors import TransientStoreError, ValidationFailed
from meeting_scheduler.models import (
    AvailabilityRule,
    Booking,
    MeetingSettings,
    MeetingType,
    Organizer,
    StoredTokens,
)
from meeting_scheduler.scheduling.availability import rule_from_row, rule_to_row
from meeting_scheduler.scheduling.conflicts import is_free

logger = logging.getLogger(__name__)


class PostgresDatabase(DatabaseInterface):
    def __init__(self, config: Optional[PostgresConfig] = None):
        super().__init__()

        self.config = config or PostgresConfig()
        self._pool: Any = None

    def initialize(self) -> None:
        from psycopg_pool import ConnectionPool

        self._pool = ConnectionPool(
            self.config.connection_string, min_size=1, max_size=10, open=True
        )

        with self.connection() as conn:
            with conn.cursor() as cur:
                schema.initialize_core_schema(cur)
                schema.initialize_calendar_schema(cur)
                schema.create_indexes(cur)
                conn.commit()
        logger.info(
            f"PostgreSQL store initialized at "
            f"{self.config.host}:{self.config.port}/{self.config.database}"
        )

    @contextmanager
    def connection(self) -> Iterator[Any]:
        if not self._pool:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        try:
            with self._pool.connection() as conn:
                yield conn
        except psycopg.OperationalError as e:
            logger.error(f"PostgreSQL unavailable: {e}")
            raise TransientStoreError(f"Database unavailable: {e}") from e

    def close(self) -> None:
        if self._pool:
            self._pool.close()
            self._pool = None

    def create_organizer(self, username: str, email: str, name: str) -> Organizer:
        return organizer_q.create_organizer(self, username, email, name)

    def get_organizer(self, organizer_id: int) -> Optional[Organizer]:
        return organizer_q.get_organizer(self, organizer_id)

    def get_organizer_by_username(self, username: str) -> Optional[Organizer]:
        return organizer_q.get_organizer_by_username(self, username)

    def list_rules(self, organizer_id: int) -> list[AvailabilityRule]:
        return availability_q.list_rules(self, organizer_id)

    def replace_rules(self, organizer_id: int, rules: list[AvailabilityRule]) -> None:
        return availability_q.replace_rules(self, organizer_id, rules)

    def get_settings(self, organizer_id: int) -> Optional[MeetingSettings]:
        return organizer_q.get_settings(self, organizer_id)

    def upsert_settings(
        self, organizer_id: int, duration_minutes: int, minimum_notice_hours: int
    ) -> MeetingSettings:
        return organizer_q.upsert_settings(
            self, organizer_id, duration_minutes, minimum_notice_hours
        )

    def list_meeting_types(self, organizer_id: int) -> list[MeetingType]:
        return meeting_type_q.list_meeting_types(self, organizer_id)

    def get_meeting_type_by_slug(
        self, organizer_id: int, slug: str
    ) -> Optional[MeetingType]:
        return meeting_type_q.get_meeting_type_by_slug(self, organizer_id, slug)

    def get_default_meeting_type(self, organizer_id: int) -> Optional[MeetingType]:
        return meeting_type_q.get_default_meeting_type(self, organizer_id)

    def create_meeting_type(
        self,
        organizer_id: int,
        name: str,
        slug: str,
        duration_minutes: int,
        is_default: bool = False,
    ) -> MeetingType:
        return meeting_type_q.create_meeting_type(
            self, organizer_id, name, slug, duration_minutes, is_default
        )

    def update_meeting_type(
        self,
        meeting_type_id: int,
        name: str,
        slug: str,
        duration_minutes: int,
        is_default: bool = False,
    ) -> Optional[MeetingType]:
        return meeting_type_q.update_meeting_type(
            self, meeting_type_id, name, slug, duration_minutes, is_default
        )

    def delete_meeting_type(self, meeting_type_id: int) -> bool:
        return meeting_type_q.delete_meeting_type(self, meeting_type_id)

    def list_bookings(
        self,
        organizer_id: int,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> list[Booking]:
        return booking_q.list_bookings(self, organizer_id, date_from, date_to)

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
        return booking_q.insert_booking_if_free(
            self,
            organizer_id,
            attendee_name,
            attendee_email,
            booking_date,
            booking_time,
            duration_minutes,
            attendee_phone,
        )

    def attach_external_event(
        self, booking_id: int, event_id: str, meeting_link: str
    ) -> Optional[Booking]:
        return booking_q.attach_external_event(self, booking_id, event_id, meeting_link)

    def get_calendar_tokens(self, organizer_id: int) -> Optional[StoredTokens]:
        return calendar_q.get_calendar_tokens(self, organizer_id)

    def store_calendar_tokens(
        self,
        organizer_id: int,
        access_token: str,
        refresh_token: Optional[str],
        expiry: int,
    ) -> None:
        return calendar_q.store_calendar_tokens(
            self, organizer_id, access_token, refresh_token, expiry
        )

    def delete_calendar_tokens(self, organizer_id: int) -> None:
        return calendar_q.delete_calendar_tokens(self, organizer_id)


class SqliteDatabase(DatabaseInterface):
    """File-backed store for development and tests.

    Each operation opens its own connection. Writes run under
    BEGIN IMMEDIATE, which takes the database write lock up front, so the
    availability re-check and the insert in insert_booking_if_free cannot
    interleave with another writer.
    """

    def __init__(self, db_path: str = "config/scheduler.db", busy_timeout: float = 5.0):
        self.db_path = db_path
        self.busy_timeout = busy_timeout

    def initialize(self) -> None:
        os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
        with self.connection() as conn:
            conn.executescript("PRAGMA journal_mode=WAL; PRAGMA synchronous=NORMAL;")
            conn.executescript(schema.SQLITE_SCHEMA)
        logger.info(f"SQLite store initialized at {self.db_path}")

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(
                self.db_path, timeout=self.busy_timeout, isolation_level=None
            )
        except sqlite3.OperationalError as e:
            logger.error(f"SQLite unavailable: {e}")
            raise TransientStoreError(f"Database unavailable: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys=ON")
            yield conn
        except sqlite3.OperationalError as e:
            logger.error(f"SQLite unavailable: {e}")
            raise TransientStoreError(f"Database unavailable: {e}") from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _fetch_one(self, query: str, params: tuple) -> Optional[dict[str, Any]]:
        with self.connection() as conn:
            row = conn.execute(query, params).fetchone()
        return dict(row) if row else None

    def _fetch_all(self, query: str, params: tuple) -> list[dict[str, Any]]:
        with self.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def close(self) -> None:
        pass

    def create_organizer(self, username: str, email: str, name: str) -> Organizer:
        try:
            with self._transaction() as conn:
                row = _returning_row(conn.execute(
                    """
                    INSERT INTO organizers (username, email, name)
                    VALUES (?, ?, ?)
                    RETURNING *
                    """,
                    (username, email, name),
                ))
        except sqlite3.IntegrityError as e:
            raise ValidationFailed(
                {"username": "Username or email is already registered"}
            ) from e
        return Organizer.from_row(row)

    def get_organizer(self, organizer_id: int) -> Optional[Organizer]:
        row = self._fetch_one("SELECT * FROM organizers WHERE id = ?", (organizer_id,))
        return Organizer.from_row(row) if row else None

    def get_organizer_by_username(self, username: str) -> Optional[Organizer]:
        row = self._fetch_one(
            "SELECT * FROM organizers WHERE username = ?", (username,)
        )
        return Organizer.from_row(row) if row else None

    def list_rules(self, organizer_id: int) -> list[AvailabilityRule]:
        rows = self._fetch_all(
            "SELECT * FROM availability WHERE organizer_id = ? ORDER BY id",
            (organizer_id,),
        )
        rules = [rule_from_row(row) for row in rows]
        return [rule for rule in rules if rule is not None]

    def replace_rules(self, organizer_id: int, rules: list[AvailabilityRule]) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM availability WHERE organizer_id = ?", (organizer_id,))
            for rule in rules:
                row = rule_to_row(rule)
                conn.execute(
                    """
                    INSERT INTO availability
                        (organizer_id, day_of_week, start_date, end_date, start_time, end_time)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        organizer_id,
                        row["day_of_week"],
                        row["start_date"],
                        row["end_date"],
                        row["start_time"],
                        row["end_time"],
                    ),
                )

    def get_settings(self, organizer_id: int) -> Optional[MeetingSettings]:
        row = self._fetch_one(
            "SELECT * FROM meeting_settings WHERE organizer_id = ?", (organizer_id,)
        )
        return MeetingSettings.from_row(row) if row else None

    def upsert_settings(
        self, organizer_id: int, duration_minutes: int, minimum_notice_hours: int
    ) -> MeetingSettings:
        with self._transaction() as conn:
            row = _returning_row(conn.execute(
                """
                INSERT INTO meeting_settings (organizer_id, duration_minutes, minimum_notice_hours)
                VALUES (?, ?, ?)
                ON CONFLICT (organizer_id) DO UPDATE SET
                    duration_minutes = excluded.duration_minutes,
                    minimum_notice_hours = excluded.minimum_notice_hours,
                    updated_at = CURRENT_TIMESTAMP
                RETURNING *
                """,
                (organizer_id, duration_minutes, minimum_notice_hours),
            ))
        return MeetingSettings.from_row(row)

    def list_meeting_types(self, organizer_id: int) -> list[MeetingType]:
        rows = self._fetch_all(
            """
            SELECT * FROM meeting_types
            WHERE organizer_id = ?
            ORDER BY is_default DESC, duration_minutes, id
            """,
            (organizer_id,),
        )
        return [MeetingType.from_row(row) for row in rows]

    def get_meeting_type_by_slug(
        self, organizer_id: int, slug: str
    ) -> Optional[MeetingType]:
        row = self._fetch_one(
            "SELECT * FROM meeting_types WHERE organizer_id = ? AND slug = ?",
            (organizer_id, slug),
        )
        return MeetingType.from_row(row) if row else None

    def get_default_meeting_type(self, organizer_id: int) -> Optional[MeetingType]:
        row = self._fetch_one(
            "SELECT * FROM meeting_types WHERE organizer_id = ? AND is_default = 1 LIMIT 1",
            (organizer_id,),
        )
        return MeetingType.from_row(row) if row else None

    def create_meeting_type(
        self,
        organizer_id: int,
        name: str,
        slug: str,
        duration_minutes: int,
        is_default: bool = False,
    ) -> MeetingType:
        try:
            with self._transaction() as conn:
                if is_default:
                    conn.execute(
                        "UPDATE meeting_types SET is_default = 0 WHERE organizer_id = ?",
                        (organizer_id,),
                    )
                row = _returning_row(conn.execute(
                    """
                    INSERT INTO meeting_types
                        (organizer_id, name, slug, duration_minutes, is_default)
                    VALUES (?, ?, ?, ?, ?)
                    RETURNING *
                    """,
                    (organizer_id, name, slug, duration_minutes, int(is_default)),
                ))
        except sqlite3.IntegrityError as e:
            raise ValidationFailed({"slug": "Slug is already in use"}) from e
        return MeetingType.from_row(row)

    def update_meeting_type(
        self,
        meeting_type_id: int,
        name: str,
        slug: str,
        duration_minutes: int,
        is_default: bool = False,
    ) -> Optional[MeetingType]:
        try:
            with self._transaction() as conn:
                if is_default:
                    conn.execute(
                        """
                        UPDATE meeting_types SET is_default = 0
                        WHERE organizer_id = (
                            SELECT organizer_id FROM meeting_types WHERE id = ?
                        ) AND id <> ?
                        """,
                        (meeting_type_id, meeting_type_id),
                    )
                row = _returning_row(conn.execute(
                    """
                    UPDATE meeting_types
                    SET name = ?, slug = ?, duration_minutes = ?, is_default = ?
                    WHERE id = ?
                    RETURNING *
                    """,
                    (name, slug, duration_minutes, int(is_default), meeting_type_id),
                ))
        except sqlite3.IntegrityError as e:
            raise ValidationFailed({"slug": "Slug is already in use"}) from e
        return MeetingType.from_row(row) if row else None

    def delete_meeting_type(self, meeting_type_id: int) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM meeting_types WHERE id = ?", (meeting_type_id,)
            )
            return cursor.rowcount > 0

    def list_bookings(
        self,
        organizer_id: int,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> list[Booking]:
        conditions = ["organizer_id = ?"]
        params: list[Any] = [organizer_id]
        if date_from:
            conditions.append("booking_date >= ?")
            params.append(date_from)
        if date_to:
            conditions.append("booking_date <= ?")
            params.append(date_to)

        rows = self._fetch_all(
            f"""
            SELECT * FROM bookings
            WHERE {" AND ".join(conditions)}
            ORDER BY booking_date, booking_time
            """,
            tuple(params),
        )
        return [Booking.from_row(row) for row in rows]

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
        try:
            with self._transaction() as conn:
                rows = conn.execute(
                    "SELECT * FROM bookings WHERE organizer_id = ? AND booking_date = ?",
                    (organizer_id, booking_date),
                ).fetchall()
                existing = [Booking.from_row(dict(row)) for row in rows]
                if not is_free(existing, booking_time, duration_minutes):
                    return None

                row = _returning_row(conn.execute(
                    """
                    INSERT INTO bookings
                        (organizer_id, attendee_name, attendee_email, attendee_phone,
                         booking_date, booking_time, duration_minutes)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
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
                ))
        except sqlite3.IntegrityError:
            return None
        return Booking.from_row(row)

    def attach_external_event(
        self, booking_id: int, event_id: str, meeting_link: str
    ) -> Optional[Booking]:
        with self._transaction() as conn:
            row = _returning_row(conn.execute(
                """
                UPDATE bookings
                SET external_event_id = ?, external_meeting_link = ?
                WHERE id = ?
                RETURNING *
                """,
                (event_id, meeting_link, booking_id),
            ))
        return Booking.from_row(row) if row else None

    def get_calendar_tokens(self, organizer_id: int) -> Optional[StoredTokens]:
        row = self._fetch_one(
            "SELECT * FROM calendar_tokens WHERE organizer_id = ?", (organizer_id,)
        )
        if not row:
            return None
        return StoredTokens(
            organizer_id=int(row["organizer_id"]),
            access_token=row["access_token"],
            refresh_token=row["refresh_token"] or "",
            expiry=int(row["expiry"] or 0),
        )

    def store_calendar_tokens(
        self,
        organizer_id: int,
        access_token: str,
        refresh_token: Optional[str],
        expiry: int,
    ) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO calendar_tokens (organizer_id, access_token, refresh_token, expiry)
                VALUES (?, ?, COALESCE(?, ''), ?)
                ON CONFLICT (organizer_id) DO UPDATE SET
                    access_token = excluded.access_token,
                    refresh_token = COALESCE(
                        NULLIF(excluded.refresh_token, ''), calendar_tokens.refresh_token
                    ),
                    expiry = excluded.expiry,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (organizer_id, access_token, refresh_token, expiry),
            )

    def delete_calendar_tokens(self, organizer_id: int) -> None:
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM calendar_tokens WHERE organizer_id = ?", (organizer_id,)
            )


def _returning_row(cursor: sqlite3.Cursor) -> Optional[dict[str, Any]]:
    # RETURNING statements must be drained before COMMIT
    rows = cursor.fetchall()
    return dict(rows[0]) if rows else None


def create_database(config: DatabaseConfig) -> DatabaseInterface:
    if config.backend == DatabaseBackend.POSTGRES:
        return PostgresDatabase(config.postgres)
    return SqliteDatabase(db_path=config.sqlite.path)

"""Availability rule queries for PostgreSQL."""

from __future__ import annotations

from psycopg.rows import dict_row

from meeting_scheduler.db.types import DatabaseInterface
from meeting_scheduler.models import AvailabilityRule
from meeting_scheduler.scheduling.availability import rule_from_row, rule_to_row


def list_rules(db: DatabaseInterface, organizer_id: int) -> list[AvailabilityRule]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                "SELECT * FROM availability WHERE organizer_id = %s ORDER BY id",
                (organizer_id,),
            )
            rules = [rule_from_row(row) for row in cur.fetchall()]
    return [rule for rule in rules if rule is not None]


def replace_rules(
    db: DatabaseInterface, organizer_id: int, rules: list[AvailabilityRule]
) -> None:
    with db.connection() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM availability WHERE organizer_id = %s", (organizer_id,)
                )
                for rule in rules:
                    row = rule_to_row(rule)
                    cur.execute(
                        """
                        INSERT INTO availability
                            (organizer_id, day_of_week, start_date, end_date, start_time, end_time)
                        VALUES (%s, %s, %s, %s, %s, %s)
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

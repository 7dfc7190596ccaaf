from meeting_scheduler.engine.database import (
    PostgresDatabase,
    SqliteDatabase,
    create_database,
)
from meeting_scheduler.engine.oauth2 import (
    ensure_fresh_tokens,
    exchange_code_for_tokens,
    get_authorization_url,
    needs_refresh,
)

__all__ = [
    "PostgresDatabase",
    "SqliteDatabase",
    "create_database",
    "ensure_fresh_tokens",
    "exchange_code_for_tokens",
    "get_authorization_url",
    "needs_refresh",
]

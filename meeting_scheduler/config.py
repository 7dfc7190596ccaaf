"""Configuration handling for the meeting scheduler."""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

import yaml  # type: ignore
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


# Load environment variables from .env file if it exists
load_dotenv()

DEFAULT_TIMEZONE = "Europe/Warsaw"
DEFAULT_REDIRECT_URI = "http://localhost:8001/api/auth/google/callback"


@dataclass
class GoogleOAuthConfig:
    """OAuth2 client used to connect organizers' Google Calendars."""

    client_id: str
    client_secret: str
    redirect_uri: str = DEFAULT_REDIRECT_URI
    # Key for signing the OAuth state parameter; falls back to client_secret
    state_secret: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["GoogleOAuthConfig"]:
        """Create OAuth2 configuration from dictionary."""
        data = data or {}

        # OAuth2 credentials can be specified in environment variables
        client_id = data.get("client_id") or os.environ.get("GOOGLE_CLIENT_ID")
        client_secret = data.get("client_secret") or os.environ.get(
            "GOOGLE_CLIENT_SECRET"
        )

        if not client_id or not client_secret:
            return None

        return cls(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=data.get("redirect_uri")
            or os.environ.get("GOOGLE_REDIRECT_URI", DEFAULT_REDIRECT_URI),
            state_secret=data.get("state_secret") or os.environ.get("OAUTH_STATE_SECRET"),
        )


@dataclass
class SmtpConfig:
    """Outgoing mail for booking notifications."""

    enabled: bool = False
    host: str = "smtp.gmail.com"
    port: int = 587
    username: str = ""
    password: str = ""
    from_name: str = "Meeting Scheduler"
    use_tls: bool = True

    @property
    def from_address(self) -> str:
        return f'"{self.from_name}" <{self.username}>'

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SmtpConfig":
        data = data or {}
        username = data.get("username") or os.environ.get("EMAIL_USER", "")
        password = data.get("password") or os.environ.get("EMAIL_PASSWORD", "")
        return cls(
            enabled=data.get("enabled", bool(username and password)),
            host=data.get("host") or os.environ.get("EMAIL_HOST", "smtp.gmail.com"),
            port=int(data.get("port") or os.environ.get("EMAIL_PORT", "587")),
            username=username,
            password=password,
            from_name=data.get("from_name", "Meeting Scheduler"),
            use_tls=data.get("use_tls", True),
        )


@dataclass
class SchedulingConfig:
    """Tunables for slot computation and the external calendar integration."""

    external_calendar_timeout_seconds: float = 10.0
    token_refresh_margin_seconds: int = 300

    def __post_init__(self):
        if self.external_calendar_timeout_seconds <= 0:
            raise ValueError("external_calendar_timeout_seconds must be positive")
        if self.token_refresh_margin_seconds < 0:
            raise ValueError("token_refresh_margin_seconds must not be negative")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchedulingConfig":
        data = data or {}
        return cls(
            external_calendar_timeout_seconds=float(
                data.get("external_calendar_timeout_seconds", 10.0)
            ),
            token_refresh_margin_seconds=int(
                data.get("token_refresh_margin_seconds", 300)
            ),
        )


@dataclass
class BearerAuthConfig:
    """Bearer token authentication for organizer endpoints."""

    enabled: bool = False
    token: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BearerAuthConfig":
        data = data or {}
        token = data.get("token") or os.environ.get("ORGANIZER_API_TOKEN")
        return cls(
            enabled=data.get("enabled", False),
            token=token,
        )


class DatabaseBackend(Enum):
    """Database backend type."""

    SQLITE = "sqlite"
    POSTGRES = "postgres"

    @classmethod
    def from_string(cls, value: str) -> "DatabaseBackend":
        normalized = value.lower().strip()
        if normalized in ("sqlite", "sqlite3"):
            return cls.SQLITE
        if normalized in ("postgres", "postgresql"):
            return cls.POSTGRES
        raise ValueError(
            f"Invalid database backend '{value}'. Must be 'sqlite' or 'postgres'."
        )


@dataclass
class SqliteConfig:
    """SQLite database configuration, used for development and tests."""

    path: str = "config/scheduler.db"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SqliteConfig":
        data = data or {}
        return cls(
            path=data.get("path") or os.environ.get("SQLITE_PATH", "config/scheduler.db")
        )


@dataclass
class PostgresConfig:
    """PostgreSQL database configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "scheduler"
    user: str = "scheduler"
    password: str = ""
    ssl_mode: str = "prefer"

    @property
    def connection_string(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}?sslmode={self.ssl_mode}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PostgresConfig":
        data = data or {}
        return cls(
            host=data.get("host") or os.environ.get("POSTGRES_HOST", "localhost"),
            port=int(data.get("port") or os.environ.get("POSTGRES_PORT", "5432")),
            database=data.get("database")
            or os.environ.get("POSTGRES_DATABASE", "scheduler"),
            user=data.get("user") or os.environ.get("POSTGRES_USER", "scheduler"),
            password=data.get("password") or os.environ.get("POSTGRES_PASSWORD", ""),
            ssl_mode=data.get("ssl_mode", "prefer"),
        )


@dataclass
class DatabaseConfig:
    """Database configuration."""

    backend: DatabaseBackend = DatabaseBackend.SQLITE
    sqlite: SqliteConfig = field(default_factory=SqliteConfig)
    postgres: PostgresConfig = field(default_factory=PostgresConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DatabaseConfig":
        data = data or {}
        backend_str = data.get("backend") or os.environ.get(
            "DATABASE_BACKEND", "sqlite"
        )
        return cls(
            backend=DatabaseBackend.from_string(backend_str),
            sqlite=SqliteConfig.from_dict(data.get("sqlite", {})),
            postgres=PostgresConfig.from_dict(data.get("postgres", {})),
        )


@dataclass
class ServerConfig:
    """Meeting scheduler configuration."""

    timezone: str = DEFAULT_TIMEZONE
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    google: Optional[GoogleOAuthConfig] = None
    smtp: SmtpConfig = field(default_factory=SmtpConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    bearer_auth: BearerAuthConfig = field(default_factory=BearerAuthConfig)

    def __post_init__(self):
        """Validate server configuration."""
        # Validate timezone
        try:
            ZoneInfo(self.timezone)
        except Exception as e:
            raise ValueError(
                f"Invalid timezone '{self.timezone}': {e}. "
                "Must be a valid IANA timezone (e.g., 'Europe/Warsaw')"
            )

        if self.bearer_auth.enabled and not self.bearer_auth.token:
            raise ValueError("bearer_auth.token required when bearer auth is enabled")

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServerConfig":
        """Create configuration from dictionary."""
        return cls(
            timezone=data.get("timezone")
            or os.environ.get("ORGANIZER_TIMEZONE", DEFAULT_TIMEZONE),
            database=DatabaseConfig.from_dict(data.get("database", {})),
            google=GoogleOAuthConfig.from_dict(data.get("google", {})),
            smtp=SmtpConfig.from_dict(data.get("smtp", {})),
            scheduling=SchedulingConfig.from_dict(data.get("scheduling", {})),
            bearer_auth=BearerAuthConfig.from_dict(data.get("bearer_auth", {})),
        )


def load_config(config_path: Optional[str] = None) -> ServerConfig:
    """Load configuration from file or environment variables.

    Args:
        config_path: Path to configuration file

    Returns:
        Server configuration

    Raises:
        ValueError: If configuration is invalid
    """
    # Container paths first (Docker), then local dev paths
    default_locations = [
        Path("/app/config/config.yaml"),
        Path("/app/config/config.yml"),
        Path("config/config.yaml"),
        Path("config/config.yml"),
        Path("config.yaml"),
        Path("config.yml"),
        Path("~/.config/meeting-scheduler/config.yaml"),
        Path("/etc/meeting-scheduler/config.yaml"),
    ]

    config_data: Dict[str, Any] = {}

    if config_path:
        try:
            with open(config_path, "r") as f:
                config_data = yaml.safe_load(f) or {}
            logger.info(f"Loaded configuration from {config_path}")
        except FileNotFoundError:
            logger.warning(f"Configuration file not found: {config_path}")
    else:
        for path in default_locations:
            expanded_path = path.expanduser()
            if expanded_path.exists():
                with open(expanded_path, "r") as f:
                    config_data = yaml.safe_load(f) or {}
                logger.info(f"Loaded configuration from {expanded_path}")
                break

    if not config_data:
        logger.info("No configuration file found, using environment variables")

    try:
        return ServerConfig.from_dict(config_data)
    except KeyError as e:
        raise ValueError(f"Missing required configuration: {e}")

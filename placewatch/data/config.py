"""
Placewatch Configuration Module
===============================

Centralized configuration management using environment variables.
Supports both .env files and system environment variables.

Settings are built once at startup with ``load_settings()`` and passed to
the review client, the store, the notifier and the orchestrator. Nothing
below the CLI / API entry points reads the environment directly.

Environment Variables:
    DATABASE_HOST: PostgreSQL host (default: localhost)
    DATABASE_PORT: PostgreSQL port (default: 5432)
    DATABASE_NAME: Database name (default: placewatch)
    DATABASE_USER: Database user (default: placewatch)
    DATABASE_PASSWORD: Database password (required)

    REVIEW_SOURCE: "serpapi" or "google_places" (default: serpapi)
    SERPAPI_KEY: SerpApi key (required when REVIEW_SOURCE=serpapi)
    GOOGLE_PLACES_API_KEY: Places API key (required when REVIEW_SOURCE=google_places)
    REVIEW_MAX_PAGES: Pagination cap per target (default: 5)
    REVIEW_PAGE_DELAY: Seconds between page fetches (default: 1.0)

    TELEGRAM_BOT_TOKEN: Telegram bot token (required)
    TELEGRAM_ADMIN_CHAT_ID: Admin chat override (optional)

    SCHEDULER_TIMEZONE: Timezone for every job (default: Europe/London)
    SCHEDULER_SYNC_HOURS: Hours of the main sync (default: 9,15,21)
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional
from pathlib import Path
from apscheduler.triggers.cron import CronTrigger
from dotenv import load_dotenv


# Load environment variables from .env file if present
env_path = Path(__file__).parent.parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)
else:
    load_dotenv()


REVIEW_SOURCES = ("serpapi", "google_places")


class ConfigError(ValueError):
    """Missing or invalid configuration. Fatal at startup."""
    pass


def get_env(key: str, default: Optional[str] = None, required: bool = False) -> Optional[str]:
    """
    Get environment variable with optional default and required validation.

    Args:
        key: Environment variable name
        default: Default value if not set
        required: If True, raises ConfigError when not set

    Returns:
        Environment variable value or default

    Raises:
        ConfigError: If required=True and variable is not set
    """
    value = os.getenv(key, default)
    if required and not value:
        raise ConfigError(f"Required environment variable '{key}' is not set")
    return value


def get_env_int(key: str, default: int) -> int:
    """Get environment variable as integer."""
    value = os.getenv(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"Environment variable '{key}' must be an integer, got: {value}")


def get_env_float(key: str, default: float) -> float:
    """Get environment variable as float."""
    value = os.getenv(key)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"Environment variable '{key}' must be a float, got: {value}")


def get_env_bool(key: str, default: bool) -> bool:
    """Get environment variable as boolean."""
    value = os.getenv(key)
    if value is None or value == "":
        return default
    return value.lower() in ("true", "1", "yes", "on")


def get_env_int_list(key: str, default: List[int]) -> List[int]:
    """Get a comma-separated environment variable as a list of integers."""
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return list(default)
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError:
        raise ConfigError(f"Environment variable '{key}' must be a list of integers, got: {value}")


@dataclass
class DatabaseConfig:
    """PostgreSQL database configuration."""

    host: str = field(default_factory=lambda: get_env("DATABASE_HOST", "localhost"))
    port: int = field(default_factory=lambda: get_env_int("DATABASE_PORT", 5432))
    name: str = field(default_factory=lambda: get_env("DATABASE_NAME", "placewatch"))
    user: str = field(default_factory=lambda: get_env("DATABASE_USER", "placewatch"))
    password: str = field(default_factory=lambda: get_env("DATABASE_PASSWORD", ""))

    # Connection pool settings
    pool_min_size: int = field(default_factory=lambda: get_env_int("DATABASE_POOL_MIN", 1))
    pool_max_size: int = field(default_factory=lambda: get_env_int("DATABASE_POOL_MAX", 5))

    connect_timeout: int = field(default_factory=lambda: get_env_int("DATABASE_CONNECT_TIMEOUT", 10))

    # SSL mode: disable, allow, prefer, require, verify-ca, verify-full
    ssl_mode: str = field(default_factory=lambda: get_env("DATABASE_SSL_MODE", "prefer"))

    @property
    def connection_dict(self) -> dict:
        """Connection parameters as dictionary for psycopg2."""
        return {
            "host": self.host,
            "port": self.port,
            "dbname": self.name,
            "user": self.user,
            "password": self.password,
            "sslmode": self.ssl_mode,
            "connect_timeout": self.connect_timeout,
        }

    def __post_init__(self):
        """Validate configuration."""
        if not self.password:
            raise ConfigError("DATABASE_PASSWORD is required")
        if self.pool_min_size > self.pool_max_size:
            raise ConfigError("pool_min_size cannot exceed pool_max_size")


@dataclass
class ReviewSourceConfig:
    """Upstream review source configuration."""

    source: str = field(default_factory=lambda: get_env("REVIEW_SOURCE", "serpapi").lower())
    serpapi_key: str = field(default_factory=lambda: get_env("SERPAPI_KEY", ""))
    google_places_api_key: str = field(default_factory=lambda: get_env("GOOGLE_PLACES_API_KEY", ""))

    # Pagination cap protects against pathological next-page loops
    max_pages: int = field(default_factory=lambda: get_env_int("REVIEW_MAX_PAGES", 5))
    page_delay_seconds: float = field(default_factory=lambda: get_env_float("REVIEW_PAGE_DELAY", 1.0))

    request_timeout: int = field(default_factory=lambda: get_env_int("REVIEW_REQUEST_TIMEOUT", 30))
    language: str = field(default_factory=lambda: get_env("REVIEW_LANGUAGE", "en"))

    @property
    def api_key(self) -> str:
        """Key for the selected source."""
        if self.source == "google_places":
            return self.google_places_api_key
        return self.serpapi_key

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.source not in REVIEW_SOURCES:
            raise ConfigError(
                f"REVIEW_SOURCE must be one of {', '.join(REVIEW_SOURCES)}, got: {self.source}"
            )
        if not self.api_key:
            key_name = "GOOGLE_PLACES_API_KEY" if self.source == "google_places" else "SERPAPI_KEY"
            raise ConfigError(f"{key_name} is required for REVIEW_SOURCE={self.source}")
        if self.max_pages <= 0:
            raise ConfigError("max_pages must be positive")
        if self.page_delay_seconds < 0:
            raise ConfigError("page_delay_seconds cannot be negative")


@dataclass
class TelegramConfig:
    """Telegram Bot API configuration."""

    bot_token: str = field(default_factory=lambda: get_env("TELEGRAM_BOT_TOKEN", ""))
    admin_chat_id: Optional[str] = field(default_factory=lambda: get_env("TELEGRAM_ADMIN_CHAT_ID"))
    enabled: bool = field(default_factory=lambda: get_env_bool("ENABLE_NOTIFICATIONS", True))
    request_timeout: int = field(default_factory=lambda: get_env_int("TELEGRAM_REQUEST_TIMEOUT", 10))

    def __post_init__(self):
        if self.enabled and not self.bot_token:
            raise ConfigError("TELEGRAM_BOT_TOKEN is required when notifications are enabled")


@dataclass
class ScheduleConfig:
    """Wall-clock schedule for the sync, heartbeat and summary jobs."""

    timezone: str = field(default_factory=lambda: get_env("SCHEDULER_TIMEZONE", "Europe/London"))
    sync_hours: List[int] = field(default_factory=lambda: get_env_int_list("SCHEDULER_SYNC_HOURS", [9, 15, 21]))
    sync_minute: int = field(default_factory=lambda: get_env_int("SCHEDULER_SYNC_MINUTE", 0))
    heartbeat_hour: int = field(default_factory=lambda: get_env_int("SCHEDULER_HEARTBEAT_HOUR", 0))
    summary_day: str = field(default_factory=lambda: get_env("SCHEDULER_SUMMARY_DAY", "sun"))
    summary_hour: int = field(default_factory=lambda: get_env_int("SCHEDULER_SUMMARY_HOUR", 21))

    # Seconds to consider a missed job still worth running
    misfire_grace_time: int = field(default_factory=lambda: get_env_int("SCHEDULER_MISFIRE_GRACE", 600))

    # Soft deadline for a whole sync cycle (seconds)
    cycle_deadline_seconds: int = field(default_factory=lambda: get_env_int("SYNC_CYCLE_DEADLINE", 900))

    def __post_init__(self):
        if not self.sync_hours:
            raise ConfigError("SCHEDULER_SYNC_HOURS must list at least one hour")
        for hour in self.sync_hours + [self.heartbeat_hour, self.summary_hour]:
            if hour < 0 or hour > 23:
                raise ConfigError(f"Schedule hour out of range: {hour}")
        if self.cycle_deadline_seconds <= 0:
            raise ConfigError("cycle_deadline_seconds must be positive")

        # Unknown zones raise a KeyError subclass (pytz or zoneinfo)
        try:
            CronTrigger(day_of_week=self.summary_day, hour=self.summary_hour, timezone=self.timezone)
        except (ValueError, LookupError, TypeError) as e:
            raise ConfigError(
                f"Invalid schedule (SCHEDULER_TIMEZONE={self.timezone}, "
                f"SCHEDULER_SUMMARY_DAY={self.summary_day}): {e}"
            ) from e

    def get_sync_cron_expression(self) -> str:
        """Get cron expression of the main sync for logging."""
        hours = ",".join(str(h) for h in self.sync_hours)
        return f"{self.sync_minute} {hours} * * *"


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = field(default_factory=lambda: get_env("LOG_LEVEL", "INFO"))
    log_file: Optional[str] = field(default_factory=lambda: get_env("LOG_FILE"))

    # Structured logging
    json_logs: bool = field(default_factory=lambda: get_env_bool("LOG_JSON", False))


@dataclass
class Settings:
    """Main application settings container."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    source: ReviewSourceConfig = field(default_factory=ReviewSourceConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    state_dir: Path = field(default_factory=lambda: Path(get_env("PLACEWATCH_STATE_DIR", "data")))


def load_settings() -> Settings:
    """
    Load and validate all application settings.

    Returns:
        Fully configured Settings instance

    Raises:
        ConfigError: If required configuration is missing or invalid
    """
    return Settings()


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the process-wide settings instance, loading it on first use.

    Raises:
        ConfigError: If required configuration is missing or invalid
    """
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings

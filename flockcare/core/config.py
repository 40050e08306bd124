"""Configuration management for flockcare."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Ledger storage (server side)
    sqlite_db_path: str = Field(default="data/ledger.db", description="SQLite file backing the completion ledger")

    # Local overlay storage (device side)
    overlay_db_path: str = Field(
        default="data/overlay.db", description="SQLite file backing the durable local key-value store"
    )

    # Remote task service
    ledger_base_url: str = Field(default="http://127.0.0.1:8000", description="Base URL of the task service")
    ledger_timeout_seconds: float = Field(default=10.0, description="Request timeout for task service calls")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    # Redis Configuration (optional)
    redis_url: str | None = Field(default=None, description="Redis connection URL (e.g., redis://localhost:6379)")

    # Scheduling behaviour
    upcoming_window_days: int = Field(default=7, description="Look-ahead window for upcoming tasks (days)")
    reconcile_grace_seconds: int = Field(
        default=300,
        description="How long an unconfirmed local completion survives a contradicting remote read",
    )
    verify_interval_seconds: int = Field(default=60, description="Interval of the pending-overlay verification sweep")
    history_cache_ttl_seconds: int = Field(default=60, description="TTL for cached completion history")

    default_operator_name: str = Field(default="operator", description="completedBy value when none is supplied")


# Application Constants
class Constants:
    """Application-wide constants."""

    # HTTP Status Codes
    HTTP_BAD_REQUEST: int = 400
    HTTP_NOT_FOUND: int = 404
    HTTP_CONFLICT: int = 409
    HTTP_SERVER_ERROR: int = 500

    # Overlay store key layout
    OVERLAY_KEY_PREFIX: str = "overlay:"

    # Cache keys
    HISTORY_CACHE_KEY_PREFIX: str = "history"

    # Notifier registry
    NOTIFIER_REGISTRY_MAX_AGE_SECONDS: int = 3600  # Entries older than this are pruned

    # Return channel
    RETURN_CHANNEL_TIMEOUT_SECONDS: float = 30.0

    # Pagination Defaults
    DEFAULT_PER_PAGE_LIMIT: int = 500  # Default pagination limit for list queries

    # Redis Configuration
    REDIS_MAX_CONNECTIONS: int = 10  # Maximum connections in Redis connection pool
    REDIS_INVALIDATION_QUEUE_MAXLEN: int = 1000  # Max items in Redis invalidation queue

    # Job Tracker Configuration
    TRACKER_DEAD_LETTER_QUEUE_MAXLEN: int = 100  # Max items in dead letter queue


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()

"""Configuration management for copro-tasks."""

from pathlib import Path

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

    # SQLite Configuration
    sqlite_db_path: str = Field(default="./data/copro_tasks.db", description="SQLite database file path")

    # Workflow Rules
    council_min_approvals: int = Field(
        default=2, ge=1, description="Distinct council approvals needed to open a pending task"
    )
    max_task_price: float = Field(default=100, gt=0, description="Ceiling for a task's starting price")
    bidding_window_hours: int = Field(
        default=24, ge=0, description="Hours after the first bid before a task is auto-awarded"
    )
    write_retry_attempts: int = Field(
        default=3, ge=1, description="Attempts for an operation that loses an optimistic write race"
    )

    # Scheduler Configuration
    scheduler_enabled: bool = Field(default=True, description="Start the auto-award scheduler with the app")
    auto_award_interval_seconds: int = Field(default=10, ge=1, description="Seconds between auto-award scans")

    # Pydantic Logfire Configuration (optional)
    environment: str = Field(default="production", description="Deployment environment reported to Logfire")
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    # Email Relay Configuration (Resend-compatible API)
    email_api_url: str = Field(default="https://api.resend.com/emails", description="Email relay endpoint")
    email_api_key: str | None = Field(default=None, description="Email relay API key")
    email_from: str = Field(
        default="CoproTasks <no-reply@copro-tasks.local>", description="Sender address for notifications"
    )
    enable_notifications: bool = Field(default=True, description="Enable/disable outbound notifications")

    def require_credential(self, field_name: str, service_name: str) -> str:
        """Validate that a required credential is set, raising a clear error if missing.

        Args:
            field_name: Name of the field to check
            service_name: Human-readable service name for error message

        Returns:
            The credential value

        Raises:
            ValueError: If the credential is None or empty
        """
        value = getattr(self, field_name)
        if not value:
            raise ValueError(
                f"{service_name} credential not configured. "
                f"Set {field_name.upper()} environment variable or add to .env file."
            )
        return value

    # Admin Notification Configuration
    enable_admin_notifications: bool = Field(
        default=True, description="Enable/disable admin notifications for failing scheduled jobs"
    )
    admin_notification_cooldown_minutes: int = Field(
        default=60, description="Cooldown period between notifications for the same error category (in minutes)"
    )


# Application Constants
class Constants:
    """Application-wide constants."""

    # API Configuration
    API_TIMEOUT_SECONDS: int = 30

    # Rate Limiting
    MAX_EMAILS_PER_MINUTE: int = 30

    # Ratings
    RATING_MIN_STARS: int = 1
    RATING_MAX_STARS: int = 5
    RATING_AUTHOR_HASH_LENGTH: int = 10

    # Pagination Defaults
    DEFAULT_PER_PAGE_LIMIT: int = 500

    # Job Tracker Configuration
    TRACKER_DEAD_LETTER_QUEUE_MAXLEN: int = 100
    TRACKER_CONSECUTIVE_FAILURE_THRESHOLD: int = 3

    # Scheduled Job Names
    AUTO_AWARD_JOB_NAME: str = "auto_award"

    # Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()

"""Centralized configuration using pydantic-settings.

All configuration is loaded from environment variables and .env files.
This is the single source of truth for SubTrack configuration.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Days past the subscription end date before a subscriber is deactivated.
GRACE_PERIOD_DAYS = 3


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Main application settings.

    All settings can be overridden via environment variables.
    For nested settings, use double underscore: SCHEDULER__GRACE_PERIOD_DAYS=5
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    # ============================================================
    # Core Application Settings
    # ============================================================

    app_name: str = Field("subtrack", description="Application name")
    app_version: str = Field("1.0.0", description="Application version")
    environment: Environment = Field(Environment.DEVELOPMENT, description="Deployment environment")
    debug: bool = Field(False, description="Debug mode")
    testing: bool = Field(False, description="Testing mode")

    # ============================================================
    # Database Configuration
    # ============================================================

    class DatabaseSettings(BaseModel):
        """Database configuration."""

        url: str | None = Field(None, description="Full database URL")
        sqlite_path: str = Field("./subtrack_dev.sqlite", description="Development SQLite file")

        # Connection pool (ignored by SQLite)
        pool_size: int = Field(10, description="Connection pool size")
        max_overflow: int = Field(20, description="Max overflow connections")
        pool_timeout: int = Field(30, description="Pool timeout in seconds")
        pool_recycle: int = Field(3600, description="Recycle connections after seconds")
        pool_pre_ping: bool = Field(True, description="Test connections before use")

        echo: bool = Field(False, description="Echo SQL statements")

    database: DatabaseSettings = DatabaseSettings()  # type: ignore[call-arg]

    # ============================================================
    # Observability
    # ============================================================

    class ObservabilitySettings(BaseModel):
        """Logging configuration."""

        log_level: LogLevel = Field(LogLevel.INFO, description="Log level")
        log_format: str = Field("json", description="Log format (json or console)")

    observability: ObservabilitySettings = ObservabilitySettings()  # type: ignore[call-arg]

    # ============================================================
    # Display Calendar
    # ============================================================

    class CalendarSettings(BaseModel):
        """Calendar day boundaries for date arithmetic and display."""

        timezone: str = Field(
            "Asia/Kathmandu",
            description="IANA timezone used to truncate instants to calendar days",
        )

    calendar: CalendarSettings = CalendarSettings()  # type: ignore[call-arg]

    # ============================================================
    # Reminder & Grace-Period Scheduler
    # ============================================================

    class SchedulerSettings(BaseModel):
        """Daily reminder/deactivation pass configuration."""

        grace_period_days: int = Field(
            GRACE_PERIOD_DAYS, ge=0, description="Days overdue before deactivation"
        )
        io_timeout_seconds: float = Field(
            30.0, gt=0, description="Timeout applied to each persistence/dispatch await"
        )
        cron_secret: str = Field("", description="Bearer secret for the HTTP cron trigger")
        run_hour: int = Field(6, ge=0, le=23, description="Hour of the daily beat entry")
        run_minute: int = Field(0, ge=0, le=59, description="Minute of the daily beat entry")

    scheduler: SchedulerSettings = SchedulerSettings()  # type: ignore[call-arg]

    # ============================================================
    # Notifications (admin e-mail + SMS)
    # ============================================================

    class NotificationSettings(BaseModel):
        """Outbound notification channels."""

        admin_email: str = Field("admin@subtrack.local", description="Reminder digest recipient")
        admin_phone: str = Field("", description="Reminder SMS recipient")

        # SMTP
        email_enabled: bool = Field(True, description="Enable e-mail channel")
        smtp_host: str = Field("localhost", description="SMTP server host")
        smtp_port: int = Field(587, description="SMTP server port")
        smtp_username: str = Field("", description="SMTP username")
        smtp_password: str = Field("", description="SMTP password")
        smtp_use_tls: bool = Field(True, description="Use STARTTLS")
        smtp_use_ssl: bool = Field(False, description="Use implicit SSL")
        from_address: str = Field("notifications@subtrack.local", description="Sender address")
        from_name: str = Field("SubTrack", description="Sender display name")

        # SMS gateway
        sms_enabled: bool = Field(True, description="Enable SMS channel")
        sms_gateway_url: str | None = Field(None, description="HTTP SMS gateway endpoint")
        sms_gateway_method: str = Field("POST", description="HTTP method for the gateway")
        sms_gateway_auth_type: str = Field("bearer", description="bearer, api_key or none")
        sms_gateway_auth_value: str = Field("", description="Gateway credential")

    notifications: NotificationSettings = NotificationSettings()  # type: ignore[call-arg]

    # ============================================================
    # Celery & Task Queue
    # ============================================================

    class CelerySettings(BaseModel):
        """Celery configuration."""

        broker_url: str = Field("redis://localhost:6379/0", description="Broker URL")
        result_backend: str = Field("redis://localhost:6379/1", description="Result backend")
        timezone: str = Field("Asia/Kathmandu", description="Beat schedule timezone")

    celery: CelerySettings = CelerySettings()  # type: ignore[call-arg]

    # ============================================================
    # Validation & Helpers
    # ============================================================

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: Any) -> Any:
        """Validate environment."""
        if isinstance(v, str):
            return Environment(v.lower())
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.testing or self.environment == Environment.TEST


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get global settings instance (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore
    return _settings


def reset_settings() -> None:
    """Reset settings (mainly for testing)."""
    global _settings
    _settings = None


# Convenience export
settings = get_settings()

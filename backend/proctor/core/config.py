"""
Application configuration settings.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Self


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Proctor API"
    APP_VERSION: str = "0.1.0"
    ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # API
    API_V1_PREFIX: str = "/v1"

    # CORS
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    # Create tables on startup. Convenient for local development and demos;
    # disable when the schema is managed externally.
    DB_CREATE_ALL: bool = True

    # Admin / live monitor access
    ADMIN_TOKEN: str = Field(
        default="",
        description="Admin API token for session management and live monitoring endpoints",
    )

    # Session window rules
    SESSION_MIN_DURATION_MINUTES: int = Field(
        default=30,
        ge=1,
        description="Shortest allowed session window",
    )
    SESSION_MAX_DURATION_HOURS: int = Field(
        default=24,
        ge=1,
        description="Longest allowed session window",
    )
    # Minutes after start_time during which registration is still accepted
    # for sessions that do not allow late entry
    LATE_ENTRY_GRACE_MINUTES: int = Field(default=15, ge=0)

    # Attempt progress
    NEARLY_EXPIRED_WARNING_SECONDS: int = 300  # 5 minutes

    # Scoring
    DEFAULT_PASSING_SCORE: float = Field(
        default=60.0,
        ge=0.0,
        le=100.0,
        description="Passing scaled score used when a test module defines none",
    )

    # Live monitoring
    # A participant is flagged at risk when the fraction of the time limit
    # used exceeds the fraction of questions answered by more than this.
    AT_RISK_THRESHOLD: float = Field(default=0.20, gt=0.0, lt=1.0)
    # Lower bound for the progress fraction used in completion estimates
    ESTIMATE_PROGRESS_EPSILON: float = Field(default=0.01, gt=0.0, le=1.0)

    # Sentry Error Tracking
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking (leave empty to disable)",
    )
    SENTRY_TRACES_SAMPLE_RATE: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sentry traces sample rate (0.0-1.0, 0.1 = 10% of transactions)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields from .env not defined in Settings
    )

    @model_validator(mode="after")
    def validate_session_durations(self) -> Self:
        """Validate that the minimum session window fits inside the maximum."""
        if self.SESSION_MIN_DURATION_MINUTES > self.SESSION_MAX_DURATION_HOURS * 60:
            raise ValueError(
                "SESSION_MIN_DURATION_MINUTES must not exceed "
                f"SESSION_MAX_DURATION_HOURS * 60, got "
                f"{self.SESSION_MIN_DURATION_MINUTES} > "
                f"{self.SESSION_MAX_DURATION_HOURS * 60}"
            )
        return self

    @model_validator(mode="after")
    def validate_admin_token(self) -> Self:
        """Require an admin token outside development."""
        if self.ENV == "production" and not self.ADMIN_TOKEN:
            raise ValueError("ADMIN_TOKEN must be set when ENV=production")
        return self


settings = Settings()

"""Centralized configuration management using Pydantic Settings.

This module provides a type-safe, validated configuration system for the scheduler
service. Every environment variable the service reads is declared here.
"""

from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class SchedulerConfig(BaseSettings):
    """Acquisition scheduler settings.

    Controls the run interval, the size of the persisted log tail and the
    in-process tick that checks whether a run is due.
    """

    # Spacing between automatic runs
    interval_hours: float = Field(
        default=24.0,
        gt=0,
        le=24 * 30,
        description="Hours between automatic runs"
    )

    # Log tail kept inside the state document
    max_log_entries: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Maximum number of log entries kept in the scheduler state"
    )

    # In-process tick (APScheduler interval job)
    tick_enabled: bool = Field(
        default=True,
        description="Check for due runs from inside the process"
    )
    tick_interval_seconds: int = Field(
        default=60,
        ge=5,
        le=3600,
        description="Seconds between due-run checks"
    )
    misfire_grace_time: int = Field(
        default=30,
        ge=1,
        le=3600,
        description="Seconds a missed tick may be late and still fire"
    )

    state_key: str = Field(
        default="scheduler/scheduler.json",
        min_length=1,
        description="Store key holding the scheduler state document"
    )

    # Sources seeded into an empty state on first initialization
    default_sources: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Playlist URLs added when the state has no sources"
    )

    cron_secret: str | None = Field(
        default=None,
        description="Shared secret expected by the cron trigger endpoint (None disables the check)"
    )

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    @field_validator("default_sources", mode="before")
    @classmethod
    def parse_sources(cls, v):
        """Parse comma-separated source URLs from environment variable."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v


class ExecutorConfig(BaseSettings):
    """Download executor settings (yt-dlp wrapper)."""

    media_dir: str = Field(
        default="data/media",
        description="Directory receiving downloaded audio files"
    )
    audio_format: Literal["mp3", "m4a", "opus", "flac", "wav"] = Field(
        default="mp3",
        description="Audio codec produced by the extract-audio post-processor"
    )
    audio_quality: str = Field(
        default="0",
        description="yt-dlp audio quality (0 = best VBR)"
    )

    # A source that does not finish within this window fails as a whole
    source_timeout_seconds: float = Field(
        default=1800.0,
        ge=10.0,
        le=6 * 3600.0,
        description="Upper bound on processing a single source"
    )
    min_duration_seconds: int = Field(
        default=30,
        ge=0,
        le=3600,
        description="Items shorter than this are rejected as not being full tracks"
    )
    max_items_per_source: int | None = Field(
        default=None,
        ge=1,
        description="Limit on members enumerated per channel/playlist (None = all)"
    )
    cookie_file: str | None = Field(
        default=None,
        description="Optional cookies.txt passed to yt-dlp"
    )
    default_artist: str = Field(
        default="Prod AI",
        description="Artist recorded when the platform does not provide one"
    )

    model_config = SettingsConfigDict(env_prefix="EXECUTOR_")


class RedisConfig(BaseSettings):
    """Redis configuration for state, history and the seen-item index."""

    redis_uri: str | None = Field(
        default=None,
        description="Redis connection URI (e.g., redis://localhost:6379); None selects in-memory storage"
    )
    key_prefix: str = Field(
        default="beatfeed:",
        description="Prefix applied to every key the service writes"
    )

    # Connection Pool Settings
    max_connections: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum Redis connections in pool"
    )

    model_config = SettingsConfigDict(env_prefix="REDIS_")


class HistoryConfig(BaseSettings):
    """History ledger query settings."""

    default_page_size: int = Field(
        default=20,
        ge=1,
        le=100,
        description="Page size used when the request does not specify one"
    )
    max_page_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Largest page size a request may ask for"
    )

    model_config = SettingsConfigDict(env_prefix="HISTORY_")


class LoggingConfig(BaseSettings):
    """Logging configuration with structured logging support."""

    # Log Levels
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Application log level"
    )

    # Access Logging (separate from error logs)
    access_log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Uvicorn access log level"
    )

    # Structured Logging
    json_logs: bool = Field(
        default=False,
        description="Enable JSON formatted logs (recommended for production)"
    )

    # Log Files
    access_log_file: str | None = Field(
        default=None,
        description="Path to access log file (None = stdout)"
    )
    error_log_file: str | None = Field(
        default=None,
        description="Path to error log file (None = stderr)"
    )

    # Log Rotation
    log_rotation_size: int = Field(
        default=10 * 1024 * 1024,  # 10MB
        ge=1024 * 1024,  # Min 1MB
        description="Log file size before rotation (bytes)"
    )
    log_rotation_count: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Number of rotated log files to keep"
    )

    model_config = SettingsConfigDict(env_prefix="LOG_")


class CORSConfig(BaseSettings):
    """CORS configuration."""

    allowed_origins: Annotated[list[str], NoDecode] = Field(
        default=["*"],
        description="Allowed CORS origins (use the storefront domain in production)"
    )

    model_config = SettingsConfigDict(env_prefix="CORS_")

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_origins(cls, v):
        """Parse comma-separated origins from environment variable."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v


class Settings(BaseSettings):
    """Main application settings combining all configuration sections."""

    # Application Metadata
    app_name: str = Field(
        default="Beatfeed Scheduler",
        description="Application name"
    )
    app_version: str = Field(
        default="0.1.0",
        description="Application version"
    )

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Runtime environment"
    )

    # Component Configurations
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    cors: CORSConfig = Field(default_factory=CORSConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def validate_settings(self) -> list[str]:
        """Validate settings and return list of warnings/info messages."""
        messages = []

        if self.environment == "production":
            if not self.redis.redis_uri:
                messages.append(
                    "WARNING: No Redis configured in production - scheduler state will not survive restarts"
                )

            if not self.scheduler.cron_secret:
                messages.append("WARNING: Cron trigger endpoint is not protected by a secret")

            if "*" in self.cors.allowed_origins:
                messages.append("WARNING: CORS allows all origins in production")

            if not self.logging.json_logs:
                messages.append("INFO: JSON logs recommended for production")

        messages.append(f"INFO: Run interval: {self.scheduler.interval_hours:g} hours")
        messages.append(
            f"INFO: Tick: {'every ' + str(self.scheduler.tick_interval_seconds) + 's' if self.scheduler.tick_enabled else 'disabled'}"
        )
        messages.append(f"INFO: Storage: {'redis' if self.redis.redis_uri else 'memory'}")
        messages.append(f"INFO: Media directory: {self.executor.media_dir}")

        return messages


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance (singleton pattern)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment (useful for testing)."""
    global _settings
    _settings = Settings()
    return _settings

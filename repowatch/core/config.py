"""Configuration management using Pydantic Settings."""

from typing import ClassVar

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from repowatch.shared.exceptions import ConfigError

# Singleton instance
_settings: "Settings | None" = None


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # GitHub configuration
    github_token: str
    github_login: str = ""  # Resolved from the token when empty
    page_size: int = 10

    # Polling
    poll_interval_minutes: int = 10
    initial_delay_minutes: int = 1
    fetch_timeout_seconds: float = 30.0
    max_concurrent_fetches: int = 4
    alerts_config_file: str = ""

    # Persistence
    state_backend: str = "json"
    state_file_path: str = "data/state.json"
    db_host: str = "postgres"
    db_port: int = 5432
    db_name: str = "repowatch"
    db_user: str = "repowatch"
    db_password: str = ""

    # Consumer HTTP surface
    enable_api: bool = True
    api_host: str = "127.0.0.1"
    api_port: int = 8787
    api_token: str = ""

    # Application settings
    log_level: str = "INFO"
    app_version: str = "0.1.0"
    environment: str = "development"

    VALID_LOG_LEVELS: ClassVar[set[str]] = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    VALID_STATE_BACKENDS: ClassVar[set[str]] = {"json", "postgres"}

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the allowed values."""
        v_upper = v.upper()
        if v_upper not in cls.VALID_LOG_LEVELS:
            raise ConfigError(
                f"Invalid log level: {v}. Must be one of {', '.join(cls.VALID_LOG_LEVELS)}"
            )
        return v_upper

    @field_validator("state_backend")
    @classmethod
    def validate_state_backend(cls, v: str) -> str:
        """Validate the persistence engine name."""
        v_lower = v.lower()
        if v_lower not in cls.VALID_STATE_BACKENDS:
            raise ConfigError(
                f"Invalid state backend: {v}. Must be one of "
                f"{', '.join(sorted(cls.VALID_STATE_BACKENDS))}"
            )
        return v_lower

    @field_validator("poll_interval_minutes")
    @classmethod
    def validate_poll_interval(cls, v: int) -> int:
        """Validate poll interval is within acceptable range (1-1440 minutes)."""
        if not 1 <= v <= 1440:
            raise ConfigError(f"Poll interval must be between 1 and 1440 minutes, got {v}")
        return v

    @field_validator("initial_delay_minutes")
    @classmethod
    def validate_initial_delay(cls, v: int) -> int:
        """Validate initial delay is not negative."""
        if v < 0:
            raise ConfigError(f"Initial delay must not be negative, got {v}")
        return v

    @field_validator("page_size")
    @classmethod
    def validate_page_size(cls, v: int) -> int:
        """Validate page size against the GitHub per_page limit (1-100)."""
        if not 1 <= v <= 100:
            raise ConfigError(f"Page size must be between 1 and 100, got {v}")
        return v

    @field_validator("fetch_timeout_seconds")
    @classmethod
    def validate_fetch_timeout(cls, v: float) -> float:
        """Validate fetch timeout is positive."""
        if v <= 0:
            raise ConfigError(f"Fetch timeout must be positive, got {v}")
        return v

    @field_validator("max_concurrent_fetches")
    @classmethod
    def validate_max_concurrent_fetches(cls, v: int) -> int:
        """Validate fetch concurrency (1-32)."""
        if not 1 <= v <= 32:
            raise ConfigError(f"Max concurrent fetches must be between 1 and 32, got {v}")
        return v


def get_settings() -> Settings:
    """Get or create the global Settings instance (cached singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore[call-arg]
    return _settings

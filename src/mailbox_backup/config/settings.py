"""Configuration and environment settings for the backup tool."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Self

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mailbox_backup.models.types import BackoffPolicy, Provider


class OAuthSettings(BaseSettings):
    """OAuth token cache and interactive flow settings."""

    model_config = SettingsConfigDict(extra="forbid")

    token_dir: Path = Path(".secrets")
    cache_tokens: bool = True
    open_browser: bool = True

    @field_validator("token_dir")
    @classmethod
    def _token_dir_to_absolute(cls, value: Path) -> Path:
        """Resolve the token cache directory to an absolute path."""
        return value.expanduser().resolve()

    def token_file(self, provider: Provider) -> Path | None:
        """Return the token cache file for a provider, or None when caching is off.

        Args:
            provider: Mailbox provider.

        Returns:
            Token file path or None.
        """
        if not self.cache_tokens:
            return None
        return self.token_dir / f"{provider.value}-token.json"


class RetrySettings(BaseSettings):
    """Retry policy for transient remote failures."""

    model_config = SettingsConfigDict(extra="forbid")

    max_retries: Annotated[int, Field(ge=0, le=20)] = 5
    backoff: BackoffPolicy = BackoffPolicy.exponential
    base_delay_s: Annotated[float, Field(ge=0)] = 1.0
    max_delay_s: Annotated[float, Field(ge=0)] = 30.0
    jitter_s: Annotated[float, Field(ge=0)] = 0.25

    @model_validator(mode="after")
    def _max_delay_not_below_base(self) -> Self:
        """Ensure max_delay_s >= base_delay_s.

        Returns:
            The validated settings.

        Raises:
            ValueError: If max_delay_s is smaller than base_delay_s.
        """
        if self.max_delay_s < self.base_delay_s:
            msg = f"max_delay_s ({self.max_delay_s}) must be >= base_delay_s ({self.base_delay_s})"
            raise ValueError(msg)
        return self


class NetworkSettings(BaseSettings):
    """Timeouts and paging for provider calls."""

    model_config = SettingsConfigDict(extra="forbid")

    timeout_seconds: Annotated[float, Field(gt=0, le=3600)] = 60.0
    page_size: Annotated[int, Field(ge=1, le=500)] = 100


class BackupSettings(BaseSettings):
    """Defaults for backup runs that the CLI may override."""

    model_config = SettingsConfigDict(extra="forbid")

    provider: Provider = Provider.gmail
    max_connections: Annotated[int, Field(ge=1, le=50)] = 1
    sync_deletes: bool = False


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(extra="forbid")

    level: Annotated[str, Field(min_length=1)] = "WARNING"
    json_logs: bool = False


class AppSettings(BaseSettings):
    """Top-level application settings."""

    model_config = SettingsConfigDict(
        env_prefix="MBK_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="forbid",
    )

    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    network: NetworkSettings = Field(default_factory=NetworkSettings)
    backup: BackupSettings = Field(default_factory=BackupSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(*, env_file: Path | None) -> AppSettings:
    """Load validated settings from environment and optional file.

    Args:
        env_file: Optional .env file path.

    Returns:
        Validated AppSettings instance.
    """
    if env_file is None:
        return AppSettings()
    return AppSettings(_env_file=env_file)  # type: ignore[call-arg]

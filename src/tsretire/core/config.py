"""Unified application configuration with environment support.

Configuration hierarchy:
    1. Environment variables (highest priority)
    2. .env file
    3. Built-in defaults

Nested sections can also be set through the master config using the
``__`` delimiter, e.g. ``CONFIRMATION__TIMEOUT_SECONDS=30``.
"""

from __future__ import annotations

import re
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PERIOD_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def validate_period(value: str) -> str:
    """Check that a retirement period has the form YYYY-MM.

    Raises:
        ValueError: If the value is not a valid year-month
    """
    if not PERIOD_PATTERN.match(value):
        raise ValueError(f"Invalid retirement period: {value!r}. Expected YYYY-MM")
    return value


# ============================================================================
# Source Store Configuration
# ============================================================================


class InfluxConfig(BaseSettings):
    """InfluxDB v2 source store configuration."""

    url: str = Field(default="http://localhost:8086", description="InfluxDB base URL")
    token: str | None = Field(default=None, description="API token")
    org: str = Field(default="home", description="Organisation name")
    bucket: str = Field(default="autogen", description="Bucket holding the live points")
    retirement_tag: str = Field(
        default="RetDate",
        description="Tag carrying the retirement period (YYYY-MM)",
    )
    # Relative notation: explicit dates in range() were misread by some
    # influx versions
    query_range_start: str = Field(
        default="-5y",
        description="Flux range start covering the store's retention horizon",
    )
    delete_range_start: str = Field(
        default="1970-01-01T00:00:00Z",
        description="Lower bound of the delete time range",
    )
    timeout_seconds: float = Field(default=300.0, gt=0)
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for idempotent requests on transport errors",
    )

    @field_validator("retirement_tag")
    @classmethod
    def validate_tag(cls, v: str) -> str:
        """Tag names end up inside Flux and predicate strings."""
        if not re.match(r"^\w+$", v):
            raise ValueError(f"Invalid tag name: {v}")
        return v

    model_config = SettingsConfigDict(env_prefix="INFLUX_", extra="allow")


# ============================================================================
# Archive Configuration
# ============================================================================


class ArchiveConfig(BaseSettings):
    """Remote archive share (rsync daemon module)."""

    host: str = Field(default="nas.srv.land-da", description="Archive host name")
    rsync_module: str = Field(default="ohdb_retired", description="rsync module (share)")
    rsync_binary: str = Field(default="rsync", description="rsync executable")
    rsync_options: list[str] = Field(
        default_factory=list,
        description="Extra command line options for rsync",
    )
    transfer_timeout_seconds: float = Field(default=1800.0, gt=0)

    model_config = SettingsConfigDict(env_prefix="ARCHIVE_", extra="allow")

    @property
    def target(self) -> str:
        """rsync URL of the archive inbound share."""
        return f"rsync://{self.host}:/{self.rsync_module}/"


class ConfirmationConfig(BaseSettings):
    """Rendezvous channel for the archive acknowledgement."""

    bind_host: str = Field(
        default="0.0.0.0",
        description="Source-side address the listener binds to",
    )
    port: int = Field(default=333, ge=0, le=65535, description="Listener TCP port")
    timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Maximum time to wait for the acknowledgement",
    )
    commit_token: str = Field(default="COMMIT", description="Positive acknowledgement text")
    restrict_peer: bool = Field(
        default=True,
        description="Accept messages from the archive host only",
    )
    max_message_bytes: int = Field(default=65536, ge=64)

    model_config = SettingsConfigDict(env_prefix="CONFIRM_", extra="allow")


# ============================================================================
# Working Directory Configuration
# ============================================================================


class WorkdirConfig(BaseSettings):
    """Batch working directory for append-files."""

    root: Path | None = Field(
        default=None,
        description="Parent of the batch working directory (system temp if unset)",
    )
    prefix: str = Field(default="ret_", description="Working directory name prefix")
    compression_level: int = Field(default=9, ge=1, le=9, description="gzip level")

    @field_validator("root", mode="before")
    @classmethod
    def ensure_root_exists(cls, v: Path | str | None) -> Path | None:
        """Create the parent directory if it doesn't exist."""
        if v is None or v == "":
            return None
        v = Path(v).resolve()
        v.mkdir(parents=True, exist_ok=True)
        return v

    model_config = SettingsConfigDict(env_prefix="WORKDIR_", extra="allow")


# ============================================================================
# Observability Configuration
# ============================================================================


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    format: str = Field(
        default="json",
        description="Log format (json, console)",
    )

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        if v not in {"json", "console"}:
            raise ValueError(f"Invalid log format: {v}. Must be 'json' or 'console'")
        return v

    model_config = SettingsConfigDict(env_prefix="LOG_", extra="allow")


# ============================================================================
# Unified Application Configuration
# ============================================================================


class AppConfig(BaseSettings):
    """Master configuration for the retirement pipeline.

    All sub-configurations are included here for easy access:
        config.influx.bucket
        config.archive.target
        config.confirmation.timeout_seconds
        etc.
    """

    influx: InfluxConfig = Field(default_factory=InfluxConfig)
    archive: ArchiveConfig = Field(default_factory=ArchiveConfig)
    confirmation: ConfirmationConfig = Field(default_factory=ConfirmationConfig)
    workdir: WorkdirConfig = Field(default_factory=WorkdirConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


# Global configuration instance
config = AppConfig()


def get_config() -> AppConfig:
    """Get the global application configuration.

    Returns:
        AppConfig instance
    """
    return config


def reload_config() -> AppConfig:
    """Reload configuration from environment.

    Useful for testing or dynamic configuration changes.

    Returns:
        New AppConfig instance
    """
    global config
    config = AppConfig()
    return config

"""Configuration module for seasync.

Load and validate TOML configuration with Pydantic models and environment
overrides. As a Layer 1 module, may import: exceptions, utils.

Example:
    >>> from seasync.config import load_settings
    >>> settings = load_settings("seasync.toml")
    >>> settings.fusion.tolerance_ms
    50.0
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

try:
    import tomli as tomllib  # Python < 3.11
except ImportError:
    import tomllib  # Python >= 3.11

from pydantic import BaseModel, Field, ValidationError, field_validator

from seasync.exceptions import ConfigError

__all__ = [
    "Settings",
    "StorageConfig",
    "RecorderConfig",
    "MirrorConfig",
    "TimeSyncConfig",
    "FusionConfig",
    "LoggingConfig",
    "load_settings",
    "ENV_PREFIX",
]

ENV_PREFIX = "SEASYNC_"


# ============================================================================
# Configuration Models
# ============================================================================


class StorageConfig(BaseModel):
    """Where recordings are stored."""

    root: Path = Field(default=Path("data/sessions"))

    @field_validator("root", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Path:
        """Expand environment variables and user home in paths."""
        if isinstance(v, str):
            return Path(os.path.expandvars(os.path.expanduser(v)))
        return v


class RecorderConfig(BaseModel):
    """Local chunked recording configuration."""

    flush_interval_ms: int = Field(default=200, gt=0)
    roll_interval_s: float = Field(default=60.0, ge=0)
    max_buffer_size: int = Field(default=10_000, ge=1)
    max_chunk_rows: Optional[int] = Field(default=None, ge=1)
    max_chunk_bytes: Optional[int] = Field(default=None, ge=1)


class MirrorConfig(BaseModel):
    """Remote replication configuration."""

    cadence_s: float = Field(default=15.0, gt=0)
    full_bandwidth_cadence_s: float = Field(default=2.0, gt=0)
    catalog_timeout_s: float = Field(default=15.0, gt=0)
    download_timeout_s: float = Field(default=30.0, gt=0)
    marker_timeout_s: float = Field(default=10.0, gt=0)
    stop_grace_s: float = Field(default=2.0, ge=0)


class TimeSyncConfig(BaseModel):
    """Coarse clock-offset probe configuration."""

    timeout_s: float = Field(default=5.0, gt=0)
    max_rtt_ms: float = Field(default=200.0, gt=0)


class FusionConfig(BaseModel):
    """Fusion alignment configuration."""

    tolerance_ms: float = Field(default=50.0, gt=0)
    consolidation_ms: float = Field(default=25.0, ge=0)
    drift_threshold_ms: float = Field(default=2.0, ge=0)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO")
    structured: bool = Field(default=False)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}, got '{v}'")
        return v_upper


class Settings(BaseModel):
    """Complete seasync settings."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    recorder: RecorderConfig = Field(default_factory=RecorderConfig)
    mirror: MirrorConfig = Field(default_factory=MirrorConfig)
    time_sync: TimeSyncConfig = Field(default_factory=TimeSyncConfig)
    fusion: FusionConfig = Field(default_factory=FusionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"extra": "forbid"}  # Reject unknown keys


# ============================================================================
# Loading Functions
# ============================================================================


def load_settings(
    toml_path: Path | str | None = None,
    env_prefix: str = ENV_PREFIX,
) -> Settings:
    """Load and validate settings from TOML and environment.

    Args:
        toml_path: Path to TOML configuration file (optional)
        env_prefix: Environment variable prefix (default: SEASYNC_)

    Returns:
        Validated Settings object

    Raises:
        FileNotFoundError: If toml_path specified but doesn't exist
        ConfigError: If configuration is invalid
    """
    config_dict: dict[str, Any] = {}

    if toml_path is not None:
        toml_path = Path(toml_path)
        if not toml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {toml_path}")

        with open(toml_path, "rb") as f:
            try:
                config_dict = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigError(f"Invalid TOML in {toml_path}: {e}") from e

    config_dict = _apply_env_overrides(config_dict, env_prefix)

    try:
        return Settings(**config_dict)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}", context={"errors": e.errors()}) from e


def _apply_env_overrides(config: dict[str, Any], prefix: str) -> dict[str, Any]:
    """Apply environment variable overrides to config dict.

    Supports nested keys with double underscore notation:
    SEASYNC_FUSION__TOLERANCE_MS=40
    SEASYNC_STORAGE__ROOT=/data/seasync

    Args:
        config: Configuration dictionary
        prefix: Environment variable prefix

    Returns:
        Configuration with environment overrides applied
    """
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        config_key = key[len(prefix) :].lower()
        parts = config_key.split("__")

        current = config
        for part in parts[:-1]:
            if part not in current or not isinstance(current[part], dict):
                current[part] = {}
            current = current[part]

        current[parts[-1]] = _parse_env_value(value)

    return config


def _parse_env_value(value: str) -> Any:
    """Parse environment variable value to appropriate type.

    Returns:
        Parsed value (bool, int, float, or str)
    """
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False

    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        pass

    return value

"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. --config <path> CLI flag
2. ./tracksync.yaml (working directory)
3. ~/.tracksync/config.yaml (user home)

Environment variables override YAML: TRACKSYNC_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.
When no file is found the defaults below apply, still subject to env overrides.
"""

import logging
import os
import re
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Literal, get_origin

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

DEFAULT_CARRIER_BASE_URL = "https://warehouse.directhouse.no/api/"
DEFAULT_ENABLED_STATUSES = ["processing", "completed"]


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Args:
        value: String potentially containing ${VAR} references.

    Returns:
        String with all ${VAR} references replaced by their env values.
        Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    """Recursively resolve ${VAR} references in a nested data structure."""
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class DatabaseConfig(BaseModel):
    """Database connection settings. An empty url uses get_database_url()."""

    url: str = ""
    echo: bool = False


class CarrierConfig(BaseModel):
    """Carrier tracking API settings."""

    base_url: str = DEFAULT_CARRIER_BASE_URL
    environment: Literal["development", "production"] = "production"
    timeout_seconds: float | None = None
    user_agent: str = "tracksync/1.0"

    @property
    def effective_timeout(self) -> float:
        """Request timeout: explicit override, else short in development."""
        if self.timeout_seconds is not None:
            return self.timeout_seconds
        return 5.0 if self.environment == "development" else 30.0


class RateLimitConfig(BaseModel):
    """Sliding window bounding outbound carrier requests."""

    window_seconds: float = Field(default=60.0, gt=0)
    max_requests: int = Field(default=100, ge=1)


class ReconciliationConfig(BaseModel):
    """Selection, batching and run budget settings for reconciliation runs."""

    enabled_statuses: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ENABLED_STATUSES)
    )
    # Per-status age limit in days, 0 = no limit
    status_age_limits_days: dict[str, int] = Field(default_factory=dict)
    default_age_limit_days: int = Field(default=30, ge=0)
    exclude_delivered: bool = True
    max_updates_per_run: int = Field(default=50, ge=0)
    batch_size: int = Field(default=10, ge=1, le=200)
    time_limit_seconds: float = Field(default=25.0, gt=0)
    memory_limit_mb: int = Field(default=256, ge=1)
    memory_threshold: float = Field(default=0.9, gt=0, le=1)
    max_retry_passes: int = Field(default=3, ge=0)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    retry_max_delay_seconds: float = Field(default=8.0, ge=0)
    auto_complete_delivered: bool = True

    @field_validator("enabled_statuses")
    @classmethod
    def default_when_empty(cls, value: list[str]) -> list[str]:
        """An empty status list falls back to processing and completed."""
        return value or list(DEFAULT_ENABLED_STATUSES)

    def age_limits(self, statuses: Sequence[str] | None = None) -> dict[str, int]:
        """Return the age limit in days for each status, the enabled ones by default."""
        return {
            status: self.status_age_limits_days.get(
                status, self.default_age_limit_days
            )
            for status in statuses or self.enabled_statuses
        }


class LoggingConfig(BaseModel):
    """Logging settings applied by the CLI."""

    level: str = "INFO"


class TrackSyncConfig(BaseModel):
    """Top-level configuration passed explicitly to the engine and CLI."""

    database: DatabaseConfig = DatabaseConfig()
    carrier: CarrierConfig = CarrierConfig()
    rate_limit: RateLimitConfig = RateLimitConfig()
    reconciliation: ReconciliationConfig = ReconciliationConfig()
    logging: LoggingConfig = LoggingConfig()


def _find_config_file() -> Path | None:
    """Search for config file in standard locations.

    Returns:
        Path to config file if found, None otherwise.
    """
    candidates = [
        Path.cwd() / "tracksync.yaml",
        Path.cwd() / "tracksync.yml",
        Path.home() / ".tracksync" / "config.yaml",
        Path.home() / ".tracksync" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _coerce_env_value(value: str, as_list: bool = False) -> Any:
    """Coerce an env override to int, bool, list or keep as string."""
    if as_list:
        return [item.strip() for item in value.split(",") if item.strip()]
    try:
        return int(value)
    except ValueError:
        pass
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    return value


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply TRACKSYNC_<SECTION>_<KEY> env var overrides to config data.

    Matches section names by longest prefix so multi-word section names
    like ``rate_limit`` are handled correctly. For example,
    ``TRACKSYNC_RATE_LIMIT_MAX_REQUESTS`` maps to section ``rate_limit``,
    field ``max_requests``.

    Args:
        data: Parsed YAML config dict.

    Returns:
        Config dict with env var overrides applied.
    """
    prefix = "TRACKSYNC_"
    known_sections = sorted(
        TrackSyncConfig.model_fields.keys(), key=len, reverse=True
    )
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        suffix = key[len(prefix):].lower()
        matched_section = None
        matched_field = None
        for section in known_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix):
                matched_section = section
                matched_field = suffix[len(section_prefix):]
                break
        if matched_section is None or not matched_field:
            continue
        if matched_section not in data or data[matched_section] is None:
            data[matched_section] = {}
        if isinstance(data[matched_section], dict):
            section_model = TrackSyncConfig.model_fields[matched_section].annotation
            field_info = section_model.model_fields.get(matched_field)
            as_list = field_info is not None and get_origin(field_info.annotation) is list
            data[matched_section][matched_field] = _coerce_env_value(value, as_list)
    return data


def load_config(config_path: str | None = None) -> TrackSyncConfig:
    """Load tracksync configuration from YAML file with env var resolution.

    Args:
        config_path: Explicit path to config file. If None, searches
            standard locations (cwd, then ~/.tracksync/).

    Returns:
        Parsed and validated TrackSyncConfig.

    Raises:
        FileNotFoundError: If an explicit config_path does not exist.
    """
    if config_path:
        path: Path | None = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()

    raw_data: dict[str, Any] = {}
    if path is not None:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}
    else:
        logger.debug("No config file found, using defaults")

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return TrackSyncConfig(**data)

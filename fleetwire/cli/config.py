"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. --config <path> CLI flag (or FLEETWIRE_CONFIG for the server)
2. ./fleetwire.yaml (working directory)
3. ~/.fleetwire/config.yaml (user home)

Environment variables override YAML: FLEETWIRE_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


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


class ServerConfig(BaseModel):
    """Configuration for the Fleetwire API process."""

    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"
    default_organization: str | None = None
    send_timeout_seconds: float = Field(default=30.0, gt=0)
    auto_initialize: bool = False


class NotificationsConfig(BaseModel):
    """Sweep and message tunables."""

    cooldown_days: int = Field(default=7, ge=0)
    batch_size: int = Field(default=50, ge=1, le=500)
    min_days_overdue: int = Field(default=0, ge=0)
    trip_days_ahead: int = Field(default=1, ge=0)
    recipient_unavailable_terminal: bool = True
    currency_symbol: str = "$"
    organization_name: str = "Fleetwire"


class SchedulerConfig(BaseModel):
    """In-process cron schedule. Disabled when an external cron calls /cron/*."""

    enabled: bool = False
    timezone: str = "UTC"
    invoice_reminder_hour: int = Field(default=9, ge=0, le=23)
    trip_notification_hour: int = Field(default=18, ge=0, le=23)
    daily_summary_hour: int = Field(default=7, ge=0, le=23)
    daily_summary_enabled: bool = True

    @field_validator("timezone")
    @classmethod
    def timezone_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("timezone must not be empty")
        return value


class FleetwireConfig(BaseModel):
    """Top-level configuration for Fleetwire."""

    server: ServerConfig = ServerConfig()
    notifications: NotificationsConfig = NotificationsConfig()
    scheduler: SchedulerConfig = SchedulerConfig()


def _find_config_file() -> Path | None:
    """Search for config file in standard locations.

    Returns:
        Path to config file if found, None otherwise.
    """
    candidates = [
        Path.cwd() / "fleetwire.yaml",
        Path.cwd() / "fleetwire.yml",
        Path.home() / ".fleetwire" / "config.yaml",
        Path.home() / ".fleetwire" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply FLEETWIRE_<SECTION>_<KEY> env var overrides to config data.

    For example, ``FLEETWIRE_NOTIFICATIONS_BATCH_SIZE`` maps to section
    ``notifications``, field ``batch_size``. Variables that do not start
    with a known section (``FLEETWIRE_API_KEY``) are ignored.

    Args:
        data: Parsed YAML config dict.

    Returns:
        Config dict with env var overrides applied.
    """
    prefix = "FLEETWIRE_"
    known_sections = sorted(
        FleetwireConfig.model_fields.keys(), key=len, reverse=True
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
            # Coerce to int, bool, or keep as string
            try:
                data[matched_section][matched_field] = int(value)
            except ValueError:
                if value.lower() in ("true", "false"):
                    data[matched_section][matched_field] = value.lower() == "true"
                else:
                    data[matched_section][matched_field] = value
    return data


def load_config(config_path: str | None = None) -> FleetwireConfig | None:
    """Load Fleetwire configuration from YAML file with env var resolution.

    Args:
        config_path: Explicit path to config file. If None, searches
            standard locations (cwd, then ~/.fleetwire/).

    Returns:
        Parsed and validated FleetwireConfig, or None if no config found.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
        pydantic.ValidationError: If the file fails validation.
    """
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()
        if path is None:
            return None

    logger.info("Loading config from %s", path)

    with open(path) as f:
        raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return FleetwireConfig(**data)


def load_effective_config(config_path: str | None = None) -> FleetwireConfig:
    """Load the config file if any, falling back to defaults plus env overrides.

    Plain environment variables (``SEND_TIMEOUT_SECONDS``,
    ``WHATSAPP_AUTO_INITIALIZE``, ``WHATSAPP_DEFAULT_ORGANIZATION``) take
    precedence over the file for the server section.
    """
    config = load_config(config_path or os.environ.get("FLEETWIRE_CONFIG") or None)
    if config is None:
        config = FleetwireConfig(**_apply_env_overrides({}))

    updates: dict[str, Any] = {}
    timeout = os.environ.get("SEND_TIMEOUT_SECONDS", "").strip()
    if timeout:
        updates["send_timeout_seconds"] = float(timeout)
    auto_init = os.environ.get("WHATSAPP_AUTO_INITIALIZE", "").strip().lower()
    if auto_init:
        updates["auto_initialize"] = auto_init in ("1", "true", "yes")
    default_org = os.environ.get("WHATSAPP_DEFAULT_ORGANIZATION", "").strip()
    if default_org:
        updates["default_organization"] = default_org
    if updates:
        config = config.model_copy(update={"server": config.server.model_copy(update=updates)})
    return config

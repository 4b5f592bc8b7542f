"""Configuration bootstrap for pihole-sync.

Reads the YAML config file, applies environment overrides and validates
everything that can be checked before the first sync cycle.

Precedence (highest to lowest):
    Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    PIHOLE_SYNC_CONFIG: Config file path (see config_loader)
    PIHOLE_SYNC_INTERVAL: Sync interval in minutes
    PIHOLE_SYNC_TRIGGER_MODE: interval, watch_config_file or watch_config_api
    PIHOLE_SYNC_LOG_LEVEL: Log level for the logging section
"""

import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError

from .config_loader import load_config_file
from .config_schema import AppConfig, SyncMode, TriggerMode, build_config
from .errors import ConfigError, FilterConfigError

logger = logging.getLogger(__name__)


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *raw* with ``PIHOLE_SYNC_*`` overrides applied."""
    merged = dict(raw)
    sync_section = dict(merged.get("sync") or {})
    logging_section = dict(merged.get("logging") or {})

    interval_raw = os.getenv("PIHOLE_SYNC_INTERVAL")
    if interval_raw is not None:
        try:
            interval = int(interval_raw)
        except ValueError:
            raise ConfigError(
                f"Invalid PIHOLE_SYNC_INTERVAL '{interval_raw}': must be a positive number of minutes"
            ) from None
        if interval < 1:
            raise ConfigError(
                f"Invalid PIHOLE_SYNC_INTERVAL '{interval_raw}': must be a positive number of minutes"
            )
        sync_section["interval"] = interval

    trigger_raw = os.getenv("PIHOLE_SYNC_TRIGGER_MODE")
    if trigger_raw:
        valid = [m.value for m in TriggerMode]
        if trigger_raw not in valid:
            raise ConfigError(
                f"Invalid PIHOLE_SYNC_TRIGGER_MODE '{trigger_raw}': must be one of {', '.join(valid)}"
            )
        sync_section["trigger_mode"] = trigger_raw

    level_raw = os.getenv("PIHOLE_SYNC_LOG_LEVEL")
    if level_raw:
        logging_section["level"] = level_raw.upper()

    if sync_section:
        merged["sync"] = sync_section
    if logging_section:
        merged["logging"] = logging_section
    return merged


def validate_filter_keys(label: str, keys: list[str]) -> None:
    """Reject filter keys that can never match a dotted config path.

    Raises:
        FilterConfigError: On empty segments, surrounding whitespace or
            duplicate keys.
    """
    seen: set[str] = set()
    for key in keys:
        if not isinstance(key, str) or not key.strip():
            raise FilterConfigError(
                f"[{label}] filter_keys contains an empty key"
            )
        if key != key.strip():
            raise FilterConfigError(
                f"[{label}] filter key '{key}' has surrounding whitespace"
            )
        if any(not part for part in key.split(".")):
            raise FilterConfigError(
                f"[{label}] filter key '{key}' is not a dotted path (empty segment)"
            )
        if key in seen:
            raise FilterConfigError(
                f"[{label}] filter key '{key}' is listed more than once"
            )
        seen.add(key)


def validate_config(config: AppConfig) -> None:
    """Validate cross-field rules the schema cannot express.

    Raises:
        ConfigError: Duplicate secondaries or main listed as a secondary.
        FilterConfigError: Malformed filter policy.
    """
    labels: set[str] = set()
    for secondary in config.secondary:
        if secondary.label == config.main.label:
            raise ConfigError(
                f"[{secondary.label}] main instance is also listed as a secondary"
            )
        if secondary.label in labels:
            raise ConfigError(
                f"[{secondary.label}] secondary instance is listed more than once"
            )
        labels.add(secondary.label)

        options = secondary.api_sync_options
        if secondary.sync_mode is SyncMode.TELEPORTER:
            if options is not None and options.sync_config is not None:
                raise FilterConfigError(
                    f"[{secondary.label}] sync_config filters require sync_mode: api "
                    "(Teleporter restores are all-or-nothing)"
                )
            continue

        if options is None or not (
            options.sync_config or options.sync_groups or options.sync_lists
        ):
            logger.warning(
                "[%s] sync_mode is api but api_sync_options selects nothing to sync",
                secondary.label,
            )
            continue

        if options.sync_config is not None:
            validate_filter_keys(
                secondary.label, options.sync_config.filter_keys
            )

    if not config.secondary:
        logger.warning("No secondary instances configured")


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load, override and validate the application config.

    ``.env`` is loaded first so ``${VAR}`` interpolation in the YAML file
    and the ``PIHOLE_SYNC_*`` overrides can use its values.

    Args:
        path: Explicit config file (``--config``); discovered when None.

    Returns:
        Validated ``AppConfig``.

    Raises:
        ConfigError: If the file is missing or invalid.
        FilterConfigError: If a secondary's filter policy is malformed.
    """
    load_dotenv()

    raw = _apply_env_overrides(load_config_file(path))

    try:
        config = build_config(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration:\n{exc}") from exc

    validate_config(config)
    return config

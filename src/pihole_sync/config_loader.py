"""
YAML configuration loader for pihole_sync.

Provides convention-based config file discovery, YAML !include support
and env var interpolation.

Usage:
    from pihole_sync.config_loader import load_config_file

    raw = load_config_file()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("/etc/pihole-sync/config.yaml")

# ---------------------------------------------------------------------------
# 1. Env var interpolation
# ---------------------------------------------------------------------------

# Matches ${VAR} and ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` patterns with env values.

    * ``${VAR}`` is replaced with ``os.environ.get(VAR, "")``.
    * ``${VAR:-default}`` uses *default* when VAR is unset or empty.
    * Literal ``${`` with no closing ``}`` is left untouched.
    """

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(2)  # None when no :- clause
        env_val = os.environ.get(var_name)
        if env_val is not None and env_val != "":
            return env_val
        if default is not None:
            return default
        return ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_recursive(obj: Any) -> Any:
    """Walk a nested dict/list and interpolate env vars in all strings."""
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _interpolate_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# 2. YAML !include support (dedicated SafeLoader subclass)
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """YAML SafeLoader subclass with ``!include`` support.

    Lets a fleet keep its secondaries in a separate file::

        secondary: !include secondaries.yaml

    The global ``yaml.SafeLoader`` is never modified.  An include stack is
    tracked per load to detect circular includes.
    """


def _include_constructor(
    loader: ConfigLoader, node: yaml.ScalarNode
) -> Any:
    """Handle ``!include path/to/file.yaml`` directives."""
    include_path_str: str = loader.construct_scalar(node)

    # Resolve relative to the file that contains the !include
    if os.path.isabs(include_path_str):
        include_path = Path(include_path_str)
    else:
        parent_dir = Path(loader.name).resolve().parent
        include_path = parent_dir / include_path_str

    include_path = include_path.resolve()

    include_stack: list[Path] = getattr(loader, "_include_stack", [])
    if include_path in include_stack:
        chain = (
            " -> ".join(str(p) for p in include_stack)
            + f" -> {include_path}"
        )
        raise ConfigError(f"Circular include detected: {chain}")

    if not include_path.exists():
        source_file = Path(loader.name).resolve()
        raise ConfigError(
            f"Include file not found: {include_path} (referenced from {source_file})"
        )

    new_stack = include_stack + [include_path]
    return _load_yaml_with_includes(
        include_path, _include_stack=new_stack
    )


ConfigLoader.add_constructor("!include", _include_constructor)


def _load_yaml_with_includes(
    path: Path,
    *,
    _include_stack: list[Path] | None = None,
) -> Any:
    """Load a YAML file using the ``ConfigLoader`` (with ``!include``)."""
    path = path.resolve()
    if _include_stack is None:
        _include_stack = [path]

    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_stack = _include_stack  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# 3. Convention-based file discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing config file paths in precedence order (highest first).

    Search order:
        1. ``PIHOLE_SYNC_CONFIG`` env var (explicit single path)
        2. ``/etc/pihole-sync/config.yaml`` (system-wide, used by the service)
        3. ``~/.config/pihole-sync/config.yaml`` (per-user)

    Only paths that exist on disk are returned.
    """
    candidates: list[Path] = []

    env_path = os.environ.get("PIHOLE_SYNC_CONFIG")
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())

    candidates.append(DEFAULT_CONFIG_PATH)
    candidates.append(
        Path.home() / ".config" / "pihole-sync" / "config.yaml"
    )

    return [p for p in candidates if p.exists()]


def resolve_config_path(explicit: str | Path | None = None) -> Path:
    """Return the config file that should be used.

    An explicit path (``--config``) always wins and must exist.  Otherwise
    the highest-precedence discovered file is returned.

    Raises:
        ConfigError: If no config file can be found.
    """
    if explicit:
        path = Path(explicit).expanduser()
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        return path

    existing = discover_config_files()
    if not existing:
        raise ConfigError(
            "No config file found. Create "
            f"{DEFAULT_CONFIG_PATH}, set PIHOLE_SYNC_CONFIG "
            "or pass --config."
        )
    return existing[0]


# ---------------------------------------------------------------------------
# 4. Loading
# ---------------------------------------------------------------------------


def load_config_file(path: str | Path | None = None) -> dict[str, Any]:
    """Load the config file and interpolate env vars in all strings.

    Args:
        path: Explicit file path; discovered when omitted.

    Returns:
        The raw config dict (not yet validated).

    Raises:
        ConfigError: If the file is missing, unparsable or not a mapping.
    """
    config_path = resolve_config_path(path)
    logger.debug("Loading config: %s", config_path)

    try:
        data = _load_yaml_with_includes(config_path)
    except yaml.YAMLError as exc:
        raise ConfigError(
            f"Failed to parse config file {config_path}: {exc}"
        ) from exc

    if data is None:
        raise ConfigError(f"Config file {config_path} is empty")
    if not isinstance(data, dict):
        raise ConfigError(
            f"Config file {config_path} has non-mapping root "
            f"({type(data).__name__})"
        )

    return _interpolate_recursive(data)

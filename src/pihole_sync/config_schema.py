"""Configuration schema for pihole_sync.

Defines Pydantic models for the YAML config structure: the ``sync``
section (trigger and timing), the ``main`` instance, the list of
``secondary`` instances and the ``logging`` section.

Usage:
    from pihole_sync.config_schema import AppConfig, build_config

    raw = load_config_file()
    config = build_config(raw)

Example YAML::

    sync:
      interval: 60
      trigger_mode: watch_config_api
    main:
      host: 192.168.1.2
      schema: https
      port: 443
      api_key: ${PIHOLE_MAIN_APP_PASSWORD}
    secondary:
      - host: 192.168.1.3
        port: 80
        api_key: xxx
        sync_mode: api
        api_sync_options:
          sync_config:
            mode: include
            filter_keys: [dns.upstreams, dns.hosts]
          sync_groups: true
          sync_lists: true
"""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SyncMode(str, Enum):
    """How a secondary receives configuration from main."""

    TELEPORTER = "teleporter"
    API = "api"


class FilterMode(str, Enum):
    """Whether ``filter_keys`` lists the keys to sync or to skip."""

    INCLUDE = "include"
    EXCLUDE = "exclude"


class TriggerMode(str, Enum):
    """What starts a sync cycle."""

    INTERVAL = "interval"
    WATCH_CONFIG_FILE = "watch_config_file"
    WATCH_CONFIG_API = "watch_config_api"


# ---------------------------------------------------------------------------
# Per-secondary options
# ---------------------------------------------------------------------------


class GravityImportOptions(BaseModel):
    """Gravity database tables restored by a Teleporter import."""

    group: bool = True
    adlist: bool = True
    adlist_by_group: bool = True
    domainlist: bool = True
    domainlist_by_group: bool = True
    client: bool = True
    client_by_group: bool = True

    model_config = {"frozen": True}


class TeleporterImportOptions(BaseModel):
    """Selection sent as the ``import`` part of a Teleporter upload."""

    config: bool = True
    dhcp_leases: bool = True
    gravity: GravityImportOptions = Field(
        default_factory=GravityImportOptions
    )

    model_config = {"frozen": True}


class ConfigSyncOptions(BaseModel):
    """Filter policy for the ``/config`` tree.

    Attributes:
        mode: ``include`` syncs only the listed keys, ``exclude`` syncs
            everything except them.
        filter_keys: Dotted config paths (``dns.upstreams``).  A section
            path (``dns``) covers every key below it.
    """

    mode: FilterMode = FilterMode.INCLUDE
    filter_keys: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class ApiSyncOptions(BaseModel):
    """What an ``api``-mode secondary receives."""

    sync_config: ConfigSyncOptions | None = None
    sync_groups: bool = False
    sync_lists: bool = False

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Instances
# ---------------------------------------------------------------------------


class InstanceConfig(BaseModel):
    """Connection settings for one Pi-hole instance.

    ``schema`` is accepted as the YAML key and exposed as ``scheme``.
    """

    host: str
    scheme: str = Field(default="http", alias="schema", pattern="^https?$")
    port: int = Field(default=80, ge=1, le=65535)
    api_key: str = Field(description="App password")
    verify_tls: bool = Field(
        default=False,
        description="Verify TLS certificates (Pi-hole ships self-signed ones)",
    )
    update_gravity: bool = False
    sync_mode: SyncMode = SyncMode.TELEPORTER
    import_options: TeleporterImportOptions | None = None
    api_sync_options: ApiSyncOptions | None = None

    model_config = {"frozen": True, "populate_by_name": True}

    @property
    def label(self) -> str:
        """``host:port`` identity used in logs and results."""
        return f"{self.host}:{self.port}"

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}/api"


# ---------------------------------------------------------------------------
# Global sections
# ---------------------------------------------------------------------------


class SyncSettings(BaseModel):
    """The ``sync`` section: triggers, timing and cache location."""

    interval: int = Field(
        default=60, ge=1, description="Sync interval in minutes"
    )
    cache_location: str = Field(
        default="/var/cache/pihole-sync",
        description="Directory holding the last Teleporter backup",
    )
    trigger_mode: TriggerMode = TriggerMode.INTERVAL
    config_path: str = Field(
        default="/etc/pihole/pihole.toml",
        description="Pi-hole config file watched by watch_config_file",
    )
    api_poll_interval: int | None = Field(
        default=None,
        ge=1,
        description="Minutes between /config polls (defaults to interval)",
    )
    trigger_api_readiness_timeout_secs: int = Field(default=60, ge=1)
    connect_timeout_secs: float = Field(default=10, gt=0)
    request_timeout_secs: float = Field(default=60, gt=0)

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: str = Field(default="text", pattern="^(text|json)$")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


class AppConfig(BaseModel):
    """Top-level configuration: one main and any number of secondaries."""

    sync: SyncSettings = Field(default_factory=SyncSettings)
    main: InstanceConfig
    secondary: list[InstanceConfig] = Field(default_factory=list)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> AppConfig:
    """Construct an ``AppConfig`` from the raw dict returned by
    ``load_config_file()``.

    Missing optional sections get defaults; ``main`` is required.

    Raises:
        pydantic.ValidationError: If the structure is invalid.
    """
    return AppConfig(**raw_data)

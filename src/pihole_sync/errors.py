"""pihole-sync error hierarchy.

All project exceptions inherit from PiholeSyncError, enabling:
- ``except PiholeSyncError`` at top-level boundaries (CLI, scheduler)
- Fine-grained catches inside a sync cycle (``except AuthError``)

Hierarchy:
    PiholeSyncError
    ├── ConfigError
    │   └── FilterConfigError
    ├── AuthError
    ├── TransportError
    └── ReadinessTimeout

Only ``ConfigError`` is process-fatal.  Everything else is recorded per
secondary (or per cycle) and the scheduler keeps running.
"""

from __future__ import annotations


class PiholeSyncError(Exception):
    """Base class for all pihole-sync errors."""


class ConfigError(PiholeSyncError):
    """Invalid or missing configuration detected at startup."""


class FilterConfigError(ConfigError):
    """Malformed config filter policy on a secondary instance."""


class InstanceError(PiholeSyncError):
    """Error tied to one Pi-hole instance and one operation.

    Attributes:
        instance: Instance label (``host:port``).
        operation: Short operation name (``login``, ``export``, ...).
        status_code: HTTP status code when the API answered, else None.
    """

    def __init__(
        self,
        instance: str,
        operation: str,
        message: str,
        status_code: int | None = None,
    ) -> None:
        self.instance = instance
        self.operation = operation
        self.status_code = status_code
        super().__init__(f"[{instance}] {operation} failed: {message}")


class AuthError(InstanceError):
    """App password rejected or no session id returned."""


class TransportError(InstanceError):
    """Network error, timeout, non-2xx response or malformed payload."""


class ReadinessTimeout(PiholeSyncError):
    """Instance API did not become ready within the configured window."""

    def __init__(self, instance: str, timeout: float) -> None:
        self.instance = instance
        self.timeout = timeout
        super().__init__(
            f"[{instance}] Pi-hole API not ready after waiting {timeout:g}s"
        )

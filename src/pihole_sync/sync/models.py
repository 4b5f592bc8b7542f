"""Data contracts shared by the sync modules.

- ``TriggerKind`` / ``TriggerEvent``: why a cycle runs.
- ``SyncJob``: one secondary's unit of work within a cycle.
- ``SecondaryStatus`` / ``SecondaryResult``: outcome for one secondary.
- ``CycleResult``: aggregate outcome of a cycle.

Result models are frozen pydantic models so they can be logged, dumped
to JSON and compared in tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ..config_schema import InstanceConfig, SyncMode, TriggerMode

__all__ = [
    "CycleResult",
    "SecondaryResult",
    "SecondaryStatus",
    "SyncJob",
    "SyncMode",
    "TriggerEvent",
    "TriggerKind",
    "TriggerMode",
    "utc_now",
]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class TriggerKind(str, Enum):
    """Why a sync cycle was started."""

    ONCE = "once"
    INITIAL = "initial"
    INTERVAL = "interval"
    CONFIG_FILE = "config_file"
    CONFIG_API = "config_api"

    @property
    def is_config_change(self) -> bool:
        """Config changes may restart FTL, so secondaries are probed first."""
        return self in (TriggerKind.CONFIG_FILE, TriggerKind.CONFIG_API)


class TriggerEvent(BaseModel):
    """A "run now" signal from the scheduler.

    Attributes:
        kind: What fired.
        fired_at: ISO 8601 timestamp.
        main_config: Config snapshot already fetched from main by the
            ``watch_config_api`` trigger, reused by the cycle.
    """

    kind: TriggerKind
    fired_at: str = Field(default_factory=utc_now)
    main_config: dict[str, Any] | None = None

    model_config = {"frozen": True}


@dataclass(frozen=True)
class SyncJob:
    """Work for one secondary in one cycle."""

    main: InstanceConfig
    secondary: InstanceConfig
    mode: SyncMode
    trigger: TriggerEvent

    @property
    def label(self) -> str:
        return self.secondary.label


class SecondaryStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"
    SKIPPED = "skipped"


class SecondaryResult(BaseModel):
    """Outcome of syncing one secondary.

    Attributes:
        instance: ``host:port`` of the secondary.
        sync_mode: Transport used.
        status: ok, degraded (partial config write), failed or skipped.
        error_type: Exception class name for failures (``AuthError``, ...).
        reason: Failure/skip cause, with instance and operation.
        steps: Short descriptions of what was applied.
        warnings: Non-fatal issues (e.g. lists moved to group 0).
        rejected_keys: Config keys the secondary refused.
    """

    instance: str
    sync_mode: SyncMode
    status: SecondaryStatus
    error_type: str | None = None
    reason: str | None = None
    steps: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    rejected_keys: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def failed(self) -> bool:
        return self.status is SecondaryStatus.FAILED


class CycleResult(BaseModel):
    """Aggregate outcome of one sync cycle.

    Attributes:
        trigger: What started the cycle.
        started_at: ISO 8601 timestamp when the cycle started.
        completed_at: ISO 8601 timestamp when it finished.
        results: One entry per secondary, in configuration order.
        skipped_reason: Set when the whole cycle was skipped
            (e.g. main API not ready after a config-file change).
        error_type: Exception class name behind ``skipped_reason``.
    """

    trigger: TriggerKind
    started_at: str
    completed_at: str | None = None
    results: list[SecondaryResult] = Field(default_factory=list)
    skipped_reason: str | None = None
    error_type: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def skipped(
        cls, trigger: TriggerKind, reason: str, error_type: str | None = None
    ) -> CycleResult:
        now = utc_now()
        return cls(
            trigger=trigger,
            started_at=now,
            completed_at=now,
            skipped_reason=reason,
            error_type=error_type,
        )

    def _with_status(self, status: SecondaryStatus) -> list[SecondaryResult]:
        return [r for r in self.results if r.status is status]

    @property
    def succeeded(self) -> list[SecondaryResult]:
        return self._with_status(SecondaryStatus.OK)

    @property
    def degraded(self) -> list[SecondaryResult]:
        return self._with_status(SecondaryStatus.DEGRADED)

    @property
    def failures(self) -> list[SecondaryResult]:
        return self._with_status(SecondaryStatus.FAILED)

    @property
    def skipped_secondaries(self) -> list[SecondaryResult]:
        return self._with_status(SecondaryStatus.SKIPPED)

    @property
    def ok(self) -> bool:
        """True when the cycle ran and no secondary failed."""
        return self.skipped_reason is None and not self.failures

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def summary(self) -> str:
        """One-line summary with counts by status."""
        if self.skipped_reason:
            return f"Sync cycle ({self.trigger.value}) skipped: {self.skipped_reason}"
        return (
            f"Sync cycle ({self.trigger.value}): "
            f"{len(self.succeeded)} ok, {len(self.degraded)} degraded, "
            f"{len(self.failures)} failed, "
            f"{len(self.skipped_secondaries)} skipped"
        )

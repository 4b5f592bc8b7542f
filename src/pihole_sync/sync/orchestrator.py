"""Sync orchestrator: runs one sync cycle from main to every secondary.

A cycle:

1. Opens a session on main.  If that fails every secondary is reported
   failed and no secondary is contacted.
2. Fetches from main lazily and at most once per cycle: the Teleporter
   backup, the ``/config`` tree, groups and lists, each only if some
   secondary needs it.
3. For each secondary, in configuration order: probes readiness when the
   trigger was a config change, opens a session, runs its transport and
   logs out again.
4. Logs out of main and returns a ``CycleResult``.

Error handling is per secondary: one failure never aborts the others.
Nothing is retried inside a cycle; the next trigger is the retry.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from ..config_schema import ApiSyncOptions, AppConfig, InstanceConfig, SyncMode
from ..core.session import Session, SessionManager
from ..errors import PiholeSyncError
from .config_api import ConfigApiTransport
from .filter import ConfigTree, apply_filter, flatten_config, unmatched_keys
from .groups import WRITE_DELAY, sync_groups
from .lists import sync_lists
from .models import (
    CycleResult,
    SecondaryResult,
    SecondaryStatus,
    SyncJob,
    TriggerEvent,
    utc_now,
)
from .readiness import ReadinessProber
from .state import HashTracker
from .teleporter import TeleporterTransport

logger = logging.getLogger(__name__)

SHUTDOWN_REASON = "shutdown requested"


class _MainPayload:
    """Data fetched from main, at most once per cycle.

    A failed fetch is remembered too, so every secondary that needs the
    data reports the same error without hitting main again.
    """

    def __init__(
        self,
        session: Session,
        teleporter: TeleporterTransport,
        config_api: ConfigApiTransport,
        main_config: dict[str, Any] | None = None,
    ) -> None:
        self.session = session
        self.teleporter = teleporter
        self.config_api = config_api
        self._cache: dict[str, Any] = {}
        self._errors: dict[str, PiholeSyncError] = {}
        if main_config is not None:
            self._cache["config"] = flatten_config(main_config)

    def _once(self, name: str, fetch: Callable[[Session], Any]) -> Any:
        if name in self._errors:
            raise self._errors[name]
        if name not in self._cache:
            try:
                self._cache[name] = fetch(self.session)
            except PiholeSyncError as exc:
                self._errors[name] = exc
                raise
        return self._cache[name]

    def backup(self) -> bytes:
        return self._once("backup", self.teleporter.export)

    def config_tree(self) -> ConfigTree:
        return self._once("config", self.config_api.fetch_config)

    def groups(self) -> list[dict[str, Any]]:
        return self._once("groups", self.config_api.fetch_groups)

    def lists(self) -> list[dict[str, Any]]:
        return self._once("lists", self.config_api.fetch_lists)


class SyncOrchestrator:
    """Run sync cycles for one configuration.

    Args:
        config: Validated application config.
        sessions: Session manager; built from the config timeouts when None.
        tracker: "Nothing changed" memory shared across cycles.
        prober: Readiness prober for secondaries.
        write_delay: Seconds between group/list writes.
    """

    def __init__(
        self,
        config: AppConfig,
        sessions: SessionManager | None = None,
        tracker: HashTracker | None = None,
        prober: ReadinessProber | None = None,
        write_delay: float = WRITE_DELAY,
    ) -> None:
        self.config = config
        self.sessions = sessions or SessionManager(
            timeout=(
                config.sync.connect_timeout_secs,
                config.sync.request_timeout_secs,
            )
        )
        self.tracker = tracker or HashTracker()
        self.prober = prober or ReadinessProber(self.sessions)
        self.readiness_timeout = config.sync.trigger_api_readiness_timeout_secs
        self.write_delay = write_delay
        self.teleporter = TeleporterTransport(
            self.tracker, config.sync.cache_location
        )
        self.config_api = ConfigApiTransport(
            self.tracker, self.prober, self.readiness_timeout
        )

    @property
    def main(self) -> InstanceConfig:
        return self.config.main

    @property
    def has_teleporter_secondaries(self) -> bool:
        return any(
            s.sync_mode is SyncMode.TELEPORTER for s in self.config.secondary
        )

    def prepare(self) -> None:
        """Startup checks that must pass before the first cycle.

        Raises:
            ConfigError: Cache directory cannot be created.
        """
        if self.has_teleporter_secondaries:
            self.teleporter.ensure_cache_directory()

    def fetch_main_config(self) -> dict[str, Any]:
        """Fetch main's nested config object in a short-lived session."""
        with self.sessions.open(self.main) as session:
            return session.client.get_config(session.sid)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run_cycle(
        self,
        trigger: TriggerEvent,
        stop_event: threading.Event | None = None,
    ) -> CycleResult:
        """Run one sync cycle.  Never raises for instance errors."""
        started_at = utc_now()
        logger.info("Starting sync cycle (%s)", trigger.kind.value)

        try:
            main_session = self.sessions.acquire(self.main)
        except Exception as exc:
            if isinstance(exc, PiholeSyncError):
                logger.error("Main instance unavailable: %s", exc)
            else:
                logger.exception("Unexpected error logging in to main")
            failed = [
                self._failed(secondary, exc) for secondary in self.config.secondary
            ]
            return self._finish(trigger, started_at, failed)

        results: list[SecondaryResult] = []
        try:
            payload = _MainPayload(
                main_session,
                self.teleporter,
                self.config_api,
                trigger.main_config,
            )
            for secondary in self.config.secondary:
                if stop_event is not None and stop_event.is_set():
                    results.append(
                        SecondaryResult(
                            instance=secondary.label,
                            sync_mode=secondary.sync_mode,
                            status=SecondaryStatus.SKIPPED,
                            reason=SHUTDOWN_REASON,
                        )
                    )
                    continue
                job = SyncJob(
                    main=self.main,
                    secondary=secondary,
                    mode=secondary.sync_mode,
                    trigger=trigger,
                )
                results.append(self.sync_secondary(job, payload))
        finally:
            self.sessions.release(main_session)

        return self._finish(trigger, started_at, results)

    def _finish(
        self,
        trigger: TriggerEvent,
        started_at: str,
        results: list[SecondaryResult],
    ) -> CycleResult:
        result = CycleResult(
            trigger=trigger.kind,
            started_at=started_at,
            completed_at=utc_now(),
            results=results,
        )
        log = logger.info if result.ok else logger.warning
        log(result.summary())
        return result

    @staticmethod
    def _failed(
        secondary: InstanceConfig,
        exc: Exception,
        steps: list[str] | None = None,
        warnings: list[str] | None = None,
    ) -> SecondaryResult:
        return SecondaryResult(
            instance=secondary.label,
            sync_mode=secondary.sync_mode,
            status=SecondaryStatus.FAILED,
            error_type=type(exc).__name__,
            reason=str(exc),
            steps=steps or [],
            warnings=warnings or [],
        )

    # ------------------------------------------------------------------
    # Per secondary
    # ------------------------------------------------------------------

    def sync_secondary(
        self, job: SyncJob, payload: _MainPayload
    ) -> SecondaryResult:
        """Sync one secondary; every error is captured in the result."""
        secondary = job.secondary
        steps: list[str] = []
        warnings: list[str] = []

        try:
            if job.trigger.kind.is_config_change:
                self.prober.wait_ready(
                    secondary, self.readiness_timeout
                ).raise_for_timeout()

            with self.sessions.open(secondary) as session:
                if job.mode is SyncMode.TELEPORTER:
                    return self._sync_teleporter(session, payload, steps)
                return self._sync_api(session, payload, steps, warnings)
        except PiholeSyncError as exc:
            logger.error("[%s] Sync failed: %s", job.label, exc)
            return self._failed(secondary, exc, steps, warnings)
        except Exception as exc:
            logger.exception("[%s] Unexpected error during sync", job.label)
            return self._failed(secondary, exc, steps, warnings)

    def _sync_teleporter(
        self,
        session: Session,
        payload: _MainPayload,
        steps: list[str],
    ) -> SecondaryResult:
        blob = payload.backup()
        imported = self.teleporter.import_(session, blob)
        reason = None
        if imported.skipped:
            reason = "backup unchanged"
            steps.append("teleporter: backup unchanged")
        else:
            steps.append(f"teleporter: imported {len(imported.files)} files")
            if imported.gravity_updated:
                steps.append("gravity updated")
        logger.info("[%s] Teleporter sync complete", session.label)
        return SecondaryResult(
            instance=session.label,
            sync_mode=SyncMode.TELEPORTER,
            status=SecondaryStatus.OK,
            reason=reason,
            steps=steps,
        )

    def _sync_api(
        self,
        session: Session,
        payload: _MainPayload,
        steps: list[str],
        warnings: list[str],
    ) -> SecondaryResult:
        label = session.label
        options = session.instance.api_sync_options or ApiSyncOptions()
        rejected: list[str] = []

        if options.sync_config is not None:
            tree = payload.config_tree()
            for key in unmatched_keys(tree, options.sync_config):
                logger.warning(
                    "[%s] Filter key '%s' matches nothing on main; ignored",
                    label,
                    key,
                )
            pushed = self.config_api.push_config(
                session, apply_filter(tree, options.sync_config)
            )
            rejected = pushed.rejected
            if pushed.skipped:
                steps.append("config: unchanged")
            else:
                steps.append(f"config: {len(pushed.applied)} keys applied")
            if pushed.rejected:
                steps.append(f"config: {len(pushed.rejected)} keys rejected")

        if options.sync_groups:
            groups = sync_groups(
                session, payload.groups(), self.tracker, self.write_delay
            )
            if groups.skipped:
                steps.append("groups: unchanged")
            elif not groups.changed:
                steps.append("groups: already in sync")
            else:
                steps.append(
                    f"groups: {len(groups.created)} created, "
                    f"{len(groups.updated)} updated"
                )

        if options.sync_lists:
            lists = sync_lists(
                session,
                payload.lists(),
                payload.groups(),
                self.tracker,
                sync_groups=options.sync_groups,
                write_delay=self.write_delay,
            )
            warnings.extend(lists.warnings)
            if lists.skipped:
                steps.append("lists: unchanged")
            elif not lists.changed:
                steps.append("lists: already in sync")
            else:
                steps.append(
                    f"lists: {len(lists.created)} created, "
                    f"{len(lists.updated)} updated"
                )
            if lists.gravity_updated:
                steps.append("gravity updated")

        logger.info("[%s] API sync complete", label)
        return SecondaryResult(
            instance=label,
            sync_mode=SyncMode.API,
            status=SecondaryStatus.DEGRADED if rejected else SecondaryStatus.OK,
            reason="secondary rejected some config keys" if rejected else None,
            steps=steps,
            warnings=warnings,
            rejected_keys=rejected,
        )


class CycleRunner:
    """Single-flight wrapper around ``SyncOrchestrator.run_cycle``.

    A trigger that arrives while a cycle is running is dropped, not
    queued.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        stop_event: threading.Event | None = None,
        on_result: Callable[[CycleResult], Any] | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.stop_event = stop_event
        self.on_result = on_result
        self._lock = threading.Lock()

    def run(self, trigger: TriggerEvent) -> CycleResult | None:
        if not self._lock.acquire(blocking=False):
            logger.warning(
                "Sync cycle already in progress; dropping %s trigger",
                trigger.kind.value,
            )
            return None
        try:
            result = self.orchestrator.run_cycle(trigger, self.stop_event)
        finally:
            self._lock.release()

        if self.on_result is not None:
            self.on_result(result)
        return result

"""Trigger scheduler: decides *when* a sync cycle fires.

One loop per ``TriggerMode``:

* ``interval`` -- fire every N minutes.
* ``watch_config_file`` -- fire when main's ``pihole.toml`` changes on
  disk, once main's API is answering again.
* ``watch_config_api`` -- poll main's ``/config`` and fire when it differs
  from the snapshot the last cycle was started with.

All loops sleep on a shared ``threading.Event`` so a signal handler can
stop them promptly.  The scheduler never runs a cycle itself; it calls
``fire(event)``, normally ``CycleRunner.run``.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from watchfiles import watch

from ..config_schema import InstanceConfig, SyncSettings, TriggerMode
from ..errors import PiholeSyncError, ReadinessTimeout
from .models import CycleResult, TriggerEvent, TriggerKind
from .readiness import ReadinessProber
from .state import content_hash

logger = logging.getLogger(__name__)

FILE_WATCH_DEBOUNCE_MS = 750
UPDATE_PROCESS_PATTERN = "pihole.*-up"
PGREP_TIMEOUT = 10


def is_update_running() -> bool:
    """True while a ``pihole -up`` upgrade is in progress on this host."""
    try:
        proc = subprocess.run(
            ["pgrep", "-af", UPDATE_PROCESS_PATTERN],
            capture_output=True,
            text=True,
            check=False,
            timeout=PGREP_TIMEOUT,
        )
    except subprocess.TimeoutExpired:
        logger.warning('pgrep timed out while checking for "pihole -up"')
        return False
    except OSError as exc:
        logger.warning('Failed to run pgrep to detect "pihole -up": %s', exc)
        return False

    if proc.returncode == 0:
        return bool(proc.stdout.strip())
    # pgrep exits 1 when nothing matched
    if proc.returncode != 1:
        logger.warning(
            "pgrep returned non-zero status (%s): %s",
            proc.returncode,
            proc.stderr.strip(),
        )
    return False


@dataclass(frozen=True)
class TriggerSettings:
    """Scheduler settings derived from the ``sync`` config section.

    Attributes:
        mode: Which trigger loop to run.
        interval: Minutes between ``interval`` ticks.
        config_path: Pi-hole config file watched by ``watch_config_file``.
        api_poll_interval: Minutes between ``/config`` polls; None falls
            back to *interval*.
        readiness_timeout: Seconds to wait for main's API after a file change.
        initial_sync: Fire once at startup before entering the loop.
    """

    mode: TriggerMode = TriggerMode.INTERVAL
    interval: int = 60
    config_path: str = "/etc/pihole/pihole.toml"
    api_poll_interval: int | None = None
    readiness_timeout: float = 60
    initial_sync: bool = True

    @classmethod
    def from_config(
        cls, sync: SyncSettings, initial_sync: bool = True
    ) -> TriggerSettings:
        return cls(
            mode=sync.trigger_mode,
            interval=sync.interval,
            config_path=sync.config_path,
            api_poll_interval=sync.api_poll_interval,
            readiness_timeout=sync.trigger_api_readiness_timeout_secs,
            initial_sync=initial_sync,
        )

    @property
    def interval_seconds(self) -> float:
        return self.interval * 60

    @property
    def api_poll_seconds(self) -> float:
        return (self.api_poll_interval or self.interval) * 60


class TriggerScheduler:
    """Run the trigger loop selected by ``settings.mode``.

    Args:
        settings: Trigger mode and timing.
        fire: Called with a ``TriggerEvent`` whenever a cycle should run.
        fetch_main_config: Returns main's nested ``/config`` object
            (required for ``watch_config_api``).
        prober: Readiness prober for main (``watch_config_file``).
        main: The main instance (``watch_config_file``).
        update_guard: Returns True while ``pihole -up`` is running.
        on_skip: Receives the ``CycleResult`` of a cycle skipped because
            main never became ready.
    """

    def __init__(
        self,
        settings: TriggerSettings,
        fire: Callable[[TriggerEvent], Any],
        fetch_main_config: Callable[[], dict[str, Any]] | None = None,
        prober: ReadinessProber | None = None,
        main: InstanceConfig | None = None,
        update_guard: Callable[[], bool] = is_update_running,
        on_skip: Callable[[CycleResult], Any] | None = None,
    ) -> None:
        self.settings = settings
        self.fire = fire
        self.fetch_main_config = fetch_main_config
        self.prober = prober
        self.main = main
        self.update_guard = update_guard
        self.on_skip = on_skip
        self.baseline: str | None = None

        if settings.mode is TriggerMode.WATCH_CONFIG_API and fetch_main_config is None:
            raise ValueError("watch_config_api requires fetch_main_config")

    def run(self, stop_event: threading.Event) -> None:
        """Block until *stop_event* is set."""
        loops = {
            TriggerMode.INTERVAL: self._run_interval,
            TriggerMode.WATCH_CONFIG_FILE: self._run_watch_file,
            TriggerMode.WATCH_CONFIG_API: self._run_watch_api,
        }
        loops[self.settings.mode](stop_event)
        logger.info("Trigger scheduler stopped")

    def _fire(self, event: TriggerEvent) -> bool:
        """Run *event*; False if the cycle crashed."""
        try:
            self.fire(event)
        except Exception:
            logger.exception("Sync cycle (%s) crashed", event.kind.value)
            return False
        return True

    # ------------------------------------------------------------------
    # interval
    # ------------------------------------------------------------------

    def _run_interval(self, stop_event: threading.Event) -> None:
        if self.settings.initial_sync:
            self._fire(TriggerEvent(kind=TriggerKind.INITIAL))
        logger.info(
            "Sync trigger mode: interval. Running every %d minute(s).",
            self.settings.interval,
        )
        while not stop_event.wait(self.settings.interval_seconds):
            self._fire(TriggerEvent(kind=TriggerKind.INTERVAL))

    # ------------------------------------------------------------------
    # watch_config_file
    # ------------------------------------------------------------------

    def _run_watch_file(self, stop_event: threading.Event) -> None:
        if self.settings.initial_sync:
            self._fire(TriggerEvent(kind=TriggerKind.INITIAL))

        target = Path(self.settings.config_path)
        targets = {str(target), os.path.realpath(target)}
        parent = target.parent if str(target.parent) else Path(".")

        def _is_target(_change: Any, path: str) -> bool:
            return path in targets or os.path.realpath(path) in targets

        logger.info(
            "Sync trigger mode: watch_config_file. Watching %s.", target
        )
        for changes in watch(
            parent,
            watch_filter=_is_target,
            debounce=FILE_WATCH_DEBOUNCE_MS,
            stop_event=stop_event,
            recursive=False,
        ):
            logger.info("Detected change in %s", target)
            logger.debug("File events: %s", changes)
            self.handle_file_change()

    def handle_file_change(self) -> None:
        """React to one (debounced) change of the watched config file."""
        if self.update_guard():
            logger.warning(
                'Detected running "pihole -up"; skipping sync until update completes.'
            )
            return

        if self.prober is not None and self.main is not None:
            readiness = self.prober.wait_ready(
                self.main, self.settings.readiness_timeout
            )
            if not readiness.ready:
                exc = ReadinessTimeout(readiness.instance, readiness.timeout)
                logger.warning("Skipping sync cycle: %s", exc)
                if self.on_skip is not None:
                    self.on_skip(
                        CycleResult.skipped(
                            TriggerKind.CONFIG_FILE,
                            str(exc),
                            error_type=type(exc).__name__,
                        )
                    )
                return

        self._fire(TriggerEvent(kind=TriggerKind.CONFIG_FILE))

    # ------------------------------------------------------------------
    # watch_config_api
    # ------------------------------------------------------------------

    def _fetch_snapshot(self) -> dict[str, Any] | None:
        try:
            return self.fetch_main_config()
        except PiholeSyncError as exc:
            logger.warning("Failed to fetch config from main instance: %s", exc)
            return None

    def _run_watch_api(self, stop_event: threading.Event) -> None:
        snapshot = self._fetch_snapshot()
        seeded = True
        if self.settings.initial_sync:
            seeded = self._fire(
                TriggerEvent(kind=TriggerKind.INITIAL, main_config=snapshot)
            )
        if snapshot is not None and seeded:
            self.baseline = content_hash(snapshot)
            if not self.settings.initial_sync:
                logger.info(
                    "Seeded baseline config snapshot from main instance without initial sync"
                )

        logger.info(
            "Sync trigger mode: watch_config_api. Polling every %d minute(s).",
            self.settings.api_poll_interval or self.settings.interval,
        )
        while not stop_event.wait(self.settings.api_poll_seconds):
            self.check_api_once()

    def check_api_once(self) -> bool:
        """Poll main's config once; fire if it changed.

        Returns:
            True if a cycle was fired.
        """
        if self.update_guard():
            logger.warning(
                'Detected running "pihole -up"; skipping sync until update completes.'
            )
            return False

        snapshot = self._fetch_snapshot()
        if snapshot is None:
            return False

        digest = content_hash(snapshot)
        if digest == self.baseline:
            logger.debug("No config change detected on main instance")
            return False

        logger.info("Detected config change on main instance. Syncing...")
        if not self._fire(
            TriggerEvent(kind=TriggerKind.CONFIG_API, main_config=snapshot)
        ):
            # keep the old baseline so the next poll retries this change
            return True
        self.baseline = digest
        return True

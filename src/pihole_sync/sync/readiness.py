"""Readiness probing after a config change.

Writing ``pihole.toml`` (by hand, or through ``PATCH /config``) often
restarts FTL, taking the API down for a few seconds.  Before syncing
against an instance that may be restarting, poll its unauthenticated
``/info/login`` endpoint until it answers or the timeout elapses.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from ..config_schema import InstanceConfig
from ..core.session import SessionManager
from ..errors import ReadinessTimeout

logger = logging.getLogger(__name__)

DEFAULT_PROBE_INTERVAL = 2.0
# requests rejects a zero timeout
MIN_PROBE_TIMEOUT = 0.1


def poll_until(
    check: Callable[[float], bool],
    timeout: float,
    interval: float,
    stop_event: threading.Event | None = None,
) -> bool:
    """Call *check* every *interval* seconds until it returns True.

    *check* receives the seconds left before the deadline and must not
    block for longer than that.

    Returns:
        True as soon as *check* succeeds; False once *timeout* seconds have
        elapsed or *stop_event* is set.
    """
    deadline = time.monotonic() + timeout
    while True:
        if check(max(deadline - time.monotonic(), 0.0)):
            return True
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False
        wait = min(interval, remaining)
        if stop_event is not None:
            if stop_event.wait(wait):
                return False
        else:
            time.sleep(wait)


@dataclass(frozen=True)
class ReadinessResult:
    instance: str
    ready: bool
    elapsed: float
    timeout: float

    def raise_for_timeout(self) -> None:
        if not self.ready:
            raise ReadinessTimeout(self.instance, self.timeout)


class ReadinessProber:
    """Wait for an instance's API to answer again.

    Args:
        sessions: Provides the HTTP client for each instance.
        interval: Seconds between probes.
        stop_event: Aborts waiting early on shutdown.
    """

    def __init__(
        self,
        sessions: SessionManager,
        interval: float = DEFAULT_PROBE_INTERVAL,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.sessions = sessions
        self.interval = interval
        self.stop_event = stop_event

    def wait_ready(
        self, instance: InstanceConfig, timeout: float
    ) -> ReadinessResult:
        client = self.sessions.client_for(instance)

        def _check(remaining: float) -> bool:
            try:
                client.probe(timeout=max(remaining, MIN_PROBE_TIMEOUT))
            except Exception as exc:
                logger.debug("[%s] Not ready yet: %s", instance.label, exc)
                return False
            return True

        logger.debug(
            "[%s] Waiting up to %ss for the Pi-hole API to become ready",
            instance.label,
            timeout,
        )
        started = time.monotonic()
        ready = poll_until(_check, timeout, self.interval, self.stop_event)
        elapsed = time.monotonic() - started

        if ready:
            logger.debug(
                "[%s] API ready after %.1fs", instance.label, elapsed
            )
        else:
            logger.warning(
                "[%s] API not ready after %ss", instance.label, timeout
            )
        return ReadinessResult(
            instance=instance.label,
            ready=ready,
            elapsed=elapsed,
            timeout=timeout,
        )

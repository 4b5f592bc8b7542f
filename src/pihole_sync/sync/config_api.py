"""Config API transport: selective sync of the ``/config`` tree.

Main's config is fetched once per cycle, flattened to dotted leaf paths,
filtered per secondary (see ``filter.py``) and pushed with
``PATCH /api/config``.  Pushing to a secondary can restart its FTL, so
every successful push waits for the API to come back.

Group and list sync are separate sub-steps (``groups.py``, ``lists.py``)
reusing the fetch helpers defined here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..core.session import Session
from ..errors import TransportError
from .filter import ConfigTree, flatten_config, unflatten_config
from .readiness import ReadinessProber
from .state import HashTracker, content_hash

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfigPushResult:
    """Outcome of one config push.

    Attributes:
        applied: Paths written to the secondary.
        rejected: Paths the secondary refused (per-key fallback only).
        skipped: True when nothing was sent (empty or unchanged tree).
    """

    applied: list[str] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def degraded(self) -> bool:
        return bool(self.rejected)


class ConfigApiTransport:
    """Fetch from main and push filtered config to secondaries.

    Args:
        tracker: Remembers the filtered tree last pushed to each secondary.
        prober: Waits for a secondary's API after a push; None skips waiting.
        readiness_timeout: Seconds to wait for the API after a push.
    """

    def __init__(
        self,
        tracker: HashTracker,
        prober: ReadinessProber | None = None,
        readiness_timeout: float = 60,
    ) -> None:
        self.tracker = tracker
        self.prober = prober
        self.readiness_timeout = readiness_timeout

    # ------------------------------------------------------------------
    # Fetch from main
    # ------------------------------------------------------------------

    def fetch_config(self, main_session: Session) -> ConfigTree:
        logger.info("[%s] Fetching config from main instance", main_session.label)
        return flatten_config(main_session.client.get_config(main_session.sid))

    def fetch_groups(self, main_session: Session) -> list[dict[str, Any]]:
        logger.info("[%s] Fetching groups from main instance", main_session.label)
        return main_session.client.get_groups(main_session.sid)

    def fetch_lists(self, main_session: Session) -> list[dict[str, Any]]:
        logger.info("[%s] Fetching lists from main instance", main_session.label)
        return main_session.client.get_lists(main_session.sid)

    # ------------------------------------------------------------------
    # Push to a secondary
    # ------------------------------------------------------------------

    def push_config(
        self, secondary_session: Session, tree: ConfigTree
    ) -> ConfigPushResult:
        """Apply an already filtered *tree* to a secondary.

        The batch is sent as one ``PATCH``.  If the secondary rejects it
        with HTTP 400, every path is retried on its own so one bad key
        does not block the rest.

        Raises:
            TransportError: Network failure, non-400 error, or every key
                rejected.
            ReadinessTimeout: API did not come back after the push.
        """
        label = secondary_session.label
        if not tree:
            logger.info("[%s] Filtered config is empty; nothing to push", label)
            return ConfigPushResult(skipped=True)

        key = f"config:{label}"
        digest = content_hash(tree)
        if not self.tracker.has_changed(key, digest):
            logger.info(
                "[%s] Skipping config sync; filtered config unchanged since last run",
                label,
            )
            return ConfigPushResult(skipped=True)

        logger.info("[%s] Syncing %d config keys via API", label, len(tree))
        try:
            secondary_session.client.patch_config(
                secondary_session.sid, unflatten_config(tree)
            )
        except TransportError as exc:
            if exc.status_code != 400:
                raise
            logger.warning(
                "[%s] Batched config push rejected; retrying key by key: %s",
                label,
                exc,
            )
            result = self._push_per_key(secondary_session, tree)
        else:
            result = ConfigPushResult(applied=list(tree))

        if not result.applied:
            raise TransportError(
                label,
                "config push",
                f"secondary rejected every key ({', '.join(result.rejected)})",
                status_code=400,
            )

        self._wait_ready(secondary_session)
        if not result.degraded:
            self.tracker.update(key, digest)
        return result

    def _push_per_key(
        self, secondary_session: Session, tree: ConfigTree
    ) -> ConfigPushResult:
        applied: list[str] = []
        rejected: list[str] = []
        for path, value in tree.items():
            try:
                secondary_session.client.patch_config(
                    secondary_session.sid, unflatten_config({path: value})
                )
            except TransportError as exc:
                if exc.status_code != 400:
                    raise
                logger.warning(
                    "[%s] Config key '%s' rejected: %s",
                    secondary_session.label,
                    path,
                    exc,
                )
                rejected.append(path)
            else:
                applied.append(path)
                self._wait_ready(secondary_session)
        return ConfigPushResult(applied=applied, rejected=rejected)

    def _wait_ready(self, secondary_session: Session) -> None:
        if self.prober is None:
            return
        self.prober.wait_ready(
            secondary_session.instance, self.readiness_timeout
        ).raise_for_timeout()

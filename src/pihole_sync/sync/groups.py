"""Group sync sub-step of the Config API transport.

Groups are matched by name.  Missing groups are created, groups whose
comment or enabled flag differ are updated.  Groups that only exist on
the secondary are left alone.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from ..core.session import Session
from .state import HashTracker, content_hash

logger = logging.getLogger(__name__)

# Pi-hole rate-limits API writes
WRITE_DELAY = 0.25


def normalize_groups(groups: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Comparable view of *groups*: name, comment, enabled; sorted by name."""
    return sorted(
        (
            {
                "name": g["name"],
                "comment": g.get("comment"),
                "enabled": bool(g.get("enabled", True)),
            }
            for g in groups
        ),
        key=lambda g: g["name"],
    )


@dataclass(frozen=True)
class GroupSyncResult:
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated)


def sync_groups(
    session: Session,
    main_groups: list[dict[str, Any]],
    tracker: HashTracker,
    write_delay: float = WRITE_DELAY,
) -> GroupSyncResult:
    """Bring the secondary's groups in line with *main_groups*.

    Raises:
        TransportError: A fetch or write failed.
    """
    label = session.label
    if not main_groups:
        logger.warning(
            "[%s] Skipping group sync: no groups fetched from main instance",
            label,
        )
        return GroupSyncResult(skipped=True)

    desired = normalize_groups(main_groups)
    key = f"groups:{label}"
    digest = content_hash(desired)
    if not tracker.has_changed(key, digest):
        logger.info(
            "[%s] Skipping groups sync; groups unchanged since last run", label
        )
        return GroupSyncResult(skipped=True)

    existing = {
        g["name"]: g
        for g in normalize_groups(session.client.get_groups(session.sid))
    }
    created: list[str] = []
    updated: list[str] = []

    for group in desired:
        current = existing.get(group["name"])
        if current is None:
            logger.info("[%s] Creating group '%s'", label, group["name"])
            session.client.add_group(session.sid, group)
            created.append(group["name"])
        elif current != group:
            logger.info("[%s] Updating group '%s'", label, group["name"])
            session.client.update_group(session.sid, current["name"], group)
            updated.append(group["name"])
        else:
            continue
        if write_delay:
            time.sleep(write_delay)

    tracker.update(key, digest)
    return GroupSyncResult(created=created, updated=updated)

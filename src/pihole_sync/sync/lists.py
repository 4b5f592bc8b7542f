"""List sync sub-step of the Config API transport.

Lists are matched by ``(address, type)``.  Group ids differ between
instances, so each list's groups are translated main id -> group name ->
secondary id.  Without ``sync_groups`` the secondary's groups cannot be
trusted to match main's, and every list goes to the default group 0.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from ..core.session import Session
from .groups import WRITE_DELAY
from .state import HashTracker, content_hash

logger = logging.getLogger(__name__)

DEFAULT_GROUP_ID = 0


def _group_ids(entry: dict[str, Any]) -> list[int]:
    return list(entry.get("groups") or [DEFAULT_GROUP_ID])


def group_names_by_id(groups: list[dict[str, Any]]) -> dict[int, str]:
    return {g["id"]: g["name"] for g in groups if g.get("id") is not None}


def normalize_lists(
    lists: list[dict[str, Any]], group_names: dict[int, str]
) -> list[dict[str, Any]]:
    """Instance-independent view of *lists*, with group names instead of ids."""
    normalized = [
        {
            "address": entry["address"],
            "type": entry["type"],
            "comment": entry.get("comment"),
            "enabled": bool(entry.get("enabled", True)),
            "groups": sorted(
                group_names.get(gid, f"id:{gid}") for gid in _group_ids(entry)
            ),
        }
        for entry in lists
    ]
    normalized.sort(key=lambda e: (e["address"], e["type"]))
    return normalized


def groups_for_list(
    entry: dict[str, Any],
    main_group_names: dict[int, str],
    secondary_group_ids: dict[str, int],
    sync_groups: bool,
) -> tuple[list[int], list[str]]:
    """Secondary group ids for one main list entry.

    Returns:
        Tuple of (sorted group ids, warnings).
    """
    raw = _group_ids(entry)
    if not sync_groups:
        if any(gid != DEFAULT_GROUP_ID for gid in raw):
            return [DEFAULT_GROUP_ID], [
                f"sync_lists enabled without sync_groups; assigning list "
                f"{entry['address']} to default group because it is assigned "
                f"to other groups on the main instance ({raw})"
            ]
        return [DEFAULT_GROUP_ID], []

    mapped: set[int] = set()
    warnings: list[str] = []
    for gid in raw:
        name = main_group_names.get(gid, f"id:{gid}")
        if name in secondary_group_ids:
            mapped.add(secondary_group_ids[name])
        elif gid == DEFAULT_GROUP_ID:
            mapped.add(DEFAULT_GROUP_ID)
        else:
            warnings.append(
                f"Group '{name}' missing on secondary; assigning list "
                f"{entry['address']} to default group 0"
            )
            mapped.add(DEFAULT_GROUP_ID)
    return sorted(mapped), warnings


def _differs(desired: dict[str, Any], existing: dict[str, Any]) -> bool:
    return (
        desired.get("comment") != existing.get("comment")
        or bool(desired.get("enabled", True))
        != bool(existing.get("enabled", True))
        or sorted(desired["groups"]) != sorted(_group_ids(existing))
    )


@dataclass(frozen=True)
class ListSyncResult:
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    skipped: bool = False
    gravity_updated: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated)


def sync_lists(
    session: Session,
    main_lists: list[dict[str, Any]],
    main_groups: list[dict[str, Any]],
    tracker: HashTracker,
    sync_groups: bool,
    write_delay: float = WRITE_DELAY,
) -> ListSyncResult:
    """Bring the secondary's lists in line with *main_lists*.

    Lists that only exist on the secondary are left alone.  When any list
    changed and the secondary has ``update_gravity`` set, gravity is
    rebuilt afterwards.

    Raises:
        TransportError: A fetch or write failed.
    """
    label = session.label
    main_group_names = group_names_by_id(main_groups)

    key = f"lists:{label}"
    digest = content_hash(
        {
            "lists": normalize_lists(main_lists, main_group_names),
            "sync_groups": sync_groups,
        }
    )
    if not tracker.has_changed(key, digest):
        logger.info(
            "[%s] Skipping lists sync; lists unchanged since last run", label
        )
        return ListSyncResult(skipped=True)

    secondary_group_ids = (
        {g["name"]: g["id"] for g in session.client.get_groups(session.sid)}
        if sync_groups
        else {}
    )
    existing = {
        (e["address"], e["type"]): e
        for e in session.client.get_lists(session.sid)
    }

    created: list[str] = []
    updated: list[str] = []
    warnings: list[str] = []

    for entry in main_lists:
        groups, entry_warnings = groups_for_list(
            entry, main_group_names, secondary_group_ids, sync_groups
        )
        for message in entry_warnings:
            logger.warning("[%s] %s", label, message)
        warnings.extend(entry_warnings)

        desired = {
            "address": entry["address"],
            "type": entry["type"],
            "comment": entry.get("comment"),
            "enabled": bool(entry.get("enabled", True)),
            "groups": groups,
        }
        current = existing.get((entry["address"], entry["type"]))
        if current is None:
            logger.info(
                "[%s] Adding %s list %s", label, entry["type"], entry["address"]
            )
            session.client.add_list(session.sid, desired)
            created.append(entry["address"])
        elif _differs(desired, current):
            logger.info(
                "[%s] Updating %s list %s", label, entry["type"], entry["address"]
            )
            session.client.update_list(session.sid, desired)
            updated.append(entry["address"])
        else:
            continue
        if write_delay:
            time.sleep(write_delay)

    gravity_updated = False
    if (created or updated) and session.instance.update_gravity:
        logger.info("[%s] Updating gravity after list changes", label)
        session.client.trigger_gravity(session.sid)
        gravity_updated = True

    tracker.update(key, digest)
    return ListSyncResult(
        created=created,
        updated=updated,
        warnings=warnings,
        gravity_updated=gravity_updated,
    )

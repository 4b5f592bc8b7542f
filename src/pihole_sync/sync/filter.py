"""Include/exclude filtering of the Pi-hole ``/config`` tree.

The nested config object returned by the API is flattened into an ordered
mapping of dotted leaf paths (``dns.upstreams`` -> ``["1.1.1.1"]``).
Objects are recursed into; lists and scalars are leaves, so an array
setting is always synced or skipped as a whole.

A filter key selects a path when it equals the path or is one of its
dotted prefixes: ``dns`` selects ``dns.upstreams`` and ``dns.hosts`` but
not ``dnsmasq.lines``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from ..config_schema import ConfigSyncOptions, FilterMode

ConfigTree = dict[str, Any]


def flatten_config(config: Mapping[str, Any], prefix: str = "") -> ConfigTree:
    """Flatten a nested config object into dotted leaf paths, keeping order."""
    tree: ConfigTree = {}
    for key, value in config.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping) and value:
            tree.update(flatten_config(value, path))
        else:
            tree[path] = value
    return tree


def unflatten_config(tree: Mapping[str, Any]) -> dict[str, Any]:
    """Rebuild the nested object expected by ``PATCH /config``."""
    nested: dict[str, Any] = {}
    for path, value in tree.items():
        node = nested
        *parents, leaf = path.split(".")
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
    return nested


def selects(key: str, path: str) -> bool:
    """True if filter *key* covers config *path*."""
    return path == key or path.startswith(key + ".")


def _selected(path: str, keys: Iterable[str]) -> bool:
    return any(selects(key, path) for key in keys)


def apply_filter(tree: Mapping[str, Any], policy: ConfigSyncOptions) -> ConfigTree:
    """Return the part of *tree* that *policy* allows through.

    * ``include``: only paths selected by a filter key (none if no keys).
    * ``exclude``: every path not selected by a filter key (all if no keys).

    Filter keys that match nothing on main are ignored.
    """
    keys = tuple(policy.filter_keys)

    if policy.mode is FilterMode.INCLUDE:
        if not keys:
            return {}
        return {p: v for p, v in tree.items() if _selected(p, keys)}

    if not keys:
        return dict(tree)
    return {p: v for p, v in tree.items() if not _selected(p, keys)}


def unmatched_keys(tree: Mapping[str, Any], policy: ConfigSyncOptions) -> list[str]:
    """Filter keys that select no path in *tree*."""
    return [
        key
        for key in policy.filter_keys
        if not any(selects(key, path) for path in tree)
    ]

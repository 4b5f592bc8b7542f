"""In-memory "nothing changed" tracking.

Nothing is persisted: after a restart every payload is pushed once more,
which is harmless because all writes are idempotent.

* **Canonical hashing** -- ``content_hash()`` serialises with sorted keys
  before SHA-256, so two structurally equal payloads hash the same
  regardless of key order.
* **Per-target keys** -- ``HashTracker`` stores one hash per
  ``"<kind>:<instance>"`` key (``config:10.0.0.3:80``) and is only updated
  after a successful write, so a failed push is retried next cycle.
"""

from __future__ import annotations

import hashlib
import json
import threading
from typing import Any


def canonical_json(value: Any) -> str:
    """Serialise *value* deterministically (sorted keys, no whitespace)."""
    return json.dumps(
        value, sort_keys=True, separators=(",", ":"), default=str
    )


def content_hash(value: Any) -> str:
    """SHA-256 hex digest of a JSON value or raw bytes."""
    if isinstance(value, (bytes, bytearray)):
        data = bytes(value)
    else:
        data = canonical_json(value).encode("utf-8")
    return hashlib.sha256(data).hexdigest()


class HashTracker:
    """Thread-safe map of target key to the last successfully applied hash."""

    def __init__(self) -> None:
        self._hashes: dict[str, str] = {}
        self._lock = threading.Lock()

    def has_changed(self, key: str, current: str) -> bool:
        """True if *current* differs from the stored hash (or none is stored)."""
        with self._lock:
            return self._hashes.get(key) != current

    def update(self, key: str, current: str) -> None:
        with self._lock:
            self._hashes[key] = current

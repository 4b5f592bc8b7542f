"""Teleporter transport: full backup from main, verbatim restore on secondaries.

The backup archive is opaque to this module apart from a sanity check that
it is a non-empty ZIP file.  No filtering happens here; use ``sync_mode:
api`` for selective sync.
"""

from __future__ import annotations

import io
import logging
import os
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path

from ..core.session import Session
from ..errors import ConfigError, TransportError
from .state import HashTracker, content_hash

logger = logging.getLogger(__name__)

BACKUP_FILENAME = "pihole_backup.zip"


def validate_backup(blob: bytes, instance: str, operation: str) -> None:
    """Reject empty or non-ZIP payloads.

    Raises:
        TransportError: If *blob* cannot be a Teleporter archive.
    """
    if not blob:
        raise TransportError(instance, operation, "backup archive is empty")
    if not zipfile.is_zipfile(io.BytesIO(blob)):
        raise TransportError(
            instance, operation, "malformed backup (not a ZIP archive)"
        )


@dataclass(frozen=True)
class TeleporterImportResult:
    files: list[str] = field(default_factory=list)
    gravity_updated: bool = False
    skipped: bool = False


class TeleporterTransport:
    """Export from main and import into secondaries.

    Args:
        tracker: Remembers the backup hash last applied to each secondary.
        cache_location: Directory receiving a copy of the latest backup;
            None disables caching.
    """

    def __init__(
        self,
        tracker: HashTracker,
        cache_location: str | Path | None = None,
    ) -> None:
        self.tracker = tracker
        self.cache_location = Path(cache_location) if cache_location else None

    @property
    def backup_path(self) -> Path | None:
        if self.cache_location is None:
            return None
        return self.cache_location / BACKUP_FILENAME

    def ensure_cache_directory(self) -> None:
        """Create the cache directory at startup.

        Raises:
            ConfigError: If the directory cannot be created.
        """
        if self.cache_location is None:
            return
        logger.info("Checking cache directory: %s", self.cache_location)
        try:
            self.cache_location.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigError(
                f"Failed to create cache directory at {self.cache_location}. "
                f"Please ensure the process has write permissions: {exc}"
            ) from exc

    def _write_cache(self, blob: bytes) -> None:
        path = self.backup_path
        if path is None:
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(path.parent), suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(blob)
                os.replace(tmp_path, str(path))
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as exc:
            logger.warning("Failed to cache backup at %s: %s", path, exc)

    def export(self, main_session: Session) -> bytes:
        """Download a Teleporter backup from main.

        Raises:
            TransportError: Network/API failure or malformed archive.
        """
        logger.info("[%s] Downloading backup from main instance", main_session.label)
        blob = main_session.client.get_teleporter(main_session.sid)
        validate_backup(blob, main_session.label, "teleporter export")
        logger.debug(
            "[%s] Backup downloaded (%d bytes)", main_session.label, len(blob)
        )
        self._write_cache(blob)
        return blob

    def import_(
        self, secondary_session: Session, blob: bytes
    ) -> TeleporterImportResult:
        """Restore *blob* on a secondary, then optionally rebuild gravity.

        A backup identical to the one last applied to this secondary is not
        uploaded again.

        Raises:
            TransportError: Upload or gravity update failed, or *blob* is
                malformed.
        """
        instance = secondary_session.instance
        label = instance.label
        validate_backup(blob, label, "teleporter import")

        key = f"teleporter:{label}"
        digest = content_hash(blob)
        if not self.tracker.has_changed(key, digest):
            logger.info(
                "[%s] Teleporter backup unchanged since last upload; skipping",
                label,
            )
            return TeleporterImportResult(skipped=True)

        options = (
            instance.import_options.model_dump()
            if instance.import_options is not None
            else None
        )
        logger.info("[%s] Uploading backup", label)
        files = secondary_session.client.post_teleporter(
            secondary_session.sid, blob, options
        )
        for name in files:
            logger.debug("[%s] Processed %s", label, name)

        gravity_updated = False
        if instance.update_gravity:
            logger.info("[%s] Updating gravity", label)
            secondary_session.client.trigger_gravity(secondary_session.sid)
            gravity_updated = True

        self.tracker.update(key, digest)
        return TeleporterImportResult(
            files=files, gravity_updated=gravity_updated
        )

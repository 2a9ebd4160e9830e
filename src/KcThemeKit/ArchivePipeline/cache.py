# === NAVMAP v1 ===
# {
#   "module": "KcThemeKit.ArchivePipeline.cache",
#   "purpose": "On-disk cache of extracted archive trees keyed by caller-chosen identifiers",
#   "sections": [
#     {"id": "reservation", "name": "CacheReservation", "anchor": "RES", "kind": "api"},
#     {"id": "store", "name": "CacheStore", "anchor": "STO", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Reserve-then-commit cache for extracted archive trees.

Layout below ``cache_dir``::

    <cache_key>/            committed extraction tree
    <cache_key>.complete    completion marker (JSON metadata), written last
    .staging/<key>.<id>/    in-progress extractions
    .archives/<digest>.zip  downloaded archives, keyed by URL

A committed tree only ever appears by renaming a fully populated staging
directory into place, and the marker is written after that rename. Concurrent
writers racing on one key are tolerated: the first rename wins and later
writers discard their staging copy, since the same key yields the same bytes.
No locks are taken and entries are never evicted automatically.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import shutil
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import urlsplit

from .errors import ConfigurationError
from .filesystem import atomic_write

LOGGER = logging.getLogger("KcThemeKit.ArchivePipeline.cache")

_CACHE_KEY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_MARKER_SUFFIX = ".complete"
_STAGING_DIRNAME = ".staging"
_ARCHIVES_DIRNAME = ".archives"
STALE_STAGING_SECONDS = 24 * 60 * 60


def validate_cache_key(cache_key: str) -> str:
    """Return ``cache_key`` if it is usable as a single directory name."""

    if not isinstance(cache_key, str) or not _CACHE_KEY_RE.match(cache_key):
        raise ConfigurationError(
            f"Invalid cache key {cache_key!r}: use letters, digits, '.', '_' or '-' "
            "and start with a letter or digit"
        )
    if cache_key.endswith(_MARKER_SUFFIX) or len(cache_key) > 200:
        raise ConfigurationError(f"Invalid cache key {cache_key!r}")
    return cache_key


@dataclass(frozen=True)
class CacheReservation:
    """Outcome of :meth:`CacheStore.reserve`.

    On a hit ``path`` is the committed tree and must not be modified. On a miss
    ``path`` is an empty staging directory the caller populates before calling
    :meth:`CacheStore.commit` (or :meth:`CacheStore.abort` on failure).
    """

    cache_key: str
    hit: bool
    path: Path
    final_path: Path


class CacheStore:
    """Map cache keys to extracted directories below ``cache_dir``."""

    def __init__(self, cache_dir: Path) -> None:
        self.cache_dir = Path(cache_dir)

    # --- Layout -----------------------------------------------------------------

    def entry_path(self, cache_key: str) -> Path:
        return self.cache_dir / validate_cache_key(cache_key)

    def marker_path(self, cache_key: str) -> Path:
        return self.cache_dir / f"{validate_cache_key(cache_key)}{_MARKER_SUFFIX}"

    @property
    def staging_root(self) -> Path:
        return self.cache_dir / _STAGING_DIRNAME

    def archive_path(self, url: str) -> Path:
        """Return where the archive downloaded from ``url`` is kept."""

        digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]
        suffix = Path(urlsplit(url).path).suffix.lower()
        if not re.fullmatch(r"\.[a-z0-9]{1,8}", suffix):
            suffix = ".zip"
        return self.cache_dir / _ARCHIVES_DIRNAME / f"{digest}{suffix}"

    # --- Lookup -----------------------------------------------------------------

    def lookup(self, cache_key: str) -> Optional[Path]:
        """Return the committed tree for ``cache_key`` or ``None``."""

        entry = self.entry_path(cache_key)
        if self.marker_path(cache_key).is_file() and entry.is_dir():
            return entry
        return None

    def reserve(self, cache_key: str) -> CacheReservation:
        """Return the committed entry for ``cache_key`` or a fresh staging directory."""

        final_path = self.entry_path(cache_key)
        existing = self.lookup(cache_key)
        if existing is not None:
            LOGGER.debug(
                "cache hit",
                extra={"stage": "cache", "cache_key": cache_key, "path": str(existing)},
            )
            return CacheReservation(cache_key=cache_key, hit=True, path=existing, final_path=final_path)

        self.prune_staging(STALE_STAGING_SECONDS)
        self.staging_root.mkdir(parents=True, exist_ok=True)
        staging = self.staging_root / f"{cache_key}.{os.getpid()}.{uuid.uuid4().hex[:8]}"
        staging.mkdir()
        LOGGER.debug(
            "cache miss; reserved staging directory",
            extra={"stage": "cache", "cache_key": cache_key, "path": str(staging)},
        )
        return CacheReservation(cache_key=cache_key, hit=False, path=staging, final_path=final_path)

    # --- Completion -------------------------------------------------------------

    def commit(
        self,
        reservation: CacheReservation,
        metadata: Optional[Mapping[str, object]] = None,
    ) -> Path:
        """Publish a populated staging directory and write its completion marker.

        If the marker write fails after the rename, the published directory
        stays behind without a marker. :meth:`lookup` treats it as a miss and
        the next successful commit for the key adopts it.
        """

        if reservation.hit:
            return reservation.path
        final_path = reservation.final_path
        try:
            os.rename(reservation.path, final_path)
        except OSError:
            if not final_path.is_dir():
                raise
            # Another writer published this key first; its bytes are equivalent.
            LOGGER.info(
                "cache entry already published; discarding staging copy",
                extra={"stage": "cache", "cache_key": reservation.cache_key},
            )
            shutil.rmtree(reservation.path, ignore_errors=True)

        marker = self.marker_path(reservation.cache_key)
        if not marker.exists():
            payload = {
                "cache_key": reservation.cache_key,
                "committed_at": datetime.now(timezone.utc).isoformat(),
                **dict(metadata or {}),
            }
            atomic_write(marker, [json.dumps(payload, indent=2, sort_keys=True).encode("utf-8")])
        LOGGER.debug(
            "cache entry committed",
            extra={"stage": "cache", "cache_key": reservation.cache_key, "path": str(final_path)},
        )
        return final_path

    def abort(self, reservation: CacheReservation) -> None:
        """Discard a staging directory after a failed population attempt."""

        if reservation.hit:
            return
        shutil.rmtree(reservation.path, ignore_errors=True)
        LOGGER.debug(
            "cache reservation aborted",
            extra={"stage": "cache", "cache_key": reservation.cache_key},
        )

    def read_metadata(self, cache_key: str) -> Optional[dict]:
        """Return the JSON payload stored in the completion marker, if any."""

        marker = self.marker_path(cache_key)
        if not marker.is_file():
            return None
        return json.loads(marker.read_text(encoding="utf-8"))

    def prune_staging(self, max_age_seconds: float) -> int:
        """Remove staging directories older than ``max_age_seconds``; return the count."""

        if not self.staging_root.is_dir():
            return 0
        cutoff = time.time() - max_age_seconds
        removed = 0
        for candidate in self.staging_root.iterdir():
            try:
                if candidate.stat().st_mtime >= cutoff:
                    continue
            except FileNotFoundError:
                continue
            shutil.rmtree(candidate, ignore_errors=True)
            removed += 1
        if removed:
            LOGGER.info(
                "pruned abandoned staging directories",
                extra={"stage": "cache", "files": removed},
            )
        return removed


__all__ = ["CacheStore", "CacheReservation", "validate_cache_key", "STALE_STAGING_SECONDS"]

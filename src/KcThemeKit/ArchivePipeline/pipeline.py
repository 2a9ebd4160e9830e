# === NAVMAP v1 ===
# {
#   "module": "KcThemeKit.ArchivePipeline.pipeline",
#   "purpose": "Cache-aware download-and-extract orchestration",
#   "sections": [
#     {"id": "archive-file", "name": "ArchiveFile", "anchor": "AFL", "kind": "api"},
#     {"id": "result", "name": "ExtractionResult", "anchor": "RES", "kind": "api"},
#     {"id": "orchestrator", "name": "download_and_extract_archive", "anchor": "ORC", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Download an archive once, extract the parts a caller wants, and cache the result.

:func:`download_and_extract_archive` composes :class:`~.cache.CacheStore`,
:func:`~.net.fetch_archive` and :func:`~.extraction.iter_archive_members`:

1. Reserve the cache slot for ``cache_key``; a committed entry is returned
   immediately without network or extraction work.
2. Otherwise obtain the archive, from the download cache when a previous run
   already fetched the same URL, from the network otherwise.
3. Hand every regular file to ``on_archive_file``. Files are materialised
   only when the callback calls :meth:`ArchiveFile.write`.
4. Commit the populated directory. Any failure aborts the reservation, so the
   cache looks exactly as if the attempt never happened.

The cache key is the caller's responsibility: two different callbacks over the
same URL must use different keys, because callback behaviour cannot be
inspected.
"""

from __future__ import annotations

import logging
import time
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Union

import httpx

from .cache import CacheStore
from .errors import ArchiveFormatError
from .extraction import ArchiveMember, ArchiveSource, iter_archive_members
from .filesystem import RelativePath, atomic_write, resolve_within
from .net import fetch_archive
from .settings import HttpSettings, ProxyConfig

LOGGER = logging.getLogger("KcThemeKit.ArchivePipeline.pipeline")


class ArchiveFile:
    """Regular file from the archive, as presented to an ``on_archive_file`` callback.

    Attributes:
        relative_path: POSIX path of the file relative to the iteration root.
    """

    def __init__(self, member: ArchiveMember, extraction_dir: Path) -> None:
        self._member = member
        self._extraction_dir = extraction_dir
        self._first_target: Optional[Path] = None
        self._content: Optional[bytes] = None
        self.written: List[Path] = []
        self.relative_path = member.path

    def __repr__(self) -> str:
        return f"ArchiveFile({self.relative_path!r})"

    def read(self) -> bytes:
        """Return the file's original bytes, before or after any :meth:`write`."""

        if self._content is None:
            if self._first_target is not None:
                # The member was streamed to disk; its first copy is untouched.
                self._content = self._first_target.read_bytes()
            else:
                self._content = self._member.read()
        return self._content

    def write(
        self,
        relative_path: Optional[RelativePath] = None,
        data: Optional[Union[bytes, bytearray]] = None,
    ) -> Path:
        """Persist this file inside the extraction directory and return its path.

        Args:
            relative_path: Destination relative to the extraction directory;
                defaults to :attr:`relative_path`.
            data: Replacement bytes; the archive content is written when omitted.

        The bytes are fsynced before this method returns. Targets escaping the
        extraction directory raise :class:`~.errors.PathTraversalError`.
        """

        target = resolve_within(self._extraction_dir, relative_path or self.relative_path)
        if self._first_target is not None and target == self._first_target:
            self.read()
        if data is not None:
            atomic_write(target, [bytes(data)])
        elif self._first_target is not None:
            atomic_write(target, [self.read()])
        else:
            self._member.write_to(target)
            self._first_target = target
        self.written.append(target)
        return target


ArchiveFileHandler = Callable[[ArchiveFile], None]


@dataclass(frozen=True)
class ExtractionResult:
    """Location of an extracted tree and whether it came from the cache."""

    extracted_dir: Path
    cache_hit: bool


def _obtain_archive(
    url: str,
    archive_path: Optional[Path],
    *,
    proxy_config: Optional[ProxyConfig],
    http_settings: Optional[HttpSettings],
    client: Optional[httpx.Client],
    logger: logging.Logger,
) -> ArchiveSource:
    if archive_path is not None and archive_path.is_file():
        logger.info(
            "reusing downloaded archive",
            extra={"stage": "fetch", "url": url, "archive": str(archive_path)},
        )
        return archive_path
    payload = fetch_archive(
        url,
        proxy_config,
        http_settings=http_settings,
        client=client,
        logger=logger,
    )
    if archive_path is not None:
        atomic_write(archive_path, [payload])
    return payload


def _populate(
    source: ArchiveSource,
    extraction_dir: Path,
    on_archive_file: ArchiveFileHandler,
    root: RelativePath,
) -> int:
    written = 0
    with closing(iter_archive_members(source, root=root)) as members:
        for member in members:
            if member.is_directory or member.path.split("/", 1)[0] == "..":
                continue
            archive_file = ArchiveFile(member, extraction_dir)
            on_archive_file(archive_file)
            written += len(archive_file.written)
    return written


def download_and_extract_archive(
    *,
    url: str,
    cache_dir: Path,
    cache_key: str,
    on_archive_file: ArchiveFileHandler,
    proxy_config: Optional[ProxyConfig] = None,
    http_settings: Optional[HttpSettings] = None,
    client: Optional[httpx.Client] = None,
    root: RelativePath = "",
    keep_archive: bool = True,
    logger: Optional[logging.Logger] = None,
) -> ExtractionResult:
    """Return the extracted directory for ``cache_key``, populating it on a miss.

    Args:
        url: Archive location (HTTP or HTTPS).
        cache_dir: Root of the on-disk cache.
        cache_key: Caller-chosen identity of the ``(url, on_archive_file)`` pair.
        on_archive_file: Called once per regular file below ``root``.
        proxy_config: Proxy routing for the download.
        http_settings: Timeouts and client options for the download.
        client: Explicit HTTPX client, bypassing the shared client registry.
        root: Directory inside the archive that callback paths are relative to;
            files outside it are not presented.
        keep_archive: Keep the downloaded archive under ``cache_dir`` so other
            cache keys for the same URL skip the download.
        logger: Logger for progress records.

    Raises:
        NetworkError: The download failed.
        ArchiveFormatError: The archive is not a readable zip container.
        PathTraversalError: A member or write target escapes its root.

    Exceptions raised by ``on_archive_file`` propagate unchanged.
    """

    log = logger or LOGGER
    store = CacheStore(cache_dir)
    reservation = store.reserve(cache_key)
    if reservation.hit:
        log.info(
            "using cached extraction",
            extra={"stage": "cache", "cache_key": cache_key, "path": str(reservation.path)},
        )
        return ExtractionResult(extracted_dir=reservation.path, cache_hit=True)

    started = time.perf_counter()
    archive_path = store.archive_path(url) if keep_archive else None
    try:
        source = _obtain_archive(
            url,
            archive_path,
            proxy_config=proxy_config,
            http_settings=http_settings,
            client=client,
            logger=log,
        )
        try:
            written = _populate(source, reservation.path, on_archive_file, root)
        except ArchiveFormatError:
            if archive_path is not None:
                archive_path.unlink(missing_ok=True)
            raise
        extracted_dir = store.commit(reservation, metadata={"url": url, "files": written})
    except BaseException:
        store.abort(reservation)
        raise

    log.info(
        "extracted archive into cache",
        extra={
            "stage": "extract",
            "cache_key": cache_key,
            "path": str(extracted_dir),
            "files": written,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        },
    )
    return ExtractionResult(extracted_dir=extracted_dir, cache_hit=False)


__all__ = [
    "ArchiveFile",
    "ArchiveFileHandler",
    "ExtractionResult",
    "download_and_extract_archive",
]

# === NAVMAP v1 ===
# {
#   "module": "KcThemeKit.ArchivePipeline.extraction",
#   "purpose": "Stream zip-family archive members through caller filters with traversal checks",
#   "sections": [
#     {"id": "members", "name": "Archive Members", "anchor": "MEM", "kind": "api"},
#     {"id": "iteration", "name": "Member Iteration", "anchor": "ITR", "kind": "api"},
#     {"id": "extract", "name": "Filtered Extraction", "anchor": "EXT", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Streaming, filtered archive extraction backed by libarchive.

Members are visited once, in archive-listing order, and their bytes are only
read when a caller asks for them. Each member is presented with a path
relative to a caller-chosen root inside the archive; members outside that root
keep a leading ``..`` so filters can recognise and skip them.

Two path checks apply:

* Raw member names that are absolute, carry a drive letter, or climb above
  the archive root raise :class:`PathTraversalError` before any filter runs.
* Every write target returned by a filter must resolve strictly inside the
  extraction directory, otherwise :class:`PathTraversalError` is raised.

Only directories and regular files are materialised. Symlinks, hardlinks and
device entries are skipped, and parent directories are created on demand so
archives that omit directory entries still produce nested trees.
"""

from __future__ import annotations

import logging
import posixpath
import time
from contextlib import closing, contextmanager
from pathlib import Path, PurePosixPath
from typing import Callable, Iterator, List, Optional, Union

import libarchive

from .errors import ArchiveFormatError, ConfigurationError, PathTraversalError
from .filesystem import RelativePath, atomic_write, normalize_relative_path, resolve_within

LOGGER = logging.getLogger("KcThemeKit.ArchivePipeline.extraction")

ARCHIVE_FORMAT = "zip"

ArchiveSource = Union[bytes, bytearray, memoryview, Path, str]
EntryFilter = Callable[[str, bool], Optional[RelativePath]]


class ArchiveMember:
    """One directory or regular-file entry of an archive being iterated.

    Attributes:
        path: POSIX path relative to the iteration root (may start with ``..``).
        archive_path: Normalised POSIX path inside the archive.
        is_directory: Whether the entry is a directory.

    Content accessors only work while the iterator is positioned on this
    member; afterwards they raise :class:`RuntimeError`.
    """

    def __init__(self, entry, *, path: str, archive_path: str, is_directory: bool) -> None:
        self._entry = entry
        self._data: Optional[bytes] = None
        self._consumed = False
        self.path = path
        self.archive_path = archive_path
        self.is_directory = is_directory

    def __repr__(self) -> str:
        kind = "dir" if self.is_directory else "file"
        return f"ArchiveMember({self.archive_path!r}, {kind})"

    def _require_open(self) -> None:
        if self._entry is None and self._data is None:
            raise RuntimeError(f"archive member {self.archive_path!r} is no longer readable")

    def iter_blocks(self) -> Iterator[bytes]:
        """Yield the member's bytes in blocks, reading from the archive at most once."""

        if self.is_directory:
            return
        if self._data is not None:
            yield self._data
            return
        self._require_open()
        if self._consumed:
            raise RuntimeError(f"archive member {self.archive_path!r} was already streamed")
        self._consumed = True
        try:
            for block in self._entry.get_blocks():
                yield bytes(block)
        except libarchive.ArchiveError as exc:
            raise ArchiveFormatError(f"Failed to read archive member {self.archive_path}: {exc}") from exc

    def read(self) -> bytes:
        """Return the member's full content; repeated calls return the same bytes."""

        if self._data is None:
            self._data = b"".join(self.iter_blocks())
        return self._data

    def write_to(self, target: Path) -> int:
        """Stream the member's bytes into ``target`` atomically; return the byte count."""

        return atomic_write(target, self.iter_blocks())

    def _release(self) -> None:
        self._entry = None


def _normalize_root(root: RelativePath) -> PurePosixPath:
    try:
        normalized = normalize_relative_path(root)
    except PathTraversalError as exc:
        raise ConfigurationError(f"Archive root must be relative: {root!r}") from exc
    if normalized.parts and normalized.parts[0] == "..":
        raise ConfigurationError(f"Archive root must stay inside the archive: {root!r}")
    return normalized


def _relative_to_root(archive_path: PurePosixPath, root: PurePosixPath) -> str:
    if not root.parts:
        return archive_path.as_posix()
    return posixpath.relpath(archive_path.as_posix(), root.as_posix())


@contextmanager
def _open_reader(source: ArchiveSource):
    try:
        if isinstance(source, (bytes, bytearray, memoryview)):
            data = bytes(source)
            if not data:
                raise ArchiveFormatError("Archive payload is empty")
            with libarchive.memory_reader(data, format_name=ARCHIVE_FORMAT) as archive:
                yield archive
        else:
            path = Path(source)
            if not path.is_file():
                raise FileNotFoundError(f"Archive not found: {path}")
            with libarchive.file_reader(str(path), format_name=ARCHIVE_FORMAT) as archive:
                yield archive
    except libarchive.ArchiveError as exc:
        raise ArchiveFormatError(f"Unreadable archive: {exc}") from exc


def iter_archive_members(source: ArchiveSource, *, root: RelativePath = "") -> Iterator[ArchiveMember]:
    """Yield directory and regular-file members of ``source`` in listing order.

    Args:
        source: Archive bytes or a path to an archive file.
        root: Directory inside the archive that member paths are made relative to.

    Raises:
        ArchiveFormatError: If the container is not a readable zip archive.
        PathTraversalError: If a member name is absolute or escapes the archive.
    """

    root_path = _normalize_root(root)
    with _open_reader(source) as archive:
        for entry in archive:
            raw_name = entry.pathname or ""
            archive_path = normalize_relative_path(raw_name)
            if archive_path.parts and archive_path.parts[0] == "..":
                raise PathTraversalError(f"Archive member escapes the archive root: {raw_name}", path=raw_name)
            if not archive_path.parts:
                continue
            if not (entry.isdir or entry.isreg):
                LOGGER.warning(
                    "skipping non-regular archive member",
                    extra={"stage": "extract", "path": raw_name},
                )
                continue
            relative = _relative_to_root(archive_path, root_path)
            if relative == ".":
                continue
            member = ArchiveMember(
                entry,
                path=relative,
                archive_path=archive_path.as_posix(),
                is_directory=bool(entry.isdir),
            )
            try:
                yield member
            finally:
                member._release()


def extract_archive(
    source: ArchiveSource,
    destination: Path,
    on_entry: EntryFilter,
    *,
    root: RelativePath = "",
    logger: Optional[logging.Logger] = None,
) -> List[Path]:
    """Extract the members of ``source`` accepted by ``on_entry`` into ``destination``.

    ``on_entry(path, is_directory)`` returns ``None`` to skip a member or a
    relative path to write it under. Exceptions raised by ``on_entry``
    propagate unchanged and stop the extraction.

    Returns:
        Paths of the regular files written, in archive order.
    """

    log = logger or LOGGER
    destination = Path(destination)
    destination.mkdir(parents=True, exist_ok=True)
    started = time.perf_counter()
    written: List[Path] = []
    skipped = 0

    with closing(iter_archive_members(source, root=root)) as members:
        for member in members:
            decision = on_entry(member.path, member.is_directory)
            if decision is None:
                skipped += 1
                continue
            target = resolve_within(destination, decision)
            if member.is_directory:
                target.mkdir(parents=True, exist_ok=True)
            else:
                member.write_to(target)
                written.append(target)

    log.info(
        "extracted archive",
        extra={
            "stage": "extract",
            "destination": str(destination),
            "files": len(written),
            "skipped": skipped,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        },
    )
    return written


__all__ = [
    "ARCHIVE_FORMAT",
    "ArchiveMember",
    "ArchiveSource",
    "EntryFilter",
    "iter_archive_members",
    "extract_archive",
]

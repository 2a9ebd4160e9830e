# === NAVMAP v1 ===
# {
#   "module": "KcThemeKit.ArchivePipeline.filesystem",
#   "purpose": "Path containment checks and durable atomic writes",
#   "sections": [
#     {"id": "paths", "name": "Path Normalisation & Containment", "anchor": "PTH", "kind": "helpers"},
#     {"id": "writes", "name": "Atomic Writes", "anchor": "ATW", "kind": "helpers"}
#   ]
# }
# === /NAVMAP ===

"""Filesystem helpers shared by the cache, extractor, and transformer.

Every file the pipeline produces goes through :func:`atomic_write`: bytes are
streamed into a sibling temporary file, fsynced, and renamed over the target,
so readers only ever observe a missing file or a complete one.
"""

from __future__ import annotations

import os
import re
import uuid
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional, Union

from .errors import PathTraversalError

_DRIVE_RE = re.compile(r"^[A-Za-z]:")

RelativePath = Union[str, PurePosixPath]


def normalize_relative_path(name: RelativePath) -> PurePosixPath:
    """Return ``name`` as a POSIX path with ``.`` segments and ``a/..`` pairs collapsed.

    The result may still start with ``..`` when ``name`` climbs above its
    origin; absolute paths and drive-letter prefixes raise
    :class:`PathTraversalError`.
    """

    text = str(name).replace("\\", "/")
    if text.startswith("/") or _DRIVE_RE.match(text):
        raise PathTraversalError(f"Absolute path not permitted: {name}", path=str(name))
    parts: list[str] = []
    for part in text.split("/"):
        if part in {"", "."}:
            continue
        if part == ".." and parts and parts[-1] != "..":
            parts.pop()
        else:
            parts.append(part)
    return PurePosixPath(*parts)


def resolve_within(root: Path, relative: RelativePath) -> Path:
    """Return ``root / relative`` after checking it stays strictly inside ``root``."""

    normalized = normalize_relative_path(relative)
    if not normalized.parts:
        raise PathTraversalError(f"Empty path resolves to the root itself: {relative!r}", path=str(relative))
    if normalized.parts[0] == "..":
        raise PathTraversalError(f"Path escapes its root: {relative}", path=str(relative))
    target = root / Path(*normalized.parts)
    try:
        target.resolve().relative_to(root.resolve())
    except ValueError as exc:
        # An existing symlink inside root may still point elsewhere.
        raise PathTraversalError(f"Path escapes its root: {relative}", path=str(relative)) from exc
    return target


def fsync_directory(path: Path) -> None:
    """Flush directory metadata so a preceding rename survives a crash."""

    try:
        fd = os.open(str(path), os.O_DIRECTORY)
    except (OSError, AttributeError):
        return  # not supported on this platform
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def atomic_write(target: Path, chunks: Iterable[bytes], *, mode: Optional[int] = None) -> int:
    """Write ``chunks`` to ``target`` durably and return the number of bytes written.

    The parent directory is created when missing. On failure the temporary
    file is removed and ``target`` is left untouched.
    """

    target.parent.mkdir(parents=True, exist_ok=True)
    temp_path = target.with_name(f".{target.name}.tmp-{os.getpid()}-{uuid.uuid4().hex[:8]}")
    written = 0
    try:
        with temp_path.open("wb") as handle:
            for chunk in chunks:
                handle.write(chunk)
                written += len(chunk)
            handle.flush()
            os.fsync(handle.fileno())
        if mode is not None:
            os.chmod(temp_path, mode)
        os.replace(temp_path, target)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise
    fsync_directory(target.parent)
    return written


__all__ = [
    "RelativePath",
    "normalize_relative_path",
    "resolve_within",
    "fsync_directory",
    "atomic_write",
]

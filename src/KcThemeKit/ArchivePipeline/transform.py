# === NAVMAP v1 ===
# {
#   "module": "KcThemeKit.ArchivePipeline.transform",
#   "purpose": "Copy a directory tree while rewriting file contents through a pure transform",
#   "sections": []
# }
# === /NAVMAP ===

"""Directory-tree transformer.

:func:`transform_codebase` mirrors every regular file of a source tree into a
destination tree. A caller-supplied transform receives each file's POSIX
relative path and bytes and returns either replacement bytes or ``None`` to
keep the content unchanged. Files are enumerated in sorted order and written
atomically, so the result never depends on filesystem iteration order and a
pre-existing destination file is either replaced whole or left untouched.

Destination files with no counterpart in the source tree are not removed;
callers needing a clean tree clear the destination first.
"""

from __future__ import annotations

import logging
import os
import stat
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .errors import ConfigurationError
from .filesystem import atomic_write, fsync_directory

LOGGER = logging.getLogger("KcThemeKit.ArchivePipeline.transform")

FileTransform = Callable[[str, bytes], Optional[bytes]]

_COPY_CHUNK = 1 << 20


def _scan_tree(src_dir: Path) -> Tuple[List[str], List[str]]:
    """Return sorted POSIX relative paths of regular files and of symlinks."""

    files: List[str] = []
    links: List[str] = []
    for current, dirnames, filenames in os.walk(src_dir, followlinks=False):
        base = Path(current)
        for name in list(dirnames):
            if (base / name).is_symlink():
                dirnames.remove(name)
                links.append((base / name).relative_to(src_dir).as_posix())
        for name in filenames:
            path = base / name
            relative = path.relative_to(src_dir).as_posix()
            mode = os.lstat(path).st_mode
            if stat.S_ISLNK(mode):
                links.append(relative)
            elif stat.S_ISREG(mode):
                files.append(relative)
            else:
                LOGGER.warning(
                    "skipping special file",
                    extra={"stage": "transform", "path": str(path)},
                )
    return sorted(files), sorted(links)


def _copy_symlink(source: Path, target: Path) -> Path:
    link_target = os.readlink(source)
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.is_symlink() and os.readlink(target) == link_target:
        return target
    if target.is_dir() and not target.is_symlink():
        raise ConfigurationError(
            f"Cannot replace directory {target} with a symlink; clear the destination first"
        )
    temp_link = target.with_name(f".{target.name}.tmp-{os.getpid()}-{uuid.uuid4().hex[:8]}")
    os.symlink(link_target, temp_link)
    try:
        os.replace(temp_link, target)
    except BaseException:
        temp_link.unlink(missing_ok=True)
        raise
    fsync_directory(target.parent)
    return target


def _transform_file(
    src_dir: Path,
    dest_dir: Path,
    relative: str,
    transform: Optional[FileTransform],
) -> Path:
    source = src_dir / relative
    target = dest_dir / relative
    mode = stat.S_IMODE(source.stat().st_mode)

    if transform is None:
        with source.open("rb") as handle:
            atomic_write(target, iter(lambda: handle.read(_COPY_CHUNK), b""), mode=mode)
        return target

    original = source.read_bytes()
    result = transform(relative, original)
    if result is None:
        content = original
    elif isinstance(result, (bytes, bytearray)):
        content = bytes(result)
    else:
        raise TypeError(
            f"transform for {relative!r} returned {type(result).__name__}; expected bytes or None"
        )
    atomic_write(target, [content], mode=mode)
    return target


def transform_codebase(
    src_dir: Path,
    dest_dir: Path,
    transform: Optional[FileTransform] = None,
    *,
    max_workers: Optional[int] = None,
    logger: Optional[logging.Logger] = None,
) -> List[Path]:
    """Write a transformed copy of ``src_dir`` into ``dest_dir``.

    Args:
        src_dir: Tree to read. Regular files are transformed, symlinks are
            recreated verbatim, other special files are skipped.
        dest_dir: Tree to write; created when missing. Must not be
            ``src_dir`` or lie inside it.
        transform: ``transform(relative_path, content)`` returning replacement
            bytes or ``None`` for "unchanged". It must not touch the filesystem.
            When omitted, files are copied as-is.
        max_workers: Transform files on a thread pool of this size.
        logger: Logger for the summary record.

    Returns:
        Destination paths written, sorted by relative path.

    Raises:
        FileNotFoundError: If ``src_dir`` does not exist.
        ConfigurationError: If ``dest_dir`` overlaps ``src_dir``, or a source
            symlink would replace a real directory in ``dest_dir``.

    Exceptions raised by ``transform`` propagate unchanged.
    """

    log = logger or LOGGER
    src_dir = Path(src_dir)
    dest_dir = Path(dest_dir)
    if not src_dir.is_dir():
        raise FileNotFoundError(f"Source directory not found: {src_dir}")
    src_resolved = src_dir.resolve()
    dest_resolved = dest_dir.resolve()
    if dest_resolved == src_resolved or src_resolved in dest_resolved.parents:
        raise ConfigurationError(f"Destination {dest_dir} must not be inside source {src_dir}")

    started = time.perf_counter()
    files, links = _scan_tree(src_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)

    if max_workers is not None and max_workers > 1 and len(files) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            written = list(
                executor.map(lambda rel: _transform_file(src_dir, dest_dir, rel, transform), files)
            )
    else:
        written = [_transform_file(src_dir, dest_dir, rel, transform) for rel in files]

    for relative in links:
        written.append(_copy_symlink(src_dir / relative, dest_dir / relative))
    written.sort(key=lambda path: path.relative_to(dest_dir).as_posix())

    log.info(
        "transformed codebase",
        extra={
            "stage": "transform",
            "path": str(src_dir),
            "destination": str(dest_dir),
            "files": len(files),
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        },
    )
    return written


__all__ = ["FileTransform", "transform_codebase"]

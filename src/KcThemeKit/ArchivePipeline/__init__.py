# === NAVMAP v1 ===
# {
#   "module": "KcThemeKit.ArchivePipeline",
#   "purpose": "Public API for the fetch-cache-extract-transform pipeline",
#   "sections": []
# }
# === /NAVMAP ===

"""Public API for the archive pipeline.

The pipeline downloads an archive (optionally through a proxy), extracts the
entries a caller selects into an on-disk cache keyed by a caller-chosen
identifier, and rewrites directory trees through pure per-file transforms.

Typical use::

    from KcThemeKit.ArchivePipeline import download_and_extract_archive, transform_codebase

    result = download_and_extract_archive(
        url="https://example.org/bundle.zip",
        cache_dir=cache_dir,
        cache_key="bundle_docs",
        on_archive_file=lambda file: file.write() if file.relative_path.startswith("docs/") else None,
    )
    transform_codebase(result.extracted_dir, out_dir, lambda path, data: None)
"""

from __future__ import annotations

from .cache import CacheReservation, CacheStore
from .errors import (
    ArchiveFormatError,
    ConfigurationError,
    NetworkError,
    PathTraversalError,
    ThemeKitError,
)
from .extraction import ArchiveMember, EntryFilter, extract_archive, iter_archive_members
from .logging_config import setup_logging
from .net import fetch_archive
from .pipeline import ArchiveFile, ArchiveFileHandler, ExtractionResult, download_and_extract_archive
from .settings import (
    HttpSettings,
    PipelineSettings,
    ProxyConfig,
    get_settings,
    resolve_proxy_config,
)
from .transform import FileTransform, transform_codebase

__all__ = [
    "ArchiveFile",
    "ArchiveFileHandler",
    "ArchiveFormatError",
    "ArchiveMember",
    "CacheReservation",
    "CacheStore",
    "ConfigurationError",
    "EntryFilter",
    "ExtractionResult",
    "FileTransform",
    "HttpSettings",
    "NetworkError",
    "PathTraversalError",
    "PipelineSettings",
    "ProxyConfig",
    "ThemeKitError",
    "download_and_extract_archive",
    "extract_archive",
    "fetch_archive",
    "get_settings",
    "iter_archive_members",
    "resolve_proxy_config",
    "setup_logging",
    "transform_codebase",
]

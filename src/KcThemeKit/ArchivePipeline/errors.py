"""Exception hierarchy shared across archive fetching, caching, and extraction.

The pipeline spans HTTP retrieval, on-disk cache management, archive
materialisation, and tree transformation. Failures are grouped under a single
base class so callers can catch everything the pipeline raises on its own
behalf, while exceptions raised by caller-supplied callbacks propagate
unchanged and disk failures surface as the builtin :class:`OSError`.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "ThemeKitError",
    "ConfigurationError",
    "NetworkError",
    "ArchiveFormatError",
    "PathTraversalError",
]


class ThemeKitError(RuntimeError):
    """Base exception for pipeline failures."""


class ConfigurationError(ThemeKitError):
    """Raised when settings, cache keys, or call arguments are invalid."""


class NetworkError(ThemeKitError):
    """Raised when an HTTP download attempt fails."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.retryable = retryable


class ArchiveFormatError(ThemeKitError):
    """Raised when an archive container cannot be read."""


class PathTraversalError(ThemeKitError):
    """Raised when an archive member or write target escapes its root directory."""

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path
# === NAVMAP v1 ===
# {
#   "module": "KcThemeKit.ArchivePipeline.errors",
#   "purpose": "Define the exception hierarchy used across fetching, caching, and extraction",
#   "sections": [
#     {"id": "base", "name": "Base Exceptions", "anchor": "BAS", "kind": "api"},
#     {"id": "network", "name": "Network Errors", "anchor": "NET", "kind": "api"},
#     {"id": "archive", "name": "Archive & Path Errors", "anchor": "ARC", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

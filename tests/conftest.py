# === NAVMAP v1 ===
# {
#   "module": "tests.conftest",
#   "purpose": "Shared pytest fixtures for suite",
#   "sections": [
#     {"id": "isolation", "name": "_isolate_pipeline_state", "anchor": "function-isolate-pipeline-state", "kind": "function"},
#     {"id": "archive-server", "name": "ArchiveServer", "anchor": "class-archiveserver", "kind": "class"},
#     {"id": "theme-zip", "name": "theme_zip", "anchor": "function-theme-zip", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""
Pytest Configuration

Shared fixtures for the archive pipeline and email theme suites: module-level
HTTP client and settings caches are reset around every test, and an
``httpx.MockTransport`` handler serves in-memory archives so no test touches
the network.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Dict, List

import httpx
import pytest

# --- Globals ---

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from KcThemeKit.ArchivePipeline import net, settings  # noqa: E402
from KcThemeKit.ArchivePipeline.testing import build_zip  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_pipeline_state():
    """Drop cached HTTP clients and settings between tests."""

    net.reset_http_client()
    settings.reset_settings()
    yield
    net.reset_http_client()
    settings.reset_settings()


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"


class ArchiveServer:
    """``httpx.MockTransport`` handler serving fixed payloads and recording requests."""

    def __init__(self, routes: Dict[str, httpx.Response]) -> None:
        self.routes = routes
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes.get(str(request.url))
        if response is None:
            return httpx.Response(404, content=b"not found")
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


@pytest.fixture
def archive_server() -> Callable[[Dict[str, bytes]], ArchiveServer]:
    def _factory(payloads: Dict[str, bytes]) -> ArchiveServer:
        return ArchiveServer({url: httpx.Response(200, content=body) for url, body in payloads.items()})

    return _factory


@pytest.fixture
def theme_zip() -> bytes:
    """Miniature ``keycloak-themes`` jar with email, login, and manifest entries."""

    return build_zip(
        {
            "META-INF/MANIFEST.MF": "Manifest-Version: 1.0\n",
            "theme/base/email/messages/messages_en.properties": "k=v",
            "theme/base/email/html/template.ftl": "<#macro body></#macro>\r\n",
            "theme/base/login/login.ftl": "<html/>",
        }
    )

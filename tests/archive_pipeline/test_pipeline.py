# === NAVMAP v1 ===
# {
#   "module": "tests.archive_pipeline.test_pipeline",
#   "purpose": "End-to-end download, extraction, and cache commit behaviour",
#   "sections": [
#     {"id": "cache", "name": "Cache Behaviour", "anchor": "CAC", "kind": "tests"},
#     {"id": "callbacks", "name": "Callback Decisions", "anchor": "CBK", "kind": "tests"},
#     {"id": "failures", "name": "Failure Atomicity", "anchor": "FAI", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Tests for :func:`download_and_extract_archive`."""

from __future__ import annotations

from pathlib import Path
from typing import List

import httpx
import pytest

from KcThemeKit.ArchivePipeline.cache import CacheStore
from KcThemeKit.ArchivePipeline.errors import ArchiveFormatError, NetworkError, PathTraversalError
from KcThemeKit.ArchivePipeline.pipeline import ArchiveFile, download_and_extract_archive
from KcThemeKit.ArchivePipeline.testing import build_zip, use_mock_http_client

THEMES_URL = "https://repo.example.org/keycloak-themes-26.0.4.jar"
EMAIL_ROOT = "theme/base/email"


def _write_all(archive_file: ArchiveFile) -> None:
    archive_file.write()


def _tree(root: Path) -> List[str]:
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


def _assert_nothing_committed(cache_dir: Path, cache_key: str) -> None:
    store = CacheStore(cache_dir)
    assert store.lookup(cache_key) is None
    assert not store.entry_path(cache_key).exists()
    assert not store.marker_path(cache_key).exists()
    if store.staging_root.exists():
        assert list(store.staging_root.iterdir()) == []


# ============================================================================
# CACHE BEHAVIOUR
# ============================================================================


def test_second_call_is_served_from_cache(cache_dir, archive_server, theme_zip) -> None:
    server = archive_server({THEMES_URL: theme_zip})
    calls: List[str] = []

    def handler(archive_file: ArchiveFile) -> None:
        calls.append(archive_file.relative_path)
        archive_file.write()

    with server.client() as client:
        first = download_and_extract_archive(
            url=THEMES_URL, cache_dir=cache_dir, cache_key="email", on_archive_file=handler,
            client=client, root=EMAIL_ROOT,
        )
        second = download_and_extract_archive(
            url=THEMES_URL, cache_dir=cache_dir, cache_key="email", on_archive_file=handler,
            client=client, root=EMAIL_ROOT,
        )

    assert first.cache_hit is False
    assert second.cache_hit is True
    assert first.extracted_dir == second.extracted_dir == cache_dir / "email"
    assert len(server.requests) == 1
    assert sorted(calls) == ["html/template.ftl", "messages/messages_en.properties"]
    assert _tree(second.extracted_dir) == ["html/template.ftl", "messages/messages_en.properties"]


def test_new_cache_key_reuses_downloaded_archive(cache_dir, archive_server, theme_zip) -> None:
    server = archive_server({THEMES_URL: theme_zip})

    with server.client() as client:
        download_and_extract_archive(
            url=THEMES_URL, cache_dir=cache_dir, cache_key="email", on_archive_file=_write_all,
            client=client, root=EMAIL_ROOT,
        )
        everything = download_and_extract_archive(
            url=THEMES_URL, cache_dir=cache_dir, cache_key="everything", on_archive_file=_write_all,
            client=client,
        )

    assert len(server.requests) == 1
    assert everything.cache_hit is False
    assert "theme/base/login/login.ftl" in _tree(everything.extracted_dir)
    assert "META-INF/MANIFEST.MF" in _tree(everything.extracted_dir)


def test_keep_archive_false_leaves_no_download_behind(cache_dir, archive_server, theme_zip) -> None:
    server = archive_server({THEMES_URL: theme_zip})

    with server.client() as client:
        download_and_extract_archive(
            url=THEMES_URL, cache_dir=cache_dir, cache_key="email", on_archive_file=_write_all,
            client=client, keep_archive=False,
        )

    assert not CacheStore(cache_dir).archive_path(THEMES_URL).exists()


def test_marker_records_source_url_and_file_count(cache_dir, archive_server, theme_zip) -> None:
    server = archive_server({THEMES_URL: theme_zip})

    with use_mock_http_client(httpx.MockTransport(server)):
        download_and_extract_archive(
            url=THEMES_URL, cache_dir=cache_dir, cache_key="email", on_archive_file=_write_all,
            root=EMAIL_ROOT,
        )

    metadata = CacheStore(cache_dir).read_metadata("email")
    assert metadata["url"] == THEMES_URL
    assert metadata["files"] == 2
    assert metadata["cache_key"] == "email"


# ============================================================================
# CALLBACK DECISIONS
# ============================================================================


def test_callback_can_skip_rename_and_replace(cache_dir, archive_server, theme_zip) -> None:
    server = archive_server({THEMES_URL: theme_zip})

    def handler(archive_file: ArchiveFile) -> None:
        if archive_file.relative_path.startswith("messages/"):
            archive_file.write("i18n/en.properties")
        elif archive_file.relative_path == "html/template.ftl":
            archive_file.write(data=archive_file.read().replace(b"\r\n", b"\n"))

    with server.client() as client:
        result = download_and_extract_archive(
            url=THEMES_URL, cache_dir=cache_dir, cache_key="email", on_archive_file=handler,
            client=client, root=EMAIL_ROOT,
        )

    root = result.extracted_dir
    assert _tree(root) == ["html/template.ftl", "i18n/en.properties"]
    assert (root / "i18n" / "en.properties").read_bytes() == b"k=v"
    assert (root / "html" / "template.ftl").read_bytes() == b"<#macro body></#macro>\n"


def test_callback_may_write_one_file_twice(cache_dir, archive_server, theme_zip) -> None:
    server = archive_server({THEMES_URL: theme_zip})

    def handler(archive_file: ArchiveFile) -> None:
        if archive_file.relative_path.endswith(".properties"):
            archive_file.write()
            archive_file.write("copy/messages.properties")

    with server.client() as client:
        result = download_and_extract_archive(
            url=THEMES_URL, cache_dir=cache_dir, cache_key="email", on_archive_file=handler,
            client=client, root=EMAIL_ROOT,
        )

    root = result.extracted_dir
    assert (root / "copy" / "messages.properties").read_bytes() == b"k=v"
    assert (root / "messages" / "messages_en.properties").read_bytes() == b"k=v"


def test_callback_can_read_after_writing(cache_dir, archive_server) -> None:
    url = "https://repo.example.org/hello.zip"
    server = archive_server({url: build_zip({"a.txt": "hello"})})
    seen: List[bytes] = []

    def handler(archive_file: ArchiveFile) -> None:
        archive_file.write()
        seen.append(archive_file.read())
        archive_file.write(data=b"replaced")
        seen.append(archive_file.read())
        archive_file.write("copy.txt")

    with server.client() as client:
        result = download_and_extract_archive(
            url=url, cache_dir=cache_dir, cache_key="hello", on_archive_file=handler, client=client,
        )

    assert seen == [b"hello", b"hello"]
    assert (result.extracted_dir / "a.txt").read_bytes() == b"replaced"
    assert (result.extracted_dir / "copy.txt").read_bytes() == b"hello"


def test_empty_selection_still_commits(cache_dir, archive_server, theme_zip) -> None:
    server = archive_server({THEMES_URL: theme_zip})

    with server.client() as client:
        result = download_and_extract_archive(
            url=THEMES_URL, cache_dir=cache_dir, cache_key="nothing",
            on_archive_file=lambda archive_file: None, client=client,
        )

    assert result.extracted_dir.is_dir()
    assert _tree(result.extracted_dir) == []
    assert CacheStore(cache_dir).lookup("nothing") == result.extracted_dir


# ============================================================================
# FAILURE ATOMICITY
# ============================================================================


def test_callback_failure_commits_nothing(cache_dir, archive_server, theme_zip) -> None:
    server = archive_server({THEMES_URL: theme_zip})

    class Boom(Exception):
        pass

    def handler(archive_file: ArchiveFile) -> None:
        archive_file.write()
        raise Boom(archive_file.relative_path)

    with server.client() as client:
        with pytest.raises(Boom):
            download_and_extract_archive(
                url=THEMES_URL, cache_dir=cache_dir, cache_key="email", on_archive_file=handler,
                client=client, root=EMAIL_ROOT,
            )
        _assert_nothing_committed(cache_dir, "email")

        retry = download_and_extract_archive(
            url=THEMES_URL, cache_dir=cache_dir, cache_key="email", on_archive_file=_write_all,
            client=client, root=EMAIL_ROOT,
        )

    assert retry.cache_hit is False
    assert len(server.requests) == 1


def test_network_failure_commits_nothing(cache_dir, archive_server) -> None:
    server = archive_server({})

    with server.client() as client, pytest.raises(NetworkError) as excinfo:
        download_and_extract_archive(
            url=THEMES_URL, cache_dir=cache_dir, cache_key="email", on_archive_file=_write_all,
            client=client,
        )

    assert excinfo.value.status_code == 404
    _assert_nothing_committed(cache_dir, "email")
    assert not CacheStore(cache_dir).archive_path(THEMES_URL).exists()


def test_malformed_archive_is_discarded_and_refetched(cache_dir, archive_server, theme_zip) -> None:
    server = archive_server({THEMES_URL: b"<html>maintenance page</html>"})

    with server.client() as client:
        with pytest.raises(ArchiveFormatError):
            download_and_extract_archive(
                url=THEMES_URL, cache_dir=cache_dir, cache_key="email", on_archive_file=_write_all,
                client=client,
            )
        _assert_nothing_committed(cache_dir, "email")
        assert not CacheStore(cache_dir).archive_path(THEMES_URL).exists()

        server.routes[THEMES_URL] = httpx.Response(200, content=theme_zip)
        result = download_and_extract_archive(
            url=THEMES_URL, cache_dir=cache_dir, cache_key="email", on_archive_file=_write_all,
            client=client, root=EMAIL_ROOT,
        )

    assert len(server.requests) == 2
    assert _tree(result.extracted_dir) == ["html/template.ftl", "messages/messages_en.properties"]


def test_write_target_outside_extraction_dir_is_rejected(cache_dir, archive_server, theme_zip) -> None:
    server = archive_server({THEMES_URL: theme_zip})

    def handler(archive_file: ArchiveFile) -> None:
        archive_file.write("../../escaped.txt")

    with server.client() as client, pytest.raises(PathTraversalError):
        download_and_extract_archive(
            url=THEMES_URL, cache_dir=cache_dir, cache_key="email", on_archive_file=handler,
            client=client, root=EMAIL_ROOT,
        )

    _assert_nothing_committed(cache_dir, "email")
    assert not (cache_dir / "escaped.txt").exists()
    assert not (cache_dir.parent / "escaped.txt").exists()

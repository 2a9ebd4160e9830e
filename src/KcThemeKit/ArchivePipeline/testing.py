"""Test helpers for code that drives the archive pipeline.

``use_mock_http_client`` installs an HTTPX client backed by an arbitrary
transport (typically :class:`httpx.MockTransport`) for the duration of a
``with`` block, and ``build_zip`` assembles in-memory zip payloads.
"""

from __future__ import annotations

import io
import zipfile
from contextlib import contextmanager
from typing import Iterator, Mapping, Union

import httpx

from .net import configure_http_client, reset_http_client

__all__ = ["use_mock_http_client", "build_zip"]


@contextmanager
def use_mock_http_client(transport: httpx.BaseTransport, **client_kwargs) -> Iterator[httpx.Client]:
    """Temporarily install an HTTPX client backed by ``transport``."""

    client = httpx.Client(transport=transport, **client_kwargs)
    configure_http_client(client)
    try:
        yield client
    finally:
        reset_http_client()
        client.close()


def build_zip(entries: Mapping[str, Union[bytes, str, None]]) -> bytes:
    """Return a zip archive holding ``entries`` in insertion order.

    ``None`` values create directory entries; ``str`` values are UTF-8 encoded.
    """

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, content in entries.items():
            if content is None:
                archive.writestr(zipfile.ZipInfo(name if name.endswith("/") else f"{name}/"), b"")
            else:
                data = content.encode("utf-8") if isinstance(content, str) else content
                archive.writestr(zipfile.ZipInfo(name), data)
    return buffer.getvalue()

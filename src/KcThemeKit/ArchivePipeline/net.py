# === NAVMAP v1 ===
# {
#   "module": "KcThemeKit.ArchivePipeline.net",
#   "purpose": "Shared HTTPX clients with proxy routing and the archive fetcher",
#   "sections": [
#     {"id": "constants", "name": "Constants & globals", "anchor": "CONST", "kind": "constants"},
#     {"id": "helpers", "name": "Client construction helpers", "anchor": "HELP", "kind": "helpers"},
#     {"id": "api", "name": "Public API", "anchor": "API", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""HTTPX client management and archive retrieval.

Clients are built per ``(ProxyConfig, HttpSettings)`` pair and reused for the
process lifetime. Tests (or embedding applications) can install their own
client with :func:`configure_http_client`; :func:`reset_http_client` closes
everything and restores the defaults.

:func:`fetch_archive` has no filesystem side effects: it returns the response
body or raises :class:`NetworkError`.
"""

from __future__ import annotations

import ipaddress
import logging
import ssl
import threading
import time
from typing import Dict, Optional, Tuple, Union

import certifi
import httpx

from .errors import ConfigurationError, NetworkError
from .settings import HttpSettings, ProxyConfig

LOGGER = logging.getLogger("KcThemeKit.ArchivePipeline.net")

# --- Constants & globals -------------------------------------------------------

_CLIENT_LOCK = threading.RLock()
_OVERRIDE_CLIENT: Optional[httpx.Client] = None
_CLIENTS: Dict[Tuple[ProxyConfig, HttpSettings], httpx.Client] = {}
_DEFAULT_PROXY = ProxyConfig()
_DEFAULT_HTTP = HttpSettings()

# --- Client construction helpers ----------------------------------------------


def _build_ssl_context(proxy_config: ProxyConfig) -> Union[ssl.SSLContext, bool]:
    if not proxy_config.verify_tls:
        LOGGER.warning("TLS verification disabled for archive downloads", extra={"stage": "config"})
        return False
    context = ssl.create_default_context(cafile=certifi.where())
    if proxy_config.ca_file is not None:
        if not proxy_config.ca_file.is_file():
            raise ConfigurationError(f"CA bundle not found: {proxy_config.ca_file}")
        context.load_verify_locations(cafile=str(proxy_config.ca_file))
    return context


def _no_proxy_pattern(host: str) -> str:
    if "://" in host:
        return host
    bare = host.lstrip(".")
    try:
        address = ipaddress.ip_address(bare.strip("[]"))
    except ValueError:
        address = None
    if address is not None:
        return f"all://[{address}]" if address.version == 6 else f"all://{address}"
    if bare.lower() == "localhost":
        return "all://localhost"
    return f"all://*{bare}"


def client_options(
    proxy_config: Optional[ProxyConfig] = None,
    http_settings: Optional[HttpSettings] = None,
) -> Dict[str, object]:
    """Return the ``httpx.Client`` keyword arguments for the given configuration.

    Proxy routing is explicit: environment proxies are ignored
    (``trust_env=False``) and hosts in ``no_proxy`` are mounted on the direct
    transport.
    """

    proxy_config = proxy_config or _DEFAULT_PROXY
    http_settings = http_settings or _DEFAULT_HTTP

    options: Dict[str, object] = {
        "timeout": httpx.Timeout(
            connect=http_settings.timeout_connect,
            read=http_settings.timeout_read,
            write=http_settings.timeout_write,
            pool=http_settings.timeout_pool,
        ),
        "follow_redirects": http_settings.follow_redirects,
        "http2": http_settings.http2,
        "headers": {"User-Agent": http_settings.user_agent},
        "verify": _build_ssl_context(proxy_config),
        "trust_env": False,
    }
    if proxy_config.is_enabled and "*" not in proxy_config.no_proxy:
        options["proxy"] = proxy_config.url
        if proxy_config.no_proxy:
            options["mounts"] = {_no_proxy_pattern(host): None for host in proxy_config.no_proxy}
    return options


def build_http_client(
    proxy_config: Optional[ProxyConfig] = None,
    http_settings: Optional[HttpSettings] = None,
) -> httpx.Client:
    """Create a new HTTPX client honouring ``proxy_config``."""

    client = httpx.Client(**client_options(proxy_config, http_settings))
    LOGGER.debug(
        "HTTPX client created",
        extra={"stage": "fetch", "proxy": (proxy_config or _DEFAULT_PROXY).masked_url()},
    )
    return client


# --- Public API ----------------------------------------------------------------


def configure_http_client(client: Optional[httpx.Client]) -> None:
    """Install ``client`` for every subsequent fetch (``None`` removes the override)."""

    global _OVERRIDE_CLIENT
    with _CLIENT_LOCK:
        _OVERRIDE_CLIENT = client


def reset_http_client() -> None:
    """Close cached clients and drop any override (test helper)."""

    global _OVERRIDE_CLIENT
    with _CLIENT_LOCK:
        _OVERRIDE_CLIENT = None
        clients = list(_CLIENTS.values())
        _CLIENTS.clear()
    for client in clients:
        try:
            client.close()
        except Exception as exc:  # pragma: no cover - best effort during teardown
            LOGGER.debug(f"Error closing HTTP client: {exc}")


def get_http_client(
    proxy_config: Optional[ProxyConfig] = None,
    http_settings: Optional[HttpSettings] = None,
) -> httpx.Client:
    """Return the shared client for the given configuration, creating it if needed."""

    with _CLIENT_LOCK:
        if _OVERRIDE_CLIENT is not None:
            return _OVERRIDE_CLIENT
        key = (proxy_config or _DEFAULT_PROXY, http_settings or _DEFAULT_HTTP)
        client = _CLIENTS.get(key)
        if client is None or client.is_closed:
            client = build_http_client(*key)
            _CLIENTS[key] = client
        return client


def fetch_archive(
    url: str,
    proxy_config: Optional[ProxyConfig] = None,
    *,
    http_settings: Optional[HttpSettings] = None,
    client: Optional[httpx.Client] = None,
    logger: Optional[logging.Logger] = None,
) -> bytes:
    """Download ``url`` and return the response body.

    Raises:
        NetworkError: On a non-2xx status, a connection failure, a timeout,
            or a body shorter than the announced ``Content-Length``.
    """

    log = logger or LOGGER
    http_client = client or get_http_client(proxy_config, http_settings)
    proxy_label = proxy_config.masked_url() if proxy_config is not None else None
    started = time.perf_counter()
    log.info("downloading archive", extra={"stage": "fetch", "url": url, "proxy": proxy_label})

    try:
        with http_client.stream("GET", url) as response:
            if not response.is_success:
                status = response.status_code
                raise NetworkError(
                    f"GET {url} returned HTTP {status}",
                    url=url,
                    status_code=status,
                    retryable=status == 429 or status >= 500,
                )
            buffer = bytearray()
            for chunk in response.iter_bytes():
                buffer.extend(chunk)
            announced = response.headers.get("Content-Length", "")
            # Content-Length counts encoded bytes when a Content-Encoding applies.
            encoded = response.headers.get("Content-Encoding", "identity").lower() != "identity"
            received = response.num_bytes_downloaded if encoded else len(buffer)
            if announced.isdigit() and received < int(announced):
                raise NetworkError(
                    f"Incomplete download from {url}: received {received} of {announced} bytes",
                    url=url,
                    status_code=response.status_code,
                    retryable=True,
                )
    except httpx.TimeoutException as exc:
        raise NetworkError(f"Timed out fetching {url}: {exc}", url=url, retryable=True) from exc
    except httpx.HTTPError as exc:
        raise NetworkError(
            f"Failed to fetch {url}: {exc}",
            url=url,
            retryable=isinstance(exc, httpx.TransportError),
        ) from exc

    log.info(
        "downloaded archive",
        extra={
            "stage": "fetch",
            "url": url,
            "bytes": len(buffer),
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        },
    )
    return bytes(buffer)


__all__ = [
    "client_options",
    "build_http_client",
    "configure_http_client",
    "reset_http_client",
    "get_http_client",
    "fetch_archive",
]

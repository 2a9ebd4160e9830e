# === NAVMAP v1 ===
# {
#   "module": "KcThemeKit.ArchivePipeline.settings",
#   "purpose": "Pydantic settings models for HTTP, proxy, and cache configuration",
#   "sections": [
#     {"id": "http", "name": "HTTP Settings", "anchor": "HTTP", "kind": "api"},
#     {"id": "proxy", "name": "Proxy Configuration", "anchor": "PRX", "kind": "api"},
#     {"id": "pipeline", "name": "Pipeline Settings", "anchor": "PIP", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Configuration models for the archive pipeline.

Settings follow a two-layer pattern: frozen :class:`pydantic.BaseModel`
sections describe individual concerns (HTTP timeouts, proxy routing), and
:class:`pydantic_settings.BaseSettings` classes populate them from the process
environment. Proxy resolution mirrors the conventional ``HTTPS_PROXY`` /
``HTTP_PROXY`` / ``NO_PROXY`` variables so the pipeline behaves like other
command line tools on the same machine.
"""

from __future__ import annotations

import logging
import re
import threading
from pathlib import Path
from typing import Any, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

import platformdirs
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

__all__ = [
    "HttpSettings",
    "ProxyConfig",
    "ProxyEnvironment",
    "PipelineSettings",
    "resolve_proxy_config",
    "get_settings",
    "reset_settings",
]

LOGGER = logging.getLogger("KcThemeKit.ArchivePipeline")

_PROXY_SCHEMES = {"http", "https", "socks5", "socks5h"}
_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")


class HttpSettings(BaseModel):
    """HTTP client settings used when building the HTTPX client."""

    model_config = ConfigDict(frozen=True)

    timeout_connect: float = Field(default=10.0, gt=0.0, le=120.0)
    timeout_read: float = Field(default=60.0, gt=0.0, le=600.0)
    timeout_write: float = Field(default=30.0, gt=0.0, le=600.0)
    timeout_pool: float = Field(default=10.0, gt=0.0, le=120.0)
    follow_redirects: bool = True
    http2: bool = False
    user_agent: str = "KcThemeKit/ArchivePipeline"


class ProxyConfig(BaseModel):
    """Proxy routing for archive downloads.

    ``url`` is the proxy every request is tunnelled through; hosts listed in
    ``no_proxy`` are contacted directly. ``ca_file`` adds a certificate bundle
    on top of certifi's (corporate proxies frequently re-sign TLS traffic) and
    ``verify_tls`` disables verification entirely when false.
    """

    model_config = ConfigDict(frozen=True)

    url: Optional[str] = None
    no_proxy: Tuple[str, ...] = ()
    ca_file: Optional[Path] = None
    verify_tls: bool = True

    @field_validator("url", mode="before")
    @classmethod
    def _normalize_url(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        if not text:
            return None
        if not _SCHEME_RE.match(text):
            text = f"http://{text}"
        scheme = text.split("://", 1)[0].lower()
        if scheme not in _PROXY_SCHEMES:
            raise ValueError(f"unsupported proxy scheme '{scheme}'")
        return text

    @field_validator("no_proxy", mode="before")
    @classmethod
    def _split_no_proxy(cls, value: Any) -> Tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            items = re.split(r"[,\s]+", value)
        else:
            items = [str(item) for item in value]
        return tuple(item.strip() for item in items if item and item.strip())

    @property
    def is_enabled(self) -> bool:
        return self.url is not None

    def masked_url(self) -> Optional[str]:
        """Return ``url`` with any embedded password replaced for logging."""

        if self.url is None:
            return None
        parts = urlsplit(self.url)
        if parts.password is None:
            return self.url
        userinfo = f"{parts.username}:***" if parts.username else "***"
        host = parts.hostname or ""
        if parts.port is not None:
            host = f"{host}:{parts.port}"
        return urlunsplit((parts.scheme, f"{userinfo}@{host}", parts.path, parts.query, parts.fragment))


class ProxyEnvironment(BaseSettings):
    """Proxy-related environment variables (matched case-insensitively)."""

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    https_proxy: Optional[str] = Field(default=None, validation_alias="https_proxy")
    http_proxy: Optional[str] = Field(default=None, validation_alias="http_proxy")
    no_proxy: Optional[str] = Field(default=None, validation_alias="no_proxy")
    ca_file: Optional[Path] = Field(default=None, validation_alias="kctheme_ca_file")
    strict_ssl: bool = Field(default=True, validation_alias="kctheme_strict_ssl")


def resolve_proxy_config(url: Optional[str] = None) -> ProxyConfig:
    """Build a :class:`ProxyConfig` from the environment for requests to ``url``.

    ``https://`` targets prefer ``HTTPS_PROXY`` and fall back to
    ``HTTP_PROXY``; every other target uses ``HTTP_PROXY`` only.
    """

    env = ProxyEnvironment()
    scheme = urlsplit(url).scheme.lower() if url else "https"
    if scheme == "https":
        proxy_url = env.https_proxy or env.http_proxy
    else:
        proxy_url = env.http_proxy
    try:
        config = ProxyConfig(
            url=proxy_url,
            no_proxy=env.no_proxy,
            ca_file=env.ca_file,
            verify_tls=env.strict_ssl,
        )
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid proxy configuration: {exc}") from exc
    if config.is_enabled:
        LOGGER.debug(
            "resolved proxy from environment",
            extra={"stage": "config", "proxy": config.masked_url(), "no_proxy": list(config.no_proxy)},
        )
    return config


def _default_cache_dir() -> Path:
    return Path(platformdirs.user_cache_dir("kcthemekit"))


class PipelineSettings(BaseSettings):
    """Process-wide pipeline settings sourced from ``KCTHEME_*`` variables."""

    model_config = SettingsConfigDict(
        env_prefix="KCTHEME_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    cache_dir: Path = Field(default_factory=_default_cache_dir)
    log_level: str = "INFO"
    log_dir: Optional[Path] = None
    http: HttpSettings = Field(default_factory=HttpSettings)

    @field_validator("cache_dir", "log_dir", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        return Path(value).expanduser()

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level '{value}'")
        return level


_SETTINGS_LOCK = threading.Lock()
_SETTINGS: Optional[PipelineSettings] = None


def get_settings() -> PipelineSettings:
    """Return the cached process settings, loading them on first use."""

    global _SETTINGS
    with _SETTINGS_LOCK:
        if _SETTINGS is None:
            try:
                _SETTINGS = PipelineSettings()
            except PydanticValidationError as exc:
                raise ConfigurationError(f"Invalid pipeline settings: {exc}") from exc
        return _SETTINGS


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""

    global _SETTINGS
    with _SETTINGS_LOCK:
        _SETTINGS = None

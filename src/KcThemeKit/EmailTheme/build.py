# === NAVMAP v1 ===
# {
#   "module": "KcThemeKit.EmailTheme.build",
#   "purpose": "Assemble the Keycloak email theme package from the upstream themes jar",
#   "sections": [
#     {"id": "descriptor", "name": "Package Descriptor", "anchor": "DSC", "kind": "api"},
#     {"id": "upstream", "name": "Upstream Archive", "anchor": "UPS", "kind": "helpers"},
#     {"id": "transform", "name": "Message Banner Transform", "anchor": "BAN", "kind": "helpers"},
#     {"id": "build", "name": "Build Entry Point", "anchor": "BLD", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Build the email-translation theme package.

The package version encodes the Keycloak release it tracks: ``260004.x.y``
packages Keycloak ``26.0.4``. The build downloads that release's
``keycloak-themes`` jar, keeps ``theme/base/email``, prefixes every base
``messages_<locale>.properties`` file with a banner explaining how to
override translations, and writes the result plus a trimmed ``package.json``
into ``dist/``.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from KcThemeKit.ArchivePipeline import (
    ArchiveFile,
    ConfigurationError,
    PipelineSettings,
    ProxyConfig,
    download_and_extract_archive,
    get_settings,
    resolve_proxy_config,
    setup_logging,
    transform_codebase,
)

LOGGER = logging.getLogger("KcThemeKit.EmailTheme")

EMAIL_THEME_ROOT = PurePosixPath("theme", "base", "email")
EMAIL_THEME_CACHE_KEY = "extract_email_theme"
KEYCLOAK_THEMES_URL = (
    "https://repo1.maven.org/maven2/org/keycloak/keycloak-themes/{version}/keycloak-themes-{version}.jar"
)
DIST_FILES = ("README.md", "LICENSE")

_MESSAGES_FILE_RE = re.compile(r"^messages_([^.]+)\.properties$")


class PackageDescriptor(BaseModel):
    """The subset of ``package.json`` carried into the published package."""

    name: str
    version: str
    repository: Dict[str, Any]
    license: str
    author: str
    homepage: str
    keywords: List[str]


def load_package_descriptor(project_root: Path) -> PackageDescriptor:
    """Parse ``package.json`` from ``project_root``."""

    path = project_root / "package.json"
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return PackageDescriptor.model_validate(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"{path} is not valid JSON: {exc}") from exc
    except PydanticValidationError as exc:
        raise ConfigurationError(f"{path} is missing required fields: {exc}") from exc


def keycloak_version_from_package_version(version: str) -> str:
    """Decode the Keycloak release from a package version.

    Examples:
        >>> keycloak_version_from_package_version("260004.0.1")
        '26.0.4'
    """

    major = version.split(".", 1)[0]
    if not re.fullmatch(r"\d{6}", major):
        raise ValueError(f"Package version {version!r} does not encode a Keycloak release")
    return ".".join(str(int(major[index : index + 2])) for index in (0, 2, 4))


def keycloak_themes_url(keycloak_version: str) -> str:
    return KEYCLOAK_THEMES_URL.format(version=keycloak_version)


def select_email_theme_file(archive_file: ArchiveFile) -> None:
    """Keep files below ``theme/base/email``, re-rooted at that directory."""

    relative = PurePosixPath(archive_file.relative_path)
    try:
        target = relative.relative_to(EMAIL_THEME_ROOT)
    except ValueError:
        return
    archive_file.write(target)


def _banner(locale: str) -> List[str]:
    return [
        "# IMPORTANT: This file contains the base translation. Modifying it directly is not recommended.",
        "# To override or add custom messages, create a file named "
        f"messages_{locale}_override.properties in the same directory.",
        "# This file will be automatically loaded and merged with the base translation.",
        "# If you're implementing theme variants, you can also create variant-specific `.properties` files.",
        '# For example let\'s say you have defined `themeName: ["vanilla", "chocolate"]` '
        "then you can create the following files:",
        f"# messages_{locale}_override_vanilla.properties",
        f"# messages_{locale}_override_chocolate.properties",
        "",
    ]


def add_messages_banner(relative_path: str, source: bytes) -> Optional[bytes]:
    """Prefix ``messages/messages_<locale>.properties`` files with the override banner."""

    path = PurePosixPath(relative_path)
    if path.parent != PurePosixPath("messages") or not path.name.endswith(".properties"):
        return None
    match = _MESSAGES_FILE_RE.match(path.name)
    if match is None:
        raise ValueError(f"Unexpected messages file name: {relative_path}")
    lines = _banner(match.group(1))
    lines.append(source.decode("utf-8"))
    return "\n".join(lines).encode("utf-8")


def write_dist_package_descriptor(descriptor: PackageDescriptor, dist_dir: Path) -> Path:
    """Write the publishable ``package.json`` into ``dist_dir``."""

    payload = descriptor.model_dump()
    payload["publishConfig"] = {"access": "public"}
    dist_dir.mkdir(parents=True, exist_ok=True)
    target = dist_dir / "package.json"
    target.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return target


def build_email_theme(
    project_root: Path,
    *,
    settings: Optional[PipelineSettings] = None,
    proxy_config: Optional[ProxyConfig] = None,
    client: Optional[httpx.Client] = None,
) -> Path:
    """Build ``dist/`` for the project at ``project_root`` and return its path."""

    settings = settings or get_settings()
    descriptor = load_package_descriptor(project_root)
    keycloak_version = keycloak_version_from_package_version(descriptor.version)
    url = keycloak_themes_url(keycloak_version)
    if proxy_config is None:
        proxy_config = resolve_proxy_config(url)

    result = download_and_extract_archive(
        url=url,
        cache_dir=settings.cache_dir,
        cache_key=EMAIL_THEME_CACHE_KEY,
        on_archive_file=select_email_theme_file,
        proxy_config=proxy_config,
        http_settings=settings.http,
        client=client,
    )

    dist_dir = project_root / "dist"
    transform_codebase(
        result.extracted_dir,
        dist_dir / "keycloak-theme" / "email",
        add_messages_banner,
    )
    write_dist_package_descriptor(descriptor, dist_dir)
    for name in DIST_FILES:
        shutil.copyfile(project_root / name, dist_dir / name)

    LOGGER.info(
        f"Done for keycloak version {keycloak_version}",
        extra={"stage": "build", "destination": str(dist_dir), "cache_hit": result.cache_hit},
    )
    return dist_dir


def main() -> None:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir)
    build_email_theme(Path.cwd(), settings=settings)


if __name__ == "__main__":
    main()

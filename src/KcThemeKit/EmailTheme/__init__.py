"""Keycloak email theme packaging built on the archive pipeline."""

from __future__ import annotations

from .build import (
    EMAIL_THEME_CACHE_KEY,
    PackageDescriptor,
    add_messages_banner,
    build_email_theme,
    keycloak_themes_url,
    keycloak_version_from_package_version,
    load_package_descriptor,
    select_email_theme_file,
    write_dist_package_descriptor,
)

__all__ = [
    "EMAIL_THEME_CACHE_KEY",
    "PackageDescriptor",
    "add_messages_banner",
    "build_email_theme",
    "keycloak_themes_url",
    "keycloak_version_from_package_version",
    "load_package_descriptor",
    "select_email_theme_file",
    "write_dist_package_descriptor",
]

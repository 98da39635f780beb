"""Application version helpers."""

from __future__ import annotations

import os
import subprocess
from functools import lru_cache
from importlib import metadata, resources

_FALLBACK_VERSION = "0.0.0"
_DISTRIBUTION_NAME = "streamgo-lifecycle"

VERSION_ENV = "STREAMGO_APP_VERSION"


def _version_from_env() -> str | None:
    env_version = os.environ.get(VERSION_ENV)
    if not env_version or not env_version.strip():
        return None
    return _normalize(env_version)


def _read_version_file() -> str | None:
    try:
        text = resources.files(__package__).joinpath("VERSION").read_text(encoding="utf-8")
    except (FileNotFoundError, ModuleNotFoundError, OSError):
        return None
    version = text.strip()
    return _normalize(version) if version else None


def _version_from_metadata() -> str | None:
    try:
        return _normalize(metadata.version(_DISTRIBUTION_NAME))
    except metadata.PackageNotFoundError:
        return None


def _version_from_git() -> str | None:
    try:
        output = subprocess.check_output(
            ["git", "describe", "--tags", "--abbrev=0"],
            stderr=subprocess.DEVNULL,
            text=True,
        )
    except (OSError, subprocess.CalledProcessError):
        return None
    return _normalize(output.strip()) or None


def _normalize(raw_version: str) -> str:
    version = raw_version.strip()
    if version[:1] in {"v", "V"}:
        version = version[1:]
    return version


@lru_cache(maxsize=1)
def get_app_version() -> str:
    """Return the running application's version.

    The order of precedence is:
    1. The ``STREAMGO_APP_VERSION`` environment variable.
    2. A ``VERSION`` file packaged next to this module.
    3. Installed distribution metadata.
    4. ``git describe`` output when running from a source checkout.
    5. ``0.0.0`` so any published release is offered as an update.
    """

    for resolver in (_version_from_env, _read_version_file, _version_from_metadata, _version_from_git):
        version = resolver()
        if version:
            return version
    return _FALLBACK_VERSION


__all__ = ["VERSION_ENV", "get_app_version"]

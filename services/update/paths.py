"""Filesystem locations used while downloading and installing host app updates."""

from __future__ import annotations

import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Mapping

from services.update.constants import APP_NAME, DOWNLOAD_DIRNAME
from shared.platforms import Platform, PlatformUnsupportedError

_LOGGER = logging.getLogger(__name__)


def temp_directory() -> Path:
    return Path(tempfile.gettempdir())


def download_directory() -> Path:
    """Directory that receives downloaded artifacts; created on demand."""

    return temp_directory() / DOWNLOAD_DIRNAME


def user_data_directory(platform: Platform, environ: Mapping[str, str] | None = None) -> Path:
    """Per-user data directory of the host application."""

    env = os.environ if environ is None else environ
    home = Path(env.get("HOME") or env.get("USERPROFILE") or Path.home())
    if platform is Platform.WINDOWS:
        base = env.get("APPDATA")
        root = Path(base) if base else home / "AppData" / "Roaming"
        return root / APP_NAME
    if platform is Platform.MACOS:
        return home / "Library" / "Application Support" / APP_NAME
    if platform is Platform.LINUX:
        base = env.get("XDG_CONFIG_HOME")
        root = Path(base) if base else home / ".config"
        return root / APP_NAME
    raise PlatformUnsupportedError(f"No user data directory for platform {platform!r}")


def relocatable_executable(environ: Mapping[str, str] | None = None) -> Path | None:
    """Return the AppImage the process runs from, or ``None`` outside one."""

    env = os.environ if environ is None else environ
    appimage = env.get("APPIMAGE", "").strip()
    if appimage:
        return Path(appimage)
    executable = Path(sys.executable)
    if executable.suffix.lower() == ".appimage":
        return executable
    return None


def installed_app_path(
    platform: Platform,
    *,
    environ: Mapping[str, str] | None = None,
    executable: Path | None = None,
    frozen: bool | None = None,
) -> Path | None:
    """Best guess of where the running host application is installed.

    Windows returns the executable, macOS the ``.app`` bundle and Linux the
    AppImage file.  ``None`` means the location cannot be determined, which on
    Linux indicates a package-managed install.
    """

    env = os.environ if environ is None else environ
    running = Path(executable) if executable is not None else Path(sys.executable)
    is_frozen = getattr(sys, "frozen", False) if frozen is None else frozen

    if platform is Platform.WINDOWS:
        if is_frozen:
            return running
        local = env.get("LOCALAPPDATA")
        if not local:
            return None
        return Path(local) / "Programs" / APP_NAME / f"{APP_NAME}.exe"

    if platform is Platform.MACOS:
        for parent in (running, *running.parents):
            if parent.suffix == ".app":
                return parent
        return Path("/Applications") / f"{APP_NAME}.app"

    if platform is Platform.LINUX:
        appimage = env.get("APPIMAGE", "").strip()
        if appimage:
            return Path(appimage)
        if running.suffix.lower() == ".appimage":
            return running
        _LOGGER.debug("Not running from an AppImage: %s", running)
        return None

    raise PlatformUnsupportedError(f"No install location for platform {platform!r}")


__all__ = [
    "download_directory",
    "installed_app_path",
    "relocatable_executable",
    "temp_directory",
    "user_data_directory",
]

"""Candidate locations of the companion service executable.

All helpers are pure lookups: they build paths from the platform, the
environment mapping and the resources directory, and never touch the
filesystem except through the ``exists`` checks callers do afterwards.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Mapping

from services.companion.constants import (
    BUNDLED_DIRNAME,
    DEVELOPMENT_PLATFORM_DIRS,
    LINUX_SYSTEM_PATHS,
    MACOS_APP_EXECUTABLE,
    RESOURCES_DIR_ENV,
    SERVICE_NAME,
    WINDOWS_INSTALL_DIRNAME,
)
from shared.platforms import Platform


def service_executable_name(platform: Platform) -> str:
    return f"{SERVICE_NAME}{platform.executable_suffix}"


def resources_root(environ: Mapping[str, str] | None = None) -> Path:
    """Return the directory that holds resources shipped with the application."""

    env = os.environ if environ is None else environ
    override = env.get(RESOURCES_DIR_ENV, "").strip()
    if override:
        return Path(override).expanduser()
    if getattr(sys, "frozen", False):
        bundle_dir = getattr(sys, "_MEIPASS", None)
        if bundle_dir:
            return Path(bundle_dir)
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parents[2]


def bundled_service_candidates(platform: Platform, resources: Path) -> list[Path]:
    """Packaged layout first, then the per-platform development layout."""

    executable = service_executable_name(platform)
    service_dir = resources / BUNDLED_DIRNAME
    return [
        service_dir / executable,
        service_dir / DEVELOPMENT_PLATFORM_DIRS[platform] / executable,
    ]


def system_service_candidates(
    platform: Platform,
    *,
    environ: Mapping[str, str] | None = None,
    cwd: Path | None = None,
    home: Path | None = None,
) -> list[Path]:
    """Platform-conventional install locations, in lookup order."""

    env = os.environ if environ is None else environ
    if platform is Platform.WINDOWS:
        executable = service_executable_name(platform)
        candidates = [(cwd if cwd is not None else Path.cwd()) / executable]
        local_app_data = env.get("LOCALAPPDATA") or str((home or Path.home()) / "AppData" / "Local")
        candidates.append(Path(local_app_data) / "Programs" / WINDOWS_INSTALL_DIRNAME / executable)
        for variable in ("ProgramFiles", "ProgramFiles(x86)"):
            root = env.get(variable)
            if root:
                candidates.append(Path(root) / WINDOWS_INSTALL_DIRNAME / executable)
        return candidates
    if platform is Platform.MACOS:
        return [MACOS_APP_EXECUTABLE]
    return list(LINUX_SYSTEM_PATHS)


def companion_search_paths(
    platform: Platform,
    *,
    resources: Path | None = None,
    environ: Mapping[str, str] | None = None,
    cwd: Path | None = None,
) -> list[Path]:
    """Every candidate path, bundled copies before system installs."""

    root = resources if resources is not None else resources_root(environ)
    return [
        *bundled_service_candidates(platform, root),
        *system_service_candidates(platform, environ=environ, cwd=cwd),
    ]


__all__ = [
    "bundled_service_candidates",
    "companion_search_paths",
    "resources_root",
    "service_executable_name",
    "system_service_candidates",
]

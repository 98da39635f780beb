"""Match release assets to the running platform by their file names.

Published assets follow these naming conventions:

* ``StreamGo-<version>-Windows.exe`` and ``StreamGo-<version>-Windows-Portable.exe``
* ``StreamGo-<version>-Mac-Intel.dmg`` and ``StreamGo-<version>-Mac-Apple-Silicon.dmg``
* ``StreamGo-<version>-Linux.AppImage`` and ``StreamGo-<version>-Linux-ARM.AppImage``
"""

from __future__ import annotations

import logging
import re

from services.update.constants import IGNORED_ASSET_SUFFIXES, INSTALLER_EXTENSIONS
from services.update.models import ReleaseAsset, ReleaseInfo
from shared.platforms import ARCH_ARM64, ARCH_X64, Platform

_LOGGER = logging.getLogger(__name__)

__all__ = ["classify_asset", "resolve_asset_for"]

_MAC_ARM_MARKERS = ("silicon", "arm64", "apple")
_LINUX_ARM_PATTERN = re.compile(r"arm64|aarch64|[-_.]arm(?:[-_.]|$)")
_WINDOWS_ARM_PATTERN = re.compile(r"arm64|[-_.]arm(?:[-_.]|$)")


def classify_asset(name: str, download_url: str, *, size: int | None = None) -> ReleaseAsset:
    """Build a :class:`ReleaseAsset`, inferring platform and arch from ``name``."""

    lower = name.lower()
    platform = _platform_for(lower)
    arch: str | None = None
    portable = False
    if platform is Platform.WINDOWS:
        if "windows" not in lower and "win" not in re.split(r"[-_.]", lower):
            platform = None
        else:
            arch = ARCH_ARM64 if _WINDOWS_ARM_PATTERN.search(lower) else ARCH_X64
            portable = "portable" in lower
    elif platform is Platform.MACOS:
        if "intel" in lower:
            arch = ARCH_X64
        elif any(marker in lower for marker in _MAC_ARM_MARKERS):
            arch = ARCH_ARM64
        else:
            arch = ARCH_X64
    elif platform is Platform.LINUX:
        arch = ARCH_ARM64 if _LINUX_ARM_PATTERN.search(lower) else ARCH_X64

    return ReleaseAsset(
        name=name,
        download_url=download_url,
        platform=platform,
        arch=arch,
        portable=portable,
        size=size,
    )


def resolve_asset_for(
    release: ReleaseInfo,
    platform: Platform,
    arch: str,
    *,
    portable: bool = False,
) -> ReleaseAsset | None:
    """Return the asset for ``platform``/``arch``, or ``None`` when none matches.

    On Windows the full installer is chosen unless ``portable`` is requested.
    Unknown architectures never match.
    """

    if arch not in (ARCH_X64, ARCH_ARM64):
        _LOGGER.warning("No release assets are published for architecture %s", arch)
        return None

    for asset in release.assets:
        if asset.platform is not platform or asset.arch != arch:
            continue
        if platform is Platform.WINDOWS and asset.portable != portable:
            continue
        _LOGGER.info("Selected release asset %s for %s/%s", asset.name, platform.value, arch)
        return asset

    _LOGGER.warning(
        "Release %s has no asset for %s/%s (assets: %s)",
        release.version,
        platform.value,
        arch,
        ", ".join(asset.name for asset in release.assets) or "none",
    )
    return None


def _platform_for(lower_name: str) -> Platform | None:
    if not lower_name or lower_name.endswith(IGNORED_ASSET_SUFFIXES):
        return None
    for platform in Platform:
        if lower_name.endswith(INSTALLER_EXTENSIONS[platform.value]):
            return platform
    return None

from __future__ import annotations

import pytest

from services.update.release_assets import classify_asset, resolve_asset_for
from shared.platforms import ARCH_ARM64, ARCH_X64, Platform
from tests.unit.update_test_utils import build_release


@pytest.mark.parametrize(
    ("name", "platform", "arch", "portable"),
    [
        ("StreamGo-1.0.0-Windows.exe", Platform.WINDOWS, ARCH_X64, False),
        ("StreamGo-1.0.0-Windows-Portable.exe", Platform.WINDOWS, ARCH_X64, True),
        ("StreamGo-1.0.0-Windows-arm64.exe", Platform.WINDOWS, ARCH_ARM64, False),
        ("StreamGo-1.0.0-Mac-Intel.dmg", Platform.MACOS, ARCH_X64, False),
        ("StreamGo-1.0.0-Mac-Apple-Silicon.dmg", Platform.MACOS, ARCH_ARM64, False),
        ("StreamGo-1.0.0-Linux.AppImage", Platform.LINUX, ARCH_X64, False),
        ("StreamGo-1.0.0-Linux-ARM.AppImage", Platform.LINUX, ARCH_ARM64, False),
        ("StreamGo-1.0.0-linux-aarch64.AppImage", Platform.LINUX, ARCH_ARM64, False),
    ],
)
def test_classify_asset_infers_platform_and_arch(name, platform, arch, portable) -> None:
    asset = classify_asset(name, f"https://downloads.invalid/{name}")

    assert asset.platform is platform
    assert asset.arch == arch
    assert asset.portable is portable


@pytest.mark.parametrize(
    "name",
    ["StreamGo-1.0.0-Windows.exe.blockmap", "latest.yml", "StreamGo-1.0.0.tar.gz", "setup.exe"],
)
def test_classify_asset_ignores_unrecognised_files(name: str) -> None:
    asset = classify_asset(name, f"https://downloads.invalid/{name}")

    assert asset.platform is None
    assert asset.arch is None


@pytest.mark.parametrize(
    ("platform", "arch", "expected"),
    [
        (Platform.WINDOWS, ARCH_X64, "StreamGo-9.9.9-Windows.exe"),
        (Platform.MACOS, ARCH_X64, "StreamGo-9.9.9-Mac-Intel.dmg"),
        (Platform.MACOS, ARCH_ARM64, "StreamGo-9.9.9-Mac-Apple-Silicon.dmg"),
        (Platform.LINUX, ARCH_X64, "StreamGo-9.9.9-Linux.AppImage"),
        (Platform.LINUX, ARCH_ARM64, "StreamGo-9.9.9-Linux-ARM.AppImage"),
    ],
)
def test_resolve_asset_for_each_platform(platform: Platform, arch: str, expected: str) -> None:
    asset = resolve_asset_for(build_release(), platform, arch)

    assert asset is not None
    assert asset.name == expected


def test_resolve_asset_prefers_installer_unless_portable_requested() -> None:
    release = build_release()

    portable = resolve_asset_for(release, Platform.WINDOWS, ARCH_X64, portable=True)

    assert portable is not None
    assert portable.name == "StreamGo-9.9.9-Windows-Portable.exe"


def test_resolve_asset_returns_none_for_unknown_arch() -> None:
    assert resolve_asset_for(build_release(), Platform.LINUX, "riscv64") is None


def test_resolve_asset_returns_none_when_platform_missing() -> None:
    assert resolve_asset_for(build_release(), Platform.WINDOWS, ARCH_ARM64) is None

"""Operating system and CPU architecture variants understood by the services."""

from __future__ import annotations

import enum
import platform as _platform
import sys


class PlatformUnsupportedError(RuntimeError):
    """Raised when the host operating system is not Windows, macOS or Linux."""


class Platform(str, enum.Enum):
    """Closed set of desktop platforms the lifecycle services support."""

    WINDOWS = "win32"
    MACOS = "darwin"
    LINUX = "linux"

    @property
    def is_posix(self) -> bool:
        return self is not Platform.WINDOWS

    @property
    def executable_suffix(self) -> str:
        return ".exe" if self is Platform.WINDOWS else ""


ARCH_X64 = "x64"
ARCH_ARM64 = "arm64"

_ARCH_ALIASES = {
    "x86_64": ARCH_X64,
    "amd64": ARCH_X64,
    "x64": ARCH_X64,
    "arm64": ARCH_ARM64,
    "aarch64": ARCH_ARM64,
    "armv8": ARCH_ARM64,
    "armv8l": ARCH_ARM64,
}


def detect_platform(sys_platform: str | None = None) -> Platform:
    """Return the :class:`Platform` for ``sys_platform`` (defaults to ``sys.platform``)."""

    value = (sys_platform if sys_platform is not None else sys.platform).strip().lower()
    if value.startswith("win"):
        return Platform.WINDOWS
    if value == "darwin":
        return Platform.MACOS
    if value.startswith("linux"):
        return Platform.LINUX
    raise PlatformUnsupportedError(f"Unsupported platform: {value or '<unknown>'}")


def detect_arch(machine: str | None = None) -> str:
    """Normalise ``platform.machine()`` into ``x64``/``arm64`` where recognised."""

    raw = (machine if machine is not None else _platform.machine()).strip().lower()
    return _ARCH_ALIASES.get(raw, raw)


__all__ = [
    "ARCH_ARM64",
    "ARCH_X64",
    "Platform",
    "PlatformUnsupportedError",
    "detect_arch",
    "detect_platform",
]

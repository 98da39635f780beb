"""Data models and errors for companion service supervision."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from shared.platforms import Platform, PlatformUnsupportedError


class ServiceOrigin(str, enum.Enum):
    """Where the launched companion executable came from."""

    BUNDLED = "bundled"
    SYSTEM_INSTALLED = "system"


class ServiceState(str, enum.Enum):
    UNKNOWN = "unknown"
    NOT_RUNNING = "not_running"
    RUNNING_EXTERNAL = "running_external"
    RUNNING_OWNED = "running_owned"


class TerminationOutcome(str, enum.Enum):
    """Result of :meth:`ServiceController.terminate`.

    ``SKIPPED`` means the running service belongs to someone else (another
    instance of the application or the user) and was deliberately left alone.
    """

    TERMINATED = "terminated"
    NOT_RUNNING = "not_running"
    SKIPPED = "skipped_not_owned"
    FAILED = "failed"


@dataclass(frozen=True)
class LaunchTarget:
    """A resolved way of starting the companion service."""

    command: Tuple[str, ...]
    origin: ServiceOrigin
    executable_path: Path | None = None
    working_directory: Path | None = None

    @property
    def launches_directly(self) -> bool:
        """``True`` when ``command`` runs the service itself rather than a launcher."""

        return self.executable_path is not None and self.command[:1] == (str(self.executable_path),)


@dataclass(frozen=True)
class ServiceHandle:
    """The companion process tracked by one :class:`ServiceController`.

    ``started_by_us`` is the only thing that authorises a plain terminate; a
    process merely being alive never does.
    """

    platform: Platform
    started_by_us: bool
    pid: int | None = None
    executable_path: Path | None = None
    working_directory: Path | None = None
    origin: ServiceOrigin | None = None
    command: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ServiceStatus:
    running: bool
    bundled: bool
    started_by_us: bool
    pid: int | None = None


class CompanionError(RuntimeError):
    """Base class for companion service failures."""


class NotFoundError(CompanionError):
    """No companion executable exists at any candidate location."""

    def __init__(self, message: str, searched: Tuple[Path, ...] = ()) -> None:
        super().__init__(message)
        self.searched = searched


class SpawnError(CompanionError):
    """The operating system refused to start the companion process."""


class RestartSkipped(CompanionError):
    """A restart was refused because the running service belongs to someone else."""

    def __init__(self, message: str, pid: int | None = None) -> None:
        super().__init__(message)
        self.pid = pid


__all__ = [
    "CompanionError",
    "LaunchTarget",
    "NotFoundError",
    "PlatformUnsupportedError",
    "RestartSkipped",
    "ServiceHandle",
    "ServiceOrigin",
    "ServiceState",
    "ServiceStatus",
    "SpawnError",
    "TerminationOutcome",
]

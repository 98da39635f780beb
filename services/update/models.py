"""Data models and errors used by the update service."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

from shared.platforms import Platform


@dataclass(frozen=True)
class ReleaseAsset:
    """A downloadable file attached to a release.

    ``platform``/``arch``/``portable`` are derived from the file name; assets
    the naming conventions do not recognise leave them unset.
    """

    name: str
    download_url: str
    platform: Platform | None = None
    arch: str | None = None
    portable: bool = False
    size: int | None = None


@dataclass(frozen=True)
class ReleaseInfo:
    """Snapshot of the newest published release, valid for one update attempt."""

    version: str
    assets: Tuple[ReleaseAsset, ...] = ()
    release_notes: str | None = None
    page_url: str | None = None


@dataclass(frozen=True)
class DownloadProgress:
    percent: float
    bytes_downloaded: int
    total_bytes: int


@dataclass
class DownloadSession:
    """Mutable bookkeeping for one :meth:`DownloadPipeline.download` call."""

    url: str
    destination_path: Path
    max_attempts: int
    expected_bytes: int | None = None
    bytes_written: int = 0
    attempt: int = 0
    failures: list[str] = field(default_factory=list)

    @property
    def retries(self) -> int:
        return max(0, self.attempt - 1)

    def begin_attempt(self) -> None:
        self.attempt += 1
        self.bytes_written = 0
        self.expected_bytes = None


@dataclass(frozen=True)
class InstallPlan:
    """How a downloaded artifact will be installed; discarded after use."""

    platform: Platform
    artifact_path: Path
    installed_app_path: Path | None
    command: Tuple[str, ...] = ()
    helper_script_path: Path | None = None
    working_directory: Path | None = None


@dataclass(frozen=True)
class UpdateCheck:
    available: bool
    latest_version: str
    current_version: str
    release: ReleaseInfo | None = None


class UpdateError(RuntimeError):
    """Base class for update failures."""


class NetworkError(UpdateError):
    """The release index or the download host could not be reached."""

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status: int | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status = status
        self.retryable = retryable


class DownloadError(UpdateError):
    """A download could not be written to disk."""


class IntegrityError(DownloadError):
    """A downloaded artifact is truncated or implausibly small."""

    def __init__(self, message: str, *, observed_bytes: int, expected_bytes: int | None) -> None:
        super().__init__(message)
        self.observed_bytes = observed_bytes
        self.expected_bytes = expected_bytes


class InstallError(UpdateError):
    """The platform installer could not be prepared or launched."""


class InstallPermissionError(InstallError):
    """The install location is not writable, or elevation was declined."""


class ManualInstallRequired(InstallError):
    """Automatic replacement is not possible; the user must install the file."""

    def __init__(self, message: str, artifact_path: Path) -> None:
        super().__init__(message)
        self.artifact_path = artifact_path


class NoUpdateAvailable(UpdateError):
    """The latest published version is not newer than the running one."""

    def __init__(self, current_version: str, latest_version: str) -> None:
        super().__init__(f"Version {current_version} is up to date (latest is {latest_version})")
        self.current_version = current_version
        self.latest_version = latest_version


class _StageFailure(UpdateError):
    stage = ""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class CheckFailed(_StageFailure):
    stage = "check"


class DownloadFailed(_StageFailure):
    stage = "download"


class InstallFailed(_StageFailure):
    stage = "install"


__all__ = [
    "CheckFailed",
    "DownloadError",
    "DownloadFailed",
    "DownloadProgress",
    "DownloadSession",
    "InstallError",
    "InstallFailed",
    "InstallPermissionError",
    "InstallPlan",
    "IntegrityError",
    "ManualInstallRequired",
    "NetworkError",
    "NoUpdateAvailable",
    "ReleaseAsset",
    "ReleaseInfo",
    "UpdateCheck",
    "UpdateError",
]

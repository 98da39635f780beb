"""Public API for the update service package."""

from __future__ import annotations

from services.update.builder import build_update_orchestrator, schedule_startup_update_check
from services.update.constants import LOCAL_RELEASE_ENV, UPDATE_FAILURE_MARKER_NAME, USER_AGENT
from services.update.download import DownloadPipeline
from services.update.installers import (
    LinuxInstaller,
    MacInstaller,
    PlatformInstaller,
    WindowsInstaller,
    installer_for_platform,
)
from services.update.models import (
    CheckFailed,
    DownloadError,
    DownloadFailed,
    DownloadProgress,
    DownloadSession,
    InstallError,
    InstallFailed,
    InstallPermissionError,
    InstallPlan,
    IntegrityError,
    ManualInstallRequired,
    NetworkError,
    NoUpdateAvailable,
    ReleaseAsset,
    ReleaseInfo,
    UpdateCheck,
    UpdateError,
)
from services.update.orchestrator import UpdateOrchestrator
from services.update.providers import GitHubReleaseProvider, LocalFolderReleaseProvider, ReleaseProvider
from services.update.recovery import consume_update_failure_notice
from services.update.release_assets import resolve_asset_for
from services.update.versioning import compare_versions, is_newer

__all__ = [
    "LOCAL_RELEASE_ENV",
    "UPDATE_FAILURE_MARKER_NAME",
    "USER_AGENT",
    "CheckFailed",
    "DownloadError",
    "DownloadFailed",
    "DownloadPipeline",
    "DownloadProgress",
    "DownloadSession",
    "GitHubReleaseProvider",
    "InstallError",
    "InstallFailed",
    "InstallPermissionError",
    "InstallPlan",
    "IntegrityError",
    "LinuxInstaller",
    "LocalFolderReleaseProvider",
    "MacInstaller",
    "ManualInstallRequired",
    "NetworkError",
    "NoUpdateAvailable",
    "PlatformInstaller",
    "ReleaseAsset",
    "ReleaseInfo",
    "ReleaseProvider",
    "UpdateCheck",
    "UpdateError",
    "UpdateOrchestrator",
    "WindowsInstaller",
    "build_update_orchestrator",
    "compare_versions",
    "consume_update_failure_notice",
    "installer_for_platform",
    "is_newer",
    "resolve_asset_for",
    "schedule_startup_update_check",
]

"""Download and install the companion service from its published releases.

The release index only supplies the version tag; the installers themselves
are fetched from the service's download host:

* Windows: ``StremioServiceSetup.exe`` run elevated through PowerShell
* macOS: ``StremioService.dmg`` mounted with ``hdiutil`` and copied into place
* Linux: ``.deb`` or ``.rpm`` by distribution family, left for the user to
  install with their package manager
"""

from __future__ import annotations

import enum
import logging
import os
import shutil
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from app.config import CompanionSettings, get_companion_settings
from services.companion.constants import (
    COMPANION_DOWNLOAD_BASE_URL,
    COMPANION_RELEASE_INDEX_URL,
    DEBIAN_PACKAGE_NAME,
    MACOS_APP_BUNDLE,
    MACOS_DMG_NAME,
    OS_RELEASE_PATH,
    REDHAT_PACKAGE_NAME,
    WINDOWS_SETUP_NAME,
)
from services.companion.controller import ServiceController
from services.companion.models import CompanionError, ServiceHandle
from services.companion.probe import CommandRunner
from services.update import (
    CheckFailed,
    DownloadFailed,
    DownloadPipeline,
    GitHubReleaseProvider,
    InstallError,
    InstallFailed,
    InstallPermissionError,
    ManualInstallRequired,
    ReleaseAsset,
    ReleaseInfo,
    ReleaseProvider,
    UpdateError,
    resolve_asset_for,
)
from services.update.orchestrator import ProgressListener, progress_adapter
from services.update.paths import download_directory
from shared.platforms import ARCH_ARM64, ARCH_X64, Platform, detect_arch, detect_platform
from shared.processes import run_command

_LOGGER = logging.getLogger(__name__)

_VERIFY_INTERVAL_SECONDS = 2.0
_MOUNT_PREFIX = "stremio-service-volume-"

_DEBIAN_IDS = frozenset({"debian", "ubuntu", "linuxmint", "pop", "elementary"})
_REDHAT_IDS = frozenset({"fedora", "rhel", "centos", "rocky", "almalinux", "opensuse"})
_DEBIAN_LIKE = ("debian", "ubuntu")
_REDHAT_LIKE = ("fedora", "rhel", "suse")


class LinuxFamily(str, enum.Enum):
    """Package format family of a Linux distribution."""

    DEBIAN = "debian"
    REDHAT = "redhat"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class CompanionInstall:
    """Outcome of a completed companion install.

    ``handle`` is ``None`` when the install succeeded but the service could
    not be started afterwards.
    """

    version: str
    artifact_path: Path
    handle: ServiceHandle | None


def read_os_release(path: Path = OS_RELEASE_PATH) -> dict[str, str]:
    """Parse ``KEY=value`` lines of an os-release file; missing files give ``{}``."""

    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return {}
    fields: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.strip().partition("=")
        if not sep or key.startswith("#"):
            continue
        fields[key.strip()] = value.strip().strip("\"'")
    return fields


def detect_linux_family(
    os_release_path: Path = OS_RELEASE_PATH,
    *,
    runner: CommandRunner = run_command,
    timeout: float = 10.0,
) -> LinuxFamily:
    """Work out which package format the distribution installs.

    ``ID`` is matched exactly, then ``ID_LIKE`` by substring; without a usable
    os-release the presence of ``dpkg`` or ``rpm`` decides.
    """

    fields = read_os_release(os_release_path)
    distro_id = fields.get("ID", "").lower()
    if distro_id in _DEBIAN_IDS:
        return LinuxFamily.DEBIAN
    if distro_id in _REDHAT_IDS:
        return LinuxFamily.REDHAT
    id_like = fields.get("ID_LIKE", "").lower()
    if any(name in id_like for name in _DEBIAN_LIKE):
        return LinuxFamily.DEBIAN
    if any(name in id_like for name in _REDHAT_LIKE):
        return LinuxFamily.REDHAT

    for tool, family in (("dpkg", LinuxFamily.DEBIAN), ("rpm", LinuxFamily.REDHAT)):
        try:
            result = runner([tool, "--version"], timeout=timeout)
        except (OSError, subprocess.SubprocessError):
            continue
        if result.returncode == 0:
            return family
    return LinuxFamily.UNKNOWN


def companion_release_assets(
    version: str,
    *,
    linux_family: LinuxFamily = LinuxFamily.UNKNOWN,
    base_url: str = COMPANION_DOWNLOAD_BASE_URL,
) -> tuple[ReleaseAsset, ...]:
    """Installer assets published for companion release ``version``.

    The macOS disk image is universal. Unknown Linux families get the
    Debian package.
    """

    root = f"{base_url.rstrip('/')}/v{version}"
    linux_name = REDHAT_PACKAGE_NAME if linux_family is LinuxFamily.REDHAT else DEBIAN_PACKAGE_NAME
    return (
        ReleaseAsset(WINDOWS_SETUP_NAME, f"{root}/{WINDOWS_SETUP_NAME}", Platform.WINDOWS, ARCH_X64),
        ReleaseAsset(MACOS_DMG_NAME, f"{root}/{MACOS_DMG_NAME}", Platform.MACOS, ARCH_X64),
        ReleaseAsset(MACOS_DMG_NAME, f"{root}/{MACOS_DMG_NAME}", Platform.MACOS, ARCH_ARM64),
        ReleaseAsset(linux_name, f"{root}/{linux_name}", Platform.LINUX, ARCH_X64),
    )


class CompanionInstaller:
    """Fetch the newest companion release and install it system-wide.

    Failures are reported with the update stage errors: :class:`CheckFailed`,
    :class:`DownloadFailed` or :class:`InstallFailed`.  On Linux the package
    is downloaded and :class:`ManualInstallRequired` is raised naming it;
    no package manager is run on the user's behalf.
    """

    def __init__(
        self,
        controller: ServiceController,
        *,
        provider: ReleaseProvider | None = None,
        pipeline: DownloadPipeline | None = None,
        platform: Platform | None = None,
        arch: str | None = None,
        download_dir: Path | None = None,
        runner: CommandRunner = run_command,
        settings: CompanionSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        os_release_path: Path = OS_RELEASE_PATH,
        macos_app_bundle: Path = MACOS_APP_BUNDLE,
        base_url: str = COMPANION_DOWNLOAD_BASE_URL,
    ) -> None:
        self._controller = controller
        self._provider = provider or GitHubReleaseProvider(COMPANION_RELEASE_INDEX_URL)
        self._pipeline = pipeline or DownloadPipeline()
        self._platform = platform or detect_platform()
        self._arch = arch or detect_arch()
        self._download_dir = download_dir or download_directory()
        self._runner = runner
        self._settings = settings or get_companion_settings()
        self._sleep = sleep
        self._os_release_path = os_release_path
        self._macos_app_bundle = macos_app_bundle
        self._base_url = base_url

    def resolve_asset(self, version: str) -> ReleaseAsset:
        family = LinuxFamily.UNKNOWN
        if self._platform is Platform.LINUX:
            family = detect_linux_family(
                self._os_release_path, runner=self._runner, timeout=self._settings.command_timeout_seconds
            )
            _LOGGER.info("Detected %s Linux distribution family", family.value)
        release = ReleaseInfo(
            version=version,
            assets=companion_release_assets(version, linux_family=family, base_url=self._base_url),
        )
        asset = resolve_asset_for(release, self._platform, self._arch)
        if asset is None:
            raise DownloadFailed(
                f"Companion service {version} has no download for {self._platform.value}/{self._arch}"
            )
        return asset

    def install_latest(self, on_progress: ProgressListener | None = None) -> CompanionInstall:
        """Download the newest companion release, install it and start it."""

        _LOGGER.info("Fetching latest companion service release")
        try:
            release = self._provider.get_latest_release()
        except UpdateError as exc:
            raise CheckFailed(f"Could not look up the companion service release: {exc}", exc) from exc

        asset = self.resolve_asset(release.version)
        destination = self._download_dir / asset.name
        _LOGGER.info("Downloading companion service %s to %s", release.version, destination)
        try:
            session = self._pipeline.download(asset.download_url, destination, progress_adapter(on_progress))
        except UpdateError as exc:
            raise DownloadFailed(f"Downloading {asset.name} failed: {exc}", exc) from exc
        artifact = session.destination_path

        if self._platform is Platform.LINUX:
            raise ManualInstallRequired(
                f"Install the companion service package with your package manager, for example "
                f"'sudo apt install {artifact}' or 'sudo dnf install {artifact}'.",
                artifact,
            )

        try:
            self._install_artifact(artifact)
        except InstallError as exc:
            _LOGGER.error("Installing companion service failed: %s", exc)
            raise InstallFailed(f"Installing the companion service failed: {exc}", exc) from exc

        if not self._wait_until_installed():
            raise InstallFailed(
                f"Companion service was not found after running {artifact.name}; install it manually"
            )
        _LOGGER.info("Companion service %s installed", release.version)
        _remove(artifact)

        try:
            handle: ServiceHandle | None = self._controller.start()
        except CompanionError as exc:
            _LOGGER.warning("Companion service installed but could not be started: %s", exc)
            handle = None
        return CompanionInstall(version=release.version, artifact_path=artifact, handle=handle)

    def _install_artifact(self, artifact: Path) -> None:
        try:
            if self._platform is Platform.WINDOWS:
                self._install_windows(artifact)
            elif self._platform is Platform.MACOS:
                self._install_macos(artifact)
            else:
                raise InstallError(f"No companion install routine for {self._platform.value}")
        except PermissionError as exc:
            raise InstallPermissionError(f"Permission denied installing {artifact.name}: {exc}") from exc
        except (OSError, subprocess.SubprocessError) as exc:
            raise InstallError(f"Could not install {artifact.name}: {exc}") from exc

    def _install_windows(self, artifact: Path) -> None:
        # No /S: the setup's silent mode does not survive the elevation prompt.
        command = f"Start-Process -FilePath {_powershell_quote(str(artifact))} -Verb RunAs -Wait"
        _LOGGER.info("Running companion service setup %s", artifact)
        try:
            result = self._runner(
                ["powershell.exe", "-NoProfile", "-ExecutionPolicy", "Bypass", "-Command", command],
                timeout=self._settings.install_timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            _LOGGER.warning("Companion service setup is still running; checking for the install")
            return
        if result.returncode != 0:
            _LOGGER.warning(
                "Companion service setup exited with status %s: %s",
                result.returncode,
                (result.stderr or result.stdout or "").strip(),
            )

    def _install_macos(self, artifact: Path) -> None:
        bundle = self._macos_app_bundle
        staged = bundle.with_name(bundle.name + ".new")
        previous = bundle.with_name(bundle.name + ".old")
        mount_point = Path(tempfile.mkdtemp(prefix=_MOUNT_PREFIX))
        timeout = self._settings.install_timeout_seconds
        try:
            attached = self._runner(
                ["hdiutil", "attach", str(artifact), "-nobrowse", "-noautoopen", "-mountpoint", str(mount_point)],
                timeout=timeout,
            )
            if attached.returncode != 0:
                raise InstallError(f"Could not mount {artifact.name}: {(attached.stderr or '').strip()}")

            shutil.rmtree(staged, ignore_errors=True)
            copied = self._runner(["ditto", str(mount_point / bundle.name), str(staged)], timeout=timeout)
            if copied.returncode != 0:
                shutil.rmtree(staged, ignore_errors=True)
                raise InstallError(f"Could not copy {bundle.name}: {(copied.stderr or '').strip()}")

            # The installed bundle stays in place until the new copy is complete.
            shutil.rmtree(previous, ignore_errors=True)
            if bundle.exists():
                os.replace(bundle, previous)
            try:
                os.replace(staged, bundle)
            except OSError:
                if previous.exists() and not bundle.exists():
                    os.replace(previous, bundle)
                raise
            shutil.rmtree(previous, ignore_errors=True)
            _LOGGER.info("Copied companion service to %s", bundle)
        finally:
            self._detach(mount_point)

    def _detach(self, mount_point: Path) -> None:
        try:
            self._runner(
                ["hdiutil", "detach", str(mount_point), "-quiet"],
                timeout=self._settings.command_timeout_seconds,
            )
        except (OSError, subprocess.SubprocessError):
            _LOGGER.debug("Unable to detach %s", mount_point, exc_info=True)
        try:
            mount_point.rmdir()
        except OSError:
            _LOGGER.debug("Unable to remove mount point %s", mount_point, exc_info=True)

    def _wait_until_installed(self) -> bool:
        polls = max(1, int(self._settings.install_verify_seconds // _VERIFY_INTERVAL_SECONDS))
        for attempt in range(polls):
            if self._controller.is_installed():
                return True
            if attempt + 1 < polls:
                self._sleep(_VERIFY_INTERVAL_SECONDS)
        return False


def _powershell_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _remove(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError:
        _LOGGER.debug("Unable to remove companion installer %s", path, exc_info=True)


__all__ = [
    "CompanionInstall",
    "CompanionInstaller",
    "LinuxFamily",
    "companion_release_assets",
    "detect_linux_family",
    "read_os_release",
]

"""Coordinate release discovery, download and installation of host app updates."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable

from app.config import UpdateSettings, get_update_settings
from services.update.download import DownloadPipeline
from services.update.installers import PlatformInstaller, installer_for_platform
from services.update.models import (
    CheckFailed,
    DownloadFailed,
    DownloadProgress,
    InstallFailed,
    NoUpdateAvailable,
    ReleaseAsset,
    ReleaseInfo,
    UpdateCheck,
    UpdateError,
)
from services.update.paths import download_directory
from services.update.providers import ReleaseProvider
from services.update.release_assets import resolve_asset_for
from services.update.versioning import is_newer
from shared.platforms import Platform, PlatformUnsupportedError, detect_arch, detect_platform


_LOGGER = logging.getLogger(__name__)

ProgressListener = Callable[[DownloadProgress], None]


class UpdateOrchestrator:
    """Sequence release check, download and install for the running app.

    Each stage reports failures as one exception type: :class:`CheckFailed`,
    :class:`DownloadFailed` or :class:`InstallFailed`, carrying the stage
    error as ``cause``.  Only one download or install runs at a time.
    """

    def __init__(
        self,
        provider: ReleaseProvider,
        *,
        current_version: str,
        pipeline: DownloadPipeline | None = None,
        installer_factory: Callable[[Platform], PlatformInstaller] = installer_for_platform,
        platform: Platform | None = None,
        arch: str | None = None,
        download_dir: Path | None = None,
        settings: UpdateSettings | None = None,
    ) -> None:
        self._provider = provider
        self._current_version = current_version
        self._settings = settings or get_update_settings()
        self._pipeline = pipeline or DownloadPipeline(settings=self._settings)
        self._installer_factory = installer_factory
        self._platform = platform or detect_platform()
        self._arch = arch or detect_arch()
        self._download_dir = download_dir or download_directory()
        self._busy = threading.Lock()
        self._release: ReleaseInfo | None = None
        self._artifact: Path | None = None

    @property
    def current_version(self) -> str:
        return self._current_version

    @property
    def downloaded_artifact(self) -> Path | None:
        return self._artifact

    @property
    def release_page_url(self) -> str:
        if self._release is not None and self._release.page_url:
            return self._release.page_url
        return self._settings.release_page_url

    def check_for_update(self) -> UpdateCheck:
        """Query the release index once and compare against the running version."""

        try:
            release = self._provider.get_latest_release()
        except UpdateError as exc:
            _LOGGER.warning("Update check failed: %s", exc)
            raise CheckFailed(f"Could not check for updates: {exc}", exc) from exc

        available = is_newer(release.version, self._current_version)
        self._release = release if available else None
        if available:
            _LOGGER.info("Update available: %s -> %s", self._current_version, release.version)
        else:
            _LOGGER.info("Current version %s is up to date (latest %s)", self._current_version, release.version)
        return UpdateCheck(
            available=available,
            latest_version=release.version,
            current_version=self._current_version,
            release=release,
        )

    def fetch_available_release(self) -> ReleaseInfo:
        """Return the newer release, raising :class:`NoUpdateAvailable` otherwise."""

        check = self.check_for_update()
        if not check.available or check.release is None:
            raise NoUpdateAvailable(self._current_version, check.latest_version)
        return check.release

    def resolve_asset(self, release: ReleaseInfo) -> ReleaseAsset:
        asset = resolve_asset_for(release, self._platform, self._arch)
        if asset is None:
            raise DownloadFailed(
                f"Release {release.version} has no download for {self._platform.value}/{self._arch}"
            )
        return asset

    def start_update_download(
        self,
        on_progress: ProgressListener | None = None,
        release: ReleaseInfo | None = None,
    ) -> Path:
        """Download the artifact for the pending release and return its path.

        Uses the release found by the last :meth:`check_for_update`, checking
        again when there is none.
        """

        if not self._busy.acquire(blocking=False):
            raise DownloadFailed("An update download or install is already in progress")
        try:
            if release is None:
                release = self._release
            if release is None:
                try:
                    release = self.fetch_available_release()
                except CheckFailed as exc:
                    raise DownloadFailed(str(exc), exc.cause) from exc
            asset = self.resolve_asset(release)
            destination = self._download_dir / asset.name
            _LOGGER.info("Downloading %s %s to %s", asset.name, release.version, destination)
            try:
                session = self._pipeline.download(
                    asset.download_url,
                    destination,
                    progress_adapter(on_progress),
                    max_attempts=self._settings.max_attempts,
                )
            except UpdateError as exc:
                raise DownloadFailed(f"Downloading {asset.name} failed: {exc}", exc) from exc
            self._artifact = session.destination_path
            return session.destination_path
        finally:
            self._busy.release()

    def install_and_restart(self, artifact: Path | None = None) -> None:
        """Hand the downloaded artifact to the platform installer.

        On success the installer normally exits this process; the call only
        returns when the installer was configured not to exit.
        """

        if not self._busy.acquire(blocking=False):
            raise InstallFailed("An update download or install is already in progress")
        try:
            target = Path(artifact) if artifact is not None else self._artifact
            if target is None:
                raise InstallFailed("No downloaded update is ready to install")
            try:
                installer = self._installer_factory(self._platform)
                installer.install(target)
            except (UpdateError, PlatformUnsupportedError) as exc:
                _LOGGER.error("Installing %s failed: %s", target, exc)
                raise InstallFailed(f"Installing the update failed: {exc}", exc) from exc
            _LOGGER.info("Update installer launched for %s", target)
        finally:
            self._busy.release()

    def run_update(self, on_progress: ProgressListener | None = None) -> None:
        """Check, download and install in one call."""

        release = self.fetch_available_release()
        artifact = self.start_update_download(on_progress, release=release)
        self.install_and_restart(artifact)

    def discard_artifact(self) -> None:
        """Delete the downloaded artifact, if any."""

        if self._artifact is None:
            return
        try:
            self._artifact.unlink()
        except FileNotFoundError:
            pass
        except OSError:
            _LOGGER.debug("Unable to remove downloaded update %s", self._artifact, exc_info=True)
        self._artifact = None


def progress_adapter(listener: ProgressListener | None):
    """Turn a :class:`DownloadProgress` listener into a pipeline byte callback."""

    if listener is None:
        return None

    def emit(bytes_written: int, total_bytes: int) -> None:
        percent = (bytes_written / total_bytes * 100.0) if total_bytes > 0 else 0.0
        listener(
            DownloadProgress(
                percent=min(percent, 100.0),
                bytes_downloaded=bytes_written,
                total_bytes=total_bytes,
            )
        )

    return emit


__all__ = ["ProgressListener", "UpdateOrchestrator", "progress_adapter"]

"""The narrow surface the desktop UI uses to drive updates and the companion service.

Every call returns a :class:`~shared.result.Result` instead of raising, so the
UI layer can render failures without knowing the service exception types.
"""

from __future__ import annotations

import logging
from pathlib import Path

from services.companion import (
    CompanionError,
    CompanionInstall,
    CompanionInstaller,
    ServiceController,
    ServiceHandle,
    ServiceStatus,
    build_service_controller,
)
from services.update import (
    UpdateCheck,
    UpdateError,
    UpdateOrchestrator,
    build_update_orchestrator,
)
from services.update.orchestrator import ProgressListener
from shared.result import Result

_LOGGER = logging.getLogger(__name__)


class HostBridge:
    def __init__(
        self,
        orchestrator: UpdateOrchestrator | None,
        controller: ServiceController,
        companion_installer: CompanionInstaller | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._controller = controller
        self._companion_installer = companion_installer

    @property
    def controller(self) -> ServiceController:
        return self._controller

    @property
    def release_page_url(self) -> str | None:
        if self._orchestrator is None:
            return None
        return self._orchestrator.release_page_url

    # Updates -------------------------------------------------------------------

    def check_for_update(self) -> Result[UpdateCheck, UpdateError]:
        if self._orchestrator is None:
            return Result.err(UpdateError("Updates are not supported on this platform"))
        try:
            return Result.ok(self._orchestrator.check_for_update())
        except UpdateError as exc:
            return Result.err(exc)

    def start_update_download(
        self, on_progress: ProgressListener | None = None
    ) -> Result[Path, UpdateError]:
        if self._orchestrator is None:
            return Result.err(UpdateError("Updates are not supported on this platform"))
        try:
            return Result.ok(self._orchestrator.start_update_download(on_progress))
        except UpdateError as exc:
            _LOGGER.warning("Update download failed: %s", exc)
            return Result.err(exc)

    def install_and_restart(self, artifact: Path | None = None) -> Result[None, UpdateError]:
        """Launch the installer; on success this process normally exits inside the call."""

        if self._orchestrator is None:
            return Result.err(UpdateError("Updates are not supported on this platform"))
        try:
            self._orchestrator.install_and_restart(artifact)
        except UpdateError as exc:
            return Result.err(exc)
        return Result.ok()

    # Companion service ---------------------------------------------------------

    def get_service_status(self) -> ServiceStatus:
        return self._controller.status()

    def start_companion_service(self) -> Result[ServiceHandle, CompanionError]:
        try:
            return Result.ok(self._controller.start())
        except CompanionError as exc:
            _LOGGER.warning("Companion service could not be started: %s", exc)
            return Result.err(exc)

    def restart_companion_service(self, *, force: bool = True) -> Result[ServiceHandle, CompanionError]:
        """Restart the companion service, stopping it even when another launcher owns it.

        With ``force=False`` a service started elsewhere is left alone and the
        result carries :class:`~services.companion.RestartSkipped`.
        """

        try:
            return Result.ok(self._controller.restart(force=force))
        except CompanionError as exc:
            _LOGGER.warning("Companion service restart failed: %s", exc)
            return Result.err(exc)

    def install_companion_service(
        self, on_progress: ProgressListener | None = None
    ) -> Result[CompanionInstall, UpdateError]:
        """Download and install the companion service, then start it.

        On Linux the error is :class:`~services.update.ManualInstallRequired`
        naming the downloaded package.
        """

        if self._companion_installer is None:
            return Result.err(UpdateError("Installing the companion service is not supported here"))
        try:
            return Result.ok(self._companion_installer.install_latest(on_progress))
        except UpdateError as exc:
            _LOGGER.warning("Companion service install did not complete: %s", exc)
            return Result.err(exc)

    def shutdown(self) -> None:
        """Stop the companion service on application exit."""

        self._controller.terminate_if_started_by_us()
        self._controller.force_terminate_all()


def build_host_bridge() -> HostBridge:
    """Wire a :class:`HostBridge` for the running application."""

    controller = build_service_controller()
    return HostBridge(build_update_orchestrator(), controller, CompanionInstaller(controller))


__all__ = ["HostBridge", "build_host_bridge"]

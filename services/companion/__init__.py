"""Public API for supervising the companion streaming service."""

from __future__ import annotations

from services.companion.controller import (
    ServiceController,
    build_service_controller,
    ensure_executable_permissions,
)
from services.companion.installer import (
    CompanionInstall,
    CompanionInstaller,
    LinuxFamily,
    companion_release_assets,
    detect_linux_family,
)
from services.companion.models import (
    CompanionError,
    LaunchTarget,
    NotFoundError,
    PlatformUnsupportedError,
    RestartSkipped,
    ServiceHandle,
    ServiceOrigin,
    ServiceState,
    ServiceStatus,
    SpawnError,
    TerminationOutcome,
)
from services.companion.paths import companion_search_paths
from services.companion.probe import ProcessProbe
from services.companion.process_control import ProcessControl, SystemProcessControl

__all__ = [
    "CompanionError",
    "CompanionInstall",
    "CompanionInstaller",
    "LaunchTarget",
    "LinuxFamily",
    "NotFoundError",
    "PlatformUnsupportedError",
    "ProcessControl",
    "ProcessProbe",
    "RestartSkipped",
    "ServiceController",
    "ServiceHandle",
    "ServiceOrigin",
    "ServiceState",
    "ServiceStatus",
    "SpawnError",
    "SystemProcessControl",
    "TerminationOutcome",
    "build_service_controller",
    "companion_release_assets",
    "companion_search_paths",
    "detect_linux_family",
    "ensure_executable_permissions",
]

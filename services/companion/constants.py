"""Names and locations describing the companion streaming service."""

from __future__ import annotations

from pathlib import Path

from shared.platforms import Platform

SERVICE_NAME = "stremio-service"
RUNTIME_NAME = "stremio-runtime"
# Streaming server script the runtime executes; outlives the service on POSIX.
SERVER_SCRIPT_NAME = "server.js"

# Binaries shipped next to the bundled service whose permission bits must be
# restored before launch on POSIX systems.
COMPANION_BINARIES = ("ffmpeg", "ffprobe", RUNTIME_NAME)

BUNDLED_DIRNAME = "stremio-service"
DEVELOPMENT_PLATFORM_DIRS = {
    Platform.WINDOWS: "stremio-service-windows",
    Platform.MACOS: "stremio-service-macos",
    Platform.LINUX: "stremio-service-linux",
}

WINDOWS_INSTALL_DIRNAME = "StremioService"
MACOS_APP_BUNDLE = Path("/Applications/StremioService.app")
MACOS_APP_EXECUTABLE = MACOS_APP_BUNDLE / "Contents" / "MacOS" / SERVICE_NAME
LINUX_SYSTEM_PATHS = (
    Path("/usr/bin/stremio-service"),
    Path("/usr/local/bin/stremio-service"),
    Path("/opt/stremio-service/stremio-service"),
    Path("/usr/lib/stremio-service/stremio-service"),
)
FLATPAK_APP_ID = "com.stremio.Service"

RESOURCES_DIR_ENV = "STREAMGO_RESOURCES_DIR"

COMPANION_RELEASE_INDEX_URL = "https://api.github.com/repos/Stremio/stremio-service/releases/latest"
COMPANION_DOWNLOAD_BASE_URL = "https://dl.strem.io/stremio-service"
WINDOWS_SETUP_NAME = "StremioServiceSetup.exe"
MACOS_DMG_NAME = "StremioService.dmg"
DEBIAN_PACKAGE_NAME = "stremio-service_amd64.deb"
REDHAT_PACKAGE_NAME = "stremio-service_x86_64.rpm"
OS_RELEASE_PATH = Path("/etc/os-release")

"""Constants shared across the update service modules."""

from __future__ import annotations

APP_NAME = "StreamGo"
USER_AGENT = "StreamGo-Updater"

INSTALLER_EXTENSIONS = {
    "win32": (".exe",),
    "darwin": (".dmg",),
    "linux": (".appimage",),
}
IGNORED_ASSET_SUFFIXES = (".blockmap", ".sha256", ".yml", ".yaml")

DOWNLOAD_CHUNK_SIZE = 64 * 1024
DOWNLOAD_DIRNAME = "streamgo-updates"
HELPER_DIR_PREFIX = "streamgo-update-"

UPDATE_FAILURE_MARKER_NAME = "update_failed.json"

LOCAL_RELEASE_ENV = "STREAMGO_UPDATE_LOCAL_DIR"

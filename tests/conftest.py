from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_project_root_on_path() -> None:
    """Guarantee the repository root is discoverable for absolute imports."""

    root = Path(__file__).resolve().parent.parent
    root_str = str(root)
    if root_str not in sys.path:
        sys.path.insert(0, root_str)

    tests_dir = root / "tests"
    tests_str = str(tests_dir)
    if tests_str not in sys.path:
        sys.path.insert(1, tests_str)


_ensure_project_root_on_path()


_ISOLATED_ENV_VARS = (
    "STREAMGO_RELEASE_INDEX_URL",
    "STREAMGO_UPDATE_LOCAL_DIR",
    "STREAMGO_RESOURCES_DIR",
    "STREAMGO_APP_VERSION",
    "STREAMGO_LOG_FILE",
    "APPIMAGE",
)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory):
    """Keep logs, user data and overrides away from the real machine during tests."""

    for name in _ISOLATED_ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("STREAMGO_LOG_DIR", str(home / "logs"))
    monkeypatch.setenv("APPDATA", str(home / "AppData" / "Roaming"))
    monkeypatch.setenv("LOCALAPPDATA", str(home / "AppData" / "Local"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))

    from app.config import reset_app_config_cache
    from app.version import get_app_version

    reset_app_config_cache()
    get_app_version.cache_clear()
    yield
    reset_app_config_cache()
    get_app_version.cache_clear()

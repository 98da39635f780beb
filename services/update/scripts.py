"""Helper scripts that replace the running application after it exits.

Each script is written to its own private temporary directory, takes every
path as a parameter rather than having it interpolated into the source, and
deletes itself once it has run.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tempfile
import textwrap
from pathlib import Path

from services.update.constants import APP_NAME, HELPER_DIR_PREFIX


__all__ = [
    "MACOS_SCRIPT_NAME",
    "POSIX_SCRIPT_NAME",
    "WINDOWS_SCRIPT_NAME",
    "write_linux_replace_script",
    "write_macos_install_script",
    "write_windows_install_script",
]


_LOGGER = logging.getLogger(__name__)

WINDOWS_SCRIPT_NAME = "install.ps1"
MACOS_SCRIPT_NAME = "install.sh"
POSIX_SCRIPT_NAME = "replace.sh"


_WINDOWS_INSTALL_SCRIPT = textwrap.dedent(
    """
    param(
        [int]$ProcessId,
        [string]$InstallerPath,
        [string]$ExecutablePath = '',
        [string]$LogPath = '',
        [string]$FailureMarkerPath = ''
    )

    $ErrorActionPreference = 'Stop'

    function Write-Log {
        param([string]$Message)

        $timestamp = Get-Date -Format 'yyyy-MM-dd HH:mm:ss'
        $line = "$timestamp $Message"

        if ($LogPath -ne '') {
            try {
                $logDirectory = Split-Path -Path $LogPath -Parent
                if ($logDirectory -and -not (Test-Path -LiteralPath $logDirectory)) {
                    New-Item -ItemType Directory -Path $logDirectory -Force | Out-Null
                }
                Add-Content -LiteralPath $LogPath -Value $line
            }
            catch {
                # Logging must not stop the install.
            }
        }

        Write-Output $line
    }

    function Write-FailureMarker {
        param([string]$Reason, [string]$Advice)

        if ($FailureMarkerPath -eq '') {
            return
        }

        try {
            $directory = Split-Path -Path $FailureMarkerPath -Parent
            if ($directory -and -not (Test-Path -LiteralPath $directory)) {
                New-Item -ItemType Directory -Path $directory -Force | Out-Null
            }

            $payload = @{
                reason = $Reason
                advice = $Advice
                recorded_at = (Get-Date -Format 'o')
            } | ConvertTo-Json -Compress

            $encoding = New-Object System.Text.UTF8Encoding($false)
            [System.IO.File]::WriteAllText($FailureMarkerPath, $payload, $encoding)
        }
        catch {
            Write-Log ("Failed to record failure marker: " + $_.Exception.Message)
        }
    }

    function Start-App {
        if ($ExecutablePath -eq '' -or -not (Test-Path -LiteralPath $ExecutablePath)) {
            Write-Log "No application executable to relaunch."
            return
        }

        try {
            $exeDir = Split-Path -Path $ExecutablePath
            Start-Process -FilePath $ExecutablePath -WorkingDirectory $exeDir
        }
        catch {
            Write-Log ("Failed to relaunch application: " + $_.Exception.Message)
        }
    }

    function Remove-Self {
        try {
            $scriptDir = Split-Path -Path $PSCommandPath -Parent
            Remove-Item -LiteralPath $PSCommandPath -Force
            Remove-Item -LiteralPath $scriptDir -Force -Recurse
        }
        catch {
            # Temp cleanup will catch it.
        }
    }

    Write-Log "Waiting for process $ProcessId to exit before installing update."
    while (Get-Process -Id $ProcessId -ErrorAction SilentlyContinue) {
        Start-Sleep -Milliseconds 500
    }
    Write-Log "Process $ProcessId has exited."

    try {
        Write-Log "Launching installer $InstallerPath."
        $installer = Start-Process -FilePath $InstallerPath -ArgumentList '/S' -Verb RunAs -Wait -PassThru
        if ($installer.ExitCode -ne 0) {
            throw ("Installer exited with code " + $installer.ExitCode)
        }
        Write-Log "Installer completed successfully."
    }
    catch {
        $rawMessage = $_.Exception.Message
        Write-Log ("Installer failed: " + $rawMessage)

        $advice = 'Download the installer from the releases page and run it manually.'
        if ($rawMessage -match 'canceled by the user' -or $rawMessage -match 'cancelled by the user') {
            $advice = 'Administrator permission is required to install the update. Accept the prompt and try again.'
        }

        Write-FailureMarker $rawMessage $advice
        Start-App
        Remove-Self
        exit 1
    }

    try {
        Remove-Item -LiteralPath $InstallerPath -Force
    }
    catch {
        Write-Log ("Failed to remove installer: " + $_.Exception.Message)
    }

    Start-App
    Write-Log "Update script completed."
    Remove-Self
    """
).strip()


_POSIX_PRELUDE = textwrap.dedent(
    """
    log() {
        line="$(date '+%Y-%m-%d %H:%M:%S') $1"
        if [ -n "$LOG_PATH" ]; then
            mkdir -p "$(dirname "$LOG_PATH")" 2>/dev/null
            printf '%s\\n' "$line" >> "$LOG_PATH" 2>/dev/null
        fi
        printf '%s\\n' "$line"
    }

    write_failure_marker() {
        [ -n "$FAILURE_MARKER" ] || return 0
        mkdir -p "$(dirname "$FAILURE_MARKER")" 2>/dev/null
        reason=$(printf '%s' "$1" | sed 's/\\\\/\\\\\\\\/g; s/"/\\\\"/g')
        advice=$(printf '%s' "$2" | sed 's/\\\\/\\\\\\\\/g; s/"/\\\\"/g')
        printf '{"reason": "%s", "advice": "%s", "recorded_at": "%s"}' \\
            "$reason" "$advice" "$(date -u '+%Y-%m-%dT%H:%M:%SZ')" > "$FAILURE_MARKER" 2>/dev/null
    }

    remove_self() {
        script_dir=$(dirname "$0")
        rm -f "$0"
        rmdir "$script_dir" 2>/dev/null
    }

    wait_for_exit() {
        log "Waiting for process $PARENT_PID to exit before installing update."
        while kill -0 "$PARENT_PID" 2>/dev/null; do
            sleep 0.5
        done
        log "Process $PARENT_PID has exited."
    }
    """
).strip()


_MACOS_INSTALL_SCRIPT = (
    "#!/bin/bash\n"
    + textwrap.dedent(
        """
        PARENT_PID="$1"
        DMG_PATH="$2"
        APP_PATH="$3"
        LOG_PATH="$4"
        FAILURE_MARKER="$5"
        """
    ).strip()
    + "\n\n"
    + _POSIX_PRELUDE
    + "\n\n"
    + textwrap.dedent(
        """
        STAGED_APP="$APP_PATH.new"
        PREVIOUS_APP="$APP_PATH.old"

        fail() {
            log "Update failed: $1"
            write_failure_marker "$1" "Open the downloaded disk image and drag the application into Applications."
            if [ ! -e "$APP_PATH" ] && [ -e "$PREVIOUS_APP" ]; then
                mv "$PREVIOUS_APP" "$APP_PATH"
            fi
            rm -rf "$STAGED_APP"
            if [ -n "$MOUNT_POINT" ]; then
                hdiutil detach "$MOUNT_POINT" -quiet >/dev/null 2>&1
            fi
            if [ -d "$APP_PATH" ]; then
                open "$APP_PATH"
            fi
            remove_self
            exit 1
        }

        wait_for_exit

        MOUNT_POINT=$(mktemp -d "${TMPDIR:-/tmp}/__APP__-update-volume.XXXXXX") || fail "Could not create a mount point"
        log "Mounting $DMG_PATH at $MOUNT_POINT."
        hdiutil attach "$DMG_PATH" -nobrowse -noautoopen -mountpoint "$MOUNT_POINT" -quiet || fail "Could not mount $DMG_PATH"

        SOURCE_APP=$(find "$MOUNT_POINT" -maxdepth 1 -name '*.app' -print -quit)
        [ -n "$SOURCE_APP" ] || fail "No application bundle found in $DMG_PATH"

        rm -rf "$STAGED_APP" "$PREVIOUS_APP"
        log "Copying $SOURCE_APP to $STAGED_APP."
        if command -v ditto >/dev/null 2>&1; then
            ditto "$SOURCE_APP" "$STAGED_APP" || fail "Could not copy the application bundle"
        else
            cp -R "$SOURCE_APP" "$STAGED_APP" || fail "Could not copy the application bundle"
        fi

        # The installed bundle stays in place until the new copy is complete.
        if [ -e "$APP_PATH" ]; then
            mv "$APP_PATH" "$PREVIOUS_APP" || fail "Could not move $APP_PATH aside"
        fi
        mv "$STAGED_APP" "$APP_PATH" || fail "Could not move the new bundle to $APP_PATH"
        rm -rf "$PREVIOUS_APP"
        log "Replaced $APP_PATH."

        hdiutil detach "$MOUNT_POINT" -quiet >/dev/null 2>&1
        rmdir "$MOUNT_POINT" 2>/dev/null
        MOUNT_POINT=""

        log "Launching updated application at $APP_PATH."
        open "$APP_PATH"
        rm -f "$DMG_PATH"
        log "Update script completed."
        remove_self
        """
    ).strip().replace("__APP__", APP_NAME.lower())
    + "\n"
)


_LINUX_REPLACE_SCRIPT = (
    "#!/bin/sh\n"
    + textwrap.dedent(
        """
        PARENT_PID="$1"
        STAGED_PATH="$2"
        TARGET_PATH="$3"
        LOG_PATH="$4"
        FAILURE_MARKER="$5"
        """
    ).strip()
    + "\n\n"
    + _POSIX_PRELUDE
    + "\n\n"
    + textwrap.dedent(
        """
        wait_for_exit

        log "Replacing $TARGET_PATH with $STAGED_PATH."
        if ! mv -f "$STAGED_PATH" "$TARGET_PATH"; then
            log "Update failed: could not replace $TARGET_PATH"
            write_failure_marker "Could not replace $TARGET_PATH" "Move the downloaded AppImage into place manually and mark it executable."
            rm -f "$STAGED_PATH"
            nohup "$TARGET_PATH" >/dev/null 2>&1 &
            remove_self
            exit 1
        fi

        chmod +x "$TARGET_PATH"
        log "Launching updated application at $TARGET_PATH."
        nohup "$TARGET_PATH" >/dev/null 2>&1 &
        log "Update script completed."
        remove_self
        """
    ).strip()
    + "\n"
)


def _write_script(name: str, content: str, *, executable: bool) -> Path:
    script_dir = Path(tempfile.mkdtemp(prefix=HELPER_DIR_PREFIX))
    script_path = script_dir / name
    try:
        script_path.write_text(content, encoding="utf-8", newline="\n" if executable else None)
        if executable:
            mode = script_path.stat().st_mode
            os.chmod(script_path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    except OSError:
        shutil.rmtree(script_dir, ignore_errors=True)
        raise
    _LOGGER.debug("Wrote update helper script to %s", script_path)
    return script_path


def write_windows_install_script() -> Path:
    """Write the PowerShell installer wrapper to a private temporary directory."""

    return _write_script(WINDOWS_SCRIPT_NAME, _WINDOWS_INSTALL_SCRIPT, executable=False)


def write_macos_install_script() -> Path:
    return _write_script(MACOS_SCRIPT_NAME, _MACOS_INSTALL_SCRIPT, executable=True)


def write_linux_replace_script() -> Path:
    return _write_script(POSIX_SCRIPT_NAME, _LINUX_REPLACE_SCRIPT, executable=True)

"""Best-effort desktop notifications for received documents."""

import logging
import shutil
import subprocess

from config import NOTIFY_TIMEOUT, PLATFORM

logger = logging.getLogger(__name__)

_WINDOWS_BALLOON = """
Add-Type -AssemblyName System.Windows.Forms
$n = New-Object System.Windows.Forms.NotifyIcon
$n.Icon = [System.Drawing.SystemIcons]::Information
$n.Visible = $true
$n.ShowBalloonTip(5000, '{title}', '{body}', 'Info')
Start-Sleep -Seconds 6
$n.Dispose()
"""


def _ps_quote(text: str) -> str:
    return text.replace("'", "''")


def _applescript_quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def notification_command(title: str, body: str, platform: str = PLATFORM) -> list[str] | None:
    """The command that shows a notification here, or None if unsupported."""
    if platform == "darwin":
        script = f"display notification {_applescript_quote(body)} with title {_applescript_quote(title)}"
        return ["osascript", "-e", script]
    if platform == "linux":
        path = shutil.which("notify-send")
        if path is None:
            return None
        return [path, title, body]
    if platform == "windows":
        script = _WINDOWS_BALLOON.format(title=_ps_quote(title), body=_ps_quote(body))
        return ["powershell", "-NoProfile", "-Command", script]
    return None


def send_notification(title: str, body: str) -> None:
    """Show a desktop notification. Blocks; run it off the event loop."""
    cmd = notification_command(title, body)
    if cmd is None:
        return
    try:
        subprocess.run(cmd, check=True, capture_output=True, timeout=NOTIFY_TIMEOUT)
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"Desktop notification failed: {e}")

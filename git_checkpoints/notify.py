"""Desktop notifications.

Best-effort only: a missing notifier binary or a failing notification is
logged and otherwise ignored.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
from typing import Protocol

logger = logging.getLogger(__name__)

APP_NAME = "git-checkpoints"


class NotificationSink(Protocol):
    def send(self, title: str, message: str) -> bool: ...


class NullNotifier:
    """Used when notifications are disabled or unsupported."""

    def send(self, title: str, message: str) -> bool:
        logger.debug(f"Notification skipped: {title}: {message}")
        return False


class DesktopNotifier:
    """Shells out to notify-send (Linux) or osascript (macOS)."""

    def __init__(self, command: list[str], style: str):
        self.command = command
        self.style = style

    def _build(self, title: str, message: str) -> list[str]:
        if self.style == "osascript":
            script = f"display notification {_applescript_quote(message)} with title {_applescript_quote(title)}"
            return [*self.command, "-e", script]
        return [*self.command, "--app-name", APP_NAME, title, message]

    def send(self, title: str, message: str) -> bool:
        try:
            # Security: shell=False, message is passed as a single argument
            result = subprocess.run(
                self._build(title, message),  # noqa: S603
                capture_output=True,
                text=True,
                timeout=5,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.debug(f"Notification failed: {e}")
            return False
        if result.returncode != 0:
            logger.debug(f"Notification failed: {result.stderr.strip()}")
            return False
        return True


def _applescript_quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def get_notifier(enabled: bool) -> NotificationSink:
    """Pick a notifier for this platform, or a no-op one."""
    if not enabled:
        return NullNotifier()

    if sys.platform == "darwin":
        osascript = shutil.which("osascript")
        if osascript:
            return DesktopNotifier([osascript], style="osascript")
    else:
        notify_send = shutil.which("notify-send")
        if notify_send:
            return DesktopNotifier([notify_send], style="notify-send")

    logger.debug("No desktop notifier available, notifications disabled")
    return NullNotifier()

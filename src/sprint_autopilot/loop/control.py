"""Operator control file: pause, skip and status requests between iterations."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path

from sprint_autopilot.loop.models import ControlCommand

logger = logging.getLogger(__name__)


class ControlChannel:
    """Reads operator commands from a small text file.

    The whole file content (trimmed, case-insensitive) is the command. A
    missing file or unrecognized content means no command.
    """

    def __init__(
        self,
        path: Path,
        *,
        notice_path: Path | None = None,
        poll_interval_seconds: float = 5.0,
        stop_requested: Callable[[], bool] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.path = path
        self.notice_path = notice_path
        self.poll_interval_seconds = poll_interval_seconds
        self.stop_requested = stop_requested
        self._sleep = sleep

    def poll(self) -> ControlCommand | None:
        """Read and act on the current command.

        ``pause`` blocks until the operator removes or changes the file (or a
        stop is requested); ``skip`` and ``status`` are consumed.
        """

        raw = self._read()
        if raw is None:
            return None
        try:
            command = ControlCommand(raw)
        except ValueError:
            if raw:
                logger.debug("Ignoring unrecognized control file content: %r", raw)
            return None

        if command is ControlCommand.PAUSE:
            logger.warning(
                "Control: PAUSE requested. Edit %s to 'resume' or delete it to continue.",
                self.path,
            )
            self._wait_while_paused()
            logger.info("Control: resumed.")
            return command

        self._consume()
        if command is ControlCommand.SKIP:
            logger.warning("Control: SKIP requested. Current story will be set to backlog.")
        return command

    def request_pause(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("pause\n", "utf-8")

    def write(self, command: ControlCommand) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(f"{command.value}\n", "utf-8")

    def clear(self) -> bool:
        if not self.path.exists():
            return False
        self._consume()
        return True

    def write_review_notice(self, message: str) -> None:
        """Leave a note for the operator about a finished epic."""

        if self.notice_path is None:
            return
        self.notice_path.parent.mkdir(parents=True, exist_ok=True)
        self.notice_path.write_text(f"{message}\n", "utf-8")

    def _is_paused(self) -> bool:
        raw = self._read()
        return raw is not None and raw.startswith(ControlCommand.PAUSE.value)

    def _wait_while_paused(self) -> None:
        while self._is_paused():
            if self.stop_requested is not None and self.stop_requested():
                logger.warning("Stop requested while paused.")
                return
            self._sleep(self.poll_interval_seconds)

    def _read(self) -> str | None:
        try:
            return self.path.read_text("utf-8").strip().lower()
        except FileNotFoundError:
            return None
        except UnicodeDecodeError:
            logger.debug("Ignoring control file that is not valid UTF-8: %s", self.path)
            return ""

    def _consume(self) -> None:
        self.path.unlink(missing_ok=True)

"""Startup checks that must pass before the first loop iteration."""

from __future__ import annotations

import shutil

from sprint_autopilot.config import Settings
from sprint_autopilot.loop.store import StatusStore, StatusStoreError


class MissingPrerequisiteError(RuntimeError):
    """A file or executable the loop depends on is unavailable."""


def check_prerequisites(settings: Settings) -> None:
    """Raise ``MissingPrerequisiteError`` describing the first missing piece."""

    paths = settings.paths
    store = StatusStore(paths.status_path)
    if not store.exists():
        raise MissingPrerequisiteError(
            f"Status file not found at: {paths.status_path}. "
            "Run sprint planning first, then re-run the autopilot.",
        )
    try:
        store.read()
    except StatusStoreError as error:
        raise MissingPrerequisiteError(str(error)) from error

    if not paths.prompt_template_path.is_file():
        raise MissingPrerequisiteError(
            f"Prompt template not found at: {paths.prompt_template_path}",
        )

    if settings.loop.dry_run:
        return
    executable = settings.agent.executable
    if not executable or shutil.which(executable) is None:
        raise MissingPrerequisiteError(f"Agent executable not found in PATH: {executable!r}")

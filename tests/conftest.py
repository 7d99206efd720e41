"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest

from sprint_autopilot.config import PathSettings

PROMPT_TEMPLATE = """\
Run workflow {{WORKFLOW_NAME}} ({{WORKFLOW_PATH}})
Story: {{STORY_KEY}} [{{STORY_STATUS}}]
Status file: {{SPRINT_STATUS_PATH}}
"""


def render_status_yaml(entries: dict[str, str]) -> str:
    lines = [
        "# generated by sprint planning",
        "project: demo",
        "development_status:",
    ]
    lines.extend(f"  {key}: {value}" for key, value in entries.items())
    return "\n".join(lines) + "\n"


@pytest.fixture()
def status_file(tmp_path: Path) -> Callable[[dict[str, str]], Path]:
    """Write a sprint status file and return its path."""

    def _write(entries: dict[str, str]) -> Path:
        path = tmp_path / "sprint-status.yaml"
        path.write_text(render_status_yaml(entries), "utf-8")
        return path

    return _write


@pytest.fixture()
def project(tmp_path: Path) -> Callable[[dict[str, str]], PathSettings]:
    """Lay out a host project with status file and prompt template."""

    def _create(entries: dict[str, str]) -> PathSettings:
        paths = PathSettings.for_project(tmp_path / "project")
        paths.status_path.parent.mkdir(parents=True, exist_ok=True)
        paths.status_path.write_text(render_status_yaml(entries), "utf-8")
        paths.prompt_template_path.parent.mkdir(parents=True, exist_ok=True)
        paths.prompt_template_path.write_text(PROMPT_TEMPLATE, "utf-8")
        return paths

    return _create


@pytest.fixture()
def agent_import_path(monkeypatch: pytest.MonkeyPatch) -> None:
    """Let agent subprocesses import the package from the source tree."""

    src = str(Path(__file__).resolve().parents[1] / "src")
    existing = os.environ.get("PYTHONPATH")
    monkeypatch.setenv("PYTHONPATH", os.pathsep.join([src, existing]) if existing else src)

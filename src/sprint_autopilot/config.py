"""Runtime configuration for the sprint loop."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from sprint_autopilot.backend.cli_backend import DEFAULT_COMMAND_TEMPLATE, DEFAULT_MODEL
from sprint_autopilot.loop.boundary import PAUSE_AFTER_RETROSPECTIVE_FROM_EPIC
from sprint_autopilot.loop.failure import DEFAULT_MAX_FAILURES

DEFAULT_STATUS_FILE = Path("_bmad-output/implementation-artifacts/sprint-status.yaml")
DEFAULT_SCRIPT_DIR = Path(".scripts/bmad-auto")


@dataclass(slots=True)
class PathSettings:
    """Absolute locations of every file the loop reads or writes."""

    project_root: Path
    status_path: Path
    prompt_template_path: Path
    control_path: Path
    review_notice_path: Path
    log_dir: Path
    workflow_base: Path
    workflow_engine_path: Path
    project_config_path: Path

    @classmethod
    def for_project(
        cls,
        project_root: Path,
        *,
        status_file: Path = DEFAULT_STATUS_FILE,
        script_dir: Path = DEFAULT_SCRIPT_DIR,
    ) -> PathSettings:
        root = project_root.expanduser().resolve()
        scripts = script_dir if script_dir.is_absolute() else root / script_dir
        return cls(
            project_root=root,
            status_path=status_file if status_file.is_absolute() else root / status_file,
            prompt_template_path=scripts / "bmad-prompt.md",
            control_path=scripts / "control",
            review_notice_path=scripts / "epic-review-pending",
            log_dir=scripts / "logs",
            workflow_base=root / "_bmad" / "bmm" / "workflows" / "4-implementation",
            workflow_engine_path=root / "_bmad" / "core" / "tasks" / "workflow.xml",
            project_config_path=root / "_bmad" / "bmm" / "config.yaml",
        )


@dataclass(slots=True)
class LoopSettings:
    """Loop limits and pacing."""

    max_loops: int = 100
    max_failures: int = DEFAULT_MAX_FAILURES
    timeout_minutes: int = 90
    graceful_shutdown_seconds: float = 3.0
    pause_poll_seconds: float = 5.0
    settle_seconds: float = 1.0
    pause_from_epic: int = PAUSE_AFTER_RETROSPECTIVE_FROM_EPIC
    retry_default: bool = True
    dry_run: bool = False

    @property
    def timeout_seconds(self) -> int:
        return self.timeout_minutes * 60


@dataclass(slots=True)
class AgentSettings:
    """External agent command."""

    command_template: str = DEFAULT_COMMAND_TEMPLATE
    model: str = DEFAULT_MODEL

    @property
    def executable(self) -> str:
        parts = shlex.split(self.command_template)
        return parts[0] if parts else ""


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    paths: PathSettings = field(default_factory=lambda: PathSettings.for_project(Path.cwd()))
    loop: LoopSettings = field(default_factory=LoopSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)

    @classmethod
    def from_env(cls, project_root: Path | None = None) -> Settings:
        """Load settings from environment; unset variables keep the defaults."""

        root = project_root or Path(os.getenv("SPRINT_AUTOPILOT_PROJECT_ROOT", "."))
        return cls(
            paths=PathSettings.for_project(
                root,
                status_file=Path(
                    os.getenv("SPRINT_AUTOPILOT_STATUS_FILE", str(DEFAULT_STATUS_FILE)),
                ),
                script_dir=Path(
                    os.getenv("SPRINT_AUTOPILOT_SCRIPT_DIR", str(DEFAULT_SCRIPT_DIR)),
                ),
            ),
            loop=LoopSettings(
                max_loops=_env_int("SPRINT_AUTOPILOT_MAX_LOOPS", 100),
                max_failures=_env_int("SPRINT_AUTOPILOT_MAX_FAILURES", DEFAULT_MAX_FAILURES),
                timeout_minutes=_env_int("SPRINT_AUTOPILOT_TIMEOUT_MINS", 90),
                graceful_shutdown_seconds=_env_float(
                    "SPRINT_AUTOPILOT_GRACEFUL_SHUTDOWN_SECONDS",
                    3.0,
                ),
                pause_poll_seconds=_env_float("SPRINT_AUTOPILOT_PAUSE_POLL_SECONDS", 5.0),
                settle_seconds=_env_float("SPRINT_AUTOPILOT_SETTLE_SECONDS", 1.0),
                pause_from_epic=_env_int(
                    "SPRINT_AUTOPILOT_PAUSE_FROM_EPIC",
                    PAUSE_AFTER_RETROSPECTIVE_FROM_EPIC,
                ),
                retry_default=_env_bool("SPRINT_AUTOPILOT_RETRY_DEFAULT", default=True),
                dry_run=_env_bool("SPRINT_AUTOPILOT_DRY_RUN", default=False),
            ),
            agent=AgentSettings(
                command_template=os.getenv(
                    "SPRINT_AUTOPILOT_AGENT_COMMAND",
                    DEFAULT_COMMAND_TEMPLATE,
                ),
                model=os.getenv("SPRINT_AUTOPILOT_AGENT_MODEL", DEFAULT_MODEL),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for out-of-range values."""

        if self.loop.max_loops <= 0:
            raise ValueError("SPRINT_AUTOPILOT_MAX_LOOPS must be a positive integer.")
        if self.loop.timeout_minutes <= 0:
            raise ValueError("SPRINT_AUTOPILOT_TIMEOUT_MINS must be a positive integer.")
        if self.loop.max_failures <= 0:
            raise ValueError("SPRINT_AUTOPILOT_MAX_FAILURES must be a positive integer.")
        if self.loop.graceful_shutdown_seconds < 0:
            raise ValueError("SPRINT_AUTOPILOT_GRACEFUL_SHUTDOWN_SECONDS must be >= 0.")
        if self.loop.pause_poll_seconds <= 0:
            raise ValueError("SPRINT_AUTOPILOT_PAUSE_POLL_SECONDS must be > 0.")
        if self.loop.settle_seconds < 0:
            raise ValueError("SPRINT_AUTOPILOT_SETTLE_SECONDS must be >= 0.")
        if not self.agent.command_template.strip():
            raise ValueError("SPRINT_AUTOPILOT_AGENT_COMMAND must not be empty.")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from error

def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")

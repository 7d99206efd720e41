"""Controllers for autopilot CLI commands."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import date
from pathlib import Path

import rich_click as click

from sprint_autopilot.backend import CliAgentBackend, DryRunBackend, PromptContext
from sprint_autopilot.backend.base import AgentBackend
from sprint_autopilot.config import Settings
from sprint_autopilot.loop import AutopilotLoop, StatusStore, select_next_action
from sprint_autopilot.loop.control import ControlChannel
from sprint_autopilot.loop.failure import FailurePolicy
from sprint_autopilot.loop.models import ControlCommand
from sprint_autopilot.loop.summary import render_status_lines
from sprint_autopilot.prerequisites import MissingPrerequisiteError, check_prerequisites

PACKAGE_LOGGER = "sprint_autopilot"
RESUME_ACTION = "resume"

_LEVEL_COLORS = {
    logging.DEBUG: "bright_black",
    logging.INFO: "cyan",
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "red",
}


@dataclass(slots=True)
class AutopilotRunCommand:
    """CLI input for the autonomous loop."""

    project_root: Path | None
    dry_run: bool
    max_loops: int | None
    timeout_minutes: int | None
    color: bool = True
    confirm_retry: Callable[[str], bool] | None = None


@dataclass(slots=True)
class AutopilotStatusCommand:
    """CLI input for status and next-action inspection."""

    project_root: Path | None


@dataclass(slots=True)
class AutopilotControlCommand:
    """CLI input for writing the control file."""

    project_root: Path | None
    action: str


@dataclass(slots=True)
class AutopilotRunResult:
    """Final loop report to render in CLI."""

    lines: list[str]
    exit_code: int


class AutopilotCliController:
    """Wires settings, status store, control file and agent backend together."""

    def __init__(self, echo: Callable[[str], None] = click.echo) -> None:
        self.echo = echo

    def run(self, command: AutopilotRunCommand) -> AutopilotRunResult:
        settings = _run_settings(command)
        settings.validate()
        paths = settings.paths

        with _loop_logging(log_dir=paths.log_dir, color=command.color):
            logger = logging.getLogger(__name__)
            logger.info("Project root: %s", paths.project_root)
            logger.info("Status file: %s", paths.status_path)
            if settings.loop.dry_run:
                logger.warning("DRY RUN mode - no agent invocations will happen")
            try:
                check_prerequisites(settings)
            except MissingPrerequisiteError as error:
                logger.critical("%s", error)
                raise

            store = StatusStore(paths.status_path)
            loop = AutopilotLoop(
                store=store,
                control=ControlChannel(
                    paths.control_path,
                    notice_path=paths.review_notice_path,
                    poll_interval_seconds=settings.loop.pause_poll_seconds,
                ),
                backend=_backend(settings),
                failure_policy=FailurePolicy(
                    max_failures=settings.loop.max_failures,
                    confirm_retry=command.confirm_retry,
                    retry_default=settings.loop.retry_default,
                ),
                max_loops=settings.loop.max_loops,
                timeout_seconds=settings.loop.timeout_seconds,
                graceful_shutdown_seconds=settings.loop.graceful_shutdown_seconds,
                settle_seconds=settings.loop.settle_seconds,
                pause_from_epic=settings.loop.pause_from_epic,
                on_status_report=self._echo_status,
            )
            result = loop.run()

        state = result.state
        return AutopilotRunResult(
            lines=[
                f"Loop finished: reason={result.exit.value} iterations={state.iteration} "
                f"consecutive_failures={state.consecutive_failures}",
            ],
            exit_code=result.exit_code,
        )

    def status(self, command: AutopilotStatusCommand) -> list[str]:
        settings = Settings.from_env(project_root=command.project_root)
        mapping = StatusStore(settings.paths.status_path).read()
        return render_status_lines(mapping)

    def next_action(self, command: AutopilotStatusCommand) -> list[str]:
        settings = Settings.from_env(project_root=command.project_root)
        action = select_next_action(StatusStore(settings.paths.status_path).read())
        if action.kind.terminal:
            return [f"Next action: {action.kind.value}"]
        return [
            f"Next action: {action.kind.value} workflow={action.workflow} "
            f"key={action.target_key} status={action.observed_status}",
        ]

    def control(self, command: AutopilotControlCommand) -> list[str]:
        settings = Settings.from_env(project_root=command.project_root)
        channel = ControlChannel(settings.paths.control_path)
        action = command.action.strip().lower()
        if action == RESUME_ACTION:
            removed = channel.clear()
            if removed:
                return [f"Control file removed: {channel.path}"]
            return ["No control file present; the loop is not paused."]

        channel.write(ControlCommand(action))
        return [f"Control command '{action}' written to {channel.path}"]

    def _echo_status(self, mapping: Mapping[str, str]) -> None:
        for line in render_status_lines(mapping):
            self.echo(line)


def _run_settings(command: AutopilotRunCommand) -> Settings:
    settings = Settings.from_env(project_root=command.project_root)
    loop_settings = settings.loop
    if command.dry_run:
        loop_settings = replace(loop_settings, dry_run=True)
    if command.max_loops is not None:
        loop_settings = replace(loop_settings, max_loops=command.max_loops)
    if command.timeout_minutes is not None:
        loop_settings = replace(loop_settings, timeout_minutes=command.timeout_minutes)
    return replace(settings, loop=loop_settings)


def _backend(settings: Settings) -> AgentBackend:
    paths = settings.paths
    context = PromptContext(
        project_root=paths.project_root,
        status_path=paths.status_path,
        workflow_base=paths.workflow_base,
        workflow_engine_path=paths.workflow_engine_path,
        project_config_path=paths.project_config_path,
    )
    if settings.loop.dry_run:
        return DryRunBackend(prompt_template_path=paths.prompt_template_path, context=context)
    return CliAgentBackend(
        prompt_template_path=paths.prompt_template_path,
        context=context,
        log_dir=paths.log_dir,
        command_template=settings.agent.command_template,
        model=settings.agent.model,
    )


class _ConsoleFormatter(logging.Formatter):
    def __init__(self, *, color: bool) -> None:
        super().__init__("%(message)s")
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        label = f"[{record.levelname}]"
        if self.color:
            label = click.style(label, fg=_LEVEL_COLORS.get(record.levelno), bold=True)
        return f"{label} {message}"


@contextmanager
def _loop_logging(*, log_dir: Path, color: bool) -> Iterator[None]:
    """Attach console and daily-file handlers to the package logger for one run."""

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    log_dir.mkdir(parents=True, exist_ok=True)
    console = logging.StreamHandler()
    console.setFormatter(_ConsoleFormatter(color=color))
    file_handler = logging.FileHandler(
        log_dir / f"autopilot-{date.today().isoformat()}.log",
        encoding="utf-8",
    )
    file_handler.setFormatter(
        logging.Formatter("[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"),
    )
    previous_level = package_logger.level
    package_logger.setLevel(logging.DEBUG)
    console.setLevel(logging.INFO)
    package_logger.addHandler(console)
    package_logger.addHandler(file_handler)
    try:
        yield
    finally:
        package_logger.removeHandler(console)
        package_logger.removeHandler(file_handler)
        file_handler.close()
        package_logger.setLevel(previous_level)

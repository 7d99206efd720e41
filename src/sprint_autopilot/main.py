"""CLI entrypoint for sprint-autopilot."""

import sys
from pathlib import Path

import rich_click as click

from sprint_autopilot import __version__
from sprint_autopilot.controllers import (
    AutopilotCliController,
    AutopilotControlCommand,
    AutopilotRunCommand,
    AutopilotStatusCommand,
)
from sprint_autopilot.loop.store import StatusStoreError
from sprint_autopilot.prerequisites import MissingPrerequisiteError

click.rich_click.USE_MARKDOWN = True
AUTOPILOT_CONTROLLER = AutopilotCliController()

_PROJECT_ROOT_OPTION = click.option(
    "--project-root",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help=(
        "Project root holding the sprint status file. "
        "Defaults to SPRINT_AUTOPILOT_PROJECT_ROOT or the current directory."
    ),
)


@click.group()
@click.version_option(version=__version__, prog_name="sprint-autopilot")
def sprint_autopilot() -> None:
    """Autonomous sprint loop for a CLI coding agent."""


@sprint_autopilot.command("run")
@_PROJECT_ROOT_OPTION
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Render prompts and walk the loop without invoking the agent.",
)
@click.option(
    "--max-loops",
    type=click.IntRange(min=1),
    default=None,
    help="Safety cap on loop iterations (default 100).",
)
@click.option(
    "--timeout-mins",
    "timeout_minutes",
    type=click.IntRange(min=1),
    default=None,
    help="Per-workflow agent timeout in minutes (default 90).",
)
@click.option(
    "--no-color",
    is_flag=True,
    default=False,
    help="Disable colored console output.",
)
@click.option(
    "--non-interactive",
    is_flag=True,
    default=False,
    help="Never prompt; use the configured retry default after a failure.",
)
def run(  # noqa: PLR0913
    project_root: Path | None,
    dry_run: bool,
    max_loops: int | None,
    timeout_minutes: int | None,
    no_color: bool,
    non_interactive: bool,
) -> None:
    """Run the loop until the sprint is done, a limit is hit, or you stop it."""

    interactive = not non_interactive and sys.stdin.isatty()
    try:
        result = AUTOPILOT_CONTROLLER.run(
            AutopilotRunCommand(
                project_root=project_root,
                dry_run=dry_run,
                max_loops=max_loops,
                timeout_minutes=timeout_minutes,
                color=not no_color and sys.stderr.isatty(),
                confirm_retry=_confirm_retry if interactive else None,
            ),
        )
    except (MissingPrerequisiteError, StatusStoreError, ValueError) as error:
        raise click.ClickException(str(error)) from error

    _emit_lines(result.lines)
    if result.exit_code != 0:
        sys.exit(result.exit_code)


@sprint_autopilot.command("status")
@_PROJECT_ROOT_OPTION
def status(project_root: Path | None) -> None:
    """Print every status entry with its current state."""

    try:
        lines = AUTOPILOT_CONTROLLER.status(AutopilotStatusCommand(project_root=project_root))
    except StatusStoreError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@sprint_autopilot.command("next")
@_PROJECT_ROOT_OPTION
def next_action(project_root: Path | None) -> None:
    """Show the action the loop would take next, without running it."""

    try:
        lines = AUTOPILOT_CONTROLLER.next_action(
            AutopilotStatusCommand(project_root=project_root),
        )
    except StatusStoreError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@sprint_autopilot.command("control")
@_PROJECT_ROOT_OPTION
@click.argument(
    "action",
    type=click.Choice(["pause", "skip", "status", "resume"], case_sensitive=False),
)
def control(project_root: Path | None, action: str) -> None:
    """Send a command to a running loop through its control file."""

    _emit_lines(
        AUTOPILOT_CONTROLLER.control(
            AutopilotControlCommand(project_root=project_root, action=action),
        ),
    )


def _confirm_retry(question: str) -> bool:
    return click.confirm(question, default=True)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    sprint_autopilot()

"""Subprocess-based backend runner for CLI agents."""

from __future__ import annotations

import contextlib
import logging
import os
import shlex
import subprocess
import threading
import time
from datetime import datetime
from pathlib import Path

from sprint_autopilot.backend.base import (
    TIMEOUT_EXIT_CODE,
    BackendRunRequest,
    BackendRunResult,
)
from sprint_autopilot.backend.prompt import PromptContext, render_prompt

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TEMPLATE = (
    "claude -p --dangerously-skip-permissions --permission-mode bypassPermissions "
    "--model {model}"
)
DEFAULT_MODEL = "claude-opus-4-6"


class BackendRunError(RuntimeError):
    """Agent process could not be started."""


class _PromptingBackend:
    def __init__(self, *, prompt_template_path: Path, context: PromptContext) -> None:
        self.prompt_template_path = prompt_template_path
        self.context = context

    def build_prompt(self, request: BackendRunRequest) -> str:
        try:
            template = self.prompt_template_path.read_text("utf-8")
        except OSError as error:
            raise BackendRunError(
                f"Prompt template is not readable: {self.prompt_template_path}",
            ) from error
        return render_prompt(
            template,
            context=self.context,
            workflow=request.workflow,
            story_key=request.story_key,
            story_status=request.story_status,
        )


class CliAgentBackend(_PromptingBackend):
    """Pipe the rendered prompt into the agent CLI and wait with a deadline."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        prompt_template_path: Path,
        context: PromptContext,
        log_dir: Path,
        command_template: str = DEFAULT_COMMAND_TEMPLATE,
        model: str = DEFAULT_MODEL,
        poll_interval_seconds: float = 0.1,
    ) -> None:
        super().__init__(prompt_template_path=prompt_template_path, context=context)
        self.log_dir = log_dir
        self.command_template = command_template
        self.model = model
        self.poll_interval_seconds = poll_interval_seconds

    def run(self, request: BackendRunRequest) -> BackendRunResult:
        prompt = self.build_prompt(request)
        run_args = build_run_args(command_template=self.command_template, model=self.model)
        log_path = self.log_dir / _run_log_name(request)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(
            "Running workflow %s for %s (status: %s)",
            request.workflow,
            request.story_key,
            request.story_status,
        )
        env = os.environ.copy()
        env["SPRINT_AUTOPILOT_WORKFLOW"] = request.workflow
        env["SPRINT_AUTOPILOT_STORY_KEY"] = request.story_key

        try:
            with log_path.open("w", encoding="utf-8") as log_handle:
                result = _run_subprocess_with_deadline(
                    run_args=run_args,
                    env=env,
                    cwd=self.context.project_root,
                    prompt=prompt,
                    timeout_seconds=request.timeout_seconds,
                    graceful_shutdown_seconds=request.graceful_shutdown_seconds,
                    poll_interval_seconds=self.poll_interval_seconds,
                    log_handle=log_handle,
                )
        except FileNotFoundError as error:
            raise BackendRunError(f"Agent command not found: {run_args[0]}") from error
        except OSError as error:
            raise BackendRunError(f"Agent command failed to start: {error}") from error

        result.log_path = log_path
        if result.timed_out:
            logger.error(
                "Agent timed out after %ss (exit %s); it may have done real work "
                "before hanging, check the status file before retrying",
                request.timeout_seconds,
                TIMEOUT_EXIT_CODE,
            )
        elif result.exit_code != 0:
            logger.error(
                "Agent exited with code %s after %.0fs",
                result.exit_code,
                result.duration_seconds,
            )
        else:
            logger.info(
                "Workflow %s completed in %.0fs",
                request.workflow,
                result.duration_seconds,
            )
        logger.info("Agent output saved to: %s", log_path)
        return result


class DryRunBackend(_PromptingBackend):
    """Render the prompt, log a preview and report success without running anything."""

    preview_lines = 5

    def run(self, request: BackendRunRequest) -> BackendRunResult:
        prompt = self.build_prompt(request)
        logger.warning(
            "[DRY RUN] Would run workflow %s for %s (status: %s)",
            request.workflow,
            request.story_key,
            request.story_status,
        )
        for line in prompt.splitlines()[: self.preview_lines]:
            logger.warning("[DRY RUN]   > %s", line)
        return BackendRunResult(exit_code=0, timed_out=False)


def build_run_args(*, command_template: str, model: str) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise BackendRunError("Agent command template is empty.")
    try:
        rendered = stripped.format(model=shlex.quote(model))
    except (KeyError, IndexError) as error:
        raise BackendRunError(f"Unsupported command template placeholder: {error}") from error

    argv = shlex.split(rendered)
    if not argv:
        raise BackendRunError("Agent command template rendered empty command.")
    return argv


def _run_log_name(request: BackendRunRequest) -> str:
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    safe_key = request.story_key.replace(os.sep, "_")
    return f"run-{stamp}-{request.workflow}-{safe_key}.log"


def _run_subprocess_with_deadline(  # noqa: PLR0913
    *,
    run_args: list[str],
    env: dict[str, str],
    cwd: Path,
    prompt: str,
    timeout_seconds: int,
    graceful_shutdown_seconds: float,
    poll_interval_seconds: float,
    log_handle,
) -> BackendRunResult:
    process = subprocess.Popen(  # noqa: S603
        run_args,
        env=env,
        cwd=cwd,
        stdin=subprocess.PIPE,
        stdout=log_handle,
        stderr=subprocess.STDOUT,
        text=True,
        encoding="utf-8",
        # Terminal Ctrl-C stops the loop, never the in-flight agent.
        start_new_session=True,
    )
    start_monotonic = time.monotonic()
    # The deadline must hold even when the agent never drains a prompt larger
    # than the pipe buffer.
    writer = threading.Thread(
        target=_feed_stdin,
        args=(process, prompt),
        daemon=True,
        name="agent-stdin",
    )
    writer.start()

    while True:
        returncode = process.poll()
        elapsed = time.monotonic() - start_monotonic
        if returncode is not None:
            return BackendRunResult(
                exit_code=returncode,
                timed_out=False,
                duration_seconds=elapsed,
            )

        if elapsed >= timeout_seconds:
            _terminate_process(process, grace_seconds=graceful_shutdown_seconds)
            return BackendRunResult(
                exit_code=TIMEOUT_EXIT_CODE,
                timed_out=True,
                duration_seconds=time.monotonic() - start_monotonic,
            )

        time.sleep(poll_interval_seconds)


def _feed_stdin(process: subprocess.Popen[str], prompt: str) -> None:
    if process.stdin is None:
        return
    try:
        process.stdin.write(prompt)
    except OSError:
        logger.debug("Agent closed stdin before the prompt was fully written.")
    finally:
        with contextlib.suppress(OSError):
            process.stdin.close()


def _terminate_process(process: subprocess.Popen[str], *, grace_seconds: float) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait()

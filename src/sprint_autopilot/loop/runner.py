"""Main sprint loop: select, dispatch, interpret, repeat."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass

from sprint_autopilot.backend.base import AgentBackend, BackendRunRequest, BackendRunResult
from sprint_autopilot.backend.cli_backend import BackendRunError
from sprint_autopilot.loop.boundary import (
    PAUSE_AFTER_RETROSPECTIVE_FROM_EPIC,
    pause_after_retrospective,
    should_pause_at_boundary,
)
from sprint_autopilot.loop.control import ControlChannel
from sprint_autopilot.loop.failure import FailureDecision, FailurePolicy
from sprint_autopilot.loop.keys import (
    epic_of_retrospective_key,
    epic_of_story_key,
    is_story_key,
    retrospective_key_for,
)
from sprint_autopilot.loop.models import (
    RETROSPECTIVE_WORKFLOW,
    ActionDescriptor,
    ActionKind,
    ControlCommand,
    LoopExit,
    LoopState,
    StoryStatus,
)
from sprint_autopilot.loop.selector import select_next_action
from sprint_autopilot.loop.store import StatusStore
from sprint_autopilot.loop.summary import render_status_lines

logger = logging.getLogger(__name__)

START_FAILURE_EXIT_CODE = 127


@dataclass(slots=True)
class LoopResult:
    """Why the loop stopped and the state it stopped with."""

    exit: LoopExit
    state: LoopState

    @property
    def exit_code(self) -> int:
        return self.exit.exit_code


class AutopilotLoop:
    """Drives stories through their lifecycle one agent run at a time."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: StatusStore,
        control: ControlChannel,
        backend: AgentBackend,
        failure_policy: FailurePolicy,
        max_loops: int = 100,
        timeout_seconds: int = 90 * 60,
        graceful_shutdown_seconds: float = 3.0,
        settle_seconds: float = 1.0,
        pause_from_epic: int = PAUSE_AFTER_RETROSPECTIVE_FROM_EPIC,
        on_status_report: Callable[[Mapping[str, str]], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.control = control
        self.backend = backend
        self.failure_policy = failure_policy
        self.max_loops = max_loops
        self.timeout_seconds = timeout_seconds
        self.graceful_shutdown_seconds = graceful_shutdown_seconds
        self.settle_seconds = settle_seconds
        self.pause_from_epic = pause_from_epic
        self.on_status_report = on_status_report
        self._sleep = sleep
        self.state = LoopState()
        if self.control.stop_requested is None:
            self.control.stop_requested = lambda: self.state.interrupted

    def run(self) -> LoopResult:
        """Iterate until a terminal state is reached."""

        with self._signal_handlers():
            while True:
                loop_exit = self.step()
                if loop_exit is not None:
                    return LoopResult(exit=loop_exit, state=self.state)

    def step(self) -> LoopExit | None:
        """Run one iteration; returns the terminal state when the loop must stop."""

        state = self.state
        state.iteration += 1
        if state.iteration > self.max_loops:
            logger.warning("Reached max loop count (%s). Stopping.", self.max_loops)
            return LoopExit.MAX_LOOPS
        if state.interrupted:
            logger.warning("Gracefully stopped by user signal.")
            return LoopExit.INTERRUPTED

        command = self.control.poll()
        state.skip_requested = command is ControlCommand.SKIP
        if command is ControlCommand.STATUS:
            self._report_status(self.store.read())
        if state.interrupted:
            logger.warning("Gracefully stopped by user signal.")
            return LoopExit.INTERRUPTED

        mapping = self.store.read()
        action = select_next_action(mapping)
        logger.debug(
            "Next action: %s %s %s",
            action.kind.value,
            action.target_key,
            action.observed_status,
        )

        if action.kind is ActionKind.ALL_DONE:
            logger.info("Sprint complete. All stories done.")
            self._report_status(mapping)
            return LoopExit.ALL_DONE
        if action.kind is ActionKind.NONE:
            logger.warning("No actionable stories found in the status file.")
            self._report_status(mapping)
            return LoopExit.NO_ACTIONABLE
        if action.kind is ActionKind.CLOSING_PROMPT:
            return self._run_closing_prompt(action)

        if state.skip_requested:
            state.skip_requested = False
            logger.warning("Skipping story: %s", action.target_key)
            self.store.write(action.target_key, StoryStatus.BACKLOG.value)
            return None

        if self._cross_epic_boundary(action, mapping):
            return None

        return self._dispatch(action)

    def _run_closing_prompt(self, action: ActionDescriptor) -> LoopExit | None:
        epic = epic_of_retrospective_key(action.target_key)
        logger.info("All stories done! A retrospective is available: %s", action.target_key)
        result = self._execute(action)
        if not result.ok:
            if self.failure_policy.record_failure(self.state):
                return self._halt()
            logger.error("Retrospective %s failed.", action.target_key)
            return None

        self.failure_policy.record_success(self.state, action)
        self.store.write(action.target_key, StoryStatus.DONE.value)
        self._after_retrospective(epic)
        return None

    def _cross_epic_boundary(self, action: ActionDescriptor, mapping: Mapping[str, str]) -> bool:
        """Run the finished epic's retrospective; True when the loop must pause first."""

        key = action.target_key
        finished_epic = self.state.last_completed_epic
        if key is None or not is_story_key(key):
            return False
        if not should_pause_at_boundary(finished_epic, key, mapping):
            return False

        logger.info("Epic %s complete! Moving to epic %s", finished_epic, epic_of_story_key(key))
        retrospective_key = retrospective_key_for(finished_epic, mapping.keys())
        retrospective = ActionDescriptor(
            kind=ActionKind.CLOSING_PROMPT,
            target_key=retrospective_key,
            observed_status=mapping.get(retrospective_key),
        )
        logger.info("Running retrospective for epic %s autonomously...", finished_epic)
        if self._execute(retrospective).ok:
            self.store.write(retrospective_key, StoryStatus.DONE.value)
        else:
            logger.warning("Retrospective %s failed; continuing anyway.", retrospective_key)

        self.state.last_completed_epic = None
        return self._after_retrospective(finished_epic)

    def _after_retrospective(self, epic: int) -> bool:
        if pause_after_retrospective(epic, self.pause_from_epic):
            self.control.write_review_notice(
                f"Epic {epic} complete - autopilot paused for your review. "
                "Remove the control file to resume.",
            )
            self.control.request_pause()
            logger.warning(
                "Autopilot paused after epic %s. To resume, delete %s",
                epic,
                self.control.path,
            )
            return True

        self.control.write_review_notice(
            f"Epic {epic} complete - continuing automatically to epic {epic + 1}.",
        )
        logger.info("Epic %s done, continuing to epic %s.", epic, epic + 1)
        return False

    def _dispatch(self, action: ActionDescriptor) -> LoopExit | None:
        logger.info(
            "Loop #%s: workflow=%s story=%s status=%s",
            self.state.iteration,
            action.workflow,
            action.target_key,
            action.observed_status,
        )
        result = self._execute(action)
        if result.ok:
            self.failure_policy.record_success(self.state, action)
        else:
            decision = self.failure_policy.handle_failure(
                self.state,
                action,
                result,
                self.store,
            )
            if decision is FailureDecision.HALT:
                return self._halt()
            if decision is FailureDecision.RETRY:
                return None

        if self.settle_seconds > 0:
            self._sleep(self.settle_seconds)
        return None

    def _execute(self, action: ActionDescriptor) -> BackendRunResult:
        request = BackendRunRequest(
            action_kind=action.kind.value,
            workflow=action.workflow or RETROSPECTIVE_WORKFLOW,
            story_key=action.target_key or "",
            story_status=action.observed_status or "",
            timeout_seconds=self.timeout_seconds,
            graceful_shutdown_seconds=self.graceful_shutdown_seconds,
        )
        try:
            return self.backend.run(request)
        except BackendRunError as error:
            logger.error("Agent run failed to start: %s", error)
            return BackendRunResult(exit_code=START_FAILURE_EXIT_CODE, timed_out=False)

    def _halt(self) -> LoopExit:
        logger.critical(
            "SAFETY HALT: %s consecutive failures. Manual intervention required.",
            self.failure_policy.max_failures,
        )
        return LoopExit.HALTED_ON_FAILURES

    def _report_status(self, mapping: Mapping[str, str]) -> None:
        if self.on_status_report is not None:
            self.on_status_report(mapping)
            return
        for line in render_status_lines(mapping):
            logger.info("%s", line)

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(signal_name=name)

        installed = False
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            pass
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)

    def request_stop(self, *, signal_name: str = "manual") -> None:
        """Stop after the in-flight agent run finishes."""

        if not self.state.interrupted:
            logger.warning(
                "Interrupt received (%s); will stop after the current workflow completes.",
                signal_name,
            )
        self.state.interrupted = True

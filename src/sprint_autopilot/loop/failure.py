"""Consecutive-failure tracking and retry/skip/halt decisions."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

from sprint_autopilot.backend.base import BackendRunResult
from sprint_autopilot.loop.keys import epic_of_story_key, is_story_key
from sprint_autopilot.loop.models import ActionDescriptor, LoopState, StoryStatus, parse_status
from sprint_autopilot.loop.store import StatusStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_FAILURES = 3


class FailureDecision(str, Enum):
    """What the loop does after a failed agent run."""

    HALT = "halt"
    ACCEPT_ADVANCED = "accept_advanced"
    RETRY = "retry"
    PRESERVE = "preserve"
    REVERT = "revert"


def status_advanced(observed: str | None, current: str | None) -> bool:
    """True when the store shows a different status than the one dispatched."""

    if not current:
        return False
    observed_status = parse_status(observed)
    current_status = parse_status(current)
    if observed_status is not None and current_status is not None:
        return observed_status is not current_status
    return (observed or "").strip() != current.strip()


class FailurePolicy:
    """Decides between retry, skip and halt after each failed run.

    A failed run that already moved the story forward in the status file is
    never rolled back: the agent may have finished its work and then hung or
    crashed for unrelated reasons.
    """

    def __init__(
        self,
        *,
        max_failures: int = DEFAULT_MAX_FAILURES,
        confirm_retry: Callable[[str], bool] | None = None,
        retry_default: bool = True,
    ) -> None:
        self.max_failures = max_failures
        self.confirm_retry = confirm_retry
        self.retry_default = retry_default

    def record_success(self, state: LoopState, action: ActionDescriptor) -> None:
        state.consecutive_failures = 0
        state.last_timed_out = False
        if action.target_key is not None and is_story_key(action.target_key):
            state.last_completed_epic = epic_of_story_key(action.target_key)

    def record_failure(self, state: LoopState) -> bool:
        """Count one failure; True when the halt threshold is reached."""

        state.consecutive_failures += 1
        logger.error(
            "Workflow failed. Consecutive failures: %s/%s",
            state.consecutive_failures,
            self.max_failures,
        )
        return state.consecutive_failures >= self.max_failures

    def decide(
        self,
        state: LoopState,
        action: ActionDescriptor,
        result: BackendRunResult,
        current_status: str | None,
    ) -> FailureDecision:
        state.last_timed_out = result.timed_out
        if self.record_failure(state):
            return FailureDecision.HALT

        advanced = status_advanced(action.observed_status, current_status)
        if result.timed_out and advanced:
            logger.warning(
                "Timeout: %s was already advanced to '%s'; keeping it and moving on.",
                action.target_key,
                current_status,
            )
            state.consecutive_failures = 0
            return FailureDecision.ACCEPT_ADVANCED

        if self._ask_retry("Workflow failed. Retry this story?"):
            logger.info("Retrying %s", action.target_key)
            return FailureDecision.RETRY

        state.consecutive_failures = 0
        if advanced:
            logger.warning(
                "%s was advanced to '%s' during the workflow; preserving it.",
                action.target_key,
                current_status,
            )
            return FailureDecision.PRESERVE
        logger.warning("Skipping failed story %s (resetting to backlog)", action.target_key)
        return FailureDecision.REVERT

    def handle_failure(
        self,
        state: LoopState,
        action: ActionDescriptor,
        result: BackendRunResult,
        store: StatusStore,
    ) -> FailureDecision:
        """Decide against the persisted status and apply a revert when chosen."""

        current_status = store.get(action.target_key) if action.target_key else None
        decision = self.decide(state, action, result, current_status)
        if decision is FailureDecision.REVERT and action.target_key is not None:
            store.write(action.target_key, StoryStatus.BACKLOG.value)
        return decision

    def _ask_retry(self, question: str) -> bool:
        if self.confirm_retry is None:
            logger.info(
                "Non-interactive mode, using default answer: %s",
                "retry" if self.retry_default else "skip",
            )
            return self.retry_default
        return self.confirm_retry(question)

"""Domain models for the sprint loop."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class StoryStatus(str, Enum):
    """Lifecycle states persisted in the sprint status file."""

    BACKLOG = "backlog"
    READY_FOR_DEV = "ready-for-dev"
    IN_PROGRESS = "in-progress"
    REVIEW = "review"
    DONE = "done"
    OPTIONAL = "optional"


_STATUS_ALIASES: dict[str, StoryStatus] = {
    "ready": StoryStatus.READY_FOR_DEV,
}


def parse_status(value: str | None) -> StoryStatus | None:
    """Map persisted status text onto the closed status enum.

    Returns None for unknown text; callers decide how to report it.
    """

    if value is None:
        return None
    normalized = value.strip().lower()
    alias = _STATUS_ALIASES.get(normalized)
    if alias is not None:
        return alias
    try:
        return StoryStatus(normalized)
    except ValueError:
        return None


class ActionKind(str, Enum):
    """Next-action kinds computed by the selector."""

    RESUME_DEV = "resume-dev"
    REVIEW = "review"
    START_DEV = "start-dev"
    DRAFT = "draft"
    CLOSING_PROMPT = "closing-prompt"
    ALL_DONE = "all-done"
    NONE = "none"

    @property
    def terminal(self) -> bool:
        return self in {ActionKind.ALL_DONE, ActionKind.NONE}


ACTION_WORKFLOWS: dict[ActionKind, str] = {
    ActionKind.RESUME_DEV: "dev-story",
    ActionKind.START_DEV: "dev-story",
    ActionKind.REVIEW: "code-review",
    ActionKind.DRAFT: "create-story",
    ActionKind.CLOSING_PROMPT: "retrospective",
}

RETROSPECTIVE_WORKFLOW = ACTION_WORKFLOWS[ActionKind.CLOSING_PROMPT]


@dataclass(frozen=True, slots=True)
class ActionDescriptor:
    """One selector decision: what to run, on which key, from which status."""

    kind: ActionKind
    target_key: str | None = None
    observed_status: str | None = None

    @property
    def workflow(self) -> str | None:
        return ACTION_WORKFLOWS.get(self.kind)


class ControlCommand(str, Enum):
    """Operator commands read from the control file."""

    PAUSE = "pause"
    SKIP = "skip"
    STATUS = "status"


class LoopExit(str, Enum):
    """Terminal states of one loop run."""

    ALL_DONE = "all_done"
    NO_ACTIONABLE = "no_actionable"
    MAX_LOOPS = "max_loops"
    INTERRUPTED = "interrupted"
    HALTED_ON_FAILURES = "halted_on_failures"

    @property
    def exit_code(self) -> int:
        if self is LoopExit.HALTED_ON_FAILURES:
            return 2
        return 0


@dataclass(slots=True)
class LoopState:
    """Process-lifetime loop state, mutated only between iterations."""

    iteration: int = 0
    last_completed_epic: int | None = None
    consecutive_failures: int = 0
    interrupted: bool = False
    last_timed_out: bool = False
    skip_requested: bool = False

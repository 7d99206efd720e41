"""Sprint loop: action selection, boundaries, control file, failure policy."""

from sprint_autopilot.loop.models import (
    ActionDescriptor,
    ActionKind,
    ControlCommand,
    LoopExit,
    LoopState,
    StoryStatus,
)
from sprint_autopilot.loop.runner import AutopilotLoop, LoopResult
from sprint_autopilot.loop.selector import select_next_action
from sprint_autopilot.loop.store import StatusStore, StatusStoreError

__all__ = [
    "ActionDescriptor",
    "ActionKind",
    "AutopilotLoop",
    "ControlCommand",
    "LoopExit",
    "LoopResult",
    "LoopState",
    "StatusStore",
    "StatusStoreError",
    "StoryStatus",
    "select_next_action",
]

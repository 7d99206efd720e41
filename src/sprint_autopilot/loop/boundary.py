"""Epic boundary detection and retrospective pause policy."""

from __future__ import annotations

from collections.abc import Mapping

from sprint_autopilot.loop.keys import (
    epic_of_story_key,
    is_story_key,
    retrospective_key_for,
)
from sprint_autopilot.loop.models import StoryStatus, parse_status

# Epics numbered at or above this pause for operator review after their
# retrospective; earlier epics continue automatically.
PAUSE_AFTER_RETROSPECTIVE_FROM_EPIC = 2


def epic_is_complete(epic: int, mapping: Mapping[str, str]) -> bool:
    """True when every story of ``epic`` is done."""

    for key, value in mapping.items():
        if not is_story_key(key) or epic_of_story_key(key) != epic:
            continue
        if parse_status(value) is not StoryStatus.DONE:
            return False
    return True


def should_pause_at_boundary(
    last_completed_epic: int | None,
    next_story_key: str,
    mapping: Mapping[str, str],
) -> bool:
    """Decide whether moving to ``next_story_key`` crosses a finished epic.

    Fires only when the previous epic is fully done and its retrospective has
    not run yet, so the retrospective can happen before the next epic starts.
    """

    if last_completed_epic is None:
        return False
    if epic_of_story_key(next_story_key) == last_completed_epic:
        return False
    if not epic_is_complete(last_completed_epic, mapping):
        return False

    retrospective_key = retrospective_key_for(last_completed_epic, mapping.keys())
    return parse_status(mapping.get(retrospective_key)) is StoryStatus.OPTIONAL


def pause_after_retrospective(
    epic: int,
    threshold: int = PAUSE_AFTER_RETROSPECTIVE_FROM_EPIC,
) -> bool:
    return epic >= threshold

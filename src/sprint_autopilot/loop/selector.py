"""Next-action selection over the sprint status mapping."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from sprint_autopilot.loop.keys import is_retrospective_key, is_story_key, parse_story_key
from sprint_autopilot.loop.models import ActionDescriptor, ActionKind, StoryStatus, parse_status

logger = logging.getLogger(__name__)

# Highest priority first; the first story (in epic/story order) of the first
# populated tier wins.
PRIORITY_TIERS: tuple[tuple[StoryStatus, ActionKind], ...] = (
    (StoryStatus.IN_PROGRESS, ActionKind.RESUME_DEV),
    (StoryStatus.REVIEW, ActionKind.REVIEW),
    (StoryStatus.READY_FOR_DEV, ActionKind.START_DEV),
    (StoryStatus.BACKLOG, ActionKind.DRAFT),
)


def sorted_story_entries(mapping: Mapping[str, str]) -> list[tuple[str, str]]:
    """Story entries ordered by ``(epic, story)``; ties keep file order."""

    stories = [(key, value) for key, value in mapping.items() if is_story_key(key)]
    return sorted(stories, key=lambda entry: parse_story_key(entry[0]))


def select_next_action(mapping: Mapping[str, str]) -> ActionDescriptor:
    """Compute the single next action for a status mapping."""

    if not mapping:
        return ActionDescriptor(kind=ActionKind.NONE)

    stories = sorted_story_entries(mapping)
    first_by_status: dict[StoryStatus, tuple[str, str]] = {}
    unrecognized: list[str] = []
    for key, value in stories:
        status = parse_status(value)
        if status is None:
            unrecognized.append(key)
            continue
        first_by_status.setdefault(status, (key, value))

    for status, kind in PRIORITY_TIERS:
        entry = first_by_status.get(status)
        if entry is not None:
            return ActionDescriptor(kind=kind, target_key=entry[0], observed_status=entry[1])

    if unrecognized:
        logger.warning(
            "Stories with unrecognized status, nothing actionable: %s",
            ", ".join(unrecognized),
        )
        return ActionDescriptor(kind=ActionKind.NONE)

    for key, value in mapping.items():
        if is_retrospective_key(key) and parse_status(value) is StoryStatus.OPTIONAL:
            return ActionDescriptor(
                kind=ActionKind.CLOSING_PROMPT,
                target_key=key,
                observed_status=value,
            )

    return ActionDescriptor(kind=ActionKind.ALL_DONE)

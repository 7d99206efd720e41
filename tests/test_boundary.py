from __future__ import annotations

import allure

from sprint_autopilot.loop.boundary import (
    PAUSE_AFTER_RETROSPECTIVE_FROM_EPIC,
    epic_is_complete,
    pause_after_retrospective,
    should_pause_at_boundary,
)

pytestmark = [
    allure.epic("Sprint Loop"),
    allure.feature("Epic Boundaries"),
]

FINISHED_EPIC_ONE = {
    "epic-1": "done",
    "1-1-a": "done",
    "1-2-b": "done",
    "epic-1-retrospective": "optional",
    "epic-2": "backlog",
    "2-1-c": "backlog",
}


def test_no_pause_without_last_completed_epic() -> None:
    assert not should_pause_at_boundary(None, "2-1-c", FINISHED_EPIC_ONE)


def test_no_pause_when_next_story_is_in_same_epic() -> None:
    assert not should_pause_at_boundary(1, "1-3-d", FINISHED_EPIC_ONE)


def test_pause_when_epic_finished_and_retrospective_pending() -> None:
    assert should_pause_at_boundary(1, "2-1-c", FINISHED_EPIC_ONE)


def test_no_pause_when_previous_epic_has_open_story() -> None:
    mapping = {**FINISHED_EPIC_ONE, "1-3-late": "review"}

    assert not epic_is_complete(1, mapping)
    assert not should_pause_at_boundary(1, "2-1-c", mapping)


def test_no_pause_when_retrospective_already_done_or_missing() -> None:
    done = {**FINISHED_EPIC_ONE, "epic-1-retrospective": "done"}
    missing = {key: value for key, value in FINISHED_EPIC_ONE.items() if "retro" not in key}

    assert not should_pause_at_boundary(1, "2-1-c", done)
    assert not should_pause_at_boundary(1, "2-1-c", missing)


def test_closing_spelling_is_recognized() -> None:
    mapping = {"1-1-a": "done", "epic-1-closing": "optional", "2-1-b": "backlog"}

    assert should_pause_at_boundary(1, "2-1-b", mapping)


def test_pause_after_retrospective_threshold() -> None:
    assert PAUSE_AFTER_RETROSPECTIVE_FROM_EPIC == 2
    assert not pause_after_retrospective(1)
    assert pause_after_retrospective(2)
    assert pause_after_retrospective(7)
    assert not pause_after_retrospective(2, threshold=3)

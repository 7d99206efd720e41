"""Sprint status key parsing.

Story keys look like ``1-2-user-auth`` (epic 1, story 2). Epic keys look like
``epic-1`` and the per-epic retrospective entry like ``epic-1-retrospective``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import NamedTuple

MISSING_NUMBER = 9999
EPIC_PREFIX = "epic"
RETROSPECTIVE_SUFFIXES: tuple[str, ...] = ("retrospective", "closing")

_LEADING_NUMBER = re.compile(r"^(\d+)")
_STORY_KEY = re.compile(r"^\d+-\d+")
_EPIC_KEY = re.compile(rf"^{EPIC_PREFIX}-(\d+)$")
_RETROSPECTIVE_KEY = re.compile(
    rf"^{EPIC_PREFIX}-(\d+)-(?:{'|'.join(RETROSPECTIVE_SUFFIXES)})$",
)


class StoryNumbers(NamedTuple):
    epic: int
    story: int


def _leading_number(value: str) -> int:
    match = _LEADING_NUMBER.match(value)
    if match is None:
        return MISSING_NUMBER
    return int(match.group(1))


def parse_story_key(key: str) -> StoryNumbers:
    """Extract ``(epic, story)``; missing numerals become ``MISSING_NUMBER``."""

    epic = _leading_number(key)
    _, separator, remainder = key.partition("-")
    story = _leading_number(remainder) if separator else MISSING_NUMBER
    return StoryNumbers(epic=epic, story=story)


def is_story_key(key: str) -> bool:
    return _STORY_KEY.match(key) is not None


def is_epic_key(key: str) -> bool:
    return _EPIC_KEY.match(key) is not None


def is_retrospective_key(key: str) -> bool:
    return _RETROSPECTIVE_KEY.match(key) is not None


def epic_of_story_key(key: str) -> int:
    return parse_story_key(key).epic


def epic_of_retrospective_key(key: str) -> int:
    match = _RETROSPECTIVE_KEY.match(key)
    if match is None:
        return MISSING_NUMBER
    return int(match.group(1))


def retrospective_key_for(epic: int, keys: Iterable[str] = ()) -> str:
    """Return the retrospective key of an epic, preferring the spelling in use."""

    candidates = [f"{EPIC_PREFIX}-{epic}-{suffix}" for suffix in RETROSPECTIVE_SUFFIXES]
    present = set(keys)
    for candidate in candidates:
        if candidate in present:
            return candidate
    return candidates[0]

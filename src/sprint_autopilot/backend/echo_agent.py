"""Local stand-in agent for CLI backend integration tests and demos.

Reads the prompt from stdin, then advances the story named by
``SPRINT_AUTOPILOT_STORY_KEY`` one lifecycle step in the status file.
"""

from __future__ import annotations

import argparse
import os
import sys
import time
from pathlib import Path

from sprint_autopilot.loop.models import StoryStatus
from sprint_autopilot.loop.store import StatusStore

WORKFLOW_TRANSITIONS: dict[str, StoryStatus] = {
    "create-story": StoryStatus.READY_FOR_DEV,
    "dev-story": StoryStatus.REVIEW,
    "code-review": StoryStatus.DONE,
    "retrospective": StoryStatus.DONE,
}


def main(argv: list[str] | None = None) -> int:
    """Advance one story and exit with the requested code."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--status-file", required=True)
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--sleep-seconds", type=float, default=0.0)
    parser.add_argument("--no-advance", action="store_true")
    args = parser.parse_args(argv)

    prompt = sys.stdin.read()
    print(f"echo_agent received {len(prompt)} prompt chars")

    workflow = os.getenv("SPRINT_AUTOPILOT_WORKFLOW", "")
    story_key = os.getenv("SPRINT_AUTOPILOT_STORY_KEY", "")
    next_status = WORKFLOW_TRANSITIONS.get(workflow)
    if not args.no_advance and story_key and next_status is not None:
        StatusStore(Path(args.status_file)).write(story_key, next_status.value)
        print(f"{story_key} -> {next_status.value}")
    sys.stdout.flush()

    if args.sleep_seconds > 0:
        time.sleep(args.sleep_seconds)
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

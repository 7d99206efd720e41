"""Human-readable sprint status summary."""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping

from sprint_autopilot.loop.models import StoryStatus, parse_status

STATUS_ICONS: dict[StoryStatus, str] = {
    StoryStatus.DONE: "✅",
    StoryStatus.IN_PROGRESS: "🔄",
    StoryStatus.REVIEW: "🔍",
    StoryStatus.READY_FOR_DEV: "🚀",
    StoryStatus.BACKLOG: "📋",
    StoryStatus.OPTIONAL: "📝",
}
UNKNOWN_ICON = "?"


def render_status_lines(mapping: Mapping[str, str]) -> list[str]:
    if not mapping:
        return ["No development_status entries found."]

    lines = ["Sprint status summary:"]
    counts: Counter[str] = Counter()
    for key, value in mapping.items():
        status = parse_status(value)
        icon = STATUS_ICONS.get(status, UNKNOWN_ICON) if status is not None else UNKNOWN_ICON
        counts[status.value if status is not None else "unknown"] += 1
        lines.append(f"  {icon}  {key:<40} {value}")
    totals = ", ".join(f"{name}={count}" for name, count in sorted(counts.items()))
    lines.append(f"Totals: {totals}")
    return lines

"""Prompt template rendering for agent runs."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(slots=True)
class PromptContext:
    """Fixed project paths referenced by every rendered prompt."""

    project_root: Path
    status_path: Path
    workflow_base: Path
    workflow_engine_path: Path
    project_config_path: Path

    def workflow_path(self, workflow: str) -> Path:
        return self.workflow_base / workflow / "workflow.yaml"


def prompt_values(
    *,
    context: PromptContext,
    workflow: str,
    story_key: str,
    story_status: str,
) -> dict[str, str]:
    return {
        "WORKFLOW_NAME": workflow,
        "WORKFLOW_PATH": str(context.workflow_path(workflow)),
        "STORY_KEY": story_key,
        "STORY_STATUS": story_status,
        "PROJECT_ROOT": str(context.project_root),
        "SPRINT_STATUS_PATH": str(context.status_path),
        "WORKFLOW_ENGINE_PATH": str(context.workflow_engine_path),
        "BMM_CONFIG_PATH": str(context.project_config_path),
    }


def render_prompt(
    template: str,
    *,
    context: PromptContext,
    workflow: str,
    story_key: str,
    story_status: str,
) -> str:
    """Substitute ``{{PLACEHOLDER}}`` tokens; unknown tokens are left as-is."""

    rendered = template
    values = prompt_values(
        context=context,
        workflow=workflow,
        story_key=story_key,
        story_status=story_status,
    )
    for name, value in values.items():
        rendered = rendered.replace(f"{{{{{name}}}}}", value)
    if not rendered.endswith("\n"):
        rendered += "\n"
    return rendered

"""Agent backend implementations."""

from sprint_autopilot.backend.base import (
    TIMEOUT_EXIT_CODE,
    AgentBackend,
    BackendRunRequest,
    BackendRunResult,
)
from sprint_autopilot.backend.cli_backend import BackendRunError, CliAgentBackend, DryRunBackend
from sprint_autopilot.backend.prompt import PromptContext, render_prompt

__all__ = [
    "TIMEOUT_EXIT_CODE",
    "AgentBackend",
    "BackendRunError",
    "BackendRunRequest",
    "BackendRunResult",
    "CliAgentBackend",
    "DryRunBackend",
    "PromptContext",
    "render_prompt",
]

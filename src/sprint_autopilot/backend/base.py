"""Backend interface for agent workflow execution."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

TIMEOUT_EXIT_CODE = 124


@dataclass(slots=True)
class BackendRunRequest:
    """Inputs required to run one workflow for one status key."""

    action_kind: str
    workflow: str
    story_key: str
    story_status: str
    timeout_seconds: int
    graceful_shutdown_seconds: float = 3.0


@dataclass(slots=True)
class BackendRunResult:
    """Execution outcome from a backend runner."""

    exit_code: int
    timed_out: bool
    duration_seconds: float = 0.0
    log_path: Path | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class AgentBackend(Protocol):
    """Protocol implemented by backend runners."""

    def run(self, request: BackendRunRequest) -> BackendRunResult:
        """Run one workflow and block until it finishes or times out."""

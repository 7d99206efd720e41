from __future__ import annotations

from collections.abc import Callable, Mapping
from pathlib import Path

import allure

from sprint_autopilot.backend.base import BackendRunRequest, BackendRunResult
from sprint_autopilot.backend.cli_backend import BackendRunError
from sprint_autopilot.backend.echo_agent import WORKFLOW_TRANSITIONS
from sprint_autopilot.loop import AutopilotLoop, LoopExit, StatusStore
from sprint_autopilot.loop.control import ControlChannel
from sprint_autopilot.loop.failure import FailurePolicy

pytestmark = [
    allure.epic("Sprint Loop"),
    allure.feature("Main Loop"),
]

FAILED = BackendRunResult(exit_code=1, timed_out=False)
TIMED_OUT = BackendRunResult(exit_code=124, timed_out=True)


class ScriptedBackend:
    """In-process agent: optionally advances the story, then returns scripted results."""

    def __init__(
        self,
        store: StatusStore,
        *,
        results: list[BackendRunResult] | None = None,
        advance: bool = True,
        on_run: Callable[[BackendRunRequest], None] | None = None,
    ) -> None:
        self.store = store
        self.results = list(results or [])
        self.advance = advance
        self.on_run = on_run
        self.requests: list[BackendRunRequest] = []

    @property
    def calls(self) -> list[tuple[str, str]]:
        return [(request.workflow, request.story_key) for request in self.requests]

    def run(self, request: BackendRunRequest) -> BackendRunResult:
        self.requests.append(request)
        if self.on_run is not None:
            self.on_run(request)
        next_status = WORKFLOW_TRANSITIONS.get(request.workflow)
        if self.advance and next_status is not None:
            self.store.write(request.story_key, next_status.value)
        if self.results:
            return self.results.pop(0)
        return BackendRunResult(exit_code=0, timed_out=False)


class PauseRecorder:
    """Stands in for time.sleep while the control file says pause; resumes on first call."""

    def __init__(self, control_path: Path) -> None:
        self.control_path = control_path
        self.calls = 0

    def __call__(self, _: float) -> None:
        self.calls += 1
        self.control_path.unlink(missing_ok=True)


def _loop(  # noqa: PLR0913
    tmp_path: Path,
    store: StatusStore,
    backend: ScriptedBackend,
    *,
    max_loops: int = 50,
    confirm_retry: Callable[[str], bool] | None = None,
    on_status_report: Callable[[Mapping[str, str]], None] | None = None,
) -> tuple[AutopilotLoop, PauseRecorder]:
    control_path = tmp_path / "control"
    pause_recorder = PauseRecorder(control_path)
    loop = AutopilotLoop(
        store=store,
        control=ControlChannel(
            control_path,
            notice_path=tmp_path / "epic-review-pending",
            sleep=pause_recorder,
        ),
        backend=backend,
        failure_policy=FailurePolicy(max_failures=3, confirm_retry=confirm_retry),
        max_loops=max_loops,
        settle_seconds=0,
        on_status_report=on_status_report,
    )
    return loop, pause_recorder


def test_single_epic_runs_to_completion(
    tmp_path: Path,
    status_file: Callable[[dict[str, str]], Path],
) -> None:
    store = StatusStore(
        status_file(
            {
                "epic-1": "in-progress",
                "1-1-login": "backlog",
                "1-2-logout": "backlog",
                "epic-1-retrospective": "optional",
            },
        ),
    )
    backend = ScriptedBackend(store)
    loop, _ = _loop(tmp_path, store, backend)

    result = loop.run()

    assert result.exit is LoopExit.ALL_DONE
    assert result.exit_code == 0
    assert backend.calls == [
        ("create-story", "1-1-login"),
        ("dev-story", "1-1-login"),
        ("code-review", "1-1-login"),
        ("create-story", "1-2-logout"),
        ("dev-story", "1-2-logout"),
        ("code-review", "1-2-logout"),
        ("retrospective", "epic-1-retrospective"),
    ]
    assert store.read()["epic-1-retrospective"] == "done"
    notice = (tmp_path / "epic-review-pending").read_text("utf-8")
    assert "continuing automatically to epic 2" in notice
    assert not (tmp_path / "control").exists()


def test_boundary_after_first_epic_runs_retrospective_and_continues(
    tmp_path: Path,
    status_file: Callable[[dict[str, str]], Path],
) -> None:
    store = StatusStore(
        status_file(
            {
                "1-1-a": "review",
                "epic-1-retrospective": "optional",
                "2-1-b": "backlog",
                "epic-2-retrospective": "optional",
            },
        ),
    )
    backend = ScriptedBackend(store)
    loop, pause_recorder = _loop(tmp_path, store, backend, max_loops=2)

    result = loop.run()

    assert result.exit is LoopExit.MAX_LOOPS
    assert backend.calls == [
        ("code-review", "1-1-a"),
        ("retrospective", "epic-1-retrospective"),
        ("create-story", "2-1-b"),
    ]
    assert store.get("epic-1-retrospective") == "done"
    assert result.state.last_completed_epic == 2
    assert pause_recorder.calls == 0


def test_boundary_after_second_epic_pauses_before_next_story(
    tmp_path: Path,
    status_file: Callable[[dict[str, str]], Path],
) -> None:
    store = StatusStore(
        status_file(
            {
                "2-1-a": "review",
                "epic-2-retrospective": "optional",
                "3-1-b": "backlog",
            },
        ),
    )
    backend = ScriptedBackend(store)
    loop, pause_recorder = _loop(tmp_path, store, backend, max_loops=3)

    result = loop.run()

    assert result.exit is LoopExit.MAX_LOOPS
    assert backend.calls == [
        ("code-review", "2-1-a"),
        ("retrospective", "epic-2-retrospective"),
        ("create-story", "3-1-b"),
    ]
    assert pause_recorder.calls == 1
    notice = (tmp_path / "epic-review-pending").read_text("utf-8")
    assert "Epic 2 complete - autopilot paused" in notice


def test_closing_prompt_for_later_epic_requests_pause(
    tmp_path: Path,
    status_file: Callable[[dict[str, str]], Path],
) -> None:
    store = StatusStore(status_file({"2-1-a": "done", "epic-2-retrospective": "optional"}))
    backend = ScriptedBackend(store, advance=False)
    loop, pause_recorder = _loop(tmp_path, store, backend)

    result = loop.run()

    assert result.exit is LoopExit.ALL_DONE
    assert backend.calls == [("retrospective", "epic-2-retrospective")]
    assert store.get("epic-2-retrospective") == "done"
    assert pause_recorder.calls == 1


def test_skip_resets_selected_story_without_dispatch(
    tmp_path: Path,
    status_file: Callable[[dict[str, str]], Path],
) -> None:
    store = StatusStore(status_file({"1-1-a": "ready-for-dev", "1-2-b": "backlog"}))
    backend = ScriptedBackend(store)
    loop, _ = _loop(tmp_path, store, backend, max_loops=1)
    (tmp_path / "control").write_text("skip\n", "utf-8")

    result = loop.run()

    assert result.exit is LoopExit.MAX_LOOPS
    assert backend.calls == []
    assert store.get("1-1-a") == "backlog"
    assert not (tmp_path / "control").exists()


def test_status_command_reports_without_mutation(
    tmp_path: Path,
    status_file: Callable[[dict[str, str]], Path],
) -> None:
    path = status_file({"1-1-a": "done"})
    store = StatusStore(path)
    reports: list[dict[str, str]] = []
    loop, _ = _loop(
        tmp_path,
        store,
        ScriptedBackend(store),
        on_status_report=lambda mapping: reports.append(dict(mapping)),
    )
    (tmp_path / "control").write_text("STATUS", "utf-8")
    before = path.read_text("utf-8")

    result = loop.run()

    assert result.exit is LoopExit.ALL_DONE
    assert reports == [{"1-1-a": "done"}, {"1-1-a": "done"}]
    assert path.read_text("utf-8") == before


def test_halts_after_three_consecutive_failures(
    tmp_path: Path,
    status_file: Callable[[dict[str, str]], Path],
) -> None:
    store = StatusStore(status_file({"1-1-a": "ready-for-dev"}))
    backend = ScriptedBackend(store, results=[FAILED] * 5, advance=False)
    loop, _ = _loop(tmp_path, store, backend)

    result = loop.run()

    assert result.exit is LoopExit.HALTED_ON_FAILURES
    assert result.exit_code == 2
    assert len(backend.calls) == 3
    assert store.get("1-1-a") == "ready-for-dev"


def test_timeout_after_progress_is_accepted(
    tmp_path: Path,
    status_file: Callable[[dict[str, str]], Path],
) -> None:
    store = StatusStore(status_file({"1-1-a": "ready-for-dev"}))
    backend = ScriptedBackend(store, results=[TIMED_OUT])
    loop, _ = _loop(tmp_path, store, backend)

    result = loop.run()

    assert result.exit is LoopExit.ALL_DONE
    assert backend.calls == [("dev-story", "1-1-a"), ("code-review", "1-1-a")]
    assert result.state.consecutive_failures == 0


def test_declined_retry_reverts_story_to_backlog(
    tmp_path: Path,
    status_file: Callable[[dict[str, str]], Path],
) -> None:
    store = StatusStore(status_file({"1-1-a": "in-progress"}))
    backend = ScriptedBackend(store, results=[FAILED], advance=False)
    loop, _ = _loop(tmp_path, store, backend, max_loops=1, confirm_retry=lambda _: False)

    result = loop.run()

    assert result.exit is LoopExit.MAX_LOOPS
    assert store.get("1-1-a") == "backlog"
    assert result.state.consecutive_failures == 0


def test_declined_retry_preserves_advanced_story(
    tmp_path: Path,
    status_file: Callable[[dict[str, str]], Path],
) -> None:
    store = StatusStore(status_file({"1-1-a": "in-progress"}))
    backend = ScriptedBackend(store, results=[FAILED])
    loop, _ = _loop(tmp_path, store, backend, max_loops=1, confirm_retry=lambda _: False)

    loop.run()

    assert store.get("1-1-a") == "review"


def test_interrupt_finishes_current_run_then_stops(
    tmp_path: Path,
    status_file: Callable[[dict[str, str]], Path],
) -> None:
    store = StatusStore(status_file({"1-1-a": "backlog", "1-2-b": "backlog"}))
    loop_holder: list[AutopilotLoop] = []
    backend = ScriptedBackend(
        store,
        on_run=lambda _: loop_holder[0].request_stop(signal_name="SIGINT"),
    )
    loop, _ = _loop(tmp_path, store, backend)
    loop_holder.append(loop)

    result = loop.run()

    assert result.exit is LoopExit.INTERRUPTED
    assert backend.calls == [("create-story", "1-1-a")]
    assert store.get("1-1-a") == "ready-for-dev"


def test_empty_status_section_is_not_actionable(
    tmp_path: Path,
    status_file: Callable[[dict[str, str]], Path],
) -> None:
    store = StatusStore(status_file({}))
    loop, _ = _loop(tmp_path, store, ScriptedBackend(store))

    assert loop.run().exit is LoopExit.NO_ACTIONABLE


def test_failing_retrospective_counts_towards_halt(
    tmp_path: Path,
    status_file: Callable[[dict[str, str]], Path],
) -> None:
    store = StatusStore(status_file({"1-1-a": "done", "epic-1-retrospective": "optional"}))
    backend = ScriptedBackend(store, results=[FAILED] * 3, advance=False)
    loop, _ = _loop(tmp_path, store, backend)

    result = loop.run()

    assert result.exit is LoopExit.HALTED_ON_FAILURES
    assert backend.calls == [("retrospective", "epic-1-retrospective")] * 3


def test_agent_start_error_is_a_failed_run(
    tmp_path: Path,
    status_file: Callable[[dict[str, str]], Path],
) -> None:
    store = StatusStore(status_file({"1-1-a": "ready-for-dev"}))

    class BrokenBackend:
        def run(self, request: BackendRunRequest) -> BackendRunResult:
            raise BackendRunError("Agent command not found: claude")

    loop = AutopilotLoop(
        store=store,
        control=ControlChannel(tmp_path / "control"),
        backend=BrokenBackend(),
        failure_policy=FailurePolicy(max_failures=2),
        settle_seconds=0,
    )

    result = loop.run()

    assert result.exit is LoopExit.HALTED_ON_FAILURES
    assert result.state.consecutive_failures == 2


def test_undecodable_control_file_does_not_stop_the_loop(
    tmp_path: Path,
    status_file: Callable[[dict[str, str]], Path],
) -> None:
    store = StatusStore(status_file({"1-1-a": "done"}))
    loop, _ = _loop(tmp_path, store, ScriptedBackend(store))
    (tmp_path / "control").write_bytes(b"\xff\xfe\x00junk")

    assert loop.run().exit is LoopExit.ALL_DONE

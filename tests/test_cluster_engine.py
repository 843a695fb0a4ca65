from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest

from task_pod_runner import ClusterEngine, RunnerSettings
from task_pod_runner.execution import ApiError
from task_pod_runner.execution.types import (
    ExecutionRequest,
    ExecutionState,
    ExecutionUnitDescriptor,
    ExecutionUnitStatus,
    UnitHandle,
    UnitPhase,
    UnitSummary,
)


class _FakeClusterClient:
    """In-memory pods whose phases advance through a scripted sequence."""

    def __init__(
        self,
        phases: list[UnitPhase] | None = None,
        logs: str = "hello",
        create_error: ApiError | None = None,
        status_error: ApiError | None = None,
        logs_error: ApiError | None = None,
        delete_error: ApiError | None = None,
    ) -> None:
        self.phases = phases if phases is not None else [UnitPhase.PENDING, UnitPhase.SUCCEEDED]
        self.logs = logs
        self.create_error = create_error
        self.status_error = status_error
        self.logs_error = logs_error
        self.delete_error = delete_error
        self.created: list[ExecutionUnitDescriptor] = []
        self.deleted: list[str] = []
        self.calls: list[str] = []
        self._polls: dict[str, int] = {}
        self._lock = threading.Lock()

    def create(self, descriptor: ExecutionUnitDescriptor) -> UnitHandle:
        self.calls.append("create")
        if self.create_error is not None:
            raise self.create_error
        with self._lock:
            self.created.append(descriptor)
            self._polls[descriptor.name] = 0
        return UnitHandle(name=descriptor.name, namespace="default")

    def get_status(self, name: str) -> ExecutionUnitStatus:
        self.calls.append("get_status")
        if self.status_error is not None:
            raise self.status_error
        with self._lock:
            index = self._polls[name]
            self._polls[name] = index + 1
        if index < len(self.phases):
            return ExecutionUnitStatus(self.phases[index])
        return ExecutionUnitStatus(self.phases[-1] if self.phases else UnitPhase.RUNNING)

    def get_logs(self, name: str) -> str:
        self.calls.append("get_logs")
        if self.logs_error is not None:
            raise self.logs_error
        descriptor = next(d for d in self.created if d.name == name)
        return self.logs or descriptor.command

    def delete(self, name: str) -> None:
        self.calls.append("delete")
        with self._lock:
            self.deleted.append(name)
        if self.delete_error is not None:
            raise self.delete_error

    def list(self, label_selector: str) -> list[UnitSummary]:
        alive = [d for d in self.created if d.name not in self.deleted]
        return [UnitSummary(d.name, UnitPhase.RUNNING, None) for d in alive]


class _RecordingSleep:
    """Fake sleep that also drives a fake monotonic clock."""

    def __init__(self) -> None:
        self.total = 0.0
        self.calls = 0
        self.now = 0.0

    def __call__(self, seconds: float) -> None:
        self.total += seconds
        self.calls += 1
        self.now += seconds

    def monotonic(self) -> float:
        return self.now


def _engine(client: _FakeClusterClient, **settings_kwargs) -> tuple[ClusterEngine, _RecordingSleep]:
    sleep = _RecordingSleep()
    settings = RunnerSettings(**settings_kwargs)
    return ClusterEngine(client=client, settings=settings, sleep=sleep, monotonic=sleep.monotonic), sleep


def test_successful_command_returns_logs_and_deletes_pod() -> None:
    client = _FakeClusterClient(logs="hello")
    engine, sleep = _engine(client)

    result = engine.execute(ExecutionRequest("64f1c2", "echo hello"))

    assert result.output == "hello"
    assert len(client.created) == 1
    assert client.deleted == [client.created[0].name]
    assert sleep.calls == 1
    assert result.start_time <= result.end_time
    assert result.start_time.tzinfo is timezone.utc


def test_logs_are_fetched_before_delete() -> None:
    client = _FakeClusterClient()
    engine, _ = _engine(client)

    engine.execute(ExecutionRequest("64f1c2", "echo hello"))

    assert client.calls[-2:] == ["get_logs", "delete"]


def test_failed_command_reports_marker_and_logs() -> None:
    client = _FakeClusterClient(phases=[UnitPhase.RUNNING, UnitPhase.FAILED], logs="sh: nope: not found")
    engine, _ = _engine(client)

    result = engine.execute(ExecutionRequest("64f1c2", "nope"))

    assert result.output == "Pod execution failed. Logs: sh: nope: not found"
    assert client.deleted == [client.created[0].name]


def test_timeout_reports_budget_and_still_deletes() -> None:
    client = _FakeClusterClient(phases=[UnitPhase.RUNNING])
    engine, sleep = _engine(client, poll_interval_seconds=2, max_wait_seconds=10)

    result = engine.execute(ExecutionRequest("64f1c2", "sleep 600"))

    assert result.output == "Pod execution timed out after 10 seconds"
    assert client.calls.count("get_status") == 5
    assert sleep.total == 10
    assert "get_logs" not in client.calls
    assert client.deleted == [client.created[0].name]


def test_default_budget_is_sixty_seconds_at_two_second_interval() -> None:
    client = _FakeClusterClient(phases=[UnitPhase.PENDING])
    engine, sleep = _engine(client)

    result = engine.execute(ExecutionRequest("64f1c2", "sleep 600"))

    assert "timed out after 60 seconds" in result.output
    assert sleep.calls == 30


def test_unknown_phase_keeps_polling() -> None:
    client = _FakeClusterClient(phases=[UnitPhase.UNKNOWN, UnitPhase.UNKNOWN, UnitPhase.SUCCEEDED])
    engine, sleep = _engine(client)

    result = engine.execute(ExecutionRequest("64f1c2", "echo hello"))

    assert result.output == "hello"
    assert sleep.calls == 2


def test_slow_status_calls_count_against_budget() -> None:
    sleep = _RecordingSleep()

    class _SlowStatusClient(_FakeClusterClient):
        def get_status(self, name: str) -> ExecutionUnitStatus:
            sleep.now += 0.3
            return super().get_status(name)

    client = _SlowStatusClient(phases=[UnitPhase.RUNNING])
    settings = RunnerSettings(poll_interval_seconds=0.1, max_wait_seconds=1)
    engine = ClusterEngine(client=client, settings=settings, sleep=sleep, monotonic=sleep.monotonic)

    result = engine.execute(ExecutionRequest("64f1c2", "sleep 600"))

    assert result.output == "Pod execution timed out after 1 seconds"
    assert client.calls.count("get_status") == 3
    assert sleep.now <= 1 + 0.3 + 1e-9
    assert client.deleted == [client.created[0].name]


def test_last_sleep_is_cut_short_at_deadline() -> None:
    client = _FakeClusterClient(phases=[UnitPhase.RUNNING])
    engine, sleep = _engine(client, poll_interval_seconds=2, max_wait_seconds=3)

    result = engine.execute(ExecutionRequest("64f1c2", "sleep 600"))

    assert result.output == "Pod execution timed out after 3 seconds"
    assert client.calls.count("get_status") == 2
    assert sleep.total == 3


def test_rejected_submission_returns_error_without_delete() -> None:
    client = _FakeClusterClient(create_error=ApiError("(403) Forbidden", status=403))
    engine, _ = _engine(client)

    result = engine.execute(ExecutionRequest("64f1c2", "echo hello"))

    assert result.output == "Error executing command in Kubernetes pod: (403) Forbidden"
    assert client.deleted == []
    assert "get_status" not in client.calls


def test_status_error_while_polling_still_deletes() -> None:
    client = _FakeClusterClient(status_error=ApiError("(500) Internal Server Error", status=500))
    engine, _ = _engine(client)

    result = engine.execute(ExecutionRequest("64f1c2", "echo hello"))

    assert "Error executing command in Kubernetes pod" in result.output
    assert client.deleted == [client.created[0].name]


def test_log_fetch_failure_is_reported_in_output() -> None:
    client = _FakeClusterClient(logs_error=ApiError("(404) Not Found", status=404))
    engine, _ = _engine(client)

    result = engine.execute(ExecutionRequest("64f1c2", "echo hello"))

    assert result.output == "Failed to retrieve pod logs: (404) Not Found"
    assert len(client.deleted) == 1


@pytest.mark.parametrize(
    "delete_error",
    [ApiError("(404) Not Found", status=404), ApiError("(500) boom", status=500)],
)
def test_delete_failure_does_not_change_result(delete_error: ApiError) -> None:
    client = _FakeClusterClient(delete_error=delete_error)
    engine, _ = _engine(client)

    result = engine.execute(ExecutionRequest("64f1c2", "echo hello"))

    assert result.output == "hello"
    assert len(client.deleted) == 1


def test_unexpected_client_error_is_flattened_into_output() -> None:
    class _BrokenClient(_FakeClusterClient):
        def get_status(self, name: str) -> ExecutionUnitStatus:
            raise KeyError("boom")

    client = _BrokenClient()
    engine, _ = _engine(client)

    result = engine.execute(ExecutionRequest("64f1c2", "echo hello"))

    assert result.output.startswith("Unexpected error:")
    assert len(client.deleted) == 1


def test_unexpected_error_is_tagged_separately_from_api_errors(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    class _BrokenClient(_FakeClusterClient):
        def get_status(self, name: str) -> ExecutionUnitStatus:
            raise KeyError("boom")

    monkeypatch.setattr(logging.getLogger("task_pod_runner"), "propagate", True)
    caplog.set_level(logging.INFO, logger="task_pod_runner.execution.cluster_engine")
    engine, _ = _engine(_BrokenClient())

    engine.execute(ExecutionRequest("64f1c2", "echo hello"))

    finished = [r.getMessage() for r in caplog.records if "finished in state" in r.getMessage()]
    assert len(finished) == 1
    assert finished[0].endswith(f"finished in state {ExecutionState.UNEXPECTED_ERROR.value}")


def test_same_task_twice_gets_distinct_pod_names() -> None:
    client = _FakeClusterClient()
    engine, _ = _engine(client)

    engine.execute(ExecutionRequest("64f1c2", "echo hello"))
    engine.execute(ExecutionRequest("64f1c2", "echo hello"))

    names = [d.name for d in client.created]
    assert len(set(names)) == 2
    assert all(name.startswith("task-execution-64f1c2-") for name in names)
    assert client.list(engine.settings.label_selector) == []


def test_concurrent_invocations_are_independent() -> None:
    client = _FakeClusterClient(logs="")
    engine, _ = _engine(client)
    task_ids = [f"task-{i}" for i in range(8)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda t: engine.execute(ExecutionRequest(t, f"echo {t}")), task_ids))

    assert [r.output for r in results] == [f"echo {t}" for t in task_ids]
    assert len({d.name for d in client.created}) == 8
    assert sorted(client.deleted) == sorted(d.name for d in client.created)


def test_clock_is_used_for_start_and_end() -> None:
    ticks = iter(
        [datetime(2024, 1, 1, 0, 0, 0, tzinfo=timezone.utc), datetime(2024, 1, 1, 0, 0, 4, tzinfo=timezone.utc)]
    )
    client = _FakeClusterClient()
    engine = ClusterEngine(client=client, sleep=lambda _: None, clock=lambda: next(ticks))

    result = engine.execute(ExecutionRequest("64f1c2", "echo hello"))

    assert (result.end_time - result.start_time).total_seconds() == 4


def test_list_units_renders_report() -> None:
    class _ListingClient(_FakeClusterClient):
        def list(self, label_selector: str) -> list[UnitSummary]:
            self.selector = label_selector
            return [
                UnitSummary(
                    "task-execution-a-1",
                    UnitPhase.RUNNING,
                    datetime(2024, 1, 1, tzinfo=timezone.utc),
                ),
                UnitSummary("task-execution-b-2", UnitPhase.SUCCEEDED, None),
            ]

    client = _ListingClient()
    engine, _ = _engine(client)

    report = engine.list_units()

    assert client.selector == "app=task-execution,created-by=task-pod-runner"
    assert report == (
        "Task Execution Pods:\n"
        "- task-execution-a-1 (Phase: Running, Created: 2024-01-01T00:00:00+00:00)\n"
        "- task-execution-b-2 (Phase: Succeeded, Created: unknown)\n"
    )


def test_list_units_with_no_pods_has_empty_body() -> None:
    engine, _ = _engine(_FakeClusterClient())
    assert engine.list_units() == "Task Execution Pods:\n"


def test_list_units_error_is_returned_as_text() -> None:
    class _ListErrorClient(_FakeClusterClient):
        def list(self, label_selector: str) -> list[UnitSummary]:
            raise ApiError("(401) Unauthorized", status=401)

    engine, _ = _engine(_ListErrorClient())
    assert engine.list_units() == "Error listing task pods: (401) Unauthorized"


def test_cleanup_stale_removes_only_finished_pods() -> None:
    class _StaleClient(_FakeClusterClient):
        def list(self, label_selector: str) -> list[UnitSummary]:
            return [
                UnitSummary("done", UnitPhase.SUCCEEDED),
                UnitSummary("broken", UnitPhase.FAILED),
                UnitSummary("busy", UnitPhase.RUNNING),
            ]

    client = _StaleClient()
    engine, _ = _engine(client)

    summary = engine.cleanup_stale()

    assert summary.removed_units == 2
    assert summary.failed_units == 0
    assert client.deleted == ["done", "broken"]

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable

from ..settings import RunnerSettings
from .client import ApiError, ClusterClient
from .spec_builder import build_descriptor, next_submission_millis
from .types import (
    CleanupSummary,
    ExecutionRequest,
    ExecutionResult,
    ExecutionState,
    TerminalOutcome,
    UnitPhase,
)

LOG = logging.getLogger(__name__)

LISTING_HEADER = "Task Execution Pods:\n"


def utc_now() -> datetime:
    """Return the current timezone-aware UTC time.

    Example:
        ```python
        started = utc_now()
        ```
    """
    return datetime.now(timezone.utc)


def format_listing(rows: list[tuple[str, str, str]]) -> str:
    """Render (name, phase, created) rows as the unit listing report.

    Example:
        ```python
        text = format_listing([("task-execution-a-1", "Running", "2024-01-01T00:00:00+00:00")])
        ```
    """
    body = "".join(f"- {name} (Phase: {phase}, Created: {created})\n" for name, phase, created in rows)
    return LISTING_HEADER + body


class ClusterEngine:
    """Run each command in its own short-lived pod and always remove the pod.

    The lifecycle is submit, poll at a fixed interval up to the wait budget,
    fetch logs on a terminal phase, then delete. `execute` never raises:
    API rejections, timeouts and command failures all end up as text in the
    returned result.

    Example:
        ```python
        engine = ClusterEngine(client=KubernetesClient(namespace="default", api=api))
        result = engine.execute(ExecutionRequest("64f1c2", "echo hello"))
        ```
    """

    def __init__(
        self,
        *,
        client: ClusterClient,
        settings: RunnerSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        """Wire the engine to a cluster client and deployment settings.

        `sleep` and `monotonic` drive the wait budget; `clock` stamps results.

        Example:
            ```python
            engine = ClusterEngine(client=fake_client, sleep=lambda _: None)
            ```
        """
        self._client = client
        self._settings = settings or RunnerSettings()
        self._sleep = sleep
        self._clock = clock
        self._monotonic = monotonic

    @property
    def settings(self) -> RunnerSettings:
        """Return the settings this engine was built with.

        Example:
            ```python
            budget = engine.settings.max_wait_seconds
            ```
        """
        return self._settings

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Run one command to a terminal state and return its result.

        Example:
            ```python
            result = engine.execute(ExecutionRequest(task_id="64f1c2", command="echo hello"))
            ```
        """
        start_time = self._clock()
        descriptor = build_descriptor(
            request.task_id,
            request.command,
            self._settings,
            submitted_at_ms=next_submission_millis(),
        )
        created = False
        try:
            try:
                LOG.debug("Pod %s %s", descriptor.name, ExecutionState.SUBMITTED.value)
                self._client.create(descriptor)
            except ApiError as exc:
                LOG.error("Failed to create pod %s: %s", descriptor.name, exc)
                outcome = TerminalOutcome(
                    ExecutionState.SUBMISSION_ERROR,
                    f"Error executing command in Kubernetes pod: {exc}",
                )
            else:
                created = True
                LOG.info("Created pod: %s", descriptor.name)
                outcome = self._await_completion(descriptor.name)
        except Exception as exc:  # noqa: BLE001
            LOG.exception("Unexpected error while executing command in pod %s", descriptor.name)
            outcome = TerminalOutcome(ExecutionState.UNEXPECTED_ERROR, f"Unexpected error: {exc}")
        finally:
            if created:
                self._delete(descriptor.name)

        LOG.info("Pod %s finished in state %s", descriptor.name, outcome.state.value)
        return ExecutionResult(start_time=start_time, end_time=self._clock(), output=outcome.output)

    def list_units(self) -> str:
        """Render a report of the units currently labeled as ours.

        Example:
            ```python
            print(engine.list_units())
            ```
        """
        try:
            units = self._client.list(self._settings.label_selector)
        except ApiError as exc:
            LOG.error("Failed to list task pods: %s", exc)
            return f"Error listing task pods: {exc}"
        rows: list[tuple[str, str, str]] = []
        for unit in units:
            if unit.phase.is_terminal:
                LOG.warning("Pod %s is %s but was not cleaned up", unit.name, unit.phase.value)
            created = unit.created_at.isoformat() if unit.created_at else "unknown"
            rows.append((unit.name, unit.phase.value, created))
        return format_listing(rows)

    def cleanup_stale(self) -> CleanupSummary:
        """Delete labeled units left behind in a terminal phase.

        Running and pending units are left alone.

        Example:
            ```python
            summary = engine.cleanup_stale()
            ```
        """
        removed = 0
        failed = 0
        for unit in self._client.list(self._settings.label_selector):
            if not unit.phase.is_terminal:
                continue
            try:
                self._client.delete(unit.name)
            except ApiError as exc:
                if exc.not_found:
                    continue
                LOG.warning("Failed to delete pod %s: %s", unit.name, exc)
                failed += 1
            else:
                LOG.info("Deleted stale pod: %s", unit.name)
                removed += 1
        return CleanupSummary(removed_units=removed, failed_units=failed)

    def _await_completion(self, name: str) -> TerminalOutcome:
        """Poll the unit until it reaches a terminal phase or the budget runs out.

        The budget is wall-clock time measured from the first poll, so slow
        status calls count against it. The last sleep is shortened to end at
        the deadline.

        Example:
            ```python
            outcome = engine._await_completion("task-execution-abc-1700000000000")
            ```
        """
        interval = self._settings.poll_interval_seconds
        budget = self._settings.max_wait_seconds
        deadline = self._monotonic() + budget
        LOG.debug("Pod %s %s every %gs for up to %gs", name, ExecutionState.POLLING.value, interval, budget)
        while self._monotonic() < deadline:
            try:
                phase = self._client.get_status(name).phase
            except ApiError as exc:
                LOG.error("Kubernetes API error while polling pod %s: %s", name, exc)
                return TerminalOutcome(
                    ExecutionState.API_ERROR,
                    f"Error executing command in Kubernetes pod: {exc}",
                )
            LOG.debug("Pod %s phase: %s", name, phase.value)
            if phase is UnitPhase.SUCCEEDED:
                return TerminalOutcome(ExecutionState.COMPLETED, self._logs(name))
            if phase is UnitPhase.FAILED:
                return TerminalOutcome(
                    ExecutionState.COMMAND_FAILED,
                    f"Pod execution failed. Logs: {self._logs(name)}",
                )
            remaining = deadline - self._monotonic()
            if remaining <= 0:
                break
            self._sleep(min(interval, remaining))
        return TerminalOutcome(
            ExecutionState.TIMED_OUT,
            f"Pod execution timed out after {budget:g} seconds",
        )

    def _logs(self, name: str) -> str:
        """Fetch unit logs, turning retrieval failures into text.

        Example:
            ```python
            logs = engine._logs("task-execution-abc-1700000000000")
            ```
        """
        try:
            return self._client.get_logs(name)
        except ApiError as exc:
            LOG.error("Failed to get pod logs for %s: %s", name, exc)
            return f"Failed to retrieve pod logs: {exc}"

    def _delete(self, name: str) -> None:
        """Delete the unit once; failures are logged, never raised.

        Example:
            ```python
            engine._delete("task-execution-abc-1700000000000")
            ```
        """
        try:
            self._client.delete(name)
        except ApiError as exc:
            if exc.not_found:
                LOG.info("Pod %s was already gone", name)
                return
            LOG.warning("Failed to delete pod %s: %s", name, exc)
        except Exception:  # noqa: BLE001
            LOG.exception("Unexpected error while deleting pod %s", name)
        else:
            LOG.info("Deleted pod: %s", name)

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class UnitPhase(str, Enum):
    """Lifecycle phase of an execution unit as reported by the cluster."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"

    @classmethod
    def from_raw(cls, value: str | None) -> "UnitPhase":
        """Map a raw platform phase string to a known phase.

        Example:
            ```python
            phase = UnitPhase.from_raw("Succeeded")
            ```
        """
        for phase in cls:
            if phase.value == value:
                return phase
        return cls.UNKNOWN

    @property
    def is_terminal(self) -> bool:
        """Return True when the unit will not change phase again.

        Example:
            ```python
            done = UnitPhase.FAILED.is_terminal
            ```
        """
        return self in {UnitPhase.SUCCEEDED, UnitPhase.FAILED}


class ExecutionState(str, Enum):
    """Orchestrator lifecycle state for one invocation."""

    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    COMMAND_FAILED = "command_failed"
    TIMED_OUT = "timed_out"
    SUBMISSION_ERROR = "submission_error"
    API_ERROR = "api_error"
    UNEXPECTED_ERROR = "unexpected_error"


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """Command to run on behalf of one task.

    Example:
        ```python
        req = ExecutionRequest(task_id="64f1c2", command="echo hello")
        ```
    """

    task_id: str
    command: str


@dataclass(frozen=True, slots=True)
class ExecutionUnitDescriptor:
    """Everything needed to submit one single-container execution unit.

    Example:
        ```python
        desc = build_descriptor("64f1c2", "echo hi", RunnerSettings(), submitted_at_ms=1700000000000)
        ```
    """

    name: str
    labels: dict[str, str]
    command: str
    image: str
    container_name: str
    cpu_request: str
    cpu_limit: str
    memory_request: str
    memory_limit: str
    restart_policy: str = "Never"

    @property
    def argv(self) -> list[str]:
        """Return the container entrypoint running the command through a shell.

        Example:
            ```python
            desc.argv  # ["/bin/sh", "-c", "echo hi"]
            ```
        """
        return ["/bin/sh", "-c", self.command]


@dataclass(frozen=True, slots=True)
class UnitHandle:
    """Reference to a unit accepted by the cluster.

    Example:
        ```python
        handle = UnitHandle(name="task-execution-abc-1700000000000", namespace="default")
        ```
    """

    name: str
    namespace: str


@dataclass(frozen=True, slots=True)
class ExecutionUnitStatus:
    """Observed status of a unit.

    Example:
        ```python
        status = ExecutionUnitStatus(UnitPhase.RUNNING)
        ```
    """

    phase: UnitPhase


@dataclass(frozen=True, slots=True)
class UnitSummary:
    """One row of a unit listing.

    Example:
        ```python
        row = UnitSummary("task-execution-abc-1", UnitPhase.RUNNING, None)
        ```
    """

    name: str
    phase: UnitPhase
    created_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class CleanupSummary:
    """Result summary from removing leaked units.

    Example:
        ```python
        summary = CleanupSummary(removed_units=2, failed_units=0)
        ```
    """

    removed_units: int
    failed_units: int


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Value returned for every invocation, including failed ones.

    Example:
        ```python
        result = ExecutionResult(start, end, "hello")
        ```
    """

    start_time: datetime
    end_time: datetime
    output: str


@dataclass(frozen=True, slots=True)
class TerminalOutcome:
    """Tagged terminal outcome before it is flattened into a result.

    Example:
        ```python
        outcome = TerminalOutcome(ExecutionState.TIMED_OUT, "Pod execution timed out after 60 seconds")
        ```
    """

    state: ExecutionState
    output: str

from __future__ import annotations

from typing import Protocol

from .types import ExecutionUnitDescriptor, ExecutionUnitStatus, UnitHandle, UnitSummary

NO_OUTPUT = "No output"


class ApiError(RuntimeError):
    """Cluster control plane rejected or failed a call.

    Example:
        ```python
        raise ApiError("pods is forbidden", status=403)
        ```
    """

    def __init__(self, message: str, *, status: int | None = None) -> None:
        """Store the message and the HTTP status when one is known.

        Example:
            ```python
            err = ApiError("Not Found", status=404)
            ```
        """
        super().__init__(message)
        self.status = status

    @property
    def not_found(self) -> bool:
        """Return True when the target no longer exists.

        Example:
            ```python
            gone = ApiError("Not Found", status=404).not_found
            ```
        """
        return self.status == 404


class ClusterClient(Protocol):
    def create(self, descriptor: ExecutionUnitDescriptor) -> UnitHandle:
        """Submit a unit; raises ApiError on rejection.

        Example:
            ```python
            handle = client.create(descriptor)
            ```
        """
        ...

    def get_status(self, name: str) -> ExecutionUnitStatus:
        """Read the current phase of a unit; raises ApiError if it is gone.

        Example:
            ```python
            status = client.get_status("task-execution-abc-1700000000000")
            ```
        """
        ...

    def get_logs(self, name: str) -> str:
        """Return trimmed container output, or NO_OUTPUT when there is none.

        Example:
            ```python
            logs = client.get_logs("task-execution-abc-1700000000000")
            ```
        """
        ...

    def delete(self, name: str) -> None:
        """Delete a unit; raises ApiError (status 404 when already gone).

        Example:
            ```python
            client.delete("task-execution-abc-1700000000000")
            ```
        """
        ...

    def list(self, label_selector: str) -> list[UnitSummary]:
        """List units matching a label selector.

        Example:
            ```python
            rows = client.list("app=task-execution")
            ```
        """
        ...

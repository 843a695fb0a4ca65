from __future__ import annotations

from typing import Protocol

from .types import ExecutionRequest, ExecutionResult


class ExecutionEngine(Protocol):
    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Execute one command and return its result without raising.

        Example:
            ```python
            result = engine.execute(ExecutionRequest(task_id="64f1c2", command="echo hello"))
            ```
        """
        ...

    def list_units(self) -> str:
        """Return a human-readable report of live execution units.

        Example:
            ```python
            print(engine.list_units())
            ```
        """
        ...

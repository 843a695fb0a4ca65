from __future__ import annotations

import logging
import os
import subprocess
from datetime import datetime
from typing import Callable

from ..settings import RunnerSettings
from .cluster_engine import format_listing, utc_now
from .types import ExecutionRequest, ExecutionResult

LOG = logging.getLogger(__name__)


def shell_argv(command: str) -> list[str]:
    """Return the argv that runs `command` through the platform shell.

    Example:
        ```python
        argv = shell_argv("echo hello")  # ["sh", "-c", "echo hello"]
        ```
    """
    if os.name == "nt":
        return ["cmd", "/c", command]
    return ["sh", "-c", command]


def _text(value: str | bytes | None) -> str:
    """Decode partial output captured from a timed-out process.

    Example:
        ```python
        text = _text(b"partial")
        ```
    """
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class LocalEngine:
    """Run commands as local subprocesses without cluster isolation.

    Example:
        ```python
        engine = LocalEngine(settings=RunnerSettings(backend="local", max_wait_seconds=30))
        ```
    """

    def __init__(
        self,
        *,
        settings: RunnerSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize a local engine from deployment settings.

        Example:
            ```python
            engine = LocalEngine()
            ```
        """
        self._settings = settings or RunnerSettings(backend="local")
        self._clock = clock

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
        """Run one command in a local shell and return its merged output.

        Example:
            ```python
            result = engine.execute(ExecutionRequest(task_id="64f1c2", command="echo hello"))
            ```
        """
        start_time = self._clock()
        budget = self._settings.max_wait_seconds
        try:
            completed = subprocess.run(
                shell_argv(request.command),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=budget,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            LOG.warning("Command for task %s timed out after %gs", request.task_id, budget)
            partial = _text(exc.stdout).strip()
            notice = f"Command timed out after {budget:g} seconds"
            output = f"{partial}\n{notice}" if partial else notice
        except OSError as exc:
            LOG.error("Failed to start command for task %s: %s", request.task_id, exc)
            output = f"Unexpected error: {exc}"
        else:
            output = (completed.stdout or "").strip()
            if completed.returncode != 0:
                LOG.info("Command for task %s exited with %s", request.task_id, completed.returncode)
                output = (
                    f"Command execution failed with exit code {completed.returncode}. "
                    f"Output: {output}"
                )
        return ExecutionResult(start_time=start_time, end_time=self._clock(), output=output)

    def list_units(self) -> str:
        """Return the (always empty) unit report for local execution.

        Example:
            ```python
            engine.list_units()  # "Task Execution Pods:\\n"
            ```
        """
        return format_listing([])

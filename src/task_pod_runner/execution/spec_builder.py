from __future__ import annotations

import re
import threading
import time

from ..settings import RunnerSettings
from .types import ExecutionUnitDescriptor

MAX_NAME_LENGTH = 63
MAX_LABEL_VALUE_LENGTH = 63
TASK_ID_LABEL = "task-id"
_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9-]+")
_INVALID_LABEL_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")

_stamp_lock = threading.Lock()
_last_stamp_ms = 0


def next_submission_millis() -> int:
    """Return a strictly increasing epoch-millisecond stamp for unit names.

    Example:
        ```python
        stamp = next_submission_millis()
        ```
    """
    global _last_stamp_ms
    with _stamp_lock:
        now_ms = time.time_ns() // 1_000_000
        _last_stamp_ms = max(now_ms, _last_stamp_ms + 1)
        return _last_stamp_ms


def _name_component(task_id: str) -> str:
    """Normalize a task id into a DNS-1123 name fragment.

    Example:
        ```python
        part = _name_component("Task_42")  # "task-42"
        ```
    """
    cleaned = _INVALID_NAME_CHARS.sub("-", task_id.lower()).strip("-")
    return cleaned or "task"


def _label_value(task_id: str) -> str:
    """Normalize a task id into a valid label value.

    Example:
        ```python
        value = _label_value("64f1c2/x")  # "64f1c2-x"
        ```
    """
    cleaned = _INVALID_LABEL_CHARS.sub("-", task_id)[:MAX_LABEL_VALUE_LENGTH]
    return cleaned.strip("-_.")


def unit_name(prefix: str, task_id: str, submitted_at_ms: int) -> str:
    """Return `<prefix>-<task_id>-<millis>` trimmed to a valid unit name.

    Example:
        ```python
        name = unit_name("task-execution", "64f1c2", 1700000000000)
        ```
    """
    suffix = f"-{submitted_at_ms}"
    head = f"{prefix}-{_name_component(task_id)}"
    head = head[: MAX_NAME_LENGTH - len(suffix)].rstrip("-")
    return f"{head}{suffix}"


def build_descriptor(
    task_id: str,
    command: str,
    settings: RunnerSettings,
    *,
    submitted_at_ms: int,
) -> ExecutionUnitDescriptor:
    """Describe the single-container unit that runs `command` for `task_id`.

    Example:
        ```python
        desc = build_descriptor("64f1c2", "echo hello", RunnerSettings(), submitted_at_ms=1700000000000)
        ```
    """
    labels = dict(settings.labels)
    task_label = _label_value(task_id)
    if task_label:
        labels[TASK_ID_LABEL] = task_label
    return ExecutionUnitDescriptor(
        name=unit_name(settings.name_prefix, task_id, submitted_at_ms),
        labels=labels,
        command=command,
        image=settings.image,
        container_name=settings.container_name,
        cpu_request=settings.cpu_request,
        cpu_limit=settings.cpu_limit,
        memory_request=settings.memory_request,
        memory_limit=settings.memory_limit,
    )

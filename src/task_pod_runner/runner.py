from __future__ import annotations

import logging

from .execution.cluster_engine import ClusterEngine
from .execution.engine import ExecutionEngine
from .execution.kubernetes_client import KubernetesClient, load_core_api
from .execution.local_engine import LocalEngine
from .execution.types import ExecutionRequest, ExecutionResult
from .settings import RunnerSettings

LOG = logging.getLogger(__name__)


def create_engine(settings: RunnerSettings | None = None) -> ClusterEngine | LocalEngine:
    """Build the engine selected by `settings.backend`.

    Example:
        ```python
        engine = create_engine(RunnerSettings(backend="local"))
        ```
    """
    resolved = settings or RunnerSettings.from_env()
    if resolved.backend == "local":
        LOG.info("Using local execution backend")
        return LocalEngine(settings=resolved)
    api = load_core_api(kubeconfig=resolved.kubeconfig, in_cluster=resolved.in_cluster)
    client = KubernetesClient(
        namespace=resolved.namespace,
        api=api,
        request_timeout=resolved.request_timeout_seconds,
    )
    LOG.info("Using cluster execution backend (namespace=%s)", resolved.namespace)
    return ClusterEngine(client=client, settings=resolved)


def run_command(task_id: str, command: str, engine: ExecutionEngine) -> ExecutionResult:
    """Execute a task's command with the given engine; never raises.

    Example:
        ```python
        from task_pod_runner import LocalEngine, run_command
        result = run_command("64f1c2", "echo hello", engine=LocalEngine())
        ```
    """
    return engine.execute(ExecutionRequest(task_id=task_id, command=command))


def list_execution_units(engine: ExecutionEngine) -> str:
    """Return the engine's report of live execution units.

    Example:
        ```python
        print(list_execution_units(engine))
        ```
    """
    return engine.list_units()

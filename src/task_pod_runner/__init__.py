from .settings import RunnerSettings
from .runner import create_engine, list_execution_units, run_command
from .execution.cluster_engine import ClusterEngine
from .execution.local_engine import LocalEngine
from .execution.types import ExecutionResult

__all__ = [
    "RunnerSettings",
    "ExecutionResult",
    "create_engine",
    "run_command",
    "list_execution_units",
    "ClusterEngine",
    "LocalEngine",
]

from .client import ApiError, ClusterClient
from .engine import ExecutionEngine
from .types import ExecutionRequest, ExecutionResult, ExecutionUnitDescriptor, UnitPhase

__all__ = [
    "ApiError",
    "ClusterClient",
    "ExecutionEngine",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionUnitDescriptor",
    "UnitPhase",
]

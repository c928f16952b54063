"""
Domain layer for dagsched.

- states: GraphNodeState enum
- models: Pydantic value models (resources, node views, counts)
- errors: domain-level exceptions
"""

from .states import GraphNodeState
from .models import (
    DEFAULT_TASK_RESOURCES,
    NodeView,
    ResourceSet,
    RunResult,
    StateCounts,
    format_quantity,
    parse_quantity,
)
from .errors import (
    DagschedError,
    ValidationError,
    UnknownTaskError,
    CycleDetectedError,
    ResourceOverrequestError,
    ResourceLedgerError,
    ExecutionFailure,
    IllegalTransitionError,
)

__all__ = [
    "GraphNodeState",
    "ResourceSet",
    "DEFAULT_TASK_RESOURCES",
    "NodeView",
    "StateCounts",
    "RunResult",
    "parse_quantity",
    "format_quantity",
    "DagschedError",
    "ValidationError",
    "UnknownTaskError",
    "CycleDetectedError",
    "ResourceOverrequestError",
    "ResourceLedgerError",
    "ExecutionFailure",
    "IllegalTransitionError",
]

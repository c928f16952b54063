"""
dagsched: run a dependency graph of tasks under a finite resource budget,
with a live terminal status display.
"""

from dagsched.domain import (
    CycleDetectedError,
    DagschedError,
    GraphNodeState,
    ResourceSet,
    RunResult,
    UnknownTaskError,
)
from dagsched.engine import ResourcePool, SchedulerConfig, TaskGraph, TaskManager
from dagsched.reporting import TopLikeStatusReporter
from dagsched.tasks import CallableTask, NoOpTask, Task

__version__ = "0.1.0"

__all__ = [
    "CallableTask",
    "CycleDetectedError",
    "DagschedError",
    "GraphNodeState",
    "NoOpTask",
    "ResourcePool",
    "ResourceSet",
    "RunResult",
    "SchedulerConfig",
    "Task",
    "TaskGraph",
    "TaskManager",
    "TopLikeStatusReporter",
    "UnknownTaskError",
]

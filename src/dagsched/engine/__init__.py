# src/dagsched/engine/__init__.py
"""
Execution engine for dagsched.

- pool: resource capacity and reservation ledger
- graph: task graph, edges and node lifecycle
- executor: runs task bodies off the scheduling thread
- scheduler: TaskManager tick loop + admission control
"""

from .executor import Outcome, TaskExecutor, ThreadedTaskExecutor
from .graph import GraphNode, TaskGraph
from .pool import ResourcePool
from .scheduler import SchedulerConfig, TaskManager

__all__ = [
    "Outcome",
    "TaskExecutor",
    "ThreadedTaskExecutor",
    "GraphNode",
    "TaskGraph",
    "ResourcePool",
    "SchedulerConfig",
    "TaskManager",
]

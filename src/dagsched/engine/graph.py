# src/dagsched/engine/graph.py
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional

from dagsched.domain.errors import CycleDetectedError, IllegalTransitionError, UnknownTaskError
from dagsched.domain.models import NodeView
from dagsched.domain.states import GraphNodeState
from dagsched.logging import get_logger
from dagsched.tasks import Task

_LOG = get_logger(__name__)


@dataclass
class GraphNode:
    """
    One task in the graph plus its lifecycle bookkeeping.

    Only TaskGraph mutates a node, and only while holding the graph lock.
    """
    seq: int
    task: Task
    state: GraphNodeState
    blocked: bool = False
    error: Optional[str] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    def view(self, now: float) -> NodeView:
        elapsed: Optional[float] = None
        if self.started_at is not None:
            elapsed = (self.finished_at if self.finished_at is not None else now) - self.started_at
        return NodeView(
            seq=self.seq,
            name=self.task.name,
            state=self.state,
            resources=self.task.resources,
            blocked=self.blocked,
            error=self.error,
            elapsed_s=elapsed,
        )


@dataclass
class _Edges:
    upstream: list[Task] = field(default_factory=list)
    downstream: list[Task] = field(default_factory=list)


_NO_EDGES = _Edges()


class TaskGraph:
    """
    Directed acyclic graph of tasks and precedence edges.

    Important invariants:
    - Nodes are keyed by task identity; the graph is append-only.
    - Edges may be recorded before either endpoint is added as a node.
    - An edge that would close a cycle is rejected and nothing changes.
    - Node states only move forward (see GraphNodeState.can_transition_to).
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._nodes: dict[int, GraphNode] = {}
        # Edge lists hold the endpoint tasks, which keeps their id() keys unique.
        self._edges: dict[int, _Edges] = {}
        self._version = 0

    # -------------------------
    # Structure
    # -------------------------

    def add_task(self, task: Task) -> int:
        """
        Adds a node for `task` and returns its id.

        Adding the same task object again is a no-op returning the existing id.
        """
        with self._lock:
            existing = self._nodes.get(id(task))
            if existing is not None:
                return existing.seq

            upstream = self._peek(task).upstream
            state = GraphNodeState.INELIGIBLE if upstream else GraphNodeState.ELIGIBLE
            node = GraphNode(seq=len(self._nodes), task=task, state=state)
            self._nodes[id(task)] = node
            self._version += 1
            _LOG.debug("Added task %s as %s (%d upstream)", task.name, state, len(upstream))
            return node.seq

    def add_tasks(self, tasks: Iterable[Task]) -> list[int]:
        with self._lock:
            return [self.add_task(t) for t in tasks]

    def add_dependency(self, upstream: Task, downstream: Task) -> None:
        """
        Records that `downstream` may only run after `upstream` is DONE.

        Raises CycleDetectedError if `upstream` is already reachable from
        `downstream`; the graph is left unchanged in that case.
        """
        with self._lock:
            if upstream is downstream or self._reaches(downstream, upstream):
                raise CycleDetectedError(
                    f"Adding {upstream.name} -> {downstream.name} would create a cycle",
                    details={"upstream": upstream.name, "downstream": downstream.name},
                )

            edges_up = self._edges_for(upstream)
            if any(t is downstream for t in edges_up.downstream):
                return

            edges_up.downstream.append(downstream)
            self._edges_for(downstream).upstream.append(upstream)

            node = self._nodes.get(id(downstream))
            if node is not None and node.state is not GraphNodeState.INELIGIBLE:
                _LOG.warning(
                    "Dependency %s -> %s added after %s became %s; it will not be re-gated",
                    upstream.name,
                    downstream.name,
                    downstream.name,
                    node.state,
                )

    def upstream_of(self, task: Task) -> list[Task]:
        with self._lock:
            return list(self._peek(task).upstream)

    def downstream_of(self, task: Task) -> list[Task]:
        with self._lock:
            return list(self._peek(task).downstream)

    # -------------------------
    # Queries
    # -------------------------

    def __contains__(self, task: Task) -> bool:
        return id(task) in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def version(self) -> int:
        """Incremented on every node insertion, state change or blocking."""
        return self._version

    def state_of(self, task: Task) -> Optional[GraphNodeState]:
        node = self._nodes.get(id(task))
        return node.state if node is not None else None

    def node(self, task: Task) -> GraphNode:
        node = self._nodes.get(id(task))
        if node is None:
            raise UnknownTaskError(f"Task is not in the graph: {task.name}", details={"task": task.name})
        return node

    def view(self, task: Task) -> NodeView:
        with self._lock:
            return self.node(task).view(time.monotonic())

    def nodes(self, state: Optional[GraphNodeState] = None) -> list[GraphNode]:
        """Nodes in insertion order, optionally filtered by state."""
        with self._lock:
            return [n for n in self._nodes.values() if state is None or n.state is state]

    def snapshot(self) -> tuple[NodeView, ...]:
        now = time.monotonic()
        with self._lock:
            return tuple(n.view(now) for n in self._nodes.values())

    # -------------------------
    # State changes
    # -------------------------

    def recompute_eligibility(self) -> list[GraphNode]:
        """
        Promotes INELIGIBLE nodes whose upstreams are all DONE, and flags as
        blocked those with a FAILED or blocked upstream.

        Returns the nodes promoted to ELIGIBLE.
        """
        with self._lock:
            self._propagate_blocked()
            promoted: list[GraphNode] = []
            for node in self._nodes.values():
                if node.state is not GraphNodeState.INELIGIBLE or node.blocked:
                    continue
                if all(self.state_of(up) is GraphNodeState.DONE for up in self._peek(node.task).upstream):
                    self._set_state(node, GraphNodeState.ELIGIBLE)
                    promoted.append(node)
            return promoted

    def transition(self, task: Task, state: GraphNodeState, *, error: Optional[str] = None) -> GraphNode:
        with self._lock:
            node = self.node(task)
            self._set_state(node, state)
            if error is not None:
                node.error = error
            return node

    # -------------------------
    # Helpers
    # -------------------------

    def _set_state(self, node: GraphNode, state: GraphNodeState) -> None:
        if not node.state.can_transition_to(state):
            raise IllegalTransitionError(
                f"Task {node.task.name} cannot move from {node.state} to {state}",
                details={"task": node.task.name, "from": str(node.state), "to": str(state)},
            )
        now = time.monotonic()
        if state is GraphNodeState.RUNNING:
            node.started_at = now
        elif state.is_terminal:
            node.finished_at = now
        node.state = state
        self._version += 1

    def _propagate_blocked(self) -> None:
        changed = True
        while changed:
            changed = False
            for node in self._nodes.values():
                if node.state is not GraphNodeState.INELIGIBLE or node.blocked:
                    continue
                for up in self._peek(node.task).upstream:
                    up_node = self._nodes.get(id(up))
                    if up_node is not None and (up_node.state is GraphNodeState.FAILED or up_node.blocked):
                        node.blocked = True
                        node.error = f"upstream task {up.name} did not succeed"
                        self._version += 1
                        _LOG.info("Task %s is blocked: %s", node.task.name, node.error)
                        changed = True
                        break

    def _peek(self, task: Task) -> _Edges:
        return self._edges.get(id(task), _NO_EDGES)

    def _edges_for(self, task: Task) -> _Edges:
        edges = self._edges.get(id(task))
        if edges is None:
            edges = self._edges[id(task)] = _Edges()
        return edges

    def _reaches(self, start: Task, target: Task) -> bool:
        """Is `target` reachable from `start` along downstream edges?"""
        seen: set[int] = set()
        stack = [start]
        while stack:
            current = stack.pop()
            if current is target:
                return True
            if id(current) in seen:
                continue
            seen.add(id(current))
            stack.extend(self._peek(current).downstream)
        return False

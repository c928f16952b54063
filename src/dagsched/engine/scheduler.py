# src/dagsched/engine/scheduler.py
from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from dagsched.domain.errors import ResourceOverrequestError
from dagsched.domain.models import NodeView, ResourceSet, RunResult, StateCounts
from dagsched.domain.states import GraphNodeState
from dagsched.logging import get_logger
from dagsched.tasks import Task

from .executor import Outcome, TaskExecutor, ThreadedTaskExecutor
from .graph import GraphNode, TaskGraph
from .pool import ResourcePool

if TYPE_CHECKING:
    from dagsched.config import Settings

_LOG = get_logger(__name__)


@dataclass(frozen=True)
class SchedulerConfig:
    """
    Runtime config for the task manager.
    """
    resources: ResourceSet = field(default_factory=ResourceSet.infinite)
    sleep_ms: int = 100
    fail_fast: bool = False
    max_workers: int = 8

    # Working directory for task scripts; not interpreted by the scheduler.
    scripts_dir: Optional[Path] = None

    @property
    def sleep_s(self) -> float:
        return self.sleep_ms / 1000.0

    @classmethod
    def from_settings(cls, settings: Settings) -> SchedulerConfig:
        return cls(
            resources=settings.resources,
            sleep_ms=settings.sleep_ms,
            fail_fast=settings.fail_fast,
            max_workers=settings.max_workers,
            scripts_dir=settings.scripts_dir,
        )


@dataclass
class _Dispatch:
    task: Task
    future: Future[Outcome]
    reserved: ResourceSet
    tick: int


class TaskManager:
    """
    Drives a TaskGraph forward one tick at a time.

    Each tick, in order:
    - promotes INELIGIBLE nodes whose upstreams are DONE (and flags blocked ones)
    - fails ELIGIBLE nodes that can never fit the resource pool
    - admits ELIGIBLE nodes first-come-first-served while resources last
    - settles RUNNING nodes admitted in earlier ticks whose bodies finished

    Concurrency semantics:
    - One thread ticks; task bodies run on the executor's threads and are
      only observed through their futures.
    - Queries (state, snapshot, counts) are safe from any thread.
    - Task-body failures become FAILED nodes and never escape a tick.
    """

    def __init__(
        self,
        cfg: Optional[SchedulerConfig] = None,
        *,
        executor: Optional[TaskExecutor] = None,
    ) -> None:
        cfg = cfg if cfg is not None else SchedulerConfig()
        if cfg.sleep_ms <= 0:
            raise ValueError("sleep_ms must be > 0")
        if cfg.max_workers <= 0:
            raise ValueError("max_workers must be > 0")

        self._cfg = cfg
        self._graph = TaskGraph()
        self._pool = ResourcePool(cfg.resources)
        self._executor: TaskExecutor = executor if executor is not None else ThreadedTaskExecutor(cfg.max_workers)

        self._tick_lock = threading.Lock()
        self._running: dict[int, _Dispatch] = {}
        self._ticks = 0
        self._failures = 0

    # -------------------------
    # Graph construction
    # -------------------------

    def add_task(self, task: Task) -> int:
        return self._graph.add_task(task)

    def add_tasks(self, *tasks: Task) -> list[int]:
        return self._graph.add_tasks(tasks)

    def add_dependency(self, upstream: Task, downstream: Task) -> None:
        self._graph.add_dependency(upstream, downstream)

    # -------------------------
    # Queries
    # -------------------------

    @property
    def config(self) -> SchedulerConfig:
        return self._cfg

    @property
    def resources(self) -> ResourcePool:
        return self._pool

    @property
    def scripts_dir(self) -> Optional[Path]:
        return self._cfg.scripts_dir

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def has_failures(self) -> bool:
        return self._failures > 0

    def graph_node_state_for(self, task: Task) -> Optional[GraphNodeState]:
        """Current state of `task`, or None if it was never added."""
        return self._graph.state_of(task)

    def view_for(self, task: Task) -> NodeView:
        """Snapshot of the node for `task`; raises UnknownTaskError if absent."""
        return self._graph.view(task)

    def snapshot(self) -> tuple[NodeView, ...]:
        return self._graph.snapshot()

    def state_counts(self) -> StateCounts:
        return StateCounts.from_views(self._graph.snapshot())

    # -------------------------
    # Execution
    # -------------------------

    def step_execution(self, *, fail_fast: Optional[bool] = None) -> int:
        """
        Runs one scheduling tick. Never blocks on task bodies.

        Returns the number of tasks admitted plus the number settled.
        """
        fail_fast = self._cfg.fail_fast if fail_fast is None else fail_fast
        with self._tick_lock:
            self._ticks += 1
            self._graph.recompute_eligibility()
            self._fail_overrequests()

            admitted = 0
            if fail_fast and self.has_failures:
                eligible = len(self._graph.nodes(GraphNodeState.ELIGIBLE))
                if eligible:
                    _LOG.debug("Fail-fast: holding %d eligible task(s)", eligible)
            else:
                admitted = self._admit()

            settled = self._settle()
            if admitted or settled:
                reserved, _ = self._pool.snapshot()
                _LOG.info(
                    "Tick %d: admitted=%d settled=%d running=%d reserved=(%s)",
                    self._ticks,
                    admitted,
                    settled,
                    len(self._running),
                    reserved.describe(),
                )
            return admitted + settled

    def run_to_completion(self, fail_fast: Optional[bool] = None) -> RunResult:
        """
        Ticks until every task is DONE, FAILED or blocked behind a failure,
        sleeping `sleep_ms` between ticks.

        With fail-fast, returns once the first failure has happened and the
        tasks already running have finished. Returns early, unsuccessfully,
        if the graph can make no further progress (for example an upstream
        task that was never added).
        """
        fail_fast = self._cfg.fail_fast if fail_fast is None else fail_fast
        _LOG.info(
            "Running %d task(s): fail_fast=%s sleep_ms=%d resources=(%s)",
            len(self._graph),
            fail_fast,
            self._cfg.sleep_ms,
            self._pool.total.describe(),
        )
        ticks_before = self._ticks
        while True:
            version = self._graph.version
            self.step_execution(fail_fast=fail_fast)
            if self._finished(fail_fast):
                break
            if not self._running and self._graph.version == version:
                _LOG.warning("No further progress possible; stopping with unsettled tasks.")
                break
            time.sleep(self._cfg.sleep_s)

        counts = self.state_counts()
        result = RunResult(
            succeeded=counts.done == counts.total,
            counts=counts,
            ticks=self._ticks - ticks_before,
        )
        log = _LOG.info if result.succeeded else _LOG.warning
        log(
            "Run finished: %d done, %d failed, %d blocked, %d not run",
            counts.done,
            counts.failed,
            counts.blocked,
            counts.eligible + counts.ineligible,
        )
        return result

    def shutdown(self, *, wait: bool = True) -> None:
        """Shuts down the executor. Running task bodies are not cancelled."""
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> TaskManager:
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown(wait=True)

    # -------------------------
    # Tick phases
    # -------------------------

    def _fail_overrequests(self) -> None:
        total = self._pool.total
        for node in self._graph.nodes(GraphNodeState.ELIGIBLE):
            task = node.task
            if self._pool.can_ever_fit(task.resources):
                continue
            err = ResourceOverrequestError(
                f"Task {task.name} requests more than the total capacity",
                details={"task": task.name, "dimensions": task.resources.exceeded_dimensions(total)},
            )
            _LOG.error("%s: requested (%s), total (%s)", err, task.resources.describe(), total.describe())
            self._graph.transition(task, GraphNodeState.FAILED, error=str(err))
            self._failures += 1

    def _admit(self) -> int:
        admitted = 0
        for node in self._graph.nodes(GraphNodeState.ELIGIBLE):
            task = node.task
            if not self._pool.try_reserve(task.resources):
                continue

            self._graph.transition(task, GraphNodeState.RUNNING)
            try:
                future = self._executor.submit(task)
            except Exception as e:
                _LOG.exception("Could not dispatch task %s", task.name)
                self._pool.release(task.resources)
                self._graph.transition(task, GraphNodeState.FAILED, error=f"dispatch failed: {e!r}")
                self._failures += 1
                continue

            self._running[id(task)] = _Dispatch(task=task, future=future, reserved=task.resources, tick=self._ticks)
            admitted += 1
            _LOG.info("Started task %s (%s)", task.name, task.resources.describe())
        return admitted

    def _settle(self) -> int:
        settled = 0
        for key, dispatch in list(self._running.items()):
            # Tasks admitted in this tick are settled no earlier than the next one.
            if dispatch.tick == self._ticks or not dispatch.future.done():
                continue

            outcome = self._outcome(dispatch)
            del self._running[key]
            self._pool.release(dispatch.reserved)
            node = self._finish(dispatch.task, outcome)
            settled += 1
            if node.state is GraphNodeState.DONE:
                _LOG.info("Task %s done in %.3fs", node.task.name, node.view(time.monotonic()).elapsed_s or 0.0)
            else:
                _LOG.warning("Task %s failed: %s", node.task.name, node.error)
        return settled

    def _finish(self, task: Task, outcome: Outcome) -> GraphNode:
        if outcome.succeeded:
            return self._graph.transition(task, GraphNodeState.DONE)
        self._failures += 1
        return self._graph.transition(task, GraphNodeState.FAILED, error=outcome.error or "failed")

    def _outcome(self, dispatch: _Dispatch) -> Outcome:
        if dispatch.future.cancelled():
            return Outcome(succeeded=False, error="cancelled")
        exc = dispatch.future.exception()
        if exc is not None:
            # Executors are expected to capture body errors; handle one that didn't.
            _LOG.error("Executor raised for task %s: %r", dispatch.task.name, exc)
            return Outcome(succeeded=False, error=str(exc) or type(exc).__name__)
        return dispatch.future.result()

    def _finished(self, fail_fast: bool) -> bool:
        if self._running:
            return False
        if fail_fast and self.has_failures:
            return True
        return all(view.is_settled for view in self._graph.snapshot())

# src/dagsched/engine/executor.py
from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from dagsched.domain.errors import ExecutionFailure
from dagsched.logging import get_logger
from dagsched.tasks import Task

_LOG = get_logger(__name__)


@dataclass(frozen=True)
class Outcome:
    succeeded: bool
    error: Optional[str] = None


class TaskExecutor(Protocol):
    """
    Runs task bodies on behalf of the scheduler.

    `submit` must not block on the body; the scheduler polls the returned
    future on later ticks.
    """

    def submit(self, task: Task) -> Future[Outcome]: ...

    def shutdown(self, *, wait: bool = True) -> None: ...


def outcome_of(task: Task) -> Outcome:
    """
    Runs `task` in the calling thread and converts whatever happens into an
    Outcome. Never raises for body errors.
    """
    start = time.monotonic()
    try:
        result = task.run()
        _check_result(task, result)
    except Exception as e:
        _LOG.exception("Task %s failed after %.3fs", task.name, time.monotonic() - start)
        return Outcome(succeeded=False, error=str(e) or type(e).__name__)

    _LOG.debug("Task %s succeeded in %.3fs", task.name, time.monotonic() - start)
    return Outcome(succeeded=True)


def _check_result(task: Task, result: Any) -> None:
    if result is False:
        raise ExecutionFailure(f"Task {task.name} reported failure", details={"task": task.name})
    if isinstance(result, int) and not isinstance(result, bool) and result != 0:
        raise ExecutionFailure(
            f"Task {task.name} exited with status {result}",
            details={"task": task.name, "exit_code": result},
        )


class ThreadedTaskExecutor:
    """
    Runs each task body on a worker thread from a bounded pool.

    Note: shutdown does not cancel bodies that are already running.
    """

    def __init__(self, max_workers: int = 8) -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="dagsched-task")

    def submit(self, task: Task) -> Future[Outcome]:
        return self._pool.submit(outcome_of, task)

    def shutdown(self, *, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait, cancel_futures=False)

# tests/conftest.py
import logging
import threading
import time
from typing import Callable, Iterator, Optional

import pytest

from dagsched.domain.models import ResourceSet
from dagsched.engine import SchedulerConfig, TaskManager
from dagsched.reporting import FixedTerminal
from dagsched.tasks import Task


class WaitForIt(Task):
    """Runs until `release()` is called (or a safety timeout passes)."""

    def __init__(self, name: str, resources: Optional[ResourceSet] = None, timeout_s: float = 10.0) -> None:
        super().__init__(name=name, resources=resources)
        self._go = threading.Event()
        self.started = threading.Event()
        self._timeout_s = timeout_s

    def release(self) -> None:
        self._go.set()

    def run(self) -> None:
        self.started.set()
        if not self._go.wait(timeout=self._timeout_s):
            raise TimeoutError(f"{self.name} was never released")


class Capture:
    """Output sink that records everything written to it."""

    def __init__(self) -> None:
        self.chunks: list[str] = []
        self._lock = threading.Lock()

    def __call__(self, text: str) -> None:
        with self._lock:
            self.chunks.append(text)

    @property
    def text(self) -> str:
        with self._lock:
            return "".join(self.chunks)

    @property
    def last(self) -> str:
        with self._lock:
            return self.chunks[-1] if self.chunks else ""


def wait_until(fn: Callable[[], bool], timeout_s: float = 5.0, poll_s: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if fn():
            return True
        time.sleep(poll_s)
    return False


@pytest.fixture()
def manager_factory() -> Iterator[Callable[..., TaskManager]]:
    """
    Factory for task managers with a short tick; every manager is shut
    down after the test.

    Usage:
      manager = manager_factory(resources=ResourceSet(cores=1), fail_fast=True)
    """
    made: list[TaskManager] = []

    def _make(**overrides) -> TaskManager:
        overrides.setdefault("sleep_ms", 10)
        manager = TaskManager(SchedulerConfig(**overrides))
        made.append(manager)
        return manager

    yield _make

    for manager in made:
        manager.shutdown(wait=False)


@pytest.fixture()
def manager(manager_factory) -> TaskManager:
    return manager_factory()


@pytest.fixture()
def capture() -> Capture:
    return Capture()


@pytest.fixture()
def terminal() -> FixedTerminal:
    return FixedTerminal(width=80, height=60, ansi=True)


@pytest.fixture()
def two_line_terminal() -> FixedTerminal:
    return FixedTerminal(width=80, height=2, ansi=True)


@pytest.fixture(autouse=True)
def restore_root_logging() -> Iterator[None]:
    """Undoes configure_logging() so no handler outlives the test's captured stderr."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)

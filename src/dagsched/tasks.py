# src/dagsched/tasks.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Union

from dagsched.domain.errors import ValidationError
from dagsched.domain.models import DEFAULT_TASK_RESOURCES, ResourceSet


class Task(ABC):
    """
    A unit of work the scheduler can run.

    Subclasses implement `run()`. The body fails by raising, or by
    returning False or a non-zero int (an exit status). Any other return
    value counts as success.

    Tasks compare and hash by identity, so two tasks with the same name
    are still distinct graph nodes.
    """

    def __init__(self, name: Optional[str] = None, resources: Optional[ResourceSet] = None) -> None:
        self.name = name or type(self).__name__
        self.resources = self._checked(resources if resources is not None else DEFAULT_TASK_RESOURCES)

    @abstractmethod
    def run(self) -> Any:
        raise NotImplementedError

    def with_name(self, name: str) -> Task:
        self.name = name
        return self

    def requires(
        self,
        cores: Optional[float] = None,
        memory: Optional[Union[str, float]] = None,
        disk: Optional[Union[str, float]] = None,
    ) -> Task:
        """Returns self with the given dimensions of the requirement replaced."""
        update = {k: v for k, v in (("cores", cores), ("memory", memory), ("disk", disk)) if v is not None}
        self.resources = self._checked(ResourceSet(**{**self.resources.model_dump(), **update}))
        return self

    def _checked(self, resources: ResourceSet) -> ResourceSet:
        if not resources.is_finite:
            raise ValidationError(
                f"Task {self.name} must request a finite amount of every resource",
                details={"task": self.name, "resources": resources.describe()},
            )
        return resources

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class CallableTask(Task):
    """Runs a plain callable as the task body."""

    def __init__(
        self,
        fn: Callable[[], Any],
        name: Optional[str] = None,
        resources: Optional[ResourceSet] = None,
    ) -> None:
        super().__init__(name=name or getattr(fn, "__name__", None), resources=resources)
        self._fn = fn

    def run(self) -> Any:
        return self._fn()


class NoOpTask(Task):
    """Succeeds immediately and requests no resources."""

    def __init__(self, name: Optional[str] = None) -> None:
        super().__init__(name=name, resources=ResourceSet.none())

    def run(self) -> None:
        return None

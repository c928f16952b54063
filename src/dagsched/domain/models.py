from __future__ import annotations

import math
import re
from typing import Annotated, Iterable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .states import GraphNodeState


_QUANTITY_RE = re.compile(r"^\s*(?P<number>\d+(?:\.\d*)?|\.\d+)\s*(?P<unit>[kmgtp]?)b?\s*$", re.IGNORECASE)
_UNIT_POWERS = {"": 0, "k": 1, "m": 2, "g": 3, "t": 4, "p": 5}
_INFINITE_WORDS = {"inf", "infinite", "infinity", "unlimited"}

# Float tolerance used when returning reservations to a pool.
LEDGER_EPSILON = 1e-9

Quantity = Annotated[float, Field(ge=0)]


def parse_quantity(raw: Union[str, int, float]) -> float:
    """
    Parses a resource amount.

    Accepts plain numbers, "inf", and binary unit suffixes (k, m, g, t, p,
    optionally followed by "b"): "512m" -> 536870912.0, "4gb" -> 4294967296.0.
    """
    if isinstance(raw, bool):
        raise ValueError(f"not a quantity: {raw!r}")
    if isinstance(raw, (int, float)):
        return float(raw)
    text = raw.strip().lower()
    if text in _INFINITE_WORDS:
        return math.inf
    m = _QUANTITY_RE.match(text)
    if not m:
        raise ValueError(f"not a quantity: {raw!r}")
    return float(m.group("number")) * (1024 ** _UNIT_POWERS[m.group("unit").lower()])


def format_quantity(value: float, *, binary: bool = True) -> str:
    if math.isinf(value):
        return "inf"
    if not binary:
        return f"{value:g}"
    for unit in ("", "k", "m", "g", "t"):
        if value < 1024 or unit == "t":
            return f"{value:.0f}" if unit == "" else f"{value:.1f}{unit}"
        value /= 1024
    return f"{value:.1f}p"


class ResourceSet(BaseModel):
    """
    Amount of each schedulable resource: CPU-like cores, memory and disk
    (both in bytes). Any dimension may be infinite.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    cores: Quantity = 0.0
    memory: Quantity = 0.0
    disk: Quantity = 0.0

    @field_validator("cores", "memory", "disk", mode="before")
    @classmethod
    def _parse(cls, value):
        if isinstance(value, str):
            return parse_quantity(value)
        return value

    @classmethod
    def infinite(cls) -> ResourceSet:
        return cls(cores=math.inf, memory=math.inf, disk=math.inf)

    @classmethod
    def none(cls) -> ResourceSet:
        return cls()

    @property
    def is_infinite(self) -> bool:
        return all(math.isinf(v) for v in self.as_tuple())

    @property
    def is_finite(self) -> bool:
        return not any(math.isinf(v) for v in self.as_tuple())

    def as_tuple(self) -> tuple[float, float, float]:
        return (self.cores, self.memory, self.disk)

    def fits_within(self, other: ResourceSet) -> bool:
        return all(mine <= theirs + LEDGER_EPSILON for mine, theirs in zip(self.as_tuple(), other.as_tuple()))

    def exceeded_dimensions(self, other: ResourceSet) -> list[str]:
        """Names of the dimensions where this amount is larger than `other`."""
        names = ("cores", "memory", "disk")
        return [n for n, mine, theirs in zip(names, self.as_tuple(), other.as_tuple()) if mine > theirs + LEDGER_EPSILON]

    def __add__(self, other: ResourceSet) -> ResourceSet:
        return ResourceSet(
            cores=self.cores + other.cores,
            memory=self.memory + other.memory,
            disk=self.disk + other.disk,
        )

    def __sub__(self, other: ResourceSet) -> ResourceSet:
        """
        Subtracts `other`; raises ValueError if any dimension would go
        below zero by more than LEDGER_EPSILON. Results within LEDGER_EPSILON of
        zero clamp to 0.
        """
        values = []
        for mine, theirs in zip(self.as_tuple(), other.as_tuple()):
            if math.isinf(mine) and math.isinf(theirs):
                values.append(0.0)
                continue
            diff = mine - theirs
            if diff < -LEDGER_EPSILON:
                raise ValueError(f"negative resource amount: {mine} - {theirs}")
            values.append(diff if diff > LEDGER_EPSILON else 0.0)
        return ResourceSet(cores=values[0], memory=values[1], disk=values[2])

    def describe(self) -> str:
        return (
            f"cores={format_quantity(self.cores, binary=False)} "
            f"memory={format_quantity(self.memory)} "
            f"disk={format_quantity(self.disk)}"
        )


DEFAULT_TASK_RESOURCES = ResourceSet(cores=1.0)


class NodeView(BaseModel):
    """
    Immutable, point-in-time view of one graph node, handed to readers
    such as the status reporter.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    seq: int
    name: str
    state: GraphNodeState
    resources: ResourceSet
    blocked: bool = False
    error: Optional[str] = None
    elapsed_s: Optional[float] = None

    @property
    def is_settled(self) -> bool:
        return self.state.is_terminal or self.blocked


class StateCounts(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    running: int = 0
    eligible: int = 0
    ineligible: int = 0
    blocked: int = 0
    done: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.running + self.eligible + self.ineligible + self.blocked + self.done + self.failed

    @classmethod
    def from_views(cls, views: Iterable[NodeView]) -> StateCounts:
        counts = {"running": 0, "eligible": 0, "ineligible": 0, "blocked": 0, "done": 0, "failed": 0}
        for view in views:
            if view.blocked:
                counts["blocked"] += 1
            else:
                counts[view.state.value.lower()] += 1
        return cls(**counts)


class RunResult(BaseModel):
    """
    Outcome of TaskManager.run_to_completion.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    succeeded: bool
    counts: StateCounts
    ticks: int = Field(ge=0)

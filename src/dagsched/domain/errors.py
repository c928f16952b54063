# src/dagsched/domain/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class DagschedError(Exception):
    """
    Base domain error.

    Structural errors (cycles, unknown tasks) are raised to callers;
    execution failures are recorded on the node instead.
    """
    message: str
    code: str = "DAGSCHED_ERROR"
    details: Optional[dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


@dataclass
class ValidationError(DagschedError):
    code: str = "VALIDATION_ERROR"


@dataclass
class UnknownTaskError(DagschedError):
    code: str = "UNKNOWN_TASK"


@dataclass
class CycleDetectedError(DagschedError):
    code: str = "CYCLE_DETECTED"


@dataclass
class ResourceOverrequestError(DagschedError):
    code: str = "RESOURCE_OVERREQUEST"


@dataclass
class ResourceLedgerError(DagschedError):
    code: str = "RESOURCE_LEDGER"


@dataclass
class ExecutionFailure(DagschedError):
    code: str = "EXECUTION_FAILED"


@dataclass
class IllegalTransitionError(DagschedError):
    code: str = "ILLEGAL_TRANSITION"

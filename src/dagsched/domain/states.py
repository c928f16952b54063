# src/dagsched/domain/states.py
from __future__ import annotations

from enum import StrEnum


class GraphNodeState(StrEnum):
    """
    Lifecycle of a node in the task graph.

    Transitions only move forward:
      INELIGIBLE -> ELIGIBLE -> RUNNING -> DONE | FAILED

    Notes:
      - A node whose ancestor failed stays INELIGIBLE and is flagged as
        blocked on the node; it never becomes ELIGIBLE.
      - A node whose requirement can never fit the pool goes straight from
        ELIGIBLE to FAILED without running.
    """

    INELIGIBLE = "INELIGIBLE"
    ELIGIBLE = "ELIGIBLE"
    RUNNING = "RUNNING"
    DONE = "DONE"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (GraphNodeState.DONE, GraphNodeState.FAILED)

    @property
    def rank(self) -> int:
        # DONE and FAILED share a rank; neither follows the other.
        return _RANKS[self]

    def can_transition_to(self, other: GraphNodeState) -> bool:
        if self.is_terminal:
            return False
        if self is GraphNodeState.ELIGIBLE and other is GraphNodeState.FAILED:
            return True
        return other.rank == self.rank + 1


_RANKS = {
    GraphNodeState.INELIGIBLE: 0,
    GraphNodeState.ELIGIBLE: 1,
    GraphNodeState.RUNNING: 2,
    GraphNodeState.DONE: 3,
    GraphNodeState.FAILED: 3,
}

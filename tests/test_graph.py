# tests/test_graph.py
import pytest

from dagsched.domain.errors import CycleDetectedError, IllegalTransitionError, UnknownTaskError
from dagsched.domain.states import GraphNodeState
from dagsched.engine import TaskGraph
from dagsched.tasks import NoOpTask


def test_add_task_without_upstream_is_eligible():
    graph = TaskGraph()
    task = NoOpTask("a")
    graph.add_task(task)
    assert graph.state_of(task) is GraphNodeState.ELIGIBLE


def test_add_task_with_declared_upstream_is_ineligible():
    graph = TaskGraph()
    a, b = NoOpTask("a"), NoOpTask("b")
    graph.add_dependency(a, b)
    graph.add_tasks([a, b])
    assert graph.state_of(a) is GraphNodeState.ELIGIBLE
    assert graph.state_of(b) is GraphNodeState.INELIGIBLE


def test_re_adding_a_task_is_idempotent():
    graph = TaskGraph()
    task = NoOpTask("a")
    first = graph.add_task(task)
    second = graph.add_task(task)
    assert first == second
    assert len(graph) == 1


def test_same_name_different_tasks_are_distinct_nodes():
    graph = TaskGraph()
    graph.add_tasks([NoOpTask("same"), NoOpTask("same")])
    assert len(graph) == 2


def test_cycle_is_rejected_and_graph_unchanged():
    graph = TaskGraph()
    a, b, c = NoOpTask("a"), NoOpTask("b"), NoOpTask("c")
    graph.add_dependency(a, b)
    graph.add_dependency(b, c)
    graph.add_tasks([a, b, c])
    before = graph.snapshot()
    version = graph.version

    with pytest.raises(CycleDetectedError) as exc:
        graph.add_dependency(c, a)

    assert exc.value.code == "CYCLE_DETECTED"
    assert graph.snapshot() == before
    assert graph.version == version
    assert graph.downstream_of(c) == []
    assert graph.upstream_of(a) == []


def test_self_dependency_is_a_cycle():
    graph = TaskGraph()
    a = NoOpTask("a")
    with pytest.raises(CycleDetectedError):
        graph.add_dependency(a, a)


def test_duplicate_edge_is_recorded_once():
    graph = TaskGraph()
    a, b = NoOpTask("a"), NoOpTask("b")
    graph.add_dependency(a, b)
    graph.add_dependency(a, b)
    assert graph.upstream_of(b) == [a]


def test_state_of_unknown_task_is_none_and_node_raises():
    graph = TaskGraph()
    stranger = NoOpTask("stranger")
    assert graph.state_of(stranger) is None
    with pytest.raises(UnknownTaskError):
        graph.node(stranger)


def test_recompute_promotes_only_when_all_upstream_done():
    graph = TaskGraph()
    a, b, c = NoOpTask("a"), NoOpTask("b"), NoOpTask("c")
    graph.add_dependency(a, c)
    graph.add_dependency(b, c)
    graph.add_tasks([a, b, c])

    for state in (GraphNodeState.RUNNING, GraphNodeState.DONE):
        graph.transition(a, state)
    assert graph.recompute_eligibility() == []
    assert graph.state_of(c) is GraphNodeState.INELIGIBLE

    for state in (GraphNodeState.RUNNING, GraphNodeState.DONE):
        graph.transition(b, state)
    promoted = graph.recompute_eligibility()
    assert [n.task for n in promoted] == [c]
    assert graph.state_of(c) is GraphNodeState.ELIGIBLE


def test_failed_upstream_blocks_all_descendants():
    graph = TaskGraph()
    a, b, c = NoOpTask("a"), NoOpTask("b"), NoOpTask("c")
    graph.add_dependency(b, c)
    graph.add_dependency(a, b)
    graph.add_tasks([c, b, a])

    graph.transition(a, GraphNodeState.RUNNING)
    graph.transition(a, GraphNodeState.FAILED, error="boom")
    graph.recompute_eligibility()

    assert graph.node(b).blocked
    assert graph.node(c).blocked
    assert graph.state_of(c) is GraphNodeState.INELIGIBLE


def test_illegal_transitions_are_rejected():
    graph = TaskGraph()
    a = NoOpTask("a")
    graph.add_task(a)
    with pytest.raises(IllegalTransitionError):
        graph.transition(a, GraphNodeState.DONE)
    graph.transition(a, GraphNodeState.RUNNING)
    graph.transition(a, GraphNodeState.DONE)
    with pytest.raises(IllegalTransitionError):
        graph.transition(a, GraphNodeState.RUNNING)


def test_snapshot_reports_elapsed_for_started_nodes():
    graph = TaskGraph()
    a, b = NoOpTask("a"), NoOpTask("b")
    graph.add_tasks([a, b])
    graph.transition(a, GraphNodeState.RUNNING)
    views = {v.name: v for v in graph.snapshot()}
    assert views["a"].elapsed_s is not None
    assert views["b"].elapsed_s is None

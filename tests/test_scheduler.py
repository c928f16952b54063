# tests/test_scheduler.py
import threading
import time

from conftest import WaitForIt, wait_until

from dagsched.domain.models import ResourceSet
from dagsched.domain.states import GraphNodeState
from dagsched.tasks import CallableTask, NoOpTask


def _raise():
    raise RuntimeError("boom")


def test_single_noop_task_runs_to_done(manager):
    task = NoOpTask("only")
    manager.add_task(task)

    result = manager.run_to_completion(fail_fast=True)

    assert result.succeeded
    assert result.counts.done == 1
    assert manager.graph_node_state_for(task) is GraphNodeState.DONE


def test_empty_graph_completes_immediately(manager):
    result = manager.run_to_completion()
    assert result.succeeded
    assert result.counts.total == 0


def test_body_exception_becomes_failed_node(manager):
    task = CallableTask(_raise, name="explodes")
    manager.add_task(task)

    result = manager.run_to_completion(fail_fast=True)

    assert not result.succeeded
    assert result.counts.failed == 1
    view = manager.view_for(task)
    assert view.state is GraphNodeState.FAILED
    assert view.error == "boom"


def test_non_zero_exit_status_fails(manager):
    task = CallableTask(lambda: 3, name="exit3")
    ok = CallableTask(lambda: 0, name="exit0")
    manager.add_tasks(task, ok)

    manager.run_to_completion()

    assert manager.graph_node_state_for(task) is GraphNodeState.FAILED
    assert "status 3" in manager.view_for(task).error
    assert manager.graph_node_state_for(ok) is GraphNodeState.DONE


def test_admitted_task_is_not_settled_in_the_same_tick(manager):
    task = NoOpTask("quick")
    manager.add_task(task)

    manager.step_execution()
    assert manager.graph_node_state_for(task) is GraphNodeState.RUNNING

    assert wait_until(lambda: manager.step_execution() >= 0 and manager.graph_node_state_for(task) is GraphNodeState.DONE)


def test_dependency_holds_downstream_until_upstream_done(manager):
    first = WaitForIt("first")
    second = NoOpTask("second")
    manager.add_dependency(first, second)
    manager.add_tasks(first, second)

    assert manager.graph_node_state_for(first) is GraphNodeState.ELIGIBLE
    assert manager.graph_node_state_for(second) is GraphNodeState.INELIGIBLE

    manager.step_execution()
    assert first.started.wait(timeout=3.0)
    for _ in range(3):
        manager.step_execution()
    assert manager.graph_node_state_for(second) is GraphNodeState.INELIGIBLE

    first.release()
    result = manager.run_to_completion()
    assert result.succeeded
    assert manager.graph_node_state_for(second) is GraphNodeState.DONE


def test_edge_recorded_after_nodes_added_still_gates_ineligible_downstream(manager):
    upstream = NoOpTask("up")
    downstream = NoOpTask("down")
    other = NoOpTask("other")
    manager.add_dependency(other, downstream)
    manager.add_tasks(downstream, other)
    manager.add_dependency(upstream, downstream)

    # "up" is not in the graph yet: "down" cannot become eligible
    manager.run_to_completion()
    assert manager.graph_node_state_for(downstream) is GraphNodeState.INELIGIBLE

    manager.add_task(upstream)
    result = manager.run_to_completion()
    assert result.succeeded


def test_stalled_graph_returns_unsuccessfully(manager):
    missing = NoOpTask("never-added")
    waiting = NoOpTask("waiting")
    manager.add_dependency(missing, waiting)
    manager.add_task(waiting)

    result = manager.run_to_completion()

    assert not result.succeeded
    assert result.counts.ineligible == 1


def test_resources_limit_concurrency(manager_factory):
    manager = manager_factory(resources=ResourceSet(cores=2))
    lock = threading.Lock()
    active = 0
    peak = 0

    def _body():
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.03)
        with lock:
            active -= 1

    manager.add_tasks(*(CallableTask(_body, name=f"t{i}") for i in range(6)))
    result = manager.run_to_completion()

    assert result.succeeded
    assert peak <= 2


def test_reserved_never_exceeds_total(manager_factory):
    total = ResourceSet(cores=3, memory=1000)
    manager = manager_factory(resources=total)
    tasks = [
        CallableTask(lambda: time.sleep(0.01), name=f"t{i}", resources=ResourceSet(cores=1 + i % 2, memory=300))
        for i in range(8)
    ]
    manager.add_tasks(*tasks)

    deadline = time.monotonic() + 5.0
    while manager.state_counts().done != len(tasks):
        assert time.monotonic() < deadline, "tasks did not finish"
        manager.step_execution()
        reserved, _ = manager.resources.snapshot()
        assert reserved.fits_within(total)
        running = [v for v in manager.snapshot() if v.state is GraphNodeState.RUNNING]
        assert sum(v.resources.cores for v in running) <= 3
        assert sum(v.resources.memory for v in running) <= 1000
        time.sleep(0.005)

    assert manager.resources.reserved == ResourceSet.none()


def test_admission_is_first_come_first_served(manager_factory):
    manager = manager_factory(resources=ResourceSet(cores=1))
    order = []
    tasks = [CallableTask(lambda i=i: order.append(i), name=f"t{i}") for i in range(4)]
    manager.add_tasks(*tasks)

    manager.run_to_completion()

    assert order == [0, 1, 2, 3]


def test_overrequest_fails_without_running(manager_factory):
    manager = manager_factory(resources=ResourceSet(cores=2))
    ran = []
    greedy = CallableTask(lambda: ran.append(1), name="greedy", resources=ResourceSet(cores=4))
    fine = NoOpTask("fine")
    manager.add_tasks(greedy, fine)

    result = manager.run_to_completion()

    assert not result.succeeded
    assert ran == []
    view = manager.view_for(greedy)
    assert view.state is GraphNodeState.FAILED
    assert "more than the total capacity" in view.error
    assert manager.graph_node_state_for(fine) is GraphNodeState.DONE


def test_failure_blocks_downstream(manager):
    bad = CallableTask(_raise, name="bad")
    child = NoOpTask("child")
    grandchild = NoOpTask("grandchild")
    sibling = NoOpTask("sibling")
    manager.add_dependency(bad, child)
    manager.add_dependency(child, grandchild)
    manager.add_tasks(grandchild, child, bad, sibling)

    result = manager.run_to_completion(fail_fast=False)

    assert not result.succeeded
    assert result.counts.failed == 1
    assert result.counts.blocked == 2
    assert result.counts.done == 1
    # blocked nodes keep their lifecycle state
    assert manager.graph_node_state_for(child) is GraphNodeState.INELIGIBLE
    assert manager.view_for(grandchild).blocked


def test_fail_fast_stops_new_admissions_but_lets_running_finish(manager_factory):
    manager = manager_factory(resources=ResourceSet(cores=2), fail_fast=True)
    slow = WaitForIt("slow")
    bad = CallableTask(_raise, name="bad")
    # one core each: `later` only fits once `bad` has released its core
    later = CallableTask(lambda: None, name="later")
    manager.add_tasks(slow, bad, later)

    try:
        manager.step_execution()
        assert manager.graph_node_state_for(slow) is GraphNodeState.RUNNING
        assert manager.graph_node_state_for(bad) is GraphNodeState.RUNNING
        assert manager.graph_node_state_for(later) is GraphNodeState.ELIGIBLE
        assert wait_until(lambda: manager.step_execution() >= 0 and manager.has_failures)

        for _ in range(3):
            manager.step_execution()
        assert manager.resources.available.cores == 1
        assert manager.graph_node_state_for(later) is GraphNodeState.ELIGIBLE
        assert manager.graph_node_state_for(slow) is GraphNodeState.RUNNING
    finally:
        slow.release()

    result = manager.run_to_completion(fail_fast=True)

    assert not result.succeeded
    assert manager.graph_node_state_for(slow) is GraphNodeState.DONE
    assert manager.graph_node_state_for(later) is GraphNodeState.ELIGIBLE
    assert result.counts.eligible == 1


def test_without_fail_fast_independent_work_continues(manager_factory):
    manager = manager_factory(resources=ResourceSet(cores=1))
    bad = CallableTask(_raise, name="bad")
    later = NoOpTask("later")
    manager.add_tasks(bad, later)

    result = manager.run_to_completion(fail_fast=False)

    assert result.counts.failed == 1
    assert result.counts.done == 1


def test_states_only_move_forward(manager):
    seen = {}
    tasks = [NoOpTask(f"t{i}") for i in range(4)]
    manager.add_dependency(tasks[0], tasks[1])
    manager.add_dependency(tasks[1], tasks[2])
    manager.add_dependency(tasks[0], tasks[3])
    manager.add_tasks(*tasks)

    for _ in range(200):
        manager.step_execution()
        for task in tasks:
            state = manager.graph_node_state_for(task)
            history = seen.setdefault(task.name, [])
            if not history or history[-1] is not state:
                history.append(state)
        if all(manager.graph_node_state_for(t) is GraphNodeState.DONE for t in tasks):
            break
        time.sleep(0.005)

    for name, history in seen.items():
        ranks = [state.rank for state in history]
        assert ranks == sorted(set(ranks)), name
        assert history[-1] is GraphNodeState.DONE


def test_reporter_queries_are_safe_while_ticking(manager):
    tasks = [CallableTask(lambda: time.sleep(0.001), name=f"t{i}", resources=ResourceSet.none()) for i in range(50)]
    manager.add_tasks(*tasks)
    errors = []
    stop = threading.Event()

    def _reader():
        while not stop.is_set():
            try:
                counts = manager.state_counts()
                assert counts.total == 50
                manager.resources.snapshot()
            except Exception as e:
                errors.append(e)

    reader = threading.Thread(target=_reader)
    reader.start()
    try:
        result = manager.run_to_completion()
    finally:
        stop.set()
        reader.join()

    assert result.succeeded
    assert errors == []

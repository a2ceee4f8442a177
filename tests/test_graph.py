"""Tests for specflow.workflow.graph module."""

import pytest

from specflow.lib.errors import (
    CircularDependencyError,
    DanglingReferenceError,
    DuplicateTaskError,
    GraphError,
    SpecNotFoundError,
    TaskNotFoundError,
)
from specflow.lib.models import Specification, Subtask, Task
from specflow.lib.types import Priority, TaskStatus
from specflow.workflow.graph import (
    build_graph,
    get_blocked_tasks,
    get_blocking_chain,
    get_dependency_chain,
    get_ready_tasks,
)
from specflow.workflow.state import WorkflowState


def make_spec(spec_id, *tasks, priority=Priority.P2, phase=None):
    return Specification(
        id=spec_id,
        priority=priority,
        phase=phase,
        tasks=[Task(id=t[0], spec_id=spec_id, depends_on=list(t[1:])) for t in tasks],
    )


def state_with(completed=(), assigned=(), blocked=()):
    state = WorkflowState()
    ledger = state.assignments
    for key in completed:
        ledger["completed_tasks"][key] = {
            "task_key": key, "capability": None, "started_at": None,
            "completed_at": "2026-01-01T00:00:00+00:00", "notes": None, "duration_hours": None,
        }
    for key in assigned:
        ledger["current_assignments"][key] = {
            "task_key": key, "capability": "backend-developer",
            "started_at": "2026-01-01T00:00:00+00:00", "notes": None, "assigned_by": "router",
        }
    for key in blocked:
        ledger["blocked_tasks"][key] = {"reason": "waiting on design", "blocked_at": "2026-01-01T00:00:00+00:00"}
    return state


class TestBuildGraph:
    """Graph construction and validation."""

    def test_resolves_same_and_cross_spec_references(self):
        specs = [
            make_spec("A", ("T1",), ("T2", "T1", "B:T1")),
            make_spec("B", ("T1",)),
        ]
        graph = build_graph(specs)
        assert graph.get("A:T2").dependencies == ["A:T1", "B:T1"]
        assert [t.key for t in graph.dependents("B:T1")] == ["A:T2"]

    def test_inherits_spec_priority_and_phase(self):
        graph = build_graph([make_spec("A", ("T1",), priority=Priority.P0, phase="PHASE-1")])
        task = graph.get("A:T1")
        assert task.priority == Priority.P0
        assert task.phase == "PHASE-1"

    def test_task_priority_overrides_spec(self):
        spec = make_spec("A", ("T1",), priority=Priority.P3)
        spec.tasks[0].priority_override = Priority.P0
        assert build_graph([spec]).get("A:T1").priority == Priority.P0

    def test_dangling_reference(self):
        with pytest.raises(DanglingReferenceError) as exc:
            build_graph([make_spec("A", ("T1", "T9"))])
        assert exc.value.task_key == "A:T1"
        assert exc.value.reference == "T9"

    def test_duplicate_task(self):
        with pytest.raises(DuplicateTaskError):
            build_graph([make_spec("A", ("T1",), ("T1",))])

    def test_duplicate_spec(self):
        with pytest.raises(GraphError, match="more than once"):
            build_graph([make_spec("A", ("T1",)), make_spec("A", ("T2",))])

    def test_two_task_cycle(self):
        with pytest.raises(CircularDependencyError) as exc:
            build_graph([make_spec("S", ("T4", "T5"), ("T5", "T4"))])
        assert exc.value.cycle[0] == exc.value.cycle[-1]
        assert set(exc.value.cycle) == {"S:T4", "S:T5"}

    def test_self_dependency_is_a_cycle(self):
        with pytest.raises(CircularDependencyError):
            build_graph([make_spec("S", ("T1", "T1"))])

    def test_cross_spec_cycle(self):
        specs = [make_spec("A", ("T1", "B:T1")), make_spec("B", ("T1", "A:T1"))]
        with pytest.raises(CircularDependencyError, match="A:T1"):
            build_graph(specs)

    def test_input_specs_not_mutated(self):
        spec = make_spec("A", ("T1",))
        build_graph([spec], state_with(completed=["A:T1"]))
        assert spec.tasks[0].status == TaskStatus.PENDING
        assert spec.tasks[0].dependencies == []


class TestDerivedStatus:
    """Effective status from documents plus ledger."""

    def test_statuses(self):
        specs = [make_spec("S", ("T1",), ("T2", "T1"), ("T3",), ("T4",), ("T5", "T2"))]
        state = state_with(completed=["S:T1"], assigned=["S:T2"], blocked=["S:T4"])
        graph = build_graph(specs, state)

        assert graph.get("S:T1").status == TaskStatus.COMPLETE
        assert graph.get("S:T2").status == TaskStatus.IN_PROGRESS
        assert graph.get("S:T3").status == TaskStatus.READY
        assert graph.get("S:T4").status == TaskStatus.BLOCKED
        assert graph.get("S:T4").blocked_reason == "waiting on design"
        assert graph.get("S:T5").status == TaskStatus.PENDING

    def test_document_done_counts_as_complete(self):
        spec = make_spec("S", ("T1",), ("T2", "T1"))
        spec.tasks[0].status = TaskStatus.COMPLETE
        graph = build_graph([spec])
        assert graph.get("S:T2").status == TaskStatus.READY

    def test_subtask_completions_applied(self):
        spec = make_spec("S", ("T1",))
        spec.tasks[0].subtasks = [Subtask(id="T1-1"), Subtask(id="T1-2")]
        state = WorkflowState()
        state.assignments["completed_subtasks"]["S:T1"] = {"T1-1": {"completed_at": "x", "notes": None}}
        task = build_graph([spec], state).get("S:T1")
        assert [s.complete for s in task.subtasks] == [True, False]
        assert spec.tasks[0].subtasks[0].status == "pending"


class TestReadiness:
    """Ready-set queries."""

    def test_incomplete_dependency_never_ready(self):
        specs = [make_spec("S", ("T1",), ("T2", "T1"), ("T3", "T2"))]
        ready = [t.key for t in get_ready_tasks(build_graph(specs))]
        assert ready == ["S:T1"]

    def test_ready_after_completion(self):
        specs = [make_spec("S", ("T1",), ("T2", "T1"), ("T3", "T1"))]
        graph = build_graph(specs, state_with(completed=["S:T1"]))
        assert [t.key for t in get_ready_tasks(graph)] == ["S:T2", "S:T3"]

    def test_assigned_and_blocked_tasks_not_ready(self):
        specs = [make_spec("S", ("T1",), ("T2",), ("T3",))]
        graph = build_graph(specs, state_with(assigned=["S:T1"], blocked=["S:T2"]))
        assert [t.key for t in get_ready_tasks(graph)] == ["S:T3"]


class TestChains:
    """Dependency diagnostics."""

    def test_dependency_chain_prerequisites_first(self):
        specs = [make_spec("S", ("T1",), ("T2", "T1"), ("T3", "T2", "T1"))]
        chain = [t.key for t in get_dependency_chain(build_graph(specs), "S:T3")]
        assert chain == ["S:T1", "S:T2"]

    def test_blocking_chain_excludes_complete(self):
        specs = [make_spec("S", ("T1",), ("T2", "T1"), ("T3", "T2"))]
        graph = build_graph(specs, state_with(completed=["S:T1"]))
        assert get_blocking_chain(graph, "S:T3") == ["S:T2"]

    def test_blocked_report(self):
        specs = [make_spec("S", ("T1",), ("T2", "T1"), ("T3",))]
        graph = build_graph(specs, state_with(blocked=["S:T3"]))
        report = {b.task.key: b for b in get_blocked_tasks(graph)}
        assert report["S:T2"].waiting_on == ["S:T1"]
        assert report["S:T3"].reason == "waiting on design"
        assert "S:T1" not in report

    def test_long_chain_has_no_depth_limit(self):
        ids = [f"T{i:04d}" for i in range(3000)]
        chain = [(ids[0],)] + [(ids[i], ids[i - 1]) for i in range(1, len(ids))]
        graph = build_graph([make_spec("S", *chain)])
        prerequisites = get_dependency_chain(graph, f"S:{ids[-1]}")
        assert len(prerequisites) == 2999
        assert prerequisites[0].key == "S:T0000"
        assert prerequisites[-1].key == "S:T2998"

    def test_long_cycle_detected(self):
        ids = [f"T{i:04d}" for i in range(3000)]
        chain = [(ids[0], ids[-1])] + [(ids[i], ids[i - 1]) for i in range(1, len(ids))]
        with pytest.raises(CircularDependencyError) as exc:
            build_graph([make_spec("S", *chain)])
        assert len(exc.value.cycle) == 3001
        assert exc.value.cycle[0] == exc.value.cycle[-1]


class TestLookups:
    """Keyed access to tasks and specifications."""

    def test_unknown_spec(self):
        graph = build_graph([make_spec("S", ("T1",))])
        with pytest.raises(SpecNotFoundError, match="Specification FEAT-9 not found"):
            graph.require_spec("FEAT-9")

    def test_unknown_task(self):
        graph = build_graph([make_spec("S", ("T1",))])
        with pytest.raises(TaskNotFoundError, match="Task S:T9 not found"):
            graph.require("S:T9")

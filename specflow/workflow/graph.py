"""
Task graph model.

Builds a read-only view over the parsed specifications plus the persisted
workflow state. The graph is rebuilt on every engine invocation; nothing
here writes anything.

Effective task status is derived, in order:

    complete     completion record in the ledger, or the document says done
    in_progress  active assignment in the ledger
    blocked      manual block override in the ledger
    ready        every dependency complete
    pending      otherwise

Other statuses written in the documents are ignored: the documents define
what exists, the ledger defines who is assigned and what is complete.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Iterator

from specflow.lib.errors import (
    CircularDependencyError,
    DanglingReferenceError,
    DuplicateTaskError,
    GraphError,
    SpecNotFoundError,
    TaskNotFoundError,
)
from specflow.lib.models import Specification, Task, task_key
from specflow.lib.types import TaskStatus
from specflow.workflow.state import WorkflowState

logger = logging.getLogger(__name__)


@dataclass
class BlockedTask:
    """A task that cannot be started, and why."""
    task: Task
    waiting_on: list[str] = field(default_factory=list)  # incomplete prerequisite keys
    reason: str | None = None                          # manual block reason


@dataclass
class TaskGraph:
    specs: dict[str, Specification]
    tasks: dict[str, Task]
    digest: str
    _dependents: dict[str, list[str]] = field(default_factory=dict, repr=False)

    def __iter__(self) -> Iterator[Task]:
        for key in sorted(self.tasks):
            yield self.tasks[key]

    def __len__(self) -> int:
        return len(self.tasks)

    def get(self, key: str) -> Task | None:
        return self.tasks.get(key)

    def require(self, key: str) -> Task:
        task = self.tasks.get(key)
        if task is None:
            raise TaskNotFoundError(key)
        return task

    def require_spec(self, spec_id: str) -> Specification:
        spec = self.specs.get(spec_id)
        if spec is None:
            raise SpecNotFoundError(spec_id)
        return spec

    def dependents(self, key: str) -> list[Task]:
        """Tasks that list `key` as a direct dependency."""
        return [self.tasks[k] for k in self._dependents.get(key, [])]

    def is_complete(self, key: str) -> bool:
        task = self.tasks.get(key)
        return task is not None and task.status == TaskStatus.COMPLETE


def _resolve_reference(spec_id: str, reference: str) -> str:
    if ":" in reference:
        return reference
    return task_key(spec_id, reference)


def _document_digest(specs: list[Specification]) -> str:
    """Stable hash of the parts of the documents that affect progress."""
    payload = [
        [
            spec.id,
            spec.status.value,
            [
                [t.id, t.status.value, t.depends_on, [[s.id, s.status] for s in t.subtasks]]
                for t in spec.tasks
            ],
        ]
        for spec in specs
    ]
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()[:16]


def _check_acyclic(tasks: dict[str, Task]) -> None:
    """Depth-first traversal with an explicit stack and an on-path check.

    Iterative so long dependency chains cannot hit the recursion limit.
    """
    visited: set[str] = set()
    on_path: set[str] = set()

    for root in sorted(tasks):
        if root in visited:
            continue
        visited.add(root)
        on_path.add(root)
        path = [root]
        stack = [iter(tasks[root].dependencies)]

        while stack:
            for dep in stack[-1]:
                if dep in on_path:
                    raise CircularDependencyError(path[path.index(dep):] + [dep])
                if dep not in visited:
                    visited.add(dep)
                    on_path.add(dep)
                    path.append(dep)
                    stack.append(iter(tasks[dep].dependencies))
                    break
            else:
                stack.pop()
                on_path.discard(path.pop())


def build_graph(specs: list[Specification], state: WorkflowState | None = None) -> TaskGraph:
    """Build and validate the task graph.

    Raises:
        DuplicateTaskError: two tasks share a key
        DanglingReferenceError: a dependency names an unknown task
        CircularDependencyError: the dependency relation has a cycle
    """
    state = state or WorkflowState()
    tasks: dict[str, Task] = {}
    graph_specs: dict[str, Specification] = {}

    for spec in specs:
        if spec.id in graph_specs:
            raise GraphError(f"Specification {spec.id} is defined more than once", spec=spec.id)
        spec_tasks = []
        for task in spec.tasks:
            node = replace(
                task,
                spec_id=spec.id,
                priority=task.priority_override or spec.priority,
                phase=task.phase_override or spec.phase,
                spec_status=spec.status,
                subtasks=[replace(s) for s in task.subtasks],
                dependencies=[_resolve_reference(spec.id, ref) for ref in task.depends_on],
            )
            if node.key in tasks:
                raise DuplicateTaskError(node.key)
            tasks[node.key] = node
            spec_tasks.append(node)
        graph_specs[spec.id] = replace(spec, tasks=spec_tasks)

    dependents: dict[str, list[str]] = {}
    for key, task in tasks.items():
        for ref, dep in zip(task.depends_on, task.dependencies):
            if dep not in tasks:
                raise DanglingReferenceError(key, ref)
            dependents.setdefault(dep, []).append(key)
    for keys in dependents.values():
        keys.sort()

    _check_acyclic(tasks)

    # Subtask completions recorded by the engine
    for key, task in tasks.items():
        done = state.completed_subtasks(key)
        for subtask in task.subtasks:
            if subtask.id in done:
                subtask.status = "complete"

    complete = {
        key for key, task in tasks.items()
        if task.status == TaskStatus.COMPLETE or state.completion(key) is not None
    }

    for key, task in tasks.items():
        task.blocked_reason = None
        if key in complete:
            task.status = TaskStatus.COMPLETE
        elif state.active_assignment(key) is not None:
            task.status = TaskStatus.IN_PROGRESS
        elif state.block_reason(key) is not None:
            task.status = TaskStatus.BLOCKED
            task.blocked_reason = state.block_reason(key)
        elif all(dep in complete for dep in task.dependencies):
            task.status = TaskStatus.READY
        else:
            task.status = TaskStatus.PENDING

    logger.debug(f"[GRAPH] built {len(tasks)} tasks across {len(graph_specs)} specs")
    return TaskGraph(
        specs=graph_specs,
        tasks=tasks,
        digest=_document_digest(specs),
        _dependents=dependents,
    )


def is_ready(graph: TaskGraph, task: Task) -> bool:
    """Ready: not started, not blocked, every dependency complete."""
    if task.status not in (TaskStatus.PENDING, TaskStatus.READY):
        return False
    return all(graph.is_complete(dep) for dep in task.dependencies)


def get_ready_tasks(graph: TaskGraph) -> list[Task]:
    return [task for task in graph if is_ready(graph, task)]


def get_dependency_chain(graph: TaskGraph, key: str) -> list[Task]:
    """All transitive prerequisites of `key`, prerequisites first."""
    graph.require(key)
    ordered: list[str] = []
    seen: set[str] = set()
    stack = [(key, iter(graph.tasks[key].dependencies))]

    while stack:
        current, deps = stack[-1]
        for dep in deps:
            if dep not in seen:
                seen.add(dep)
                stack.append((dep, iter(graph.tasks[dep].dependencies)))
                break
        else:
            stack.pop()
            if stack:
                ordered.append(current)

    return [graph.tasks[k] for k in ordered]


def get_blocking_chain(graph: TaskGraph, key: str) -> list[str]:
    """Keys of the incomplete transitive prerequisites of `key`."""
    return [t.key for t in get_dependency_chain(graph, key) if t.status != TaskStatus.COMPLETE]


def get_blocked_tasks(graph: TaskGraph) -> list[BlockedTask]:
    """Tasks waiting on dependencies or held by a manual block."""
    blocked = []
    for task in graph:
        if task.status == TaskStatus.BLOCKED:
            blocked.append(BlockedTask(
                task=task,
                waiting_on=get_blocking_chain(graph, task.key),
                reason=task.blocked_reason,
            ))
        elif task.status == TaskStatus.PENDING:
            blocked.append(BlockedTask(task=task, waiting_on=get_blocking_chain(graph, task.key)))
    return blocked

"""
Context preparation for handoffs.

When a task becomes ready, the handoff engine asks a ContextPreparer to
stage what the next agent needs: the task, its specification, the notes
left by completed prerequisites, and current progress. Preparers raise on
failure; the engine retries on the next status query.
"""

import logging
from pathlib import Path
from typing import Protocol

from specflow.lib.fileio import atomic_write_json
from specflow.lib.models import HandoffRecord, utc_now
from specflow.lib.progress import spec_progress, task_progress
from specflow.lib.types import TaskStatus
from specflow.workflow.graph import TaskGraph, get_dependency_chain
from specflow.workflow.state import WorkflowState

logger = logging.getLogger(__name__)

CONTEXT_DIRNAME = "context"


class ContextPreparer(Protocol):
    def prepare(self, handoff: HandoffRecord, graph: TaskGraph, state: WorkflowState) -> None:
        ...


def build_context_package(handoff: HandoffRecord, graph: TaskGraph, state: WorkflowState) -> dict:
    task = graph.require(handoff.to_task)
    spec = graph.require_spec(task.spec_id)

    dependencies = []
    for dep in get_dependency_chain(graph, task.key):
        if dep.status != TaskStatus.COMPLETE:
            continue
        record = state.completion(dep.key)
        dependencies.append({
            "task": dep.key,
            "title": dep.title,
            "completed_at": record.completed_at if record else None,
            "notes": record.notes if record else None,
        })

    return {
        "handoff": handoff.id,
        "prepared_at": utc_now(),
        "capability": handoff.capability,
        "from_task": handoff.from_task,
        "task": {
            "key": task.key,
            "title": task.title,
            "estimated_hours": task.estimated_hours,
            "context_requirements": task.context_requirements,
            "subtasks": [
                {"id": s.id, "description": s.description, "type": s.type, "status": s.status}
                for s in task.subtasks
            ],
        },
        "spec": {
            "id": spec.id,
            "title": spec.title,
            "priority": spec.priority.value,
            "phase": spec.phase,
            "path": spec.path,
        },
        "dependencies": dependencies,
        "progress": {
            "spec": spec_progress(spec).to_dict(),
            "task": task_progress(task).to_dict(),
        },
    }


class FileContextPreparer:
    """Writes the context package to <state_dir>/context/<task>.json."""

    def __init__(self, state_dir: Path):
        self.context_dir = Path(state_dir) / CONTEXT_DIRNAME

    def path_for(self, task_key: str) -> Path:
        return self.context_dir / f"{task_key.replace(':', '__')}.json"

    def prepare(self, handoff: HandoffRecord, graph: TaskGraph, state: WorkflowState) -> None:
        path = self.path_for(handoff.to_task)
        atomic_write_json(path, build_context_package(handoff, graph, state))
        logger.debug(f"[HANDOFF] context for {handoff.to_task} written to {path}")

"""
Progress derivation.

Pure functions over graph-derived specifications: progress is always
recomputed from task statuses, never accumulated.
"""

from dataclasses import dataclass, asdict

from specflow.lib.models import Specification, Task
from specflow.lib.types import TaskStatus


@dataclass
class ProgressReport:
    completed: int
    total: int
    percentage: float

    def to_dict(self) -> dict:
        return asdict(self)


def _report(completed: int, total: int) -> ProgressReport:
    pct = round(100 * completed / total, 1) if total else 0.0
    return ProgressReport(completed=completed, total=total, percentage=pct)


def task_progress(task: Task) -> ProgressReport:
    """Subtask ratio. A task without subtasks is 0 or 1 of 1."""
    if not task.subtasks:
        return _report(1 if task.status == TaskStatus.COMPLETE else 0, 1)
    return _report(sum(1 for s in task.subtasks if s.complete), len(task.subtasks))


def spec_progress(spec: Specification) -> ProgressReport:
    done = sum(1 for t in spec.tasks if t.status == TaskStatus.COMPLETE)
    return _report(done, len(spec.tasks))


def project_progress(specs: list[Specification]) -> ProgressReport:
    tasks = [t for spec in specs for t in spec.tasks]
    done = sum(1 for t in tasks if t.status == TaskStatus.COMPLETE)
    return _report(done, len(tasks))


def progress_snapshot(specs: list[Specification]) -> dict:
    """Overall and per-spec progress in the shape stored in progress.json."""
    return {
        "overall": project_progress(specs).to_dict(),
        "by_spec": {spec.id: spec_progress(spec).to_dict() for spec in specs},
    }

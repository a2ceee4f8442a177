"""
Data models for specflow.

Specification/Task/Subtask mirror the parsed documents. Assignment,
CompletionRecord and HandoffRecord are the records the state store persists.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional

from specflow.lib.types import Capability, Priority, SpecStatus, TaskStatus


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def hours_between(start: str, end: str) -> float:
    """Elapsed hours between two ISO timestamps, two decimals."""
    delta = datetime.fromisoformat(end) - datetime.fromisoformat(start)
    return round(delta.total_seconds() / 3600, 2)


def task_key(spec_id: str, task_id: str) -> str:
    return f"{spec_id}:{task_id}"


def split_key(key: str) -> tuple[str, str]:
    spec_id, sep, task_id = key.partition(":")
    if not sep or not spec_id or not task_id:
        raise ValueError(f"Malformed task key '{key}' (expected SPEC-ID:TASK-ID)")
    return spec_id, task_id


@dataclass
class Subtask:
    """Smallest tracked unit inside a task."""
    id: str
    description: str = ""
    type: str = "implementation"  # implementation, validation, ... (informational)
    status: str = "pending"       # pending, complete

    @property
    def complete(self) -> bool:
        return self.status == "complete"


@dataclass
class Task:
    """A unit of assignable work inside a specification."""
    id: str
    spec_id: str
    title: str = ""
    capability: Optional[Capability] = None     # None: any agent
    status: TaskStatus = TaskStatus.PENDING
    depends_on: list[str] = field(default_factory=list)   # TASK-ID or SPEC-ID:TASK-ID
    subtasks: list[Subtask] = field(default_factory=list)
    estimated_hours: Optional[float] = None
    context_requirements: list[str] = field(default_factory=list)
    priority_override: Optional[Priority] = None   # task-level priority, if declared
    phase_override: Optional[str] = None

    # Filled in by build_graph from the owning specification and state
    priority: Priority = Priority.P2
    phase: Optional[str] = None
    spec_status: SpecStatus = SpecStatus.BACKLOG
    dependencies: list[str] = field(default_factory=list)  # resolved task keys
    blocked_reason: Optional[str] = None

    @property
    def key(self) -> str:
        return task_key(self.spec_id, self.id)

    def get_subtask(self, subtask_id: str) -> Optional[Subtask]:
        for subtask in self.subtasks:
            if subtask.id == subtask_id:
                return subtask
        return None


@dataclass
class Specification:
    """Top-level unit of work."""
    id: str
    title: str = ""
    priority: Priority = Priority.P2
    phase: Optional[str] = None
    status: SpecStatus = SpecStatus.BACKLOG
    tasks: list[Task] = field(default_factory=list)
    path: Optional[str] = None  # Source document, for error messages


@dataclass
class Assignment:
    """Active binding of one task to one agent."""
    task_key: str
    capability: str
    started_at: str
    notes: Optional[str] = None
    assigned_by: str = "router"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Assignment":
        return cls(**data)


@dataclass
class CompletionRecord:
    task_key: str
    capability: Optional[str]
    started_at: Optional[str]
    completed_at: str
    notes: Optional[str] = None
    duration_hours: Optional[float] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "CompletionRecord":
        return cls(**data)


@dataclass
class HandoffRecord:
    """Transition from a completed task to a newly-ready one."""
    id: str
    to_task: str
    capability: str
    ready_at: str
    from_task: Optional[str] = None
    score: float = 0.0
    reason: str = ""
    origin: str = "automatic"   # automatic, manual
    status: str = "ready"       # ready, claimed, stale
    context_prepared: bool = False
    context_error: Optional[str] = None
    resolved_at: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "HandoffRecord":
        return cls(**data)

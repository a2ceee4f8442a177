"""
In-memory view of the persisted workflow state.

The store persists three independent records:

    assignments.json  ledger: active assignments, completions, subtask
                      completions, manual blocks, assignment history
    progress.json     cached progress snapshot (recomputed, never patched)
    handoffs.json     ready handoffs plus history

WorkflowState wraps the three dicts and offers typed accessors. It is what
build_graph() reads and what store transactions mutate.
"""

import copy
from dataclasses import dataclass, field

from specflow.lib.models import Assignment, CompletionRecord, HandoffRecord

RECORDS = ("assignments", "progress", "handoffs")


def empty_ledger() -> dict:
    return {
        "revision": 0,
        "updated_at": None,
        "current_assignments": {},
        "completed_tasks": {},
        "completed_subtasks": {},
        "blocked_tasks": {},
        "assignment_history": [],
    }


def empty_progress() -> dict:
    return {
        "fingerprint": None,
        "computed_at": None,
        "overall": {"completed": 0, "total": 0, "percentage": 0.0},
        "by_spec": {},
    }


def empty_handoffs() -> dict:
    return {"ready_handoffs": [], "handoff_history": []}


@dataclass
class WorkflowState:
    assignments: dict = field(default_factory=empty_ledger)
    progress: dict = field(default_factory=empty_progress)
    handoffs: dict = field(default_factory=empty_handoffs)

    @classmethod
    def from_records(cls, records: dict) -> "WorkflowState":
        return cls(
            assignments=records.get("assignments") or empty_ledger(),
            progress=records.get("progress") or empty_progress(),
            handoffs=records.get("handoffs") or empty_handoffs(),
        )

    def to_records(self) -> dict:
        return {name: getattr(self, name) for name in RECORDS}

    def copy(self) -> "WorkflowState":
        return WorkflowState(**copy.deepcopy(self.to_records()))

    @property
    def revision(self) -> int:
        return self.assignments["revision"]

    # Ledger accessors

    def active_assignment(self, key: str) -> Assignment | None:
        data = self.assignments["current_assignments"].get(key)
        return Assignment.from_dict(data) if data else None

    def active_assignments(self) -> list[Assignment]:
        return [
            Assignment.from_dict(data)
            for _, data in sorted(self.assignments["current_assignments"].items())
        ]

    def completion(self, key: str) -> CompletionRecord | None:
        data = self.assignments["completed_tasks"].get(key)
        return CompletionRecord.from_dict(data) if data else None

    def completed_subtasks(self, key: str) -> set[str]:
        return set(self.assignments["completed_subtasks"].get(key, {}))

    def block_reason(self, key: str) -> str | None:
        entry = self.assignments["blocked_tasks"].get(key)
        return entry["reason"] if entry else None

    # Handoff accessors

    def ready_handoffs(self) -> list[HandoffRecord]:
        return [HandoffRecord.from_dict(h) for h in self.handoffs["ready_handoffs"]]

    def handoff_history(self) -> list[HandoffRecord]:
        return [HandoffRecord.from_dict(h) for h in self.handoffs["handoff_history"]]

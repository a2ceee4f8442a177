"""
Workflow state store.

Owns the state directory:

    <state_dir>/
        assignments.json      ledger (see workflow/state.py)
        progress.json         progress cache
        handoffs.json         handoff queue
        audit.jsonl           append-only audit trail
        snapshots/<id>.json   prior state for each audit entry
        locks/state.lock      flock serializing writers

Every mutation runs inside transaction(): lock, read, apply, check the
ledger revision, snapshot the prior state, atomically replace each changed
record, then append the audit entry. If any of those writes fails, the
records already replaced are written back from the prior state, so the
operation either lands whole with its audit entry or not at all.
"""

import json
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, Optional

from specflow.lib import specparse
from specflow.lib.errors import (
    AlreadyAssignedError,
    CapabilityMismatchError,
    ConcurrentModificationError,
    ConsistencyError,
    DependencyError,
    InvalidTransitionError,
    StateFileError,
    TaskNotFoundError,
)
from specflow.lib.fileio import atomic_write_json
from specflow.lib.models import (
    Assignment,
    CompletionRecord,
    HandoffRecord,
    Specification,
    hours_between,
    utc_now,
)
from specflow.lib.progress import (
    ProgressReport,
    progress_snapshot,
    project_progress,
    spec_progress,
    task_progress,
)
from specflow.lib.types import AgentProfile, TaskStatus
from specflow.lib.validate import validate_before_write, validate_file
from specflow.runner.locking import is_locked, state_lock
from specflow.workflow.audit import AuditEntry, AuditLog, new_audit_id
from specflow.workflow.fsm import apply_transition
from specflow.workflow.graph import TaskGraph, build_graph, get_blocking_chain
from specflow.workflow.state import RECORDS, WorkflowState

logger = logging.getLogger(__name__)

RECORD_FILES = {name: f"{name}.json" for name in RECORDS}


@dataclass
class Transaction:
    """Handle yielded by WorkflowStateStore.transaction().

    Mutate `state` in place. Set `skip` to leave everything untouched and
    write no audit entry.
    """
    state: WorkflowState
    graph: TaskGraph
    specs: list[Specification]
    result: dict = field(default_factory=dict)
    reverses: Optional[str] = None
    skip: bool = False
    audit_id: Optional[str] = None


@dataclass
class ConsistencyIssue:
    kind: str
    message: str
    task_key: Optional[str] = None
    ref: Optional[str] = None   # handoff id for handoff issues

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "task_key": self.task_key, "ref": self.ref}


@dataclass
class ConsistencyReport:
    issues: list[ConsistencyIssue] = field(default_factory=list)
    checked_at: str = field(default_factory=utc_now)

    @property
    def ok(self) -> bool:
        return not self.issues

    def add(self, kind: str, message: str, task_key: str | None = None, ref: str | None = None) -> None:
        self.issues.append(ConsistencyIssue(kind=kind, message=message, task_key=task_key, ref=ref))

    def raise_for_issues(self) -> None:
        if self.issues:
            raise ConsistencyError([i.to_dict() for i in self.issues])

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "checked_at": self.checked_at,
            "issues": [i.to_dict() for i in self.issues],
        }


@dataclass
class AssignmentSummary:
    """Active assignments plus per-capability workload."""
    assignments: list[Assignment]
    workload: dict[str, dict]   # capability -> {"active": n, "estimated_hours": h}

    def to_dict(self) -> dict:
        return {
            "assignments": [a.to_dict() for a in self.assignments],
            "workload": self.workload,
        }


def progress_fingerprint(revision: int, graph: TaskGraph) -> str:
    return f"{revision}:{graph.digest}"


def stale_reason(handoff: HandoffRecord, graph: TaskGraph) -> str | None:
    """Why a ready handoff no longer applies, or None if it still does.

    Manual handoffs may target a task that is still waiting on dependencies;
    automatic ones only ever target ready tasks.
    """
    task = graph.get(handoff.to_task)
    if task is None:
        return "target task no longer exists"
    if task.status in (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETE, TaskStatus.BLOCKED):
        return f"target task is {task.status.value}"
    if handoff.origin == "automatic" and task.status != TaskStatus.READY:
        return f"target task is {task.status.value}"
    return None


class WorkflowStateStore:
    """Transactional store for assignments, progress and handoffs."""

    def __init__(
        self,
        state_dir: Path,
        load_specs: Callable[[], list[Specification]],
        lock_timeout: float = 10.0,
        poll_interval: float = 0.05,
        slow_operation_ms: int = 100,
    ):
        self.state_dir = Path(state_dir)
        self.load_specs = load_specs
        self.lock_timeout = lock_timeout
        self.poll_interval = poll_interval
        self.slow_operation_ms = slow_operation_ms
        self.audit = AuditLog(self.state_dir)

    @classmethod
    def from_config(cls, config) -> "WorkflowStateStore":
        return cls(
            state_dir=config.state_dir,
            load_specs=lambda: specparse.load_specs(config.specs_dir),
            lock_timeout=config.lock_timeout,
            poll_interval=config.lock_poll_interval,
            slow_operation_ms=config.slow_operation_ms,
        )

    # Reading

    def record_path(self, name: str) -> Path:
        return self.state_dir / RECORD_FILES[name]

    def read_state(self) -> WorkflowState:
        """Read and validate the persisted records. Missing files are empty."""
        records = {}
        for name in RECORDS:
            path = self.record_path(name)
            if path.exists():
                records[name] = validate_file(path, name)
        return WorkflowState.from_records(records)

    def load_graph(self, state: WorkflowState | None = None) -> TaskGraph:
        return build_graph(self.load_specs(), state if state is not None else self.read_state())

    def _disk_revision(self) -> int:
        path = self.record_path("assignments")
        if not path.exists():
            return 0
        try:
            return json.loads(path.read_text())["revision"]
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as e:
            raise StateFileError(f"Cannot read ledger revision from {path}: {e}", path=str(path)) from None

    # Writing

    def _write_records(self, state: WorkflowState, before: WorkflowState, written: list[str]) -> list[str]:
        """Replace each changed record. Names land in `written` as they commit."""
        changed = [name for name in RECORDS if getattr(state, name) != getattr(before, name)]
        for name in changed:
            validate_before_write(getattr(state, name), name, self.record_path(name))
        for name in changed:
            atomic_write_json(self.record_path(name), getattr(state, name))
            written.append(name)
        return changed

    def _restore_records(self, before: WorkflowState, written: list[str], existed: dict[str, bool]) -> None:
        """Put back records replaced by a transaction that failed part way."""
        for name in written:
            path = self.record_path(name)
            try:
                if existed[name]:
                    atomic_write_json(path, getattr(before, name))
                else:
                    path.unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"[STORE] could not restore {path}: {e}")
                raise StateFileError(
                    f"Could not restore {path} after a failed write: {e}",
                    path=str(path),
                ) from e
        if written:
            logger.warning(f"[STORE] restored {', '.join(written)} after a failed write")

    @contextmanager
    def transaction(
        self,
        action: str,
        *,
        source: str = "store",
        confidence: float = 1.0,
        spec_id: str | None = None,
        task_key: str | None = None,
    ) -> Iterator[Transaction]:
        """Locked read-modify-replace cycle with an audit entry.

        Raises:
            LockTimeoutError: state lock not acquired in time (retryable)
            ConcurrentModificationError: ledger changed under us (retryable)
            StateFileError: a record could not be written (prior state restored)
        """
        start = time.monotonic()
        with state_lock(self.state_dir, self.lock_timeout, self.poll_interval):
            state = self.read_state()
            before = state.copy()
            base_revision = state.revision
            specs = self.load_specs()
            txn = Transaction(state=state, graph=build_graph(specs, state), specs=specs)

            yield txn

            if txn.skip:
                return

            if self._disk_revision() != base_revision:
                raise ConcurrentModificationError(
                    f"Ledger changed during {action} (expected revision {base_revision})",
                    action=action,
                    expected_revision=base_revision,
                )

            now = utc_now()
            state.assignments["revision"] = base_revision + 1
            state.assignments["updated_at"] = now

            txn.graph = build_graph(specs, state)
            state.progress = {
                "fingerprint": progress_fingerprint(state.revision, txn.graph),
                "computed_at": now,
                **progress_snapshot(list(txn.graph.specs.values())),
            }

            audit_id = new_audit_id()
            existed = {name: self.record_path(name).exists() for name in RECORDS}
            written: list[str] = []
            try:
                self.audit.write_snapshot(audit_id, before.to_records())
                changed = self._write_records(state, before, written)
                self.audit.append(AuditEntry(
                    id=audit_id,
                    action=action,
                    timestamp=now,
                    source=source,
                    confidence=confidence,
                    snapshot=audit_id,
                    spec_id=spec_id or (task_key.partition(":")[0] if task_key else None),
                    task_key=task_key,
                    result=txn.result,
                    reverses=txn.reverses,
                ))
            except OSError as e:
                self._restore_records(before, written, existed)
                raise StateFileError(
                    f"Failed to persist {action}, previous state kept: {e}",
                    action=action,
                    written=written,
                ) from e
            except BaseException:
                self._restore_records(before, written, existed)
                raise
            txn.audit_id = audit_id
            logger.debug(f"[STORE] {action} revision={state.revision} wrote={changed}")

        elapsed_ms = (time.monotonic() - start) * 1000
        if elapsed_ms > self.slow_operation_ms:
            logger.warning(f"[STORE] {action} took {elapsed_ms:.0f}ms (threshold {self.slow_operation_ms}ms)")

    # Mutations

    def assign_task(
        self,
        key: str,
        profile: AgentProfile,
        notes: str | None = None,
        assigned_by: str = "router",
    ) -> Assignment:
        """Bind a task to an agent. Re-validated under the lock.

        Raises:
            TaskNotFoundError, AlreadyAssignedError, InvalidTransitionError,
            DependencyError, CapabilityMismatchError
        """
        with self.transaction("assign", source=assigned_by, task_key=key) as txn:
            assignment = self.apply_assignment(txn, key, profile, notes, assigned_by)

        logger.info(f"[STORE] assigned {key} to {assignment.capability}")
        return assignment

    def apply_assignment(
        self,
        txn: Transaction,
        key: str,
        profile: AgentProfile,
        notes: str | None = None,
        assigned_by: str = "router",
    ) -> Assignment:
        """Validate and record an assignment inside an open transaction.

        Claims any ready handoff for the task. Raises the same errors as
        assign_task, before anything in `txn` is modified.
        """
        task = txn.graph.require(key)
        current = txn.state.active_assignment(key)
        if current is not None:
            raise AlreadyAssignedError(key, current.capability, current.started_at)
        if task.status == TaskStatus.COMPLETE:
            raise InvalidTransitionError(key, "complete", "in_progress", reason="task already complete")
        blocking = get_blocking_chain(txn.graph, key)
        if blocking:
            raise DependencyError(key, blocking)
        if task.status == TaskStatus.BLOCKED:
            raise InvalidTransitionError(
                key, "blocked", "in_progress", reason=f"blocked: {task.blocked_reason}"
            )
        if not profile.handles(task.capability):
            raise CapabilityMismatchError(key, task.capability.value, profile.capability.value)

        apply_transition(task, "start")

        now = utc_now()
        assignment = Assignment(
            task_key=key,
            capability=profile.capability.value,
            started_at=now,
            notes=notes,
            assigned_by=assigned_by,
        )
        ledger = txn.state.assignments
        ledger["current_assignments"][key] = assignment.to_dict()
        ledger["assignment_history"].append({
            "task_key": key,
            "action": "assigned",
            "at": now,
            "capability": assignment.capability,
        })

        claimed = []
        queue = txn.state.handoffs
        for handoff in list(queue["ready_handoffs"]):
            if handoff["to_task"] == key:
                queue["ready_handoffs"].remove(handoff)
                handoff.update(status="claimed", resolved_at=now)
                queue["handoff_history"].append(handoff)
                claimed.append(handoff["id"])

        txn.result.update(status="in_progress", capability=assignment.capability)
        if claimed:
            txn.result["claimed_handoffs"] = claimed
        return assignment

    def complete_task(
        self,
        key: str,
        notes: str | None = None,
        source: str = "store",
        confidence: float = 1.0,
    ) -> CompletionRecord:
        """Record task completion. Completing a complete task is a no-op.

        Raises:
            TaskNotFoundError
            InvalidTransitionError: no active assignment
            IncompleteSubtasksError: subtasks still open
        """
        with self.transaction("complete", source=source, confidence=confidence, task_key=key) as txn:
            task = txn.graph.require(key)
            existing = txn.state.completion(key)
            if existing is not None:
                txn.skip = True
                record = existing
            elif task.status == TaskStatus.COMPLETE:
                # Declared done in the document; nothing for the ledger to own
                txn.skip = True
                record = CompletionRecord(
                    task_key=key, capability=None, started_at=None,
                    completed_at="", notes="complete in document",
                )
            else:
                assignment = txn.state.active_assignment(key)
                if assignment is None:
                    raise InvalidTransitionError(
                        key, task.status.value, "complete", reason="task has no active assignment"
                    )
                apply_transition(task, "finish")

                now = utc_now()
                record = CompletionRecord(
                    task_key=key,
                    capability=assignment.capability,
                    started_at=assignment.started_at,
                    completed_at=now,
                    notes=notes,
                    duration_hours=hours_between(assignment.started_at, now),
                )
                ledger = txn.state.assignments
                del ledger["current_assignments"][key]
                ledger["completed_tasks"][key] = record.to_dict()
                ledger["assignment_history"].append({
                    "task_key": key,
                    "action": "completed",
                    "at": now,
                    "capability": assignment.capability,
                    "started_at": assignment.started_at,
                    "duration_hours": record.duration_hours,
                })
                txn.result = {"status": "complete", "duration_hours": record.duration_hours}

        if not txn.skip:
            logger.info(f"[STORE] completed {key} ({record.duration_hours}h)")
        return record

    def complete_subtask(
        self,
        key: str,
        subtask_id: str,
        notes: str | None = None,
        source: str = "store",
    ) -> ProgressReport:
        """Mark a subtask complete. Returns the task's subtask progress."""
        with self.transaction("complete_subtask", source=source, task_key=key) as txn:
            task = txn.graph.require(key)
            subtask = task.get_subtask(subtask_id)
            if subtask is None:
                raise TaskNotFoundError(key, subtask_id)
            if task.status == TaskStatus.COMPLETE:
                raise InvalidTransitionError(key, "complete", "complete", reason="task already complete")

            if subtask.complete:
                txn.skip = True
            else:
                subtask.status = "complete"
                done = txn.state.assignments["completed_subtasks"].setdefault(key, {})
                done[subtask_id] = {"completed_at": utc_now(), "notes": notes}
                txn.result = {"subtask": subtask_id, **task_progress(task).to_dict()}

        return task_progress(task)

    def block_task(self, key: str, reason: str, source: str = "operator") -> None:
        with self.transaction("block", source=source, task_key=key) as txn:
            task = txn.graph.require(key)
            apply_transition(task, "block")
            now = utc_now()
            ledger = txn.state.assignments
            ledger["blocked_tasks"][key] = {"reason": reason, "blocked_at": now}
            ledger["assignment_history"].append({"task_key": key, "action": "blocked", "at": now, "reason": reason})
            txn.result = {"status": "blocked", "reason": reason}
        logger.info(f"[STORE] blocked {key}: {reason}")

    def unblock_task(self, key: str, source: str = "operator") -> None:
        with self.transaction("unblock", source=source, task_key=key) as txn:
            task = txn.graph.require(key)
            apply_transition(task, "unblock")
            ledger = txn.state.assignments
            del ledger["blocked_tasks"][key]
            ledger["assignment_history"].append({"task_key": key, "action": "unblocked", "at": utc_now()})
            txn.result = {"status": "pending"}
        logger.info(f"[STORE] unblocked {key}")

    def restore_snapshot(self, audit_id: str, source: str = "operator") -> str:
        """Replace all records with the state captured before `audit_id`.

        Returns the id of the new rollback audit entry.
        """
        entry = self.audit.get(audit_id)
        snapshot = self.audit.load_snapshot(entry.snapshot)
        with self.transaction("rollback", source=source, spec_id=entry.spec_id, task_key=entry.task_key) as txn:
            restored = WorkflowState.from_records(snapshot)
            txn.state.assignments = restored.assignments
            txn.state.progress = restored.progress
            txn.state.handoffs = restored.handoffs
            txn.reverses = audit_id
            txn.result = {"restored_action": entry.action}
        logger.info(f"[STORE] rolled back {audit_id} ({entry.action})")
        return txn.audit_id

    # Queries

    def get_current_assignments(self) -> AssignmentSummary:
        state = self.read_state()
        graph = self.load_graph(state)
        assignments = state.active_assignments()
        workload: dict[str, dict] = {}
        for assignment in assignments:
            load = workload.setdefault(assignment.capability, {"active": 0, "estimated_hours": 0.0})
            load["active"] += 1
            task = graph.get(assignment.task_key)
            if task is not None and task.estimated_hours:
                load["estimated_hours"] += task.estimated_hours
        return AssignmentSummary(assignments=assignments, workload=workload)

    def get_project_progress(self) -> ProgressReport:
        graph = self.load_graph()
        return project_progress(list(graph.specs.values()))

    def get_spec_progress(self, spec_id: str) -> ProgressReport:
        graph = self.load_graph()
        return spec_progress(graph.require_spec(spec_id))

    # Consistency

    def _check(self, state: WorkflowState, graph: TaskGraph) -> ConsistencyReport:
        report = ConsistencyReport()
        ledger = state.assignments

        for key, data in sorted(ledger["current_assignments"].items()):
            task = graph.get(key)
            if task is None:
                report.add("orphaned_assignment", f"Assignment references unknown task {key}", key)
                continue
            if key in ledger["completed_tasks"]:
                report.add("assigned_and_complete", f"Task {key} is both assigned and complete", key)
            blocking = get_blocking_chain(graph, key)
            if blocking:
                report.add(
                    "assigned_with_unmet_dependencies",
                    f"Task {key} is assigned but waits on {', '.join(blocking)}",
                    key,
                )
            profile_cap = data["capability"]
            if task.capability is not None and task.capability.value != profile_cap:
                report.add(
                    "capability_mismatch",
                    f"Task {key} requires {task.capability.value}, assigned to {profile_cap}",
                    key,
                )

        for key in sorted(ledger["completed_tasks"]):
            if graph.get(key) is None:
                report.add("orphaned_completion", f"Completion references unknown task {key}", key)

        for key in sorted(ledger["blocked_tasks"]):
            if graph.get(key) is None:
                report.add("orphaned_block", f"Block references unknown task {key}", key)
            elif key in ledger["completed_tasks"]:
                report.add("blocked_and_complete", f"Task {key} is both blocked and complete", key)

        for key, subtasks in sorted(ledger["completed_subtasks"].items()):
            task = graph.get(key)
            for subtask_id in sorted(subtasks):
                if task is None or task.get_subtask(subtask_id) is None:
                    report.add(
                        "orphaned_subtask",
                        f"Subtask completion references unknown subtask {key}/{subtask_id}",
                        key,
                    )

        for handoff in state.ready_handoffs():
            reason = stale_reason(handoff, graph)
            if reason:
                report.add(
                    "stale_handoff",
                    f"Handoff {handoff.id} to {handoff.to_task}: {reason}",
                    handoff.to_task,
                    ref=handoff.id,
                )

        expected = progress_fingerprint(state.revision, graph)
        cached = state.progress.get("fingerprint")
        if cached is not None and cached != expected:
            report.add("stale_progress", f"Progress cache {cached} does not match {expected}")

        return report

    def validate_state(self) -> ConsistencyReport:
        """Cross-check persisted records against the rebuilt graph. Read-only."""
        if is_locked(self.state_dir):
            logger.warning("[STORE] validating while a writer holds the state lock; results may be stale")
        state = self.read_state()
        report = self._check(state, self.load_graph(state))
        if not report.ok:
            logger.warning(f"[STORE] state has {len(report.issues)} consistency issue(s)")
        return report

    def repair_state(self, source: str = "operator") -> ConsistencyReport:
        """Drop or release every inconsistent entry. Audited.

        Returns the report of what was found (and fixed).
        """
        with self.transaction("repair", source=source) as txn:
            report = self._check(txn.state, txn.graph)
            if report.ok:
                txn.skip = True
                return report

            ledger = txn.state.assignments
            now = utc_now()
            for issue in report.issues:
                key = issue.task_key
                if issue.kind in ("orphaned_assignment", "assigned_and_complete",
                                  "assigned_with_unmet_dependencies", "capability_mismatch"):
                    if ledger["current_assignments"].pop(key, None) is not None:
                        ledger["assignment_history"].append({"task_key": key, "action": "released", "at": now})
                elif issue.kind == "orphaned_completion":
                    ledger["completed_tasks"].pop(key, None)
                elif issue.kind in ("orphaned_block", "blocked_and_complete"):
                    ledger["blocked_tasks"].pop(key, None)
                elif issue.kind == "orphaned_subtask":
                    task = txn.graph.get(key)
                    subtasks = ledger["completed_subtasks"].get(key, {})
                    for subtask_id in list(subtasks):
                        if task is None or task.get_subtask(subtask_id) is None:
                            del subtasks[subtask_id]
                    if not subtasks:
                        ledger["completed_subtasks"].pop(key, None)

            queue = txn.state.handoffs
            stale_ids = {i.ref for i in report.issues if i.kind == "stale_handoff"}
            for handoff in list(queue["ready_handoffs"]):
                if handoff["id"] in stale_ids:
                    queue["ready_handoffs"].remove(handoff)
                    handoff.update(status="stale", resolved_at=now)
                    queue["handoff_history"].append(handoff)

            txn.result = {"repaired": [i.to_dict() for i in report.issues]}

        logger.info(f"[STORE] repaired {len(report.issues)} issue(s)")
        return report

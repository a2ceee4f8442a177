"""
Handoff engine.

Runs after a task completes: re-derives readiness of its dependents, asks
the router which agent should pick each newly-ready task up, records a
handoff for it, and stages the agent's context. Every step goes through
the store, so every step is audited and can be rolled back.

Composition is plain function calls: engine -> router -> store. A failure
for one dependent is recorded in the result and does not stop the others.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from specflow.lib.errors import (
    CapabilityMismatchError,
    ConfigError,
    InvalidTransitionError,
    NoCandidateError,
    WorkflowError,
)
from specflow.lib.models import Assignment, CompletionRecord, HandoffRecord, Task, task_key, utc_now
from specflow.lib.progress import ProgressReport
from specflow.lib.types import AgentProfile, Capability, TaskStatus
from specflow.workflow.audit import AuditEntry
from specflow.workflow.context import ContextPreparer, FileContextPreparer
from specflow.workflow.graph import is_ready
from specflow.workflow.router import TaskRouter
from specflow.workflow.store import WorkflowStateStore, stale_reason

logger = logging.getLogger(__name__)

# Audit confidence per kind of automated decision
COMPLETION_CONFIDENCE = 0.9
DEPENDENCY_CONFIDENCE = 0.8
MANUAL_CONFIDENCE = 1.0


def new_handoff_id() -> str:
    return f"handoff-{uuid.uuid4().hex[:8]}"


@dataclass
class CompletionResult:
    record: CompletionRecord
    newly_ready: list[str] = field(default_factory=list)
    handoffs: list[HandoffRecord] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "completion": self.record.to_dict(),
            "newly_ready": self.newly_ready,
            "handoffs": [h.to_dict() for h in self.handoffs],
            "errors": self.errors,
        }


@dataclass
class ManualHandoffResult:
    handoff: HandoffRecord
    assignment: Optional[Assignment] = None

    def to_dict(self) -> dict:
        return {
            "handoff": self.handoff.to_dict(),
            "assignment": self.assignment.to_dict() if self.assignment else None,
        }


@dataclass
class HandoffStatus:
    ready: list[HandoffRecord]
    recent: list[HandoffRecord]
    marked_stale: list[str] = field(default_factory=list)
    context_retried: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "ready": [h.to_dict() for h in self.ready],
            "recent": [h.to_dict() for h in self.recent],
            "marked_stale": self.marked_stale,
            "context_retried": self.context_retried,
        }


def _error_entry(task: str, error: WorkflowError) -> dict:
    return {"task": task, **error.to_dict()}


class HandoffEngine:
    """Completion detection, handoff staging and rollback."""

    def __init__(
        self,
        store: WorkflowStateStore,
        router: TaskRouter,
        preparer: ContextPreparer | None = None,
        history_limit: int = 10,
    ):
        self.store = store
        self.router = router
        self.preparer = preparer or FileContextPreparer(store.state_dir)
        self.history_limit = history_limit

    # Completion

    def complete_task(self, key: str, notes: str | None = None) -> CompletionResult:
        """Complete a task and hand off every dependent it unblocks.

        Errors from the completion itself propagate. Errors while staging
        handoffs are collected in the result.
        """
        before = self.store.load_graph()
        ready_before = {t.key for t in before.dependents(key) if is_ready(before, t)}

        record = self.store.complete_task(
            key, notes, source="handoff", confidence=COMPLETION_CONFIDENCE
        )
        result = CompletionResult(record=record)

        try:
            graph = self.store.load_graph()
        except WorkflowError as e:
            logger.error(f"[HANDOFF] readiness check after {key} failed: {e}")
            result.errors.append(_error_entry(key, e))
            return result

        for dependent in graph.dependents(key):
            if dependent.key in ready_before or not is_ready(graph, dependent):
                continue
            result.newly_ready.append(dependent.key)
            try:
                handoff = self._record_handoff(dependent, from_task=key)
            except WorkflowError as e:
                logger.warning(f"[HANDOFF] {dependent.key}: {e}")
                result.errors.append(_error_entry(dependent.key, e))
                continue
            if handoff is not None:
                result.handoffs.append(handoff)

        for handoff in result.handoffs:
            if self._prepare_context(handoff.id):
                handoff.context_prepared = True

        if result.newly_ready:
            logger.info(f"[HANDOFF] {key} complete, now ready: {', '.join(result.newly_ready)}")
        return result

    def complete_subtask(self, key: str, subtask_id: str, notes: str | None = None) -> ProgressReport:
        return self.store.complete_subtask(key, subtask_id, notes, source="handoff")

    def _record_handoff(self, task: Task, from_task: str) -> HandoffRecord | None:
        match = self.router.best_agent_for(task)
        if match is None:
            raise NoCandidateError(
                f"No configured agent can take {task.key}",
                task=task.key,
                capability=task.capability.value if task.capability else None,
            )
        profile, score = match

        with self.store.transaction(
            "handoff", source="handoff", confidence=DEPENDENCY_CONFIDENCE, task_key=task.key
        ) as txn:
            current = txn.graph.get(task.key)
            queued = any(h.to_task == task.key for h in txn.state.ready_handoffs())
            if current is None or not is_ready(txn.graph, current) or queued:
                txn.skip = True
                return None

            handoff = HandoffRecord(
                id=new_handoff_id(),
                to_task=task.key,
                capability=profile.capability.value,
                ready_at=utc_now(),
                from_task=from_task,
                score=score,
                reason=self.router.explain(current, profile),
                origin="automatic",
            )
            txn.state.handoffs["ready_handoffs"].append(handoff.to_dict())
            txn.result = {"handoff": handoff.id, "capability": handoff.capability, "from_task": from_task}

        return handoff

    # Context preparation

    def _prepare_context(self, handoff_id: str) -> bool:
        """Run the preparer for one handoff and record the outcome."""
        state = self.store.read_state()
        handoff = next((h for h in state.ready_handoffs() if h.id == handoff_id), None)
        if handoff is None:
            return False

        error = None
        try:
            self.preparer.prepare(handoff, self.store.load_graph(state), state)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.warning(f"[HANDOFF] context preparation for {handoff.to_task} failed: {error}")

        with self.store.transaction("handoff_context", source="handoff", task_key=handoff.to_task) as txn:
            entry = next((h for h in txn.state.handoffs["ready_handoffs"] if h["id"] == handoff_id), None)
            if entry is None:
                txn.skip = True
            else:
                entry["context_prepared"] = error is None
                entry["context_error"] = error
                txn.result = {"handoff": handoff_id, "context_prepared": error is None}

        return error is None

    # Manual handoff

    def trigger_manual_handoff(
        self,
        spec_id: str,
        task_id: str,
        capability: str | Capability,
        options: dict | None = None,
    ) -> ManualHandoffResult:
        """Operator-forced pairing of a task with an agent, bypassing scoring.

        Only tasks nobody holds are eligible: complete, in-progress and
        blocked targets raise InvalidTransitionError.

        options:
            from_task: key of the task the handoff comes from
            reason: free text recorded on the handoff
            assign: also create the assignment, in the same transaction
            notes: assignment notes
        """
        options = options or {}
        key = task_key(spec_id, task_id)
        if not isinstance(capability, Capability):
            try:
                capability = Capability.parse(capability)
            except ValueError as e:
                raise ConfigError(str(e), capability=capability) from None
        profile = self.router.profiles.get(capability) or AgentProfile(capability=capability)

        with self.store.transaction(
            "manual_handoff", source="operator", confidence=MANUAL_CONFIDENCE, task_key=key
        ) as txn:
            task = txn.graph.require(key)
            if task.status == TaskStatus.COMPLETE:
                raise InvalidTransitionError(key, "complete", "ready", reason="task already complete")
            if task.status == TaskStatus.IN_PROGRESS:
                current = txn.state.active_assignment(key)
                holder = current.capability if current else "unknown"
                raise InvalidTransitionError(key, "in_progress", "ready", reason=f"assigned to {holder}")
            if task.status == TaskStatus.BLOCKED:
                raise InvalidTransitionError(
                    key, "blocked", "ready", reason=f"blocked: {task.blocked_reason}"
                )
            if not profile.handles(task.capability):
                raise CapabilityMismatchError(key, task.capability.value, profile.capability.value)
            from_task = options.get("from_task")
            if from_task:
                txn.graph.require(from_task)

            now = utc_now()
            queue = txn.state.handoffs
            for existing in list(queue["ready_handoffs"]):
                if existing["to_task"] == key:
                    queue["ready_handoffs"].remove(existing)
                    existing.update(status="stale", resolved_at=now)
                    queue["handoff_history"].append(existing)

            handoff = HandoffRecord(
                id=new_handoff_id(),
                to_task=key,
                capability=profile.capability.value,
                ready_at=now,
                from_task=from_task,
                score=self.router.score(task, profile),
                reason=options.get("reason") or "Manual handoff",
                origin="manual",
            )
            queue["ready_handoffs"].append(handoff.to_dict())
            txn.result = {"handoff": handoff.id, "capability": handoff.capability, "manual": True}

            # Same transaction: a rejected assignment leaves no handoff behind.
            assignment = None
            if options.get("assign"):
                assignment = self.store.apply_assignment(
                    txn, key, profile, notes=options.get("notes"), assigned_by="operator"
                )
                handoff.status = "claimed"
                handoff.resolved_at = now

        logger.info(f"[HANDOFF] manual handoff {key} -> {profile.capability.value}")

        if assignment is not None:
            return ManualHandoffResult(handoff=handoff, assignment=assignment)

        if self._prepare_context(handoff.id):
            handoff.context_prepared = True
        return ManualHandoffResult(handoff=handoff)

    # Status and history

    def get_handoff_status(self) -> HandoffStatus:
        """Ready handoffs after dropping stale ones and retrying context prep."""
        state = self.store.read_state()
        graph = self.store.load_graph(state)
        marked_stale: list[str] = []

        if any(stale_reason(h, graph) for h in state.ready_handoffs()):
            with self.store.transaction("handoff_stale", source="handoff") as txn:
                queue = txn.state.handoffs
                now = utc_now()
                for entry in list(queue["ready_handoffs"]):
                    reason = stale_reason(HandoffRecord.from_dict(entry), txn.graph)
                    if reason:
                        queue["ready_handoffs"].remove(entry)
                        entry.update(status="stale", resolved_at=now)
                        queue["handoff_history"].append(entry)
                        marked_stale.append(entry["id"])
                        logger.info(f"[HANDOFF] {entry['id']} to {entry['to_task']} is stale: {reason}")
                if marked_stale:
                    txn.result = {"stale": marked_stale}
                else:
                    txn.skip = True
            state = self.store.read_state()

        retried = []
        for handoff in state.ready_handoffs():
            if not handoff.context_prepared:
                retried.append(handoff.id)
                self._prepare_context(handoff.id)
        if retried:
            state = self.store.read_state()

        history = state.handoff_history()
        return HandoffStatus(
            ready=state.ready_handoffs(),
            recent=list(reversed(history[-self.history_limit:])),
            marked_stale=marked_stale,
            context_retried=retried,
        )

    def rollback(self, audit_id: str) -> str:
        """Restore the state captured before `audit_id`. Returns the new entry id.

        Raises:
            AuditEntryNotFoundError
        """
        return self.store.restore_snapshot(audit_id, source="operator")

    def get_audit_log(self, limit: int | None = 20) -> list[AuditEntry]:
        return self.store.audit.recent(limit)

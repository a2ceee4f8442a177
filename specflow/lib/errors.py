"""
Error taxonomy for specflow.

Every error that crosses the engine boundary is a WorkflowError subclass
carrying structured details (task keys, blocking chain, expected vs actual
capability) so callers can act on it without re-running diagnostics.
"""


class WorkflowError(Exception):
    """Base class for all engine errors."""

    retryable = False

    def __init__(self, message: str, **details):
        self.message = message
        self.details = details
        super().__init__(message)

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message, "details": self.details}


class ConfigError(WorkflowError):
    """Invalid project configuration."""


class SpecDocumentError(WorkflowError):
    """A specification document could not be parsed."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}", path=path)


# Graph construction

class GraphError(WorkflowError):
    """Graph build failed. The engine refuses to operate on the result."""


class CircularDependencyError(GraphError):
    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(
            f"Circular dependency detected: {' -> '.join(cycle)}",
            cycle=cycle,
        )


class DanglingReferenceError(GraphError):
    def __init__(self, task_key: str, reference: str):
        self.task_key = task_key
        self.reference = reference
        super().__init__(
            f"Task {task_key} depends on unknown task '{reference}'",
            task=task_key,
            reference=reference,
        )


class DuplicateTaskError(GraphError):
    def __init__(self, task_key: str):
        super().__init__(f"Task {task_key} is defined more than once", task=task_key)


class TaskNotFoundError(WorkflowError):
    def __init__(self, task_key: str, subtask_id: str | None = None):
        if subtask_id:
            message = f"Subtask {subtask_id} not found in task {task_key}"
        else:
            message = f"Task {task_key} not found"
        super().__init__(message, task=task_key, subtask=subtask_id)


class SpecNotFoundError(WorkflowError):
    def __init__(self, spec_id: str):
        super().__init__(f"Specification {spec_id} not found", spec=spec_id)


# Routing and assignment

class DependencyError(WorkflowError):
    """Assignment attempted on a task with unmet dependencies."""

    def __init__(self, task_key: str, blocking: list[str]):
        self.task_key = task_key
        self.blocking = blocking
        super().__init__(
            f"Task {task_key} is waiting on unmet dependencies: {', '.join(blocking)}",
            task=task_key,
            blocking_chain=blocking,
        )


class CapabilityMismatchError(WorkflowError):
    def __init__(self, task_key: str, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Task {task_key} requires capability '{expected}', agent offers '{actual}'",
            task=task_key,
            expected=expected,
            actual=actual,
        )


class AlreadyAssignedError(WorkflowError):
    def __init__(self, task_key: str, assigned_to: str, started_at: str):
        super().__init__(
            f"Task {task_key} is already assigned to {assigned_to} (since {started_at})",
            task=task_key,
            assigned_to=assigned_to,
            started_at=started_at,
        )


class NoCandidateError(WorkflowError):
    """No ready task matches the agent and constraints."""


class InvalidTransitionError(WorkflowError):
    def __init__(self, task_key: str, from_state: str, to_state: str, reason: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        message = f"Invalid transition for {task_key}: {from_state} -> {to_state}"
        if reason:
            message += f" ({reason})"
        super().__init__(message, task=task_key, from_state=from_state, to_state=to_state)


class IncompleteSubtasksError(InvalidTransitionError):
    def __init__(self, task_key: str, from_state: str, incomplete: list[str]):
        super().__init__(
            task_key, from_state, "complete",
            reason=f"incomplete subtasks: {', '.join(incomplete)}",
        )
        self.details["incomplete_subtasks"] = incomplete


# Persistence

class ConcurrentModificationError(WorkflowError):
    """State changed between read and intended write. Safe to retry."""

    retryable = True


class LockTimeoutError(ConcurrentModificationError):
    """Exclusive access to the state directory was not obtained in time."""


class StateFileError(WorkflowError):
    """A persisted state record is unreadable or fails validation."""


class ConsistencyError(WorkflowError):
    """Persisted state diverges from the document store."""

    def __init__(self, issues: list[dict]):
        self.issues = issues
        super().__init__(
            f"State is inconsistent with documents ({len(issues)} issue(s))",
            issues=issues,
        )


class AuditEntryNotFoundError(WorkflowError):
    def __init__(self, audit_id: str):
        super().__init__(f"Audit entry {audit_id} not found", audit_id=audit_id)

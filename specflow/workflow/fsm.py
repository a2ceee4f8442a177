"""Task lifecycle state machine using the transitions library.

Task status is derived when the graph is built; the machine is only used to
check that a mutation is legal from the task's current status:

    ready --start--> in_progress --finish--> complete
    pending/ready --block--> blocked --unblock--> pending

pending -> ready is not a trigger: readiness follows from dependency
status whenever the graph is rebuilt.

Usage:
    from specflow.workflow.fsm import apply_transition

    apply_transition(task, "start")   # raises InvalidTransitionError
"""

import logging

from transitions import Machine

from specflow.lib.errors import IncompleteSubtasksError, InvalidTransitionError
from specflow.lib.models import Task
from specflow.lib.types import TaskStatus

logger = logging.getLogger(__name__)


STATES = [s.value for s in TaskStatus]

TRANSITIONS = [
    {"trigger": "start", "source": "ready", "dest": "in_progress"},
    {"trigger": "finish", "source": "in_progress", "dest": "complete",
     "conditions": "subtasks_complete"},
    {"trigger": "block", "source": ["pending", "ready"], "dest": "blocked"},
    {"trigger": "unblock", "source": "blocked", "dest": "pending"},
]

DEST_FOR = {t["trigger"]: t["dest"] for t in TRANSITIONS}


class TaskFSM:
    """State machine for one task.

    Initial state is the task's derived status. Nothing is persisted here;
    the store records the outcome.
    """

    def __init__(
        self,
        task_key: str,
        initial: str,
        incomplete_subtasks: list[str] | None = None,
    ):
        self.task_key = task_key
        self.incomplete_subtasks = incomplete_subtasks or []

        if initial not in STATES:
            raise InvalidTransitionError(task_key, initial, "?", reason="unknown status")

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    @classmethod
    def for_task(cls, task: Task) -> "TaskFSM":
        incomplete = [s.id for s in task.subtasks if not s.complete]
        return cls(task.key, task.status.value, incomplete_subtasks=incomplete)

    def subtasks_complete(self, event) -> bool:
        return not self.incomplete_subtasks

    def on_state_change(self, event) -> None:
        transition = event.transition
        logger.debug(f"[FSM] {self.task_key}: {transition.source} -> {transition.dest} ({event.event.name})")

    def can(self, trigger: str) -> bool:
        return trigger in self.machine.get_triggers(self.state)

    def fire(self, trigger: str) -> str:
        """Run a trigger and return the new state.

        Raises:
            InvalidTransitionError: trigger not allowed from the current state
            IncompleteSubtasksError: finish attempted with open subtasks
        """
        if not self.can(trigger):
            raise InvalidTransitionError(self.task_key, self.state, DEST_FOR.get(trigger, trigger))
        if not getattr(self, trigger)():
            raise IncompleteSubtasksError(self.task_key, self.state, self.incomplete_subtasks)
        return self.state


def apply_transition(task: Task, trigger: str) -> str:
    """Validate a status change for `task`; returns the resulting status."""
    return TaskFSM.for_task(task).fire(trigger)

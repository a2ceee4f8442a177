"""
Task router.

Scores ready tasks for an agent profile and recommends the next one:

    score = priority_weight * capability_factor * phase_factor * context_factor

Priority weights are spaced so that one priority step always outweighs the
other factors combined (enforced by RoutingWeights.validate). Ties go to
the lower task key.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from specflow.lib.config import RoutingWeights
from specflow.lib.errors import AlreadyAssignedError, NoCandidateError
from specflow.lib.models import Assignment, Task
from specflow.lib.types import AgentProfile, Capability, Priority, SpecStatus
from specflow.workflow.graph import TaskGraph, get_ready_tasks
from specflow.workflow.store import WorkflowStateStore

logger = logging.getLogger(__name__)

PRIORITY_LABELS = {
    Priority.P0: "Critical priority",
    Priority.P1: "High priority",
    Priority.P2: "Medium priority",
    Priority.P3: "Low priority",
}

MAX_ALTERNATIVES = 3


@dataclass(frozen=True)
class RoutingConstraints:
    """Filters applied before scoring. None means unrestricted."""
    priorities: Optional[frozenset[Priority]] = None
    phase: Optional[str] = None
    exclude: frozenset[str] = frozenset()
    spec_statuses: Optional[frozenset[SpecStatus]] = None

    def allows(self, task: Task) -> bool:
        if self.priorities is not None and task.priority not in self.priorities:
            return False
        if self.phase and task.phase and task.phase != self.phase:
            return False
        if task.key in self.exclude:
            return False
        if self.spec_statuses is not None and task.spec_status not in self.spec_statuses:
            return False
        return True


@dataclass
class Recommendation:
    task: Task
    score: float
    reason: str
    alternatives: list["Recommendation"] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "task": self.task.key,
            "title": self.task.title,
            "priority": self.task.priority.value,
            "capability": self.task.capability.value if self.task.capability else None,
            "score": self.score,
            "reason": self.reason,
            "alternatives": [a.to_dict() for a in self.alternatives],
        }


class TaskRouter:
    """Recommends and assigns tasks. All state goes through the store."""

    def __init__(
        self,
        store: WorkflowStateStore,
        weights: RoutingWeights | None = None,
        profiles: dict | None = None,
    ):
        self.store = store
        self.weights = weights or RoutingWeights()
        self.profiles = profiles or {cap: AgentProfile(capability=cap) for cap in Capability}

    # Scoring

    def capability_factor(self, task: Task, profile: AgentProfile) -> float:
        if task.capability is not None and task.capability == profile.capability:
            return self.weights.capability_match
        if profile.handles(task.capability):
            return 1.0
        return 0.0

    def score(self, task: Task, profile: AgentProfile, phase: str | None = None) -> float:
        """Routing score; 0 means the profile cannot take the task."""
        cap = self.capability_factor(task, profile)
        if cap == 0.0:
            return 0.0
        phase_factor = self.weights.phase_match if phase and task.phase == phase else 1.0
        context_factor = self.weights.context_miss if profile.missing_contexts(task.context_requirements) else 1.0
        return self.weights.priority_weight(task.priority) * cap * phase_factor * context_factor

    def explain(self, task: Task, profile: AgentProfile, phase: str | None = None) -> str:
        parts = [PRIORITY_LABELS[task.priority]]
        if task.capability is None:
            parts.append("Any agent")
        elif task.capability == profile.capability:
            parts.append("Perfect agent match")
        else:
            parts.append(f"Secondary capability: {task.capability.value}")
        if phase and task.phase == phase:
            parts.append(f"Phase match: {phase}")
        if task.context_requirements:
            missing = profile.missing_contexts(task.context_requirements)
            if missing:
                parts.append(f"Missing context: {', '.join(missing)}")
            else:
                parts.append(f"Context match: {', '.join(task.context_requirements)}")
        return ", ".join(parts)

    def _ranked(
        self,
        graph: TaskGraph,
        profile: AgentProfile,
        constraints: RoutingConstraints,
    ) -> tuple[list[Recommendation], dict]:
        ready = get_ready_tasks(graph)
        counts = {"ready": len(ready), "excluded_by_constraints": 0, "excluded_by_capability": 0}

        ranked = []
        for task in ready:
            if not constraints.allows(task):
                counts["excluded_by_constraints"] += 1
                continue
            score = self.score(task, profile, constraints.phase)
            if score == 0.0:
                counts["excluded_by_capability"] += 1
                continue
            ranked.append(Recommendation(
                task=task,
                score=score,
                reason=self.explain(task, profile, constraints.phase),
            ))

        ranked.sort(key=lambda r: (-r.score, r.task.key))
        return ranked, counts

    # Recommendations

    def get_next_tasks(
        self,
        profile: AgentProfile,
        limit: int = 5,
        constraints: RoutingConstraints | None = None,
    ) -> list[Recommendation]:
        """Top `limit` tasks for the profile, best first. Empty if none match."""
        ranked, _ = self._ranked(self.store.load_graph(), profile, constraints or RoutingConstraints())
        return ranked[:limit]

    def get_next_task(
        self,
        profile: AgentProfile,
        constraints: RoutingConstraints | None = None,
    ) -> Recommendation:
        """Best task for the profile, with up to three alternatives.

        Raises:
            NoCandidateError: nothing ready matches (details carry the counts)
        """
        ranked, counts = self._ranked(self.store.load_graph(), profile, constraints or RoutingConstraints())
        if not ranked:
            raise NoCandidateError(
                f"No ready task for {profile.capability.value}",
                capability=profile.capability.value,
                **counts,
            )
        best = ranked[0]
        best.alternatives = ranked[1:1 + MAX_ALTERNATIVES]
        logger.debug(f"[ROUTER] {profile.capability.value} -> {best.task.key} score={best.score:g}")
        return best

    def best_agent_for(self, task: Task, phase: str | None = None) -> tuple[AgentProfile, float] | None:
        """Highest-scoring configured profile for a task, or None."""
        scored = [(self.score(task, profile, phase), profile) for profile in self.profiles.values()]
        scored = [(s, p) for s, p in scored if s > 0]
        if not scored:
            return None
        scored.sort(key=lambda sp: (-sp[0], sp[1].capability.value))
        score, profile = scored[0]
        return profile, score

    # Mutations

    def assign_task(self, key: str, profile: AgentProfile, notes: str | None = None) -> Assignment:
        return self.store.assign_task(key, profile, notes=notes, assigned_by="router")

    def claim_next_task(
        self,
        profile: AgentProfile,
        constraints: RoutingConstraints | None = None,
        notes: str | None = None,
    ) -> tuple[Recommendation, Assignment]:
        """Recommend and assign in one step.

        A candidate taken by a concurrent caller is skipped in favour of the
        next one.
        """
        ranked, counts = self._ranked(self.store.load_graph(), profile, constraints or RoutingConstraints())
        for recommendation in ranked:
            try:
                assignment = self.assign_task(recommendation.task.key, profile, notes)
            except AlreadyAssignedError:
                logger.info(f"[ROUTER] {recommendation.task.key} taken concurrently, trying next")
                continue
            return recommendation, assignment
        raise NoCandidateError(
            f"No ready task for {profile.capability.value}",
            capability=profile.capability.value,
            **counts,
        )

    def block_task(self, key: str, reason: str) -> None:
        self.store.block_task(key, reason)

    def unblock_task(self, key: str) -> None:
        self.store.unblock_task(key)

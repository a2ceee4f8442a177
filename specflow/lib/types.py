"""
Shared enums and value types for specflow.

Kept separate from models.py so config, graph and router can import them
without pulling in each other.
"""

from dataclasses import dataclass, field
from enum import Enum


class Priority(Enum):
    """Specification priority. P0 is the most urgent."""

    P0 = "P0"
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"

    @property
    def rank(self) -> int:
        return int(self.value[1])

    @classmethod
    def parse(cls, value: str | None, default: "Priority | None" = None) -> "Priority":
        if value is None or value == "":
            return default or cls.P2
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown priority '{value}' (expected P0-P3)") from None


class TaskStatus(Enum):
    PENDING = "pending"
    READY = "ready"
    BLOCKED = "blocked"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


class SpecStatus(Enum):
    BACKLOG = "backlog"
    ACTIVE = "active"
    DONE = "done"


class Capability(Enum):
    """Closed set of agent capabilities.

    A task names at most one required capability; an agent profile has a
    primary capability plus optional secondary ones.
    """

    SOFTWARE_ARCHITECT = "software-architect"
    BACKEND_DEVELOPER = "backend-developer"
    FRONTEND_DEVELOPER = "frontend-developer"
    CLI_SPECIALIST = "cli-specialist"
    TESTING_SPECIALIST = "testing-specialist"
    DOCUMENTATION_SPECIALIST = "documentation-specialist"
    DEVOPS_SPECIALIST = "devops-specialist"
    PRODUCT_MANAGER = "product-manager"

    @classmethod
    def parse(cls, value: str) -> "Capability":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            known = ", ".join(c.value for c in cls)
            raise ValueError(f"Unknown capability '{value}' (known: {known})") from None


# Document status strings that count as "already done"
DONE_STATUSES = frozenset({"complete", "completed", "done"})


@dataclass(frozen=True)
class AgentProfile:
    """What an agent can do.

    capability: primary capability (exact match doubles routing score)
    also: secondary capabilities the agent accepts without the bonus
    contexts: context tags the agent advertises (e.g. "api", "database")
    """
    capability: Capability
    also: frozenset[Capability] = field(default_factory=frozenset)
    contexts: frozenset[str] = field(default_factory=frozenset)

    def handles(self, required: Capability | None) -> bool:
        return required is None or required == self.capability or required in self.also

    def missing_contexts(self, requirements: list[str]) -> list[str]:
        return [r for r in requirements if r not in self.contexts]

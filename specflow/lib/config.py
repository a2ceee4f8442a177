"""
Configuration loaders for specflow.

Project settings come from an optional specflow.env at the project root;
agent profiles come from an optional agents.yaml next to it. Both fall back
to defaults so a bare directory of spec documents works out of the box.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from . import envparse
from .errors import ConfigError
from .types import AgentProfile, Capability, Priority

logger = logging.getLogger(__name__)

ENV_FILENAME = "specflow.env"
AGENTS_FILENAME = "agents.yaml"

DEFAULT_PRIORITY_WEIGHTS = {
    Priority.P0: 1000.0,
    Priority.P1: 100.0,
    Priority.P2: 10.0,
    Priority.P3: 1.0,
}


@dataclass(frozen=True)
class RoutingWeights:
    """Scoring multipliers used by the router.

    The multipliers are tunable. What must hold is that one priority step
    outweighs every combination of the other factors.
    """
    priority: dict = field(default_factory=lambda: dict(DEFAULT_PRIORITY_WEIGHTS))
    capability_match: float = 2.0
    phase_match: float = 1.5
    context_miss: float = 0.5

    def priority_weight(self, priority: Priority) -> float:
        return self.priority[priority]

    def validate(self) -> None:
        """Raise ConfigError if the weights break priority dominance."""
        if self.capability_match < 1.0 or self.phase_match < 1.0:
            raise ConfigError(
                "Capability and phase bonuses must be >= 1.0",
                capability_match=self.capability_match,
                phase_match=self.phase_match,
            )
        if not 0.0 < self.context_miss <= 1.0:
            raise ConfigError("Context penalty must be in (0, 1]", context_miss=self.context_miss)

        # Largest possible swing between two tasks of the same priority
        spread = self.capability_match * self.phase_match / self.context_miss
        ordered = sorted(Priority, key=lambda p: p.rank)
        for higher, lower in zip(ordered, ordered[1:]):
            hi, lo = self.priority[higher], self.priority[lower]
            if lo <= 0 or hi <= lo * spread:
                raise ConfigError(
                    f"Priority weight {higher.value}={hi} must exceed "
                    f"{lower.value}={lo} by more than {spread:g}x",
                    higher=higher.value,
                    lower=lower.value,
                    spread=spread,
                )


@dataclass
class ProjectConfig:
    """Resolved project configuration."""
    root: Path
    specs_dir: Path
    state_dir: Path
    lock_timeout: float = 10.0
    lock_poll_interval: float = 0.05
    slow_operation_ms: int = 100
    weights: RoutingWeights = field(default_factory=RoutingWeights)
    agents: dict = field(default_factory=dict)  # Capability -> AgentProfile

    def profile_for(self, capability: str | Capability) -> AgentProfile:
        """Agent profile for a capability name, falling back to a bare profile."""
        if not isinstance(capability, Capability):
            try:
                capability = Capability.parse(capability)
            except ValueError as e:
                raise ConfigError(str(e), capability=capability) from None
        return self.agents.get(capability) or AgentProfile(capability=capability)


def _parse_float(env: dict, key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got '{raw}'", key=key) from None


def _parse_priority_weights(raw: str | None) -> dict:
    if not raw:
        return dict(DEFAULT_PRIORITY_WEIGHTS)
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    if len(parts) != len(Priority):
        raise ConfigError(
            f"PRIORITY_WEIGHTS needs {len(Priority)} comma-separated values, got '{raw}'",
            key="PRIORITY_WEIGHTS",
        )
    try:
        values = [float(p) for p in parts]
    except ValueError:
        raise ConfigError(f"PRIORITY_WEIGHTS must be numbers, got '{raw}'", key="PRIORITY_WEIGHTS") from None
    ordered = sorted(Priority, key=lambda p: p.rank)
    return dict(zip(ordered, values))


def load_agent_profiles(project_dir: Path | None) -> dict:
    """Load agents.yaml and return {Capability: AgentProfile}.

    Missing or unparsable files fall back to one bare profile per capability.
    Unknown capability names are a configuration error.
    """
    profiles = {cap: AgentProfile(capability=cap) for cap in Capability}
    if project_dir is None:
        return profiles

    config_path = project_dir / AGENTS_FILENAME
    if not config_path.exists():
        return profiles

    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read {config_path}: {e}", path=str(config_path)) from None
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return profiles

    agents = data.get("agents") or {}
    if not isinstance(agents, dict):
        raise ConfigError(f"{config_path}: 'agents' must be a mapping", path=str(config_path))

    for name, entry in agents.items():
        entry = entry or {}
        try:
            capability = Capability.parse(name)
            also = frozenset(Capability.parse(c) for c in entry.get("also", []) or [])
        except ValueError as e:
            raise ConfigError(f"{config_path}: {e}", path=str(config_path)) from None
        contexts = frozenset(str(c) for c in entry.get("contexts", []) or [])
        profiles[capability] = AgentProfile(capability=capability, also=also, contexts=contexts)

    return profiles


def load_project_config(project_dir: Path) -> ProjectConfig:
    """Load specflow.env and agents.yaml from project_dir."""
    project_dir = Path(project_dir).resolve()
    env_path = project_dir / ENV_FILENAME
    env = {}
    if env_path.exists():
        env = envparse.load_env(env_path)

    weights = RoutingWeights(
        priority=_parse_priority_weights(env.get("PRIORITY_WEIGHTS")),
        capability_match=_parse_float(env, "CAPABILITY_MATCH_BONUS", 2.0),
        phase_match=_parse_float(env, "PHASE_MATCH_BONUS", 1.5),
        context_miss=_parse_float(env, "CONTEXT_MISS_PENALTY", 0.5),
    )
    weights.validate()

    return ProjectConfig(
        root=project_dir,
        specs_dir=project_dir / env.get("SPECS_DIR", "docs/specs"),
        state_dir=project_dir / env.get("STATE_DIR", ".specflow/state"),
        lock_timeout=_parse_float(env, "LOCK_TIMEOUT", 10.0),
        lock_poll_interval=_parse_float(env, "LOCK_POLL_INTERVAL", 0.05),
        slow_operation_ms=int(_parse_float(env, "SLOW_OPERATION_MS", 100)),
        weights=weights,
        agents=load_agent_profiles(project_dir),
    )

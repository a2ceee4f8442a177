"""
Shared helpers for CLI commands.
"""

import json

from specflow.lib.errors import ConfigError
from specflow.lib.models import split_key
from specflow.lib.types import Priority, SpecStatus
from specflow.workflow.router import RoutingConstraints


def print_json(data) -> None:
    print(json.dumps(data, indent=2))


def parse_task_key(value: str) -> str:
    """Validate a SPEC-ID:TASK-ID argument."""
    try:
        split_key(value)
    except ValueError as e:
        raise ConfigError(str(e), task=value) from None
    return value


def build_constraints(args) -> RoutingConstraints:
    try:
        priorities = frozenset(Priority.parse(p) for p in args.priority) if args.priority else None
        statuses = frozenset(SpecStatus(s) for s in args.spec_status) if args.spec_status else None
    except ValueError as e:
        raise ConfigError(str(e)) from None
    return RoutingConstraints(
        priorities=priorities,
        phase=args.phase,
        exclude=frozenset(args.exclude or []),
        spec_statuses=statuses,
    )

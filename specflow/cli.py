#!/usr/bin/env python3
"""specflow CLI entrypoint."""

import argparse
import json
import logging
import sys
from pathlib import Path

from specflow.lib.errors import ConfigError, WorkflowError
from specflow.workflow.engine import WorkflowEngine, open_engine
from specflow.commands import assign as cmd_assign_module
from specflow.commands import complete as cmd_complete_module
from specflow.commands import handoff as cmd_handoff_module
from specflow.commands import next as cmd_next_module
from specflow.commands import status as cmd_status_module
from specflow.commands import validate as cmd_validate_module

EXIT_WORKFLOW_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_RETRYABLE = 3


def get_engine(args) -> WorkflowEngine:
    return open_engine(Path(args.project))


def exit_code_for(error: WorkflowError) -> int:
    if isinstance(error, ConfigError):
        return EXIT_CONFIG_ERROR
    if error.retryable:
        return EXIT_RETRYABLE
    return EXIT_WORKFLOW_ERROR


def report_error(error: WorkflowError) -> None:
    print(f"ERROR: {error.message}", file=sys.stderr)
    for key, value in error.details.items():
        if value is None:
            continue
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value) or "-"
        print(f"  {key}: {value}", file=sys.stderr)
    if error.retryable:
        print("  (retry the command)", file=sys.stderr)


def cmd_next(args):
    return cmd_next_module.cmd_next(args, get_engine(args))


def cmd_start(args):
    return cmd_next_module.cmd_start(args, get_engine(args))


def cmd_assign(args):
    return cmd_assign_module.cmd_assign(args, get_engine(args))


def cmd_block(args):
    return cmd_assign_module.cmd_block(args, get_engine(args))


def cmd_unblock(args):
    return cmd_assign_module.cmd_unblock(args, get_engine(args))


def cmd_complete(args):
    return cmd_complete_module.cmd_complete(args, get_engine(args))


def cmd_complete_subtask(args):
    return cmd_complete_module.cmd_complete_subtask(args, get_engine(args))


def cmd_assignments(args):
    return cmd_status_module.cmd_assignments(args, get_engine(args))


def cmd_progress(args):
    return cmd_status_module.cmd_progress(args, get_engine(args))


def cmd_validate(args):
    return cmd_validate_module.cmd_validate(args, get_engine(args))


def cmd_repair(args):
    return cmd_validate_module.cmd_repair(args, get_engine(args))


def cmd_handoff(args):
    return cmd_handoff_module.cmd_handoff(args, get_engine(args))


def cmd_handoffs(args):
    return cmd_handoff_module.cmd_handoffs(args, get_engine(args))


def cmd_rollback(args):
    return cmd_handoff_module.cmd_rollback(args, get_engine(args))


def cmd_audit(args):
    return cmd_handoff_module.cmd_audit(args, get_engine(args))


def _add_routing_args(p) -> None:
    p.add_argument('--agent', '-a', required=True, help='Agent capability (e.g., backend-developer)')
    p.add_argument('--priority', action='append', help='Only these priorities (repeatable)')
    p.add_argument('--phase', help='Prefer this phase; tasks in other phases are skipped')
    p.add_argument('--exclude', action='append', help='Task key to skip (repeatable)')
    p.add_argument('--spec-status', action='append', choices=['backlog', 'active', 'done'],
                   help='Only specs with this status (repeatable)')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='specflow', description='Task routing and workflow state')
    parser.add_argument('--project', '-C', default='.', help='Project directory (default: current)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    parser.add_argument('--json', action='store_true', help='Machine-readable output')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # specflow next
    p_next = subparsers.add_parser('next', help='Recommend the next task for an agent')
    _add_routing_args(p_next)
    p_next.add_argument('--limit', '-n', type=int, default=1, help='Show the top N tasks')
    p_next.set_defaults(func=cmd_next)

    # specflow start
    p_start = subparsers.add_parser('start', help='Recommend and assign the next task')
    _add_routing_args(p_start)
    p_start.add_argument('--notes', help='Assignment notes')
    p_start.set_defaults(func=cmd_start)

    # specflow assign
    p_assign = subparsers.add_parser('assign', help='Assign a specific task')
    p_assign.add_argument('task', help='Task key (SPEC-ID:TASK-ID)')
    p_assign.add_argument('--agent', '-a', required=True, help='Agent capability')
    p_assign.add_argument('--notes', help='Assignment notes')
    p_assign.set_defaults(func=cmd_assign)

    # specflow complete
    p_complete = subparsers.add_parser('complete', help='Complete a task and hand off dependents')
    p_complete.add_argument('task', help='Task key (SPEC-ID:TASK-ID)')
    p_complete.add_argument('--notes', help='Completion notes (passed to the next agent)')
    p_complete.set_defaults(func=cmd_complete)

    # specflow complete-subtask
    p_subtask = subparsers.add_parser('complete-subtask', help='Mark a subtask complete')
    p_subtask.add_argument('task', help='Task key (SPEC-ID:TASK-ID)')
    p_subtask.add_argument('subtask', help='Subtask ID')
    p_subtask.add_argument('--notes', help='Notes')
    p_subtask.set_defaults(func=cmd_complete_subtask)

    # specflow block
    p_block = subparsers.add_parser('block', help='Hold a task out of routing')
    p_block.add_argument('task', help='Task key (SPEC-ID:TASK-ID)')
    p_block.add_argument('reason', help='Why the task is blocked')
    p_block.set_defaults(func=cmd_block)

    # specflow unblock
    p_unblock = subparsers.add_parser('unblock', help='Release a manual block')
    p_unblock.add_argument('task', help='Task key (SPEC-ID:TASK-ID)')
    p_unblock.set_defaults(func=cmd_unblock)

    # specflow assignments
    p_assignments = subparsers.add_parser('assignments', help='Show active assignments and workload')
    p_assignments.set_defaults(func=cmd_assignments)

    # specflow progress
    p_progress = subparsers.add_parser('progress', help='Show project or spec progress')
    p_progress.add_argument('spec', nargs='?', help='Spec ID (project-wide if omitted)')
    p_progress.add_argument('--blocked', '-b', action='store_true', help='Also list waiting tasks')
    p_progress.set_defaults(func=cmd_progress)

    # specflow validate
    p_validate = subparsers.add_parser('validate', help='Check state against the documents')
    p_validate.add_argument('--strict', action='store_true', help='Exit with an error on any inconsistency')
    p_validate.set_defaults(func=cmd_validate)

    # specflow repair
    p_repair = subparsers.add_parser('repair', help='Fix inconsistencies found by validate')
    p_repair.set_defaults(func=cmd_repair)

    # specflow handoff
    p_handoff = subparsers.add_parser('handoff', help='Force a handoff to an agent')
    p_handoff.add_argument('task', help='Task key (SPEC-ID:TASK-ID)')
    p_handoff.add_argument('--agent', '-a', required=True, help='Agent capability')
    p_handoff.add_argument('--from', dest='from_task', help='Task key the handoff comes from')
    p_handoff.add_argument('--reason', '-r', help='Reason recorded on the handoff')
    p_handoff.add_argument('--assign', action='store_true', help='Also create the assignment')
    p_handoff.add_argument('--notes', help='Assignment notes (with --assign)')
    p_handoff.set_defaults(func=cmd_handoff)

    # specflow handoffs
    p_handoffs = subparsers.add_parser('handoffs', help='Show the handoff queue')
    p_handoffs.set_defaults(func=cmd_handoffs)

    # specflow rollback
    p_rollback = subparsers.add_parser('rollback', help='Restore state from before an audit entry')
    p_rollback.add_argument('audit_id', help='Audit entry ID')
    p_rollback.set_defaults(func=cmd_rollback)

    # specflow audit
    p_audit = subparsers.add_parser('audit', help='Show the audit log')
    p_audit.add_argument('--limit', '-n', type=int, default=20, help='Entries to show')
    p_audit.set_defaults(func=cmd_audit)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.func(args)
    except WorkflowError as e:
        if args.json:
            print(json.dumps(e.to_dict(), default=str), file=sys.stderr)
        else:
            report_error(e)
        return exit_code_for(e)


if __name__ == '__main__':
    sys.exit(main())

"""
specflow assign / block / unblock - Direct assignment and manual blocks.
"""

from specflow.commands.common import parse_task_key, print_json
from specflow.workflow.engine import WorkflowEngine


def cmd_assign(args, engine: WorkflowEngine) -> int:
    key = parse_task_key(args.task)
    profile = engine.config.profile_for(args.agent)
    assignment = engine.router.assign_task(key, profile, notes=args.notes)

    if args.json:
        print_json(assignment.to_dict())
    else:
        print(f"Assigned: {key} -> {assignment.capability}")
    return 0


def cmd_block(args, engine: WorkflowEngine) -> int:
    key = parse_task_key(args.task)
    engine.router.block_task(key, args.reason)
    print(f"Blocked: {key} ({args.reason})")
    return 0


def cmd_unblock(args, engine: WorkflowEngine) -> int:
    key = parse_task_key(args.task)
    engine.router.unblock_task(key)
    print(f"Unblocked: {key}")
    return 0

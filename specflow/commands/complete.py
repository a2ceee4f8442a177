"""
specflow complete / complete-subtask - Record finished work.
"""

from specflow.commands.common import parse_task_key, print_json
from specflow.workflow.engine import WorkflowEngine


def cmd_complete(args, engine: WorkflowEngine) -> int:
    """Complete a task and stage handoffs for what it unblocks."""
    key = parse_task_key(args.task)
    result = engine.handoff.complete_task(key, notes=args.notes)

    if args.json:
        print_json(result.to_dict())
        return 0

    record = result.record
    print(f"Completed: {key}")
    if record.duration_hours is not None:
        print(f"  Duration: {record.duration_hours}h")
    for handoff in result.handoffs:
        prepared = "context ready" if handoff.context_prepared else "context pending"
        print(f"  Handoff: {handoff.to_task} -> {handoff.capability} ({prepared})")
    for error in result.errors:
        print(f"  [WARN] {error['task']}: {error['message']}")
    return 0


def cmd_complete_subtask(args, engine: WorkflowEngine) -> int:
    key = parse_task_key(args.task)
    progress = engine.handoff.complete_subtask(key, args.subtask, notes=args.notes)

    if args.json:
        print_json(progress.to_dict())
    else:
        print(f"Subtask {args.subtask} complete ({progress.completed}/{progress.total}, {progress.percentage}%)")
    return 0

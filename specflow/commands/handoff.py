"""
specflow handoff / handoffs / rollback / audit - Handoff queue and history.
"""

from specflow.commands.common import parse_task_key, print_json
from specflow.lib.models import split_key
from specflow.workflow.engine import WorkflowEngine


def cmd_handoff(args, engine: WorkflowEngine) -> int:
    """Force a handoff of a task to an agent capability."""
    spec_id, task_id = split_key(parse_task_key(args.task))
    options = {
        "from_task": parse_task_key(args.from_task) if args.from_task else None,
        "reason": args.reason,
        "assign": args.assign,
        "notes": args.notes,
    }
    result = engine.handoff.trigger_manual_handoff(spec_id, task_id, args.agent, options)

    if args.json:
        print_json(result.to_dict())
        return 0

    print(f"Handoff: {result.handoff.to_task} -> {result.handoff.capability} ({result.handoff.id})")
    if result.assignment:
        print(f"  Assigned at {result.assignment.started_at}")
    return 0


def cmd_handoffs(args, engine: WorkflowEngine) -> int:
    status = engine.handoff.get_handoff_status()

    if args.json:
        print_json(status.to_dict())
        return 0

    if status.ready:
        print("Ready handoffs")
        print("-" * 60)
        for h in status.ready:
            context = "ready" if h.context_prepared else f"pending ({h.context_error or 'not prepared'})"
            print(f"  {h.id:<18} {h.to_task:<24} -> {h.capability:<26} context {context}")
    else:
        print("Ready handoffs: none")

    if status.marked_stale:
        print(f"\nMarked stale: {', '.join(status.marked_stale)}")

    if status.recent:
        print("\nRecent")
        print("-" * 60)
        for h in status.recent:
            print(f"  {h.id:<18} {h.to_task:<24} {h.status}")
    return 0


def cmd_rollback(args, engine: WorkflowEngine) -> int:
    rollback_id = engine.handoff.rollback(args.audit_id)
    print(f"Rolled back {args.audit_id} (audit entry {rollback_id})")
    return 0


def cmd_audit(args, engine: WorkflowEngine) -> int:
    entries = engine.handoff.get_audit_log(args.limit)

    if args.json:
        print_json([e.to_dict() for e in entries])
        return 0

    if not entries:
        print("Audit log: empty")
        return 0

    for e in entries:
        target = e.task_key or e.spec_id or "-"
        suffix = f" reverses {e.reverses}" if e.reverses else ""
        print(f"  {e.id}  {e.action:<18} {target:<24} {e.source}/{e.confidence:g}{suffix}")
    return 0

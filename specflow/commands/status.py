"""
specflow assignments / progress - Read-only views of the workflow state.
"""

from specflow.commands.common import print_json
from specflow.workflow.engine import WorkflowEngine
from specflow.workflow.graph import get_blocked_tasks


def cmd_assignments(args, engine: WorkflowEngine) -> int:
    summary = engine.store.get_current_assignments()

    if args.json:
        print_json(summary.to_dict())
        return 0

    if not summary.assignments:
        print("Assignments: none")
        return 0

    print("Assignments")
    print("-" * 60)
    for a in summary.assignments:
        print(f"  {a.task_key:<24} {a.capability:<26} since {a.started_at}")
    print()
    print("Workload")
    print("-" * 60)
    for capability, load in sorted(summary.workload.items()):
        print(f"  {capability:<26} {load['active']} active, {load['estimated_hours']:g}h estimated")
    return 0


def cmd_progress(args, engine: WorkflowEngine) -> int:
    if args.spec:
        report = engine.store.get_spec_progress(args.spec)
        if args.json:
            print_json(report.to_dict())
        else:
            print(f"{args.spec}: {report.completed}/{report.total} tasks ({report.percentage}%)")
        return 0

    graph = engine.store.load_graph()
    overall = engine.store.get_project_progress()

    if args.json:
        print_json({
            "overall": overall.to_dict(),
            "by_spec": {sid: engine.store.get_spec_progress(sid).to_dict() for sid in graph.specs},
        })
        return 0

    print(f"Project: {overall.completed}/{overall.total} tasks ({overall.percentage}%)")
    for spec_id in sorted(graph.specs):
        report = engine.store.get_spec_progress(spec_id)
        print(f"  {spec_id:<16} {report.completed}/{report.total} ({report.percentage}%)")

    blocked = get_blocked_tasks(graph)
    if blocked and args.blocked:
        print()
        print("Waiting")
        print("-" * 60)
        for item in blocked:
            why = item.reason or f"waiting on {', '.join(item.waiting_on)}"
            print(f"  {item.task.key:<24} {why}")
    return 0

"""
specflow next / start - Recommend the next task for an agent.
"""

from specflow.commands.common import build_constraints, print_json
from specflow.lib.errors import NoCandidateError
from specflow.workflow.engine import WorkflowEngine


def cmd_next(args, engine: WorkflowEngine) -> int:
    """Show the best task (or top N) for an agent capability."""
    profile = engine.config.profile_for(args.agent)
    constraints = build_constraints(args)

    if args.limit > 1:
        recommendations = engine.router.get_next_tasks(profile, args.limit, constraints)
        if args.json:
            print_json([r.to_dict() for r in recommendations])
            return 0
        if not recommendations:
            print(f"No ready tasks for {profile.capability.value}")
            return 0
        for i, rec in enumerate(recommendations, 1):
            print(f"  {i}. {rec.task.key:<24} score={rec.score:<8g} {rec.reason}")
        return 0

    try:
        rec = engine.router.get_next_task(profile, constraints)
    except NoCandidateError as e:
        if args.json:
            print_json(e.to_dict())
        else:
            d = e.details
            print(f"No ready tasks for {profile.capability.value}")
            print(f"  Ready: {d['ready']}  excluded by capability: {d['excluded_by_capability']}"
                  f"  excluded by constraints: {d['excluded_by_constraints']}")
        return 0

    if args.json:
        print_json(rec.to_dict())
        return 0

    print(f"Next: {rec.task.key}")
    if rec.task.title:
        print(f"  Title: {rec.task.title}")
    print(f"  Score: {rec.score:g}")
    print(f"  Reason: {rec.reason}")
    if rec.alternatives:
        print("  Alternatives:")
        for alt in rec.alternatives:
            print(f"    {alt.task.key:<24} score={alt.score:g}")
    return 0


def cmd_start(args, engine: WorkflowEngine) -> int:
    """Recommend and assign in one step."""
    profile = engine.config.profile_for(args.agent)
    rec, assignment = engine.router.claim_next_task(profile, build_constraints(args), notes=args.notes)

    if args.json:
        print_json({"recommendation": rec.to_dict(), "assignment": assignment.to_dict()})
        return 0

    print(f"Started: {assignment.task_key}")
    print(f"  Agent: {assignment.capability}")
    print(f"  Reason: {rec.reason}")
    return 0

"""
specflow validate / repair - Consistency between state and documents.
"""

from specflow.commands.common import print_json
from specflow.workflow.engine import WorkflowEngine


def _print_issues(report) -> None:
    for issue in report.issues:
        print(f"  [{issue.kind}] {issue.message}")


def cmd_validate(args, engine: WorkflowEngine) -> int:
    """Report divergence between persisted state and the documents. Read-only."""
    report = engine.store.validate_state()
    if args.strict:
        report.raise_for_issues()

    if args.json:
        print_json(report.to_dict())
    elif report.ok:
        print("State is consistent")
    else:
        print(f"{len(report.issues)} issue(s) found:")
        _print_issues(report)
        print("\nRun: specflow repair")
    return 0 if report.ok else 1


def cmd_repair(args, engine: WorkflowEngine) -> int:
    report = engine.store.repair_state()

    if args.json:
        print_json(report.to_dict())
    elif report.ok:
        print("Nothing to repair")
    else:
        print(f"Repaired {len(report.issues)} issue(s):")
        _print_issues(report)
    return 0

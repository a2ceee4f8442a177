"""Tests for the specflow CLI."""

import json

import pytest

from specflow.cli import EXIT_CONFIG_ERROR, EXIT_RETRYABLE, EXIT_WORKFLOW_ERROR, build_parser, main


def run(project, *argv):
    return main(["--project", str(project), *argv])


class TestParser:
    """Argument parsing."""

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_next_requires_agent(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["next"])

    def test_repeatable_filters(self):
        args = build_parser().parse_args([
            "next", "-a", "backend-developer", "--priority", "P0", "--priority", "P1",
            "--exclude", "S:T1", "--spec-status", "active",
        ])
        assert args.priority == ["P0", "P1"]
        assert args.exclude == ["S:T1"]
        assert args.spec_status == ["active"]


class TestWorkflowCommands:
    """End-to-end through main()."""

    def test_next_and_start(self, project, scenario_spec, capsys):
        assert run(project, "next", "-a", "backend-developer") == 0
        out = capsys.readouterr().out
        assert "Next: S:T1" in out
        assert "Perfect agent match" in out

        assert run(project, "start", "-a", "backend-developer") == 0
        assert "Started: S:T1" in capsys.readouterr().out

    def test_complete_shows_handoffs(self, project, scenario_spec, capsys):
        run(project, "assign", "S:T1", "-a", "backend-developer")
        capsys.readouterr()

        assert run(project, "complete", "S:T1", "--notes", "done") == 0
        out = capsys.readouterr().out
        assert "Completed: S:T1" in out
        assert "Handoff: S:T2 -> backend-developer (context ready)" in out
        assert "Handoff: S:T3 -> backend-developer (context ready)" in out

    def test_json_progress(self, project, scenario_spec, capsys):
        assert run(project, "--json", "progress") == 0
        data = json.loads(capsys.readouterr().out)
        assert data["overall"] == {"completed": 0, "total": 3, "percentage": 0.0}
        assert data["by_spec"]["S"]["total"] == 3

    def test_no_candidate_is_not_a_failure(self, project, scenario_spec, capsys):
        assert run(project, "next", "-a", "frontend-developer") == 0
        out = capsys.readouterr().out
        assert "No ready tasks for frontend-developer" in out
        assert "excluded by capability: 1" in out

    def test_block_and_waiting_list(self, project, scenario_spec, capsys):
        assert run(project, "block", "S:T1", "waiting on design") == 0
        capsys.readouterr()
        assert run(project, "progress", "--blocked") == 0
        out = capsys.readouterr().out
        assert "S:T1" in out and "waiting on design" in out
        assert "waiting on S:T1" in out

    def test_audit_and_rollback(self, project, scenario_spec, capsys):
        run(project, "assign", "S:T1", "-a", "backend-developer")
        capsys.readouterr()

        run(project, "--json", "audit", "-n", "1")
        entry = json.loads(capsys.readouterr().out)[0]
        assert entry["action"] == "assign"

        assert run(project, "rollback", entry["id"]) == 0
        assert f"Rolled back {entry['id']}" in capsys.readouterr().out
        run(project, "--json", "assignments")
        assert json.loads(capsys.readouterr().out)["assignments"] == []

    def test_validate_exit_code(self, project, scenario_spec, write_spec, capsys):
        run(project, "assign", "S:T1", "-a", "backend-developer")
        assert run(project, "validate") == 0
        write_spec("S", [{"id": "T2"}])
        assert run(project, "validate") == 1
        assert "orphaned_assignment" in capsys.readouterr().out
        assert run(project, "repair") == 0
        assert run(project, "validate") == 0

    def test_strict_validate_raises(self, project, scenario_spec, write_spec, capsys):
        run(project, "assign", "S:T1", "-a", "backend-developer")
        assert run(project, "validate", "--strict") == 0
        write_spec("S", [{"id": "T2"}])
        capsys.readouterr()
        assert run(project, "--json", "validate", "--strict") == EXIT_WORKFLOW_ERROR
        error = json.loads(capsys.readouterr().err)
        assert error["error"] == "ConsistencyError"
        assert error["details"]["issues"][0]["kind"] == "orphaned_assignment"


class TestErrorExitCodes:
    """Errors map to exit codes and readable messages."""

    def test_workflow_error(self, project, scenario_spec, capsys):
        assert run(project, "assign", "S:T2", "-a", "backend-developer") == EXIT_WORKFLOW_ERROR
        err = capsys.readouterr().err
        assert "ERROR: Task S:T2 is waiting on unmet dependencies: S:T1" in err
        assert "blocking_chain: S:T1" in err

    def test_config_error(self, project, scenario_spec, capsys):
        assert run(project, "next", "-a", "wizard") == EXIT_CONFIG_ERROR
        assert "Unknown capability 'wizard'" in capsys.readouterr().err

    def test_bad_task_key(self, project, scenario_spec, capsys):
        assert run(project, "assign", "T1", "-a", "backend-developer") == EXIT_CONFIG_ERROR

    def test_undecodable_spec_document(self, project, specs_dir, scenario_spec, capsys):
        (specs_dir / "BROKEN.md").write_bytes(b"---\nid: BROKEN\ntitle: \xff\n---\n")
        assert run(project, "progress") == EXIT_WORKFLOW_ERROR
        err = capsys.readouterr().err
        assert "ERROR:" in err
        assert "cannot read document" in err

    def test_undecodable_env_file(self, project, scenario_spec, capsys):
        (project / "specflow.env").write_bytes(b"SPECS_DIR=\xff\n")
        assert run(project, "progress") == EXIT_CONFIG_ERROR
        assert "Cannot read" in capsys.readouterr().err

    def test_json_error(self, project, scenario_spec, capsys):
        assert run(project, "--json", "assign", "S:T9", "-a", "backend-developer") == EXIT_WORKFLOW_ERROR
        error = json.loads(capsys.readouterr().err)
        assert error["error"] == "TaskNotFoundError"
        assert error["details"]["task"] == "S:T9"

    def test_lock_timeout_is_retryable(self, project, scenario_spec, capsys):
        from specflow.runner.locking import state_lock

        (project / "specflow.env").write_text("LOCK_TIMEOUT=0.05\nLOCK_POLL_INTERVAL=0.01\n")
        with state_lock(project / ".specflow" / "state"):
            code = run(project, "assign", "S:T1", "-a", "backend-developer")
        assert code == EXIT_RETRYABLE
        assert "(retry the command)" in capsys.readouterr().err

"""Tests for specflow.lib.specparse module."""

import pytest

from specflow.lib.errors import SpecDocumentError
from specflow.lib.specparse import load_specs, parse_spec_file
from specflow.lib.types import Capability, Priority, SpecStatus, TaskStatus


SPEC_MD = """---
id: FEAT-001
title: Task routing
priority: P1
phase: PHASE-1A
tasks:
  - id: TASK-001
    title: Build the router
    agent_type: backend-developer
    estimated_hours: 4
    context_requirements: [api]
    subtasks:
      - {id: TASK-001-1, description: Scoring, type: implementation}
      - {id: TASK-001-2, description: Tests, type: validation, completed: true}
  - id: TASK-002
    capability: testing-specialist
    depends_on: TASK-001
    priority: P0
  - id: TASK-003
    depends_on: [TASK-002, FEAT-002:TASK-009]
    status: done
---

# Task routing

Body text is ignored.
"""


class TestParseSpecFile:
    """Parsing a single document."""

    def test_front_matter(self, tmp_path):
        path = tmp_path / "FEAT-001.md"
        path.write_text(SPEC_MD)
        spec = parse_spec_file(path)

        assert spec.id == "FEAT-001"
        assert spec.title == "Task routing"
        assert spec.priority == Priority.P1
        assert spec.phase == "PHASE-1A"
        assert spec.status == SpecStatus.BACKLOG
        assert [t.id for t in spec.tasks] == ["TASK-001", "TASK-002", "TASK-003"]

    def test_task_fields(self, tmp_path):
        path = tmp_path / "FEAT-001.md"
        path.write_text(SPEC_MD)
        first, second, third = parse_spec_file(path).tasks

        assert first.capability == Capability.BACKEND_DEVELOPER
        assert first.estimated_hours == 4.0
        assert first.context_requirements == ["api"]
        assert [s.complete for s in first.subtasks] == [False, True]
        assert first.subtasks[1].type == "validation"

        assert second.capability == Capability.TESTING_SPECIALIST
        assert second.depends_on == ["TASK-001"]
        assert second.priority_override == Priority.P0

        assert third.capability is None
        assert third.depends_on == ["TASK-002", "FEAT-002:TASK-009"]
        assert third.status == TaskStatus.COMPLETE

    def test_string_subtasks_get_generated_ids(self, tmp_path):
        path = tmp_path / "FEAT-002.yaml"
        path.write_text("id: FEAT-002\ntasks:\n  - id: T1\n    subtasks: [Write parser, Write tests]\n")
        task = parse_spec_file(path).tasks[0]
        assert [s.id for s in task.subtasks] == ["T1-1", "T1-2"]
        assert task.subtasks[0].description == "Write parser"

    def test_id_from_filename(self, tmp_path):
        path = tmp_path / "FEAT-007-search.md"
        path.write_text("---\ntitle: Search\n---\n")
        assert parse_spec_file(path).id == "FEAT-007"

    def test_non_spec_markdown_skipped(self, tmp_path):
        path = tmp_path / "README.md"
        path.write_text("# Just docs\n")
        assert parse_spec_file(path) is None

    def test_folder_status_is_default(self, tmp_path):
        path = tmp_path / "FEAT-003.md"
        path.write_text("---\nid: FEAT-003\n---\n")
        assert parse_spec_file(path, "active").status == SpecStatus.ACTIVE

    def test_unknown_capability(self, tmp_path):
        path = tmp_path / "FEAT-004.md"
        path.write_text("---\nid: FEAT-004\ntasks:\n  - {id: T1, agent_type: wizard}\n---\n")
        with pytest.raises(SpecDocumentError, match="Unknown capability 'wizard'"):
            parse_spec_file(path)

    def test_task_without_id(self, tmp_path):
        path = tmp_path / "FEAT-005.md"
        path.write_text("---\nid: FEAT-005\ntasks:\n  - {title: nameless}\n---\n")
        with pytest.raises(SpecDocumentError, match="needs an 'id'"):
            parse_spec_file(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "FEAT-006.md"
        path.write_text("---\nid: [broken\n---\n")
        with pytest.raises(SpecDocumentError, match="invalid YAML"):
            parse_spec_file(path)

    def test_bad_estimate(self, tmp_path):
        path = tmp_path / "FEAT-008.md"
        path.write_text("---\nid: FEAT-008\ntasks:\n  - {id: T1, estimated_hours: lots}\n---\n")
        with pytest.raises(SpecDocumentError, match="estimated_hours"):
            parse_spec_file(path)

    def test_undecodable_document(self, tmp_path):
        path = tmp_path / "FEAT-009.md"
        path.write_bytes(b"---\nid: FEAT-009\ntitle: \xff\xfe\n---\n")
        with pytest.raises(SpecDocumentError, match="cannot read document") as exc:
            parse_spec_file(path)
        assert exc.value.details["path"] == str(path)


class TestLoadSpecs:
    """Loading a specs directory."""

    def test_missing_directory_warns(self, tmp_path, caplog):
        assert load_specs(tmp_path / "missing") == []
        assert "Specs directory not found" in caplog.text

    def test_status_folders_and_sorting(self, tmp_path):
        (tmp_path / "active").mkdir()
        (tmp_path / "done").mkdir()
        (tmp_path / "FEAT-002.md").write_text("---\nid: FEAT-002\n---\n")
        (tmp_path / "active" / "FEAT-001.md").write_text("---\nid: FEAT-001\n---\n")
        (tmp_path / "done" / "FEAT-000.md").write_text("---\nid: FEAT-000\n---\n")
        (tmp_path / "notes.txt").write_text("ignored")

        specs = load_specs(tmp_path)
        assert [s.id for s in specs] == ["FEAT-000", "FEAT-001", "FEAT-002"]
        assert [s.status for s in specs] == [SpecStatus.DONE, SpecStatus.ACTIVE, SpecStatus.BACKLOG]

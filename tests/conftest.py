"""Shared fixtures: a throwaway project with spec documents and a state store."""

import pytest
import yaml

from specflow.lib.specparse import load_specs
from specflow.workflow.handoff import HandoffEngine
from specflow.workflow.router import TaskRouter
from specflow.workflow.store import WorkflowStateStore


def spec_document(spec_id: str, tasks: list[dict], **fields) -> str:
    """Markdown spec with YAML front matter."""
    front = {"id": spec_id, **fields, "tasks": tasks}
    return "---\n" + yaml.safe_dump(front, sort_keys=False) + "---\n\n# " + spec_id + "\n"


class RecordingPreparer:
    """Context preparer that remembers what it was asked to prepare."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.prepared: list[str] = []

    def prepare(self, handoff, graph, state):
        if self.fail:
            raise OSError("context volume unavailable")
        self.prepared.append(handoff.to_task)


@pytest.fixture
def project(tmp_path):
    (tmp_path / "docs" / "specs").mkdir(parents=True)
    return tmp_path


@pytest.fixture
def specs_dir(project):
    return project / "docs" / "specs"


@pytest.fixture
def write_spec(specs_dir):
    def _write(spec_id: str, tasks: list[dict], **fields):
        path = specs_dir / f"{spec_id}.md"
        path.write_text(spec_document(spec_id, tasks, **fields))
        return path
    return _write


@pytest.fixture
def store(project, specs_dir):
    return WorkflowStateStore(
        project / ".specflow" / "state",
        load_specs=lambda: load_specs(specs_dir),
        lock_timeout=5.0,
        poll_interval=0.01,
        slow_operation_ms=10_000,
    )


@pytest.fixture
def router(store):
    return TaskRouter(store)


@pytest.fixture
def preparer():
    return RecordingPreparer()


@pytest.fixture
def engine(store, router, preparer):
    return HandoffEngine(store, router, preparer=preparer)


@pytest.fixture
def scenario_spec(write_spec):
    """T1 (P0) unblocks T2 (P1) and T3 (P0); all backend work."""
    write_spec("S", [
        {"id": "T1", "agent_type": "backend-developer", "priority": "P0"},
        {"id": "T2", "agent_type": "backend-developer", "priority": "P1", "depends_on": ["T1"]},
        {"id": "T3", "agent_type": "backend-developer", "priority": "P0", "depends_on": ["T1"]},
    ], status="active")

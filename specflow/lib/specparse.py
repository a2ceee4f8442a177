"""
Specification document loader.

Reads specification documents from the specs directory and returns
Specification objects. Documents are markdown files with YAML front matter
or plain YAML files:

    ---
    id: FEAT-001
    title: Task routing
    priority: P1
    phase: PHASE-1A
    tasks:
      - id: TASK-001
        title: Build the router
        priority: P0                     # optional, overrides the spec's
        agent_type: backend-developer
        depends_on: [TASK-000, FEAT-002:TASK-003]
        estimated_hours: 4
        context_requirements: [api]
        subtasks:
          - {id: TASK-001-1, type: implementation}
    ---

Status folders (active/, backlog/, done/) supply the spec status when the
document does not declare one.
"""

import logging
import re
from pathlib import Path

import yaml

from specflow.lib.errors import SpecDocumentError
from specflow.lib.models import Specification, Subtask, Task
from specflow.lib.types import DONE_STATUSES, Capability, Priority, SpecStatus, TaskStatus

logger = logging.getLogger(__name__)

STATUS_FOLDERS = ("active", "backlog", "done")
DOCUMENT_SUFFIXES = (".md", ".yaml", ".yml")

FRONT_MATTER_RE = re.compile(r'\A---\s*\n(.*?)\n---\s*(?:\n|\Z)', re.DOTALL)
FILENAME_ID_RE = re.compile(r'^([A-Z][A-Z0-9]*-\d+)')


def _read_document(path: Path) -> dict | None:
    """Return the YAML mapping for a document, or None if it has none."""
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SpecDocumentError(str(path), f"cannot read document: {e}") from None
    if path.suffix == ".md":
        match = FRONT_MATTER_RE.match(text)
        if not match:
            return None
        text = match.group(1)

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise SpecDocumentError(str(path), f"invalid YAML: {e}") from None

    if data is None:
        return None
    if not isinstance(data, dict):
        raise SpecDocumentError(str(path), "document must be a mapping")
    return data


def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _parse_task_status(value, path: Path, task_id: str) -> TaskStatus:
    if value is None:
        return TaskStatus.PENDING
    status = str(value).strip().lower()
    if status in DONE_STATUSES:
        return TaskStatus.COMPLETE
    try:
        return TaskStatus(status)
    except ValueError:
        raise SpecDocumentError(str(path), f"task {task_id}: unknown status '{value}'") from None


def _parse_subtask(data, path: Path, task_id: str, index: int) -> Subtask:
    if isinstance(data, str):
        return Subtask(id=f"{task_id}-{index}", description=data)
    if not isinstance(data, dict):
        raise SpecDocumentError(str(path), f"task {task_id}: subtask #{index} must be a mapping")

    done = data.get("completed") is True or str(data.get("status", "")).lower() in DONE_STATUSES
    return Subtask(
        id=str(data.get("id") or f"{task_id}-{index}"),
        description=str(data.get("description") or data.get("title") or ""),
        type=str(data.get("type") or "implementation"),
        status="complete" if done else "pending",
    )


def _parse_task(data, spec_id: str, path: Path) -> Task:
    if not isinstance(data, dict) or not data.get("id"):
        raise SpecDocumentError(str(path), "every task needs an 'id'")
    task_id = str(data["id"])

    raw_capability = data.get("capability") or data.get("agent_type")
    capability = None
    if raw_capability:
        try:
            capability = Capability.parse(raw_capability)
        except ValueError as e:
            raise SpecDocumentError(str(path), f"task {task_id}: {e}") from None

    hours = data.get("estimated_hours")
    try:
        hours = float(hours) if hours is not None else None
    except (TypeError, ValueError):
        raise SpecDocumentError(str(path), f"task {task_id}: estimated_hours must be a number") from None

    subtasks = [
        _parse_subtask(s, path, task_id, i)
        for i, s in enumerate(_as_list(data.get("subtasks")), 1)
    ]

    priority = None
    if data.get("priority"):
        try:
            priority = Priority.parse(data["priority"])
        except ValueError as e:
            raise SpecDocumentError(str(path), f"task {task_id}: {e}") from None

    return Task(
        id=task_id,
        spec_id=spec_id,
        title=str(data.get("title") or ""),
        capability=capability,
        status=_parse_task_status(data.get("status"), path, task_id),
        depends_on=[str(d) for d in _as_list(data.get("depends_on"))],
        subtasks=subtasks,
        estimated_hours=hours,
        context_requirements=[str(c) for c in _as_list(data.get("context_requirements"))],
        priority_override=priority,
        phase_override=str(data["phase"]) if data.get("phase") else None,
    )


def parse_spec_file(path: Path, folder_status: str | None = None) -> Specification | None:
    """Parse one document. Returns None for files that are not specs."""
    data = _read_document(path)
    if data is None:
        return None

    spec_id = data.get("id")
    if not spec_id:
        match = FILENAME_ID_RE.match(path.stem)
        if not match:
            logger.debug(f"Skipping {path}: no spec id in front matter or filename")
            return None
        spec_id = match.group(1)
    spec_id = str(spec_id)

    try:
        priority = Priority.parse(data.get("priority"))
        status = SpecStatus(str(data.get("status") or folder_status or "backlog").lower())
    except ValueError as e:
        raise SpecDocumentError(str(path), str(e)) from None

    phase = data.get("phase")
    return Specification(
        id=spec_id,
        title=str(data.get("title") or ""),
        priority=priority,
        phase=str(phase) if phase else None,
        status=status,
        tasks=[_parse_task(t, spec_id, path) for t in _as_list(data.get("tasks"))],
        path=str(path),
    )


def load_specs(specs_dir: Path) -> list[Specification]:
    """Load every specification under specs_dir, sorted by id."""
    if not specs_dir.exists():
        logger.warning(f"Specs directory not found: {specs_dir}")
        return []

    candidates: list[tuple[Path, str | None]] = []
    for path in sorted(specs_dir.iterdir()):
        if path.is_file() and path.suffix in DOCUMENT_SUFFIXES:
            candidates.append((path, None))
    for folder in STATUS_FOLDERS:
        folder_path = specs_dir / folder
        if folder_path.is_dir():
            for path in sorted(folder_path.iterdir()):
                if path.is_file() and path.suffix in DOCUMENT_SUFFIXES:
                    candidates.append((path, folder))

    specs = []
    for path, folder in candidates:
        spec = parse_spec_file(path, folder)
        if spec is not None:
            specs.append(spec)

    specs.sort(key=lambda s: s.id)
    return specs

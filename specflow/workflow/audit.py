"""
Audit log and snapshot arena.

Every state mutation appends one line to audit.jsonl and stores the state it
replaced under snapshots/<audit-id>.json. Entries and snapshots are never
rewritten; a rollback is itself a new entry pointing at the one it reverses.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from specflow.lib.errors import AuditEntryNotFoundError, StateFileError
from specflow.lib.fileio import append_line, atomic_write_json
from specflow.lib.validate import validate, validate_before_write

logger = logging.getLogger(__name__)

AUDIT_FILENAME = "audit.jsonl"
SNAPSHOT_DIRNAME = "snapshots"


@dataclass
class AuditEntry:
    id: str
    action: str                     # assign, complete, handoff, rollback, ...
    timestamp: str
    source: str                     # store, router, handoff, operator
    confidence: float               # 0..1, how sure the automation was
    snapshot: str                   # snapshot id holding the prior state
    spec_id: Optional[str] = None
    task_key: Optional[str] = None
    result: dict = field(default_factory=dict)
    reverses: Optional[str] = None  # set on rollback entries

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AuditEntry":
        return cls(**data)


def new_audit_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
    return f"{stamp}-{uuid.uuid4().hex[:6]}"


class AuditLog:
    """Append-only audit trail for one state directory."""

    def __init__(self, state_dir: Path):
        self.state_dir = state_dir
        self.path = state_dir / AUDIT_FILENAME
        self.snapshot_dir = state_dir / SNAPSHOT_DIRNAME

    def append(self, entry: AuditEntry) -> None:
        data = entry.to_dict()
        validate_before_write(data, "audit_entry", self.path)
        append_line(self.path, json.dumps(data))

    def entries(self) -> list[AuditEntry]:
        """All readable entries, oldest first. Skips corrupted lines."""
        if not self.path.exists():
            return []

        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StateFileError(f"Cannot read audit log {self.path}: {e}", path=str(self.path)) from None

        entries = []
        for line_num, line in enumerate(text.splitlines(), 1):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
                validate(data, "audit_entry")
                entries.append(AuditEntry.from_dict(data))
            except (json.JSONDecodeError, TypeError, StateFileError) as e:
                logger.warning(f"Skipping corrupted audit line {line_num} in {self.path}: {e}")
        return entries

    def recent(self, limit: int | None = None) -> list[AuditEntry]:
        """Newest first."""
        entries = list(reversed(self.entries()))
        return entries[:limit] if limit else entries

    def get(self, audit_id: str) -> AuditEntry:
        for entry in self.entries():
            if entry.id == audit_id:
                return entry
        raise AuditEntryNotFoundError(audit_id)

    # Snapshot arena

    def snapshot_path(self, snapshot_id: str) -> Path:
        return self.snapshot_dir / f"{snapshot_id}.json"

    def write_snapshot(self, snapshot_id: str, records: dict) -> None:
        path = self.snapshot_path(snapshot_id)
        if path.exists():
            raise StateFileError(f"Snapshot {snapshot_id} already exists", path=str(path))
        atomic_write_json(path, records)

    def load_snapshot(self, snapshot_id: str) -> dict:
        path = self.snapshot_path(snapshot_id)
        try:
            return json.loads(path.read_text())
        except FileNotFoundError:
            raise StateFileError(f"Snapshot {snapshot_id} is missing", path=str(path)) from None
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise StateFileError(f"Snapshot {snapshot_id} is unreadable: {e}", path=str(path)) from None

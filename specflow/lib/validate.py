"""
Schema validation for persisted state records.

Every record is validated against its JSON Schema before it is written and
after it is read, so a hand-edited or truncated state file fails loudly
instead of being half-understood.
"""

import json
from pathlib import Path

import jsonschema

from specflow.lib.errors import StateFileError


class SchemaValidationError(StateFileError):
    """Data does not match its schema."""

    def __init__(self, schema_name: str, message: str, path: str | None = None):
        self.schema_name = schema_name
        self.path = path
        super().__init__(
            f"[{schema_name}] {message}" + (f" at {path}" if path else ""),
            schema=schema_name,
            path=path,
        )


_schema_cache: dict[str, dict] = {}


def _get_schemas_dir() -> Path:
    return Path(__file__).parent.parent / "schemas"


def _load_schema(schema_name: str) -> dict:
    if schema_name not in _schema_cache:
        schema_path = _get_schemas_dir() / f"{schema_name}.schema.json"
        if not schema_path.exists():
            raise SchemaValidationError(schema_name, f"Schema file not found: {schema_path}")
        _schema_cache[schema_name] = json.loads(schema_path.read_text())
    return _schema_cache[schema_name]


def validate(data: dict, schema_name: str) -> None:
    """
    Validate data against named schema.

    Raises:
        SchemaValidationError: If validation fails
    """
    schema = _load_schema(schema_name)
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else "(root)"
        raise SchemaValidationError(schema_name, e.message, path) from None


def validate_file(filepath: Path, schema_name: str) -> dict:
    """Load a JSON record and validate it. Returns the parsed data."""
    try:
        data = json.loads(filepath.read_text())
    except json.JSONDecodeError as e:
        raise SchemaValidationError(schema_name, f"Invalid JSON in {filepath}: {e}") from None
    except (OSError, UnicodeDecodeError) as e:
        raise StateFileError(f"Cannot read {filepath}: {e}", path=str(filepath)) from None

    validate(data, schema_name)
    return data


def validate_before_write(data: dict, schema_name: str, filepath: Path) -> None:
    """Validate data before writing. Ensures we never persist invalid state."""
    try:
        validate(data, schema_name)
    except SchemaValidationError as e:
        raise SchemaValidationError(
            schema_name,
            f"Refusing to write invalid data to {filepath}: {e.message}",
        ) from None

"""
Reader for specflow.env.

The file is plain KEY=value assignments, never executed. Anything in a
value that a shell would expand is refused, so the same file can be
sourced by scripts without running code.
"""

import re
from dataclasses import dataclass
from pathlib import Path

from specflow.lib.errors import ConfigError

ASSIGNMENT_RE = re.compile(r'^(?:export\s+)?(?P<key>[^=\s]*)\s*=\s*(?P<value>.*)$')
KEY_RE = re.compile(r'^[A-Z][A-Z0-9_]*$')

# backticks, $( ), ${ }, ; && and pipes
SHELL_SYNTAX_RE = re.compile(r'`|\$[({]|;|&&|\|')


@dataclass
class EnvEntry:
    key: str
    value: str
    line: int


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] in "\"'" and value[-1] == value[0]:
        return value[1:-1]
    return value


def parse_entry(raw: str, line: int, source: str = "<env>") -> EnvEntry | None:
    """Parse one line. Blank lines and comments give None."""
    raw = raw.strip()
    if not raw or raw.startswith('#'):
        return None

    match = ASSIGNMENT_RE.match(raw)
    if match is None:
        raise ConfigError(f"{source} line {line}: expected KEY=value", path=source, line=line)

    key = match.group('key')
    if not KEY_RE.match(key):
        raise ConfigError(f"{source} line {line}: bad key '{key}'", path=source, line=line)

    value = _unquote(match.group('value').strip())
    if SHELL_SYNTAX_RE.search(value):
        raise ConfigError(
            f"{source} line {line}: shell syntax in value of {key}",
            path=source,
            line=line,
            key=key,
        )
    return EnvEntry(key=key, value=value, line=line)


def parse_env(text: str, source: str = "<env>") -> dict[str, str]:
    """Parse env file text. A key may be assigned only once."""
    seen: dict[str, EnvEntry] = {}
    for lineno, raw in enumerate(text.splitlines(), 1):
        entry = parse_entry(raw, lineno, source)
        if entry is None:
            continue
        if entry.key in seen:
            raise ConfigError(
                f"{source} line {lineno}: {entry.key} already set on line {seen[entry.key].line}",
                path=source,
                line=lineno,
                key=entry.key,
            )
        seen[entry.key] = entry
    return {key: entry.value for key, entry in seen.items()}


def load_env(filepath: Path | str) -> dict[str, str]:
    path = Path(filepath)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"Env file not found: {path}", path=str(path)) from None
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read {path}: {e}", path=str(path)) from None
    return parse_env(text, source=path.name)

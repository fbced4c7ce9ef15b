"""KEY=VALUE env file editing.

Edits keep every untouched line verbatim (comments, blanks, unknown keys)
and in its original position.
"""

import re
from pathlib import Path
from typing import Iterable, Optional

_KEY_RE = re.compile(r'^\s*(?:export\s+)?(?P<key>[A-Za-z_][A-Za-z0-9_]*)\s*=')


def line_key(line: str) -> Optional[str]:
    """Key of a KEY=VALUE line, or None for comments/blank/other lines."""
    if line.lstrip().startswith('#'):
        return None
    match = _KEY_RE.match(line)
    return match.group('key') if match else None


class EnvFile:
    """Ordered, in-place editable env file."""

    def __init__(self, lines: Iterable[str] = ()):
        self.lines: list[str] = list(lines)

    @classmethod
    def parse(cls, text: str) -> 'EnvFile':
        return cls(text.splitlines())

    @classmethod
    def load(cls, path: Path) -> 'EnvFile':
        return cls.parse(Path(path).read_text(encoding='utf-8'))

    def get(self, key: str) -> Optional[str]:
        """Value of the first KEY= line (surrounding quotes removed)."""
        for line in self.lines:
            if line_key(line) == key:
                value = line.split('=', 1)[1].strip()
                if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                    value = value[1:-1]
                return value
        return None

    def set(self, key: str, value: str) -> None:
        """Rewrite the first KEY= line or append one.

        Later duplicates of KEY are dropped so the key is unique afterwards.
        """
        new_line = f"{key}={value}"
        result = []
        found = False
        for line in self.lines:
            if line_key(line) == key:
                if not found:
                    result.append(new_line)
                    found = True
                continue
            result.append(line)
        if not found:
            result.append(new_line)
        self.lines = result

    def keys(self) -> list[str]:
        return [k for k in (line_key(line) for line in self.lines) if k]

    def as_dict(self) -> dict[str, str]:
        """Mapping of every key to its (first) value."""
        values: dict[str, str] = {}
        for key in self.keys():
            if key not in values:
                values[key] = self.get(key) or ''
        return values

    def render(self) -> str:
        return '\n'.join(self.lines) + '\n' if self.lines else ''

    def save(self, path: Path) -> Path:
        """Write atomically (tmp file + rename)."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + '.tmp')
        tmp.write_text(self.render(), encoding='utf-8')
        tmp.replace(path)
        return path

    def __eq__(self, other) -> bool:
        return isinstance(other, EnvFile) and self.lines == other.lines

    def __repr__(self) -> str:
        return f"EnvFile({self.keys()!r})"

"""Finding document references in chat input.

Recognized in the text, left to right:

- ``http://`` and ``https://`` URLs
- ``#tag`` (not preceded by a letter or digit), collected as retrieval tags
- ``file://`` URLs
- double quoted paths such as ``"./my notes.txt"``
- bare paths with escaped spaces such as ``~/my\\ notes.txt``

Paths are only considered when they start with ``/``, ``./``, ``../`` or ``~/``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

CONTENT_RE = re.compile(
    r"""
    (https?://\S+)
    |
    (?<![a-zA-Z\d]) \# ([\w\]\[]+)
    |
    (file://[^\s\#]+)
    |
    "((?:\.\.|[~.]?)/(?:\\"|\\|[^"\\]+)+)"
    |
    ((?:\.\.|[~.]?)/(?:\\\ |\\|[^\\\s]+)+)
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class Reference:
    """A source mentioned in user input.

    Attributes:
        kind: ``url``, ``file`` or ``directory``
        source: What to hand to the fetcher
        check_exist: Skip quietly when the file does not exist
    """

    kind: str
    source: str
    check_exist: bool = False


@dataclass
class ScanResult:
    references: list[Reference] = field(default_factory=list)
    tags: set[str] = field(default_factory=set)


def _as_relative(path: str) -> str:
    return path if path[:1] in ("~", ".", "/") else f"./{path}"


def scan(content: str) -> ScanResult:
    """Extract references and tags from ``content``, in order of appearance."""
    result = ScanResult()
    for match in CONTENT_RE.finditer(content):
        url, tag, file_url, quoted_file, file = match.groups()
        if tag:
            result.tags.add(tag)
        elif url:
            result.references.append(Reference("url", url))
        elif file_url:
            result.references.append(Reference("file", file_url, check_exist=True))
        else:
            if quoted_file:
                path = _as_relative(quoted_file.replace('\\"', '"'))
            else:
                path = _as_relative(file.replace("\\ ", " "))
            if Path(path).expanduser().is_dir():
                result.references.append(Reference("directory", path))
            else:
                result.references.append(Reference("file", path, check_exist=True))
    return result


def directory_structure(path: str | Path) -> list[dict[str, Any]]:
    """Nested listing of a directory, skipping hidden entries and symlinks."""
    root = Path(path).expanduser().resolve()
    entries: list[dict[str, Any]] = []
    for child in sorted(root.iterdir()):
        if child.name.startswith(".") or child.is_symlink():
            continue
        if child.is_dir():
            entries.append(
                {
                    "type": "directory",
                    "name": child.name,
                    "path": str(child),
                    "children": directory_structure(child),
                }
            )
        elif child.is_file():
            entries.append({"type": "file", "name": child.name, "path": str(child)})
    return entries

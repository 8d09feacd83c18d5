"""
Data types for the knowledge store.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


# Files whose name already carries one of these extensions keep it
KNOWN_EXTENSIONS = (".md", ".yaml", ".json")
DEFAULT_EXTENSION = ".md"

# Category for paths without a slash
ROOT_CATEGORY = "root"

MAX_PATH_LENGTH = 1024

_CATEGORY_RE = re.compile(r"[^a-z0-9-]")

# Paths: no control chars, DEL or backslash
_PATH_BLOCKED_RE = re.compile(r"[\x00-\x1f\x7f\\]")


def utc_now() -> str:
    """Current UTC timestamp: YYYY-MM-DDTHH:MM:SS.mmmZ.

    Same shape as JavaScript's ``Date.toISOString()``, which is what
    existing index files in the repository carry.
    """
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class FileRecord:
    """A file as known to the cache. Identity is ``path``."""
    path: str
    content: str
    revision: str


@dataclass(frozen=True)
class SearchHit:
    """A search result: the matching path and an excerpt."""
    path: str
    snippet: str


@dataclass
class WriteResult:
    """Outcome of a save or delete as seen by the caller."""
    success: bool
    path: str = ""
    error: Optional[str] = None


def category_of(path: str) -> str:
    """First path segment, or ``root`` for paths without a slash."""
    head, sep, _ = path.partition("/")
    return head if sep else ROOT_CATEGORY


def normalize_category(category: str) -> str:
    """Lowercase; anything outside [a-z0-9-] becomes '-'.

    >>> normalize_category("My Project!")
    'my-project-'
    """
    return _CATEGORY_RE.sub("-", category.lower())


def normalize_name(name: str) -> str:
    """Append .md unless the name already ends in a known extension."""
    if name.endswith(KNOWN_EXTENSIONS):
        return name
    return name + DEFAULT_EXTENSION


def validate_path(path: str) -> None:
    """Validate a store path: relative, no empty or '..' segments."""
    if not path or len(path) > MAX_PATH_LENGTH:
        raise ValueError(f"Path must be 1-{MAX_PATH_LENGTH} characters")
    if _PATH_BLOCKED_RE.search(path):
        raise ValueError(f"Path contains invalid characters: {path!r}")
    if path.startswith("/"):
        raise ValueError(f"Path must be relative: {path!r}")
    for segment in path.split("/"):
        if segment in ("", ".", ".."):
            raise ValueError(f"Invalid path segment in {path!r}")

"""
In-memory cache of every file in the store.

The cache is warmed from the repository at startup and updated
optimistically on writes, so it is the fast path for all reads.
It never talks to the remote store itself: on a miss, falling back
to the repository is the caller's job.
"""

import logging
from typing import Optional

from .types import FileRecord, SearchHit

logger = logging.getLogger(__name__)

# Snippet window: whole content up to this length, else an excerpt
SNIPPET_MAX_LENGTH = 150
SNIPPET_BEFORE = 50
SNIPPET_AFTER = 100
ELLIPSIS = "..."


class MemoryCache:
    """Mapping of path -> FileRecord, in insertion order."""

    def __init__(self) -> None:
        self._records: dict[str, FileRecord] = {}

    def get(self, path: str) -> Optional[FileRecord]:
        record = self._records.get(path)
        logger.debug("%s: %s", "HIT" if record else "MISS", path)
        return record

    def set(self, path: str, content: str, revision: str) -> None:
        """Insert or overwrite the record for ``path``."""
        self._records[path] = FileRecord(path, content, revision)
        logger.debug("SET: %s", path)

    def delete(self, path: str) -> bool:
        """Remove ``path``. Returns True if it was present."""
        if self._records.pop(path, None) is None:
            return False
        logger.debug("DELETE: %s", path)
        return True

    def has(self, path: str) -> bool:
        return path in self._records

    __contains__ = has

    def keys(self) -> list[str]:
        return list(self._records)

    def entries(self) -> list[FileRecord]:
        return list(self._records.values())

    def categories(self) -> list[str]:
        """Distinct top-level folders, sorted.

        Only paths that live in a folder contribute; files at the
        repository root have no folder of their own.
        """
        return sorted({
            path.split("/", 1)[0] for path in self._records if "/" in path
        })

    def search(self, query: str) -> list[SearchHit]:
        """Case-insensitive substring search over paths, then content.

        A path match wins outright for its record; content is only
        scanned for records whose path did not match. Results follow
        cache order, not relevance.
        """
        needle = query.lower()
        hits = []
        for path, record in self._records.items():
            if needle in path.lower():
                hits.append(SearchHit(path, extract_snippet(record.content, query)))
                continue
            index = record.content.lower().find(needle)
            if index != -1:
                hits.append(SearchHit(path, extract_snippet(record.content, query, index)))

        logger.debug('SEARCH: "%s" found %d results', query, len(hits))
        return hits

    def clear(self) -> None:
        self._records.clear()
        logger.debug("CLEARED")

    def __len__(self) -> int:
        return len(self._records)


def extract_snippet(content: str, query: str, index: Optional[int] = None) -> str:
    """Excerpt of ``content`` around the first match of ``query``.

    Content of SNIPPET_MAX_LENGTH characters or less is returned whole.
    Otherwise the window runs from 50 characters before the match to
    100 characters after its end, with an ellipsis on each side that
    does not reach the content boundary.
    """
    if len(content) <= SNIPPET_MAX_LENGTH:
        return content

    if index is None:
        index = content.lower().find(query.lower())
    if index == -1:
        return content[:SNIPPET_MAX_LENGTH] + ELLIPSIS

    start = max(0, index - SNIPPET_BEFORE)
    end = min(len(content), index + len(query) + SNIPPET_AFTER)

    snippet = content[start:end]
    if start > 0:
        snippet = ELLIPSIS + snippet
    if end < len(content):
        snippet = snippet + ELLIPSIS
    return snippet

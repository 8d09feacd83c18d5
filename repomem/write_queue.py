"""
Durable queue of writes that failed to reach the repository.

When a background push fails, the full intent (path, content, operation)
is parked here so it can be replayed later without consulting the cache.
The queue survives restarts: it is held in memory and rewritten wholesale
to a JSON file on every change.

At most one item exists per path; a newer intent for the same path
replaces the older one. Items that fail MAX_RETRIES replays are dropped
from the queue and copied to a dead-letter file for diagnosis.

Disk errors are logged and swallowed. The in-memory list stays
authoritative for the rest of the process, trading durability for
availability.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Literal, Optional

from .types import utc_now

logger = logging.getLogger(__name__)

MAX_RETRIES = 3

# Dead-letter entries kept on disk (oldest dropped first)
MAX_FAILED_ITEMS = 100

Operation = Literal["save", "delete"]
OPERATIONS = ("save", "delete")


@dataclass
class QueueItem:
    """A write waiting to be replayed against the repository."""
    path: str
    content: str
    operation: Operation
    enqueued_at: str
    retry_count: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "QueueItem":
        """Build from a stored record. Raises ValueError if malformed."""
        try:
            item = cls(
                path=str(data["path"]),
                content=str(data.get("content", "")),
                operation=data["operation"],
                enqueued_at=str(data.get("enqueued_at", "")),
                retry_count=int(data.get("retry_count", 0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed queue item: {e}") from e
        if item.operation not in OPERATIONS:
            raise ValueError(f"Unknown queue operation: {item.operation!r}")
        return item


def _read_items(path: Path) -> list[dict]:
    """Read a JSON array of objects. Missing file -> []."""
    if not path.exists():
        return []
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON array in {path}")
    return [entry for entry in data if isinstance(entry, dict)]


def _write_items(path: Path, items: list[dict]) -> None:
    """Replace the file contents in one step (write temp, then rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(items, indent=2), encoding="utf-8")
    os.replace(tmp, path)


class WriteQueue:
    """
    File-backed queue of pending saves and deletes.

    Loaded fully at construction. A missing or unreadable file yields an
    empty queue; it is never fatal.
    """

    def __init__(self, queue_path: Path, failed_path: Optional[Path] = None):
        """
        Args:
            queue_path: JSON file holding the pending items
            failed_path: JSON file for dropped items (default: beside
                queue_path with a ``-failed`` suffix)
        """
        self._queue_path = Path(queue_path)
        if failed_path is None:
            failed_path = self._queue_path.with_name(
                f"{self._queue_path.stem}-failed{self._queue_path.suffix}"
            )
        self._failed_path = Path(failed_path)
        self._items: list[QueueItem] = []
        self._load()

    @property
    def path(self) -> Path:
        return self._queue_path

    def _load(self) -> None:
        try:
            records = _read_items(self._queue_path)
        except (OSError, ValueError) as e:
            logger.warning("Failed to load queue file %s: %s", self._queue_path, e)
            return

        exhausted = 0
        for record in records:
            try:
                item = QueueItem.from_dict(record)
            except ValueError as e:
                logger.warning("Skipping queue entry: %s", e)
                continue
            if item.retry_count >= MAX_RETRIES:
                logger.warning("Dropping exhausted queue entry: %s", item.path)
                self._record_failed(item)
                exhausted += 1
                continue
            self._items.append(item)
        if exhausted:
            self._persist()
        if self._items:
            logger.info("Loaded %d pending items from queue", len(self._items))

    def _persist(self) -> None:
        try:
            _write_items(self._queue_path, [asdict(item) for item in self._items])
        except OSError as e:
            logger.warning("Failed to save queue file %s: %s", self._queue_path, e)

    def _find(self, path: str) -> Optional[QueueItem]:
        for item in self._items:
            if item.path == path:
                return item
        return None

    def enqueue(self, path: str, content: str, operation: Operation) -> None:
        """Queue a write for ``path``, replacing any earlier one."""
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown queue operation: {operation!r}")
        self._items = [item for item in self._items if item.path != path]
        self._items.append(QueueItem(
            path=path,
            content=content,
            operation=operation,
            enqueued_at=utc_now(),
        ))
        self._persist()
        logger.info("Enqueued %s for: %s", operation, path)

    def get_all(self) -> list[QueueItem]:
        """Snapshot of the queue, oldest first. Items are copies."""
        return [QueueItem(**asdict(item)) for item in self._items]

    def get(self, path: str) -> Optional[QueueItem]:
        item = self._find(path)
        return QueueItem(**asdict(item)) if item else None

    def remove(self, path: str) -> None:
        """Drop the item for ``path`` (after a successful sync)."""
        before = len(self._items)
        self._items = [item for item in self._items if item.path != path]
        if len(self._items) < before:
            self._persist()
            logger.info("Removed from queue: %s", path)

    def increment_retry(self, path: str) -> bool:
        """Count a failed replay for ``path``.

        Returns True if the item should be retried later, False if it
        was dropped for exhausting MAX_RETRIES (or was not queued).
        """
        item = self._find(path)
        if item is None:
            return False

        item.retry_count += 1
        if item.retry_count >= MAX_RETRIES:
            self._items = [i for i in self._items if i.path != path]
            self._persist()
            logger.warning("Max retries reached, dropping %s for: %s", item.operation, path)
            self._record_failed(item)
            return False

        self._persist()
        logger.info("Retry %d/%d for: %s", item.retry_count, MAX_RETRIES, path)
        return True

    def _record_failed(self, item: QueueItem) -> None:
        """Append a dropped item to the dead-letter file."""
        try:
            failed = _read_items(self._failed_path)
        except (OSError, ValueError) as e:
            logger.warning("Discarding unreadable dead-letter file %s: %s", self._failed_path, e)
            failed = []
        entry = asdict(item)
        entry["failed_at"] = utc_now()
        failed.append(entry)
        try:
            _write_items(self._failed_path, failed[-MAX_FAILED_ITEMS:])
        except OSError as e:
            logger.warning("Failed to record dropped item %s: %s", item.path, e)

    def list_failed(self) -> list[dict]:
        """Items dropped after exhausting retries, oldest first."""
        try:
            return _read_items(self._failed_path)
        except (OSError, ValueError) as e:
            logger.warning("Failed to read dead-letter file %s: %s", self._failed_path, e)
            return []

    def clear_failed(self) -> int:
        """Empty the dead-letter file. Returns the number of entries removed."""
        count = len(self.list_failed())
        if count:
            try:
                _write_items(self._failed_path, [])
            except OSError as e:
                logger.warning("Failed to clear dead-letter file %s: %s", self._failed_path, e)
                return 0
        return count

    @property
    def is_empty(self) -> bool:
        return not self._items

    def __len__(self) -> int:
        return len(self._items)

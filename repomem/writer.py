"""
Non-blocking writes: update the cache now, push to the repository later.

save() and delete() change the cache synchronously and return at once.
The push runs as a background task; if it fails, the write is parked in
the durable queue and replayed by drain_queue().

Background tasks are kept in a set keyed by path. While a path has a
push in flight, further writes to it update the cache but do not start
a second push, so two pushes never race to record their revision tokens.
The newer content then reaches the repository only with the next write
or drain for that path.
"""

import asyncio
import functools
import logging
from typing import Awaitable, Callable, Optional

from .cache import MemoryCache
from .manifest import update_index
from .protocol import RemoteNotFoundError, RemoteStoreProtocol
from .types import WriteResult, normalize_category, normalize_name, validate_path
from .write_queue import QueueItem, WriteQueue

logger = logging.getLogger(__name__)

# GitHub contents API limit for a single file
MAX_FILE_SIZE = 1024 * 1024

# Revision recorded in the cache until the repository confirms a write
PENDING_REVISION = "pending"


class AsyncWriter:
    """Optimistic writer over a cache, a remote store and a retry queue."""

    def __init__(
        self,
        remote: RemoteStoreProtocol,
        cache: MemoryCache,
        queue: WriteQueue,
        *,
        drain_on_success: bool = True,
    ):
        self._remote = remote
        self._cache = cache
        self._queue = queue
        self._drain_on_success = drain_on_success
        self._tasks: dict[str, asyncio.Task] = {}
        # Last confirmed revision of paths whose cache record shows PENDING_REVISION
        self._confirmed: dict[str, str] = {}
        self._drain_task: Optional[asyncio.Task] = None
        self._draining = False

    @property
    def pending_writes(self) -> frozenset[str]:
        """Paths with a push in flight."""
        return frozenset(self._tasks)

    def known_revision(self, path: str) -> Optional[str]:
        """Revision to send as the precondition for the next push of ``path``."""
        record = self._cache.get(path)
        if record is None:
            return None
        if record.revision == PENDING_REVISION:
            return self._confirmed.get(path)
        return record.revision

    # -- Foreground operations (never suspend) --

    def save(self, category: str, name: str, content: str) -> WriteResult:
        """Store ``content`` as category/name. Returns before the push completes."""
        size = len(content.encode("utf-8"))
        if size > MAX_FILE_SIZE:
            return WriteResult(
                success=False,
                error=(
                    f"File size ({round(size / 1024)}KB) exceeds maximum "
                    f"allowed size ({MAX_FILE_SIZE // 1024}KB)"
                ),
            )

        path = f"{normalize_category(category)}/{normalize_name(name)}"
        try:
            validate_path(path)
        except ValueError as e:
            return WriteResult(success=False, error=str(e))

        sha = self.known_revision(path)
        existing = self._cache.get(path)
        if existing is not None and existing.revision != PENDING_REVISION:
            self._confirmed[path] = existing.revision

        self._cache.set(path, content, PENDING_REVISION)
        self._spawn(path, lambda: self._push_save(path, content, sha))
        return WriteResult(success=True, path=path)

    def delete(self, path: str) -> WriteResult:
        """Remove ``path``. Returns before the push completes."""
        if not self._cache.has(path):
            return WriteResult(success=False, path=path, error=f"File not found: {path}")

        sha = self.known_revision(path)
        self._cache.delete(path)
        self._confirmed.pop(path, None)
        self._spawn(path, lambda: self._push_delete(path, sha))
        return WriteResult(success=True, path=path)

    # -- Background tasks --

    def _spawn(self, path: str, factory: Callable[[], Awaitable[None]]) -> bool:
        if path in self._tasks:
            logger.info("Sync already pending for: %s", path)
            return False
        task = asyncio.get_running_loop().create_task(factory(), name=f"repomem-sync:{path}")
        self._tasks[path] = task
        task.add_done_callback(functools.partial(self._task_done, path))
        return True

    def _task_done(self, path: str, task: asyncio.Task) -> None:
        if self._tasks.get(path) is task:
            del self._tasks[path]
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background sync for %s crashed: %s", path, task.exception())

    async def _push_save(self, path: str, content: str, sha: Optional[str]) -> None:
        logger.info("Starting async sync: %s", path)
        try:
            new_sha = await self._remote.put_file(path, content, sha)
        except Exception as e:
            logger.warning("Sync failed for %s: %s", path, e)
            self._queue.enqueue(path, content, "save")
            return

        self._confirm(path, content, new_sha, create=False)
        await self._update_index_safe()
        self._queue.remove(path)
        logger.info("Sync complete: %s", path)
        self._schedule_drain()

    async def _push_delete(self, path: str, sha: Optional[str]) -> None:
        logger.info("Starting async delete: %s", path)
        try:
            await self._remote.delete_file(path, sha)
        except RemoteNotFoundError:
            logger.info("Already absent from repository: %s", path)
        except Exception as e:
            logger.warning("Delete failed for %s: %s", path, e)
            self._queue.enqueue(path, "", "delete")
            return

        await self._update_index_safe()
        self._queue.remove(path)
        logger.info("Delete complete: %s", path)
        self._schedule_drain()

    def _confirm(self, path: str, content: str, sha: str, *, create: bool) -> None:
        """Record a successful push of ``content`` at revision ``sha``.

        If the cache already holds newer unconfirmed content, that content
        is kept and only the revision is remembered for its own push.
        """
        record = self._cache.get(path)
        if record is None:
            if create:
                self._cache.set(path, content, sha)
            return
        if record.revision == PENDING_REVISION and record.content != content:
            self._confirmed[path] = sha
            logger.info("Newer content for %s is not yet pushed", path)
            return
        self._cache.set(path, content, sha)
        self._confirmed.pop(path, None)

    async def _update_index_safe(self) -> None:
        """Rebuild index.json; a stale index never fails a write."""
        try:
            await update_index(self._remote, self._cache)
        except Exception as e:
            logger.warning("Index update failed: %s", e)

    def _schedule_drain(self) -> None:
        """Replay the queue in the background after a successful push."""
        if not self._drain_on_success or self._draining or self._queue.is_empty:
            return
        if self._drain_task is not None and not self._drain_task.done():
            return
        self._drain_task = asyncio.get_running_loop().create_task(
            self.drain_queue(), name="repomem-drain",
        )

    # -- Queue replay --

    def _still_queued(self, item: QueueItem) -> bool:
        """True if ``item`` is still the queued intent for its path."""
        current = self._queue.get(item.path)
        return (
            current is not None
            and current.enqueued_at == item.enqueued_at
            and current.operation == item.operation
            and current.content == item.content
        )

    async def drain_queue(self) -> None:
        """
        Replay every queued write once, in queue order.

        Successes leave the queue; failures count a retry, which drops
        the item after MAX_RETRIES. The index is rebuilt once at the end.
        An empty queue makes no remote calls at all.

        Items superseded or removed since the snapshot was taken, and
        paths with a push in flight, are skipped; the newer write owns
        the path.
        """
        if self._draining:
            logger.debug("Drain already running")
            return
        items = self._queue.get_all()
        if not items:
            return

        self._draining = True
        try:
            logger.info("Draining %d queued items", len(items))
            for item in items:
                if not self._still_queued(item):
                    logger.info("Skipping superseded queue item: %s", item.path)
                    continue
                if item.path in self._tasks:
                    logger.info("Sync already pending, leaving queued: %s", item.path)
                    continue
                try:
                    if item.operation == "save":
                        sha = await self._remote.put_file(
                            item.path, item.content, self.known_revision(item.path),
                        )
                        self._confirm(item.path, item.content, sha, create=True)
                    elif self._cache.has(item.path):
                        # Back in the cache after a restart re-read the repository
                        try:
                            await self._remote.delete_file(item.path, self.known_revision(item.path))
                        except RemoteNotFoundError:
                            pass
                        self._cache.delete(item.path)
                    if self._still_queued(item):
                        self._queue.remove(item.path)
                    logger.info("Drained %s: %s", item.operation, item.path)
                except Exception as e:
                    logger.warning("Failed to drain %s: %s", item.path, e)
                    if self._still_queued(item):
                        self._queue.increment_retry(item.path)

            await self._update_index_safe()
        finally:
            self._draining = False

    async def flush(self) -> None:
        """Wait for every in-flight push (and any drain they started)."""
        while True:
            tasks = [t for t in self._tasks.values() if not t.done()]
            if self._drain_task is not None and not self._drain_task.done():
                tasks.append(self._drain_task)
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

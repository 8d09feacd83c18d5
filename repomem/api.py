"""
Composition root: one knowledge store over one repository.

Memory owns the cache, the durable queue and the writer, and exposes
the five operations the MCP server offers (list, read, save, delete,
search). Nothing here is a module-level singleton; tests build as many
independent instances as they like.

Startup order matters: the cache is fully warmed and the queue drained
before the store reports itself ready, because reads assume a warm
cache.
"""

import logging
from pathlib import Path
from typing import Optional

from .cache import MemoryCache
from .manifest import INDEX_PATH, Manifest, build_manifest, index_is_stale, update_index
from .protocol import RemoteStoreProtocol
from .types import SearchHit, WriteResult, validate_path
from .write_queue import WriteQueue
from .writer import AsyncWriter

logger = logging.getLogger(__name__)

NOT_READY_ERROR = "Server not initialized"


class StartupError(RuntimeError):
    """The remote store cannot be used; the server must not start."""


class Memory:
    """
    Knowledge store with a warm cache and write-behind to a repository.

    Args:
        remote: Remote file store (GitHubClient in production)
        queue: Durable queue; built from ``queue_path`` if omitted
        queue_path: File backing the queue when ``queue`` is omitted
        cache: Cache to use (a fresh one by default)
        drain_on_success: Replay the queue after each successful push
    """

    def __init__(
        self,
        remote: RemoteStoreProtocol,
        *,
        queue: Optional[WriteQueue] = None,
        queue_path: Optional[Path] = None,
        cache: Optional[MemoryCache] = None,
        drain_on_success: bool = True,
    ):
        if queue is None:
            if queue_path is None:
                raise ValueError("Either queue or queue_path is required")
            queue = WriteQueue(queue_path)
        self._remote = remote
        self._cache = cache if cache is not None else MemoryCache()
        self._queue = queue
        self._writer = AsyncWriter(
            remote, self._cache, self._queue, drain_on_success=drain_on_success,
        )
        self._ready = False

    @property
    def cache(self) -> MemoryCache:
        return self._cache

    @property
    def queue(self) -> WriteQueue:
        return self._queue

    @property
    def writer(self) -> AsyncWriter:
        return self._writer

    @property
    def ready(self) -> bool:
        return self._ready

    async def start(self) -> None:
        """
        Validate access, warm the cache, replay queued writes and bring
        index.json up to date.

        Files that fail to load are skipped (they are fetched on first
        read instead). Anything else going wrong is fatal.

        Raises:
            StartupError: If the repository is not accessible
            RemoteStoreError: If the file listing fails
        """
        repo = getattr(self._remote, "repo", "remote store")
        if not await self._remote.validate_access():
            raise StartupError(f"Cannot access repository: {repo}. Check token permissions.")

        latest = getattr(self._remote, "latest_commit_sha", None)
        commit = await latest() if latest is not None else None
        logger.info("Storage: %s%s", repo, f" @ {commit}" if commit else "")

        logger.info("Fetching repository contents...")
        tree = await self._remote.list_tree()
        logger.info("Found %d files in repository", len(tree))

        for entry in tree:
            try:
                remote_file = await self._remote.get_file(entry.path)
            except Exception as e:
                logger.warning("Failed to fetch %s: %s", entry.path, e)
                continue
            if remote_file is not None:
                self._cache.set(entry.path, remote_file.content, remote_file.sha)

        logger.info("Cache populated with %d files", len(self._cache))

        await self._writer.drain_queue()
        await self._refresh_index()
        self._ready = True
        logger.info("Server ready")

    async def _refresh_index(self) -> None:
        """Rewrite index.json if it no longer matches the warmed cache."""
        if not index_is_stale(self._cache):
            return
        logger.info("Stored %s is out of date, rebuilding", INDEX_PATH)
        try:
            await update_index(self._remote, self._cache)
        except Exception as e:
            logger.warning("Index rebuild failed: %s", e)

    def list_knowledge(self) -> Manifest:
        """Categories and files, derived from the cache."""
        return build_manifest(self._cache)

    async def read(self, path: str) -> Optional[str]:
        """
        Content of ``path``, from the cache or else the repository.

        Returns None if the file exists in neither, or if a delete of it
        is still on its way to the repository.

        Raises:
            ValueError: If the path is malformed
            RemoteStoreError: If the repository lookup fails
        """
        validate_path(path)
        record = self._cache.get(path)
        if record is not None:
            return record.content
        if self._delete_outstanding(path):
            return None

        remote_file = await self._remote.get_file(path)
        record = self._cache.get(path)
        if record is not None:
            # Saved while the fetch was in flight
            return record.content
        if remote_file is None or self._delete_outstanding(path):
            return None
        self._cache.set(path, remote_file.content, remote_file.sha)
        return remote_file.content

    def _delete_outstanding(self, path: str) -> bool:
        """True if ``path`` was deleted locally but the repository may still have it.

        Only called for paths missing from the cache, so a push in flight
        for one of them is a delete.
        """
        if path in self._writer.pending_writes:
            return True
        queued = self._queue.get(path)
        return queued is not None and queued.operation == "delete"

    def save(self, category: str, name: str, content: str) -> WriteResult:
        if not self._ready:
            return WriteResult(success=False, error=NOT_READY_ERROR)
        return self._writer.save(category, name, content)

    def delete(self, path: str) -> WriteResult:
        if not self._ready:
            return WriteResult(success=False, path=path, error=NOT_READY_ERROR)
        return self._writer.delete(path)

    def search(self, query: str) -> list[SearchHit]:
        return self._cache.search(query)

    def remote_url(self, path: str) -> Optional[str]:
        """Browser URL for ``path`` if the remote store has one."""
        blob_url = getattr(self._remote, "blob_url", None)
        return blob_url(path) if blob_url is not None else None

    async def drain(self) -> int:
        """Replay queued writes now. Returns the number still queued."""
        await self._writer.drain_queue()
        await self._writer.flush()
        return len(self._queue)

    async def close(self) -> None:
        """Wait for in-flight pushes, then release the remote client."""
        await self._writer.flush()
        aclose = getattr(self._remote, "aclose", None)
        if aclose is not None:
            await aclose()

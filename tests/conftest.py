"""
Shared pytest fixtures for repomem tests.

Provides an in-memory remote store so no test talks to GitHub.
"""

import asyncio
from typing import Optional

import pytest

from repomem.cache import MemoryCache
from repomem.protocol import (
    RemoteFile,
    RemoteNotFoundError,
    RemoteStoreError,
    TreeEntry,
)
from repomem.write_queue import WriteQueue
from repomem.writer import AsyncWriter


class FakeRemote:
    """
    In-memory RemoteStoreProtocol implementation.

    Revision tokens are "sha1", "sha2", ... in write order. Updates and
    deletes with a stale token are rejected like GitHub does (409).

    Knobs:
        fail_all: every put/delete raises RemoteStoreError
        fail_paths: put/delete of these paths raises
        fail_get: get_file of these paths raises
        accessible: return value of validate_access
        gate: if set, put/delete wait on this event before answering
        path_gates: per-path events that hold put/delete of that path only
    """

    def __init__(self, files: Optional[dict[str, str]] = None):
        self.files: dict[str, tuple[str, str]] = {}
        self.calls: list[tuple] = []
        self.fail_all = False
        self.fail_paths: set[str] = set()
        self.fail_get: set[str] = set()
        self.accessible = True
        self.gate: Optional[asyncio.Event] = None
        self.path_gates: dict[str, asyncio.Event] = {}
        self.closed = False
        self._counter = 0
        for path, content in (files or {}).items():
            self.seed(path, content)

    def _next_sha(self) -> str:
        self._counter += 1
        return f"sha{self._counter}"

    def seed(self, path: str, content: str) -> str:
        """Put a file in the store without recording a call."""
        sha = self._next_sha()
        self.files[path] = (content, sha)
        return sha

    def content(self, path: str) -> Optional[str]:
        entry = self.files.get(path)
        return entry[0] if entry else None

    def sha(self, path: str) -> Optional[str]:
        entry = self.files.get(path)
        return entry[1] if entry else None

    def calls_to(self, op: str, path: Optional[str] = None) -> list[tuple]:
        return [c for c in self.calls if c[0] == op and (path is None or c[1] == path)]

    async def _wait(self, path: str):
        await asyncio.sleep(0)
        if self.gate is not None:
            await self.gate.wait()
        if path in self.path_gates:
            await self.path_gates[path].wait()

    def _maybe_fail(self, op: str, path: str):
        if self.fail_all or path in self.fail_paths:
            raise RemoteStoreError(f"{op} {path}: 500 simulated failure", status=500)

    async def list_tree(self) -> list[TreeEntry]:
        self.calls.append(("list_tree",))
        return [TreeEntry(path, sha) for path, (_, sha) in self.files.items()]

    async def get_file(self, path: str) -> Optional[RemoteFile]:
        self.calls.append(("get", path))
        await asyncio.sleep(0)
        if path in self.fail_get:
            raise RemoteStoreError(f"Get {path}: 500 simulated failure", status=500)
        entry = self.files.get(path)
        if entry is None:
            return None
        return RemoteFile(path, entry[0], entry[1])

    async def put_file(self, path: str, content: str, sha: Optional[str] = None) -> str:
        self.calls.append(("put", path, sha))
        await self._wait(path)
        self._maybe_fail("Put", path)
        current = self.files.get(path)
        if current is not None and current[1] != sha:
            raise RemoteStoreError(f"Put {path}: 409 sha mismatch", status=409)
        new_sha = self._next_sha()
        self.files[path] = (content, new_sha)
        return new_sha

    async def delete_file(self, path: str, sha: Optional[str]) -> None:
        self.calls.append(("delete", path, sha))
        await self._wait(path)
        self._maybe_fail("Delete", path)
        current = self.files.get(path)
        if current is None:
            raise RemoteNotFoundError(f"Delete {path}: 404 Not Found", status=404)
        if current[1] != sha:
            raise RemoteStoreError(f"Delete {path}: 409 sha mismatch", status=409)
        del self.files[path]

    async def validate_access(self) -> bool:
        self.calls.append(("validate_access",))
        return self.accessible

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def remote():
    """Empty in-memory remote store."""
    return FakeRemote()


@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture
def queue(tmp_path):
    """Write queue backed by a temp file."""
    return WriteQueue(tmp_path / "queue.json")


@pytest.fixture
def writer(remote, cache, queue):
    """AsyncWriter over the fake remote, a fresh cache and a temp queue."""
    return AsyncWriter(remote, cache, queue)


@pytest.fixture
def isolated_home(tmp_path, monkeypatch):
    """Point REPOMEM_HOME at a temp dir and clear credential env vars."""
    home = tmp_path / "home"
    monkeypatch.setenv("REPOMEM_HOME", str(home))
    for name in ("REPOMEM_REPO", "REPOMEM_TOKEN", "REPOMEM_API_URL",
                 "REPOMEM_QUEUE_PATH", "REPOMEM_VERBOSE"):
        monkeypatch.delenv(name, raising=False)
    return home

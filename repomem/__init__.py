"""
repomem

Personal knowledge store for AI agents, kept in a GitHub repository.

Reads are served from an in-memory cache warmed at startup. Writes update
the cache immediately and are pushed to the repository in the background;
pushes that fail are parked in a durable queue and replayed later.

Quick Start:
    from repomem import Memory, GitHubClient

    remote = GitHubClient("owner/notes", token)
    mem = Memory(remote, queue_path=Path("~/.repomem/queue.json").expanduser())
    await mem.start()
    mem.save("projects", "acme", "# Acme\\n...")
    await mem.read("projects/acme.md")

CLI Usage:
    repomem mcp               # stdio MCP server
    repomem queue             # pending writes
    repomem drain             # replay pending writes now

Environment Variables:
    REPOMEM_REPO       - Repository in owner/name form (required)
    REPOMEM_TOKEN      - Access token for the repository (required)
    REPOMEM_API_URL    - GitHub API base URL (GitHub Enterprise)
    REPOMEM_QUEUE_PATH - Override the pending-write queue file
    REPOMEM_HOME       - Override the ~/.repomem directory
"""

from .api import Memory
from .cache import MemoryCache
from .github import GitHubClient, RemoteNotFoundError, RemoteStoreError
from .types import FileRecord, SearchHit, WriteResult
from .write_queue import QueueItem, WriteQueue
from .writer import AsyncWriter

__version__ = "0.3.0"
__all__ = [
    "Memory",
    "MemoryCache",
    "GitHubClient",
    "RemoteStoreError",
    "RemoteNotFoundError",
    "FileRecord",
    "SearchHit",
    "WriteResult",
    "QueueItem",
    "WriteQueue",
    "AsyncWriter",
]

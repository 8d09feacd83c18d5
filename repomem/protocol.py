"""
Interface contract for the remote file store.

The cache, writer and index builder only depend on this protocol.
GitHubClient implements it against the GitHub REST API; tests use an
in-memory fake.
"""

from typing import NamedTuple, Optional, Protocol, runtime_checkable


class RemoteStoreError(Exception):
    """Error communicating with the remote store."""

    def __init__(self, message: str, *, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RemoteNotFoundError(RemoteStoreError):
    """The file or repository does not exist."""


class TreeEntry(NamedTuple):
    """A file path in the store and its revision token."""
    path: str
    sha: str


class RemoteFile(NamedTuple):
    """File content as fetched from the store."""
    path: str
    content: str
    sha: str


@runtime_checkable
class RemoteStoreProtocol(Protocol):
    """
    Versioned file store keyed by path.

    Every file carries an opaque revision token (sha). Updates and
    deletes take the token the caller last saw as a precondition; the
    store rejects them if the file has since changed.

    Failures raise RemoteStoreError. A missing file is reported as
    ``None`` from get_file and as RemoteNotFoundError elsewhere.
    """

    async def list_tree(self) -> list[TreeEntry]:
        """Every file path in the store with its revision token."""
        ...

    async def get_file(self, path: str) -> Optional[RemoteFile]:
        """Current content and revision, or None if absent."""
        ...

    async def put_file(self, path: str, content: str, sha: Optional[str] = None) -> str:
        """Create or update a file. Returns the new revision token."""
        ...

    async def delete_file(self, path: str, sha: Optional[str]) -> None:
        """Delete a file given its current revision token."""
        ...

    async def validate_access(self) -> bool:
        """True if the store is reachable with the configured credential."""
        ...

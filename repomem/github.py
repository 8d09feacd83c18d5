"""
GitHub REST API client for the remote file store.

Implements RemoteStoreProtocol on top of the repository contents and
git trees endpoints. Every file's revision token is its blob sha, which
GitHub requires as a precondition for updates and deletes.

No retries happen here: a failed call raises RemoteStoreError and the
caller decides whether to park the write in the queue.
"""

from __future__ import annotations

import base64
import logging
from typing import Optional
from urllib.parse import quote, urlparse

import httpx

from .config import DEFAULT_API_URL, ConfigError, parse_repo
from .protocol import RemoteFile, RemoteNotFoundError, RemoteStoreError, TreeEntry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
API_VERSION = "2022-11-28"
WEB_URL = "https://github.com"


class GitHubClient:
    """Async client for one GitHub repository."""

    def __init__(
        self,
        repo: str,
        token: str,
        *,
        api_url: str = DEFAULT_API_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._owner, self._repo = parse_repo(repo)
        self._api_url = api_url.rstrip("/")

        # Refuse non-HTTPS for remote APIs (bearer token would be sent in cleartext)
        if not self._api_url.startswith("https://"):
            host = urlparse(self._api_url).hostname or ""
            if host not in ("localhost", "127.0.0.1", "::1"):
                raise ConfigError(
                    f"GitHub API URL must use HTTPS (got {self._api_url}). "
                    "Use HTTPS to protect the access token, or use localhost for local development."
                )

        self._client = httpx.AsyncClient(
            base_url=self._api_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
            },
            timeout=DEFAULT_TIMEOUT,
            transport=transport,
        )
        self._default_branch: Optional[str] = None

    @property
    def repo(self) -> str:
        return f"{self._owner}/{self._repo}"

    @property
    def _base(self) -> str:
        return f"/repos/{self._owner}/{self._repo}"

    def _contents_url(self, path: str) -> str:
        return f"{self._base}/contents/{quote(path, safe='/')}"

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"{method} {url} failed: {e}") from e

    @staticmethod
    def _check(resp: httpx.Response, action: str) -> None:
        """Raise for non-2xx responses, keeping 404 distinguishable."""
        if resp.is_success:
            return
        try:
            detail = resp.json().get("message", "")
        except (ValueError, AttributeError):
            detail = resp.text
        message = f"{action}: {resp.status_code} {detail}".rstrip()
        if resp.status_code == 404:
            raise RemoteNotFoundError(message, status=404)
        raise RemoteStoreError(message, status=resp.status_code)

    async def default_branch(self) -> str:
        """Name of the repository's default branch (cached)."""
        if self._default_branch is None:
            resp = await self._request("GET", self._base)
            self._check(resp, f"Get repository {self.repo}")
            self._default_branch = resp.json()["default_branch"]
        return self._default_branch

    async def latest_commit_sha(self) -> Optional[str]:
        """Short sha of the default branch head, or None if unavailable."""
        try:
            branch = await self.default_branch()
            resp = await self._request("GET", f"{self._base}/git/ref/heads/{quote(branch)}")
            self._check(resp, f"Get ref {branch}")
            return resp.json()["object"]["sha"][:7]
        except (RemoteStoreError, KeyError, ValueError):
            return None

    async def list_tree(self) -> list[TreeEntry]:
        """All blobs in the default branch. Empty repository -> []."""
        logger.info("Fetching tree for %s", self.repo)
        try:
            branch = await self.default_branch()
            resp = await self._request(
                "GET", f"{self._base}/git/trees/{quote(branch)}",
                params={"recursive": "1"},
            )
            if resp.status_code == 409:
                raise RemoteNotFoundError("Git repository is empty", status=409)
            self._check(resp, f"Get tree {branch}")
        except RemoteStoreError as e:
            if e.status in (404, 409):
                logger.info("Repository is empty or not found, returning empty tree")
                return []
            raise

        data = resp.json()
        if data.get("truncated"):
            logger.warning("Tree listing for %s was truncated by GitHub", self.repo)
        return [
            TreeEntry(entry["path"], entry["sha"])
            for entry in data.get("tree", [])
            if entry.get("type") == "blob" and entry.get("path") and entry.get("sha")
        ]

    async def get_file(self, path: str) -> Optional[RemoteFile]:
        """Fetch a file. Missing files and directories -> None."""
        logger.debug("Fetching file: %s", path)
        resp = await self._request("GET", self._contents_url(path))
        if resp.status_code == 404:
            return None
        self._check(resp, f"Get {path}")

        data = resp.json()
        if isinstance(data, list) or data.get("type") != "file":
            return None
        if data.get("encoding") != "base64":
            raise RemoteStoreError(f"Get {path}: unsupported encoding {data.get('encoding')!r}")
        content = base64.b64decode(data["content"]).decode("utf-8")
        return RemoteFile(path, content, data["sha"])

    async def put_file(self, path: str, content: str, sha: Optional[str] = None) -> str:
        """Create or update a file. Returns the new blob sha."""
        verb = "Update" if sha else "Create"
        logger.info("%s file: %s", "Updating" if sha else "Creating", path)

        payload = {
            "message": f"{verb} {path}",
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
        }
        if sha:
            payload["sha"] = sha

        resp = await self._request("PUT", self._contents_url(path), json=payload)
        self._check(resp, f"{verb} {path}")
        return (resp.json().get("content") or {}).get("sha", "")

    async def delete_file(self, path: str, sha: Optional[str]) -> None:
        """Delete a file at its current revision."""
        if not sha:
            raise RemoteStoreError(f"Delete {path}: no revision known")
        logger.info("Deleting file: %s", path)
        resp = await self._request(
            "DELETE", self._contents_url(path),
            json={"message": f"Delete {path}", "sha": sha},
        )
        self._check(resp, f"Delete {path}")

    async def validate_access(self) -> bool:
        """True if the repository exists and the token can read it."""
        try:
            await self.default_branch()
            return True
        except (RemoteStoreError, KeyError, ValueError) as e:
            logger.warning("Cannot access %s: %s", self.repo, e)
            return False

    def blob_url(self, path: str) -> str:
        """Browser URL for a file on the default branch."""
        branch = self._default_branch or "main"
        return f"{WEB_URL}/{self.repo}/blob/{branch}/{quote(path, safe='/')}"

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

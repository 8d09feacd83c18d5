"""
Tests for the MCP stdio server tool functions.

Most tests mock Memory to check parameter mapping and output
formatting; the last class drives a real Memory over the fake remote.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from mcp.server.fastmcp.exceptions import ToolError

from repomem.api import Memory
from repomem.manifest import Manifest, ManifestEntry
from repomem.protocol import RemoteStoreError
from repomem.types import SearchHit, WriteResult

from conftest import FakeRemote


@pytest.fixture
def mock_memory():
    """Mock Memory with default return values."""
    memory = MagicMock()
    memory.read = AsyncMock(return_value=None)
    memory.save.return_value = WriteResult(success=True, path="notes/a.md")
    memory.delete.return_value = WriteResult(success=True, path="notes/a.md")
    memory.search.return_value = []
    memory.remote_url.return_value = None
    memory.list_knowledge.return_value = Manifest(
        categories=["notes"],
        files=[ManifestEntry("notes/a.md", "notes")],
        last_updated="2026-03-01T12:00:00.000Z",
    )
    return memory


@pytest.fixture(autouse=True)
def patch_memory(mock_memory):
    """Install the mock as the server's store for each test."""
    import repomem.mcp as mcp_mod
    mcp_mod._memory = mock_memory
    yield
    mcp_mod._memory = None


# ---------------------------------------------------------------------------
# list_knowledge
# ---------------------------------------------------------------------------

class TestListKnowledge:

    @pytest.mark.asyncio
    async def test_returns_manifest_json(self):
        from repomem.mcp import list_knowledge
        data = json.loads(await list_knowledge())
        assert data == {
            "categories": ["notes"],
            "files": [{"path": "notes/a.md", "category": "notes"}],
            "lastUpdated": "2026-03-01T12:00:00.000Z",
        }

    @pytest.mark.asyncio
    async def test_not_initialized(self):
        import repomem.mcp as mcp_mod
        mcp_mod._memory = None
        with pytest.raises(ToolError, match="Server not initialized"):
            await mcp_mod.list_knowledge()


# ---------------------------------------------------------------------------
# read_memory
# ---------------------------------------------------------------------------

class TestReadMemory:

    @pytest.mark.asyncio
    async def test_returns_content(self, mock_memory):
        from repomem.mcp import read_memory
        mock_memory.read.return_value = "# Note"
        assert await read_memory("notes/a.md") == "# Note"
        mock_memory.read.assert_awaited_once_with("notes/a.md")

    @pytest.mark.asyncio
    async def test_not_found(self):
        from repomem.mcp import read_memory
        with pytest.raises(ToolError, match="File not found: notes/missing.md"):
            await read_memory("notes/missing.md")

    @pytest.mark.asyncio
    async def test_invalid_path(self, mock_memory):
        from repomem.mcp import read_memory
        mock_memory.read.side_effect = ValueError("Invalid path segment")
        with pytest.raises(ToolError, match="Invalid path"):
            await read_memory("../x")

    @pytest.mark.asyncio
    async def test_remote_error(self, mock_memory):
        from repomem.mcp import read_memory
        mock_memory.read.side_effect = RemoteStoreError("Get notes/a.md: 502 Bad Gateway")
        with pytest.raises(ToolError, match="502"):
            await read_memory("notes/a.md")


# ---------------------------------------------------------------------------
# save_memory
# ---------------------------------------------------------------------------

class TestSaveMemory:

    @pytest.mark.asyncio
    async def test_saved(self, mock_memory):
        from repomem.mcp import save_memory
        assert await save_memory("notes", "a", "hello") == "Saved: notes/a.md"
        mock_memory.save.assert_called_once_with("notes", "a", "hello")

    @pytest.mark.asyncio
    async def test_saved_with_remote_url(self, mock_memory):
        from repomem.mcp import save_memory
        mock_memory.remote_url.return_value = "https://github.com/o/r/blob/main/notes/a.md"
        result = await save_memory("notes", "a", "hello")
        assert result == "Saved: notes/a.md\nRemote: https://github.com/o/r/blob/main/notes/a.md"

    @pytest.mark.asyncio
    async def test_failure(self, mock_memory):
        from repomem.mcp import save_memory
        mock_memory.save.return_value = WriteResult(
            success=False, error="File size (2048KB) exceeds maximum allowed size (1024KB)",
        )
        with pytest.raises(ToolError, match="exceeds maximum"):
            await save_memory("notes", "a", "x")


# ---------------------------------------------------------------------------
# delete_memory
# ---------------------------------------------------------------------------

class TestDeleteMemory:

    @pytest.mark.asyncio
    async def test_deleted(self, mock_memory):
        from repomem.mcp import delete_memory
        assert await delete_memory("notes/a.md") == "Deleted: notes/a.md"
        mock_memory.delete.assert_called_once_with("notes/a.md")

    @pytest.mark.asyncio
    async def test_not_found(self, mock_memory):
        from repomem.mcp import delete_memory
        mock_memory.delete.return_value = WriteResult(
            success=False, path="notes/x.md", error="File not found: notes/x.md",
        )
        with pytest.raises(ToolError, match="File not found"):
            await delete_memory("notes/x.md")


# ---------------------------------------------------------------------------
# search_memory
# ---------------------------------------------------------------------------

class TestSearchMemory:

    @pytest.mark.asyncio
    async def test_no_results(self):
        from repomem.mcp import search_memory
        assert await search_memory("widgets") == 'No results found for: "widgets"'

    @pytest.mark.asyncio
    async def test_formats_hits(self, mock_memory):
        from repomem.mcp import search_memory
        mock_memory.search.return_value = [
            SearchHit("notes/a.md", "first snippet"),
            SearchHit("notes/b.md", "second snippet"),
        ]
        result = await search_memory("snippet")
        assert result == (
            "**notes/a.md**\nfirst snippet"
            "\n\n---\n\n"
            "**notes/b.md**\nsecond snippet"
        )


# ---------------------------------------------------------------------------
# End to end over the fake remote
# ---------------------------------------------------------------------------

class TestWithRealMemory:

    @pytest.mark.asyncio
    async def test_save_read_search_delete(self, tmp_path):
        import repomem.mcp as mcp_mod
        remote = FakeRemote({"people/ada.md": "Ada likes short updates."})
        memory = Memory(remote, queue_path=tmp_path / "queue.json")
        await memory.start()
        mcp_mod._memory = memory

        assert await mcp_mod.save_memory("Projects", "acme", "Widget launch") == (
            "Saved: projects/acme.md"
        )
        assert await mcp_mod.read_memory("projects/acme.md") == "Widget launch"
        assert "**projects/acme.md**" in await mcp_mod.search_memory("widget")

        listing = json.loads(await mcp_mod.list_knowledge())
        assert [f["path"] for f in listing["files"]] == ["people/ada.md", "projects/acme.md"]

        assert await mcp_mod.delete_memory("people/ada.md") == "Deleted: people/ada.md"
        await memory.close()
        assert remote.content("projects/acme.md") == "Widget launch"
        assert "people/ada.md" not in remote.files


# ---------------------------------------------------------------------------
# Server lifespan
# ---------------------------------------------------------------------------

class TestLifespan:

    @pytest.fixture
    def config(self, tmp_path):
        from repomem.config import Config
        return Config(home=tmp_path, repo="owner/notes", token="tok")

    @pytest.mark.asyncio
    async def test_warms_store_and_closes(self, config):
        import repomem.mcp as mcp_mod
        remote = FakeRemote({"people/ada.md": "Ada"})
        with patch("repomem.mcp.load_config", return_value=config), \
                patch("repomem.mcp.GitHubClient", return_value=remote), \
                patch("repomem.mcp.configure_logging"):
            async with mcp_mod.lifespan(mcp_mod.mcp):
                assert mcp_mod._memory.ready
                assert await mcp_mod.read_memory("people/ada.md") == "Ada"

        assert mcp_mod._memory is None
        assert remote.closed
        assert (config.home / "repomem-ops.log").exists()

    @pytest.mark.asyncio
    async def test_startup_failure_logged(self, config):
        import repomem.mcp as mcp_mod
        from repomem.api import StartupError
        remote = FakeRemote()
        remote.accessible = False
        with patch("repomem.mcp.load_config", return_value=config), \
                patch("repomem.mcp.GitHubClient", return_value=remote), \
                patch("repomem.mcp.configure_logging"):
            with pytest.raises(StartupError):
                async with mcp_mod.lifespan(mcp_mod.mcp):
                    pass

        assert remote.closed
        assert "StartupError" in (config.home / "repomem-errors.log").read_text()

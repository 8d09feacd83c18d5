"""
MCP stdio server for repomem: persistent memory for AI agents.

Exposes the knowledge store as five MCP tools so local agents
(Claude Code, etc.) can list, read, save, delete and search notes
kept in a GitHub repository.

Usage:
    repomem mcp                                   # stdio server (via CLI)
    claude mcp add repomem -e REPOMEM_REPO=owner/notes \\
        -e REPOMEM_TOKEN=... -- repomem mcp

The store is built and warmed in the server lifespan, before the MCP
session starts answering requests.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated, AsyncIterator, Optional

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from mcp.types import ToolAnnotations
from pydantic import Field

from .api import NOT_READY_ERROR, Memory
from .config import load_config
from .errors import log_exception
from .github import GitHubClient
from .logging_config import configure_logging, configure_ops_log
from .protocol import RemoteStoreError

logger = logging.getLogger(__name__)

SERVER_INSTRUCTIONS = """
repomem is a persistent memory system for AI agents. Use it to store and retrieve information across sessions.

## When to use this server:
- When the user says "remember", "save this", "store this", or asks you to memorize something → use save_memory
- When the user says "search memory", "search for", "find in memory", or wants to look up saved information → use search_memory
- When the user asks "what do you remember", "recall", or references previously saved information → use search_memory or list_knowledge
- When the user wants to see all saved knowledge → use list_knowledge
- When the user wants to read a specific saved item → use read_memory
- When the user wants to forget/delete something → use delete_memory

## Categories:
Every memory lives in a category folder. Pick the category the user would naturally file it under:
- "projects" - project-specific knowledge
- "people" - information about people
- "concepts" - technical concepts
- "templates" - reusable templates
- "preferences" - user preferences

Category names are lowercased and any character outside a-z, 0-9 and "-" becomes "-".

## Examples:
- "Remember my coding style preferences" → save_memory with category "preferences", name "coding-style"
- "Remember this template for user stories" → save_memory with category "templates", name "user-story"
- "Search memory for API standards" → search_memory with query "API standards"
""".strip()


_memory: Optional[Memory] = None


def _get_memory() -> Memory:
    if _memory is None:
        raise ToolError(NOT_READY_ERROR)
    return _memory


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Build the store, warm it, serve, then flush pending pushes."""
    global _memory
    config = load_config()
    config.validate()
    configure_logging()
    ops_handler = configure_ops_log(config.home)
    try:
        remote = GitHubClient(config.repo, config.token, api_url=config.api_url)
        memory = Memory(remote, queue_path=config.resolved_queue_path)
        try:
            await memory.start()
        except Exception as e:
            log_path = log_exception(e, context="repomem mcp startup", home=config.home)
            logger.error("Startup failed: %s (details in %s)", e, log_path)
            await remote.aclose()
            raise
        except BaseException:
            await remote.aclose()
            raise

        _memory = memory
        try:
            yield
        finally:
            _memory = None
            await memory.close()
    finally:
        logging.getLogger("repomem").removeHandler(ops_handler)
        ops_handler.close()


# ---------------------------------------------------------------------------
# Server setup
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "repomem",
    instructions=SERVER_INSTRUCTIONS,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Tool annotations
# ---------------------------------------------------------------------------

_READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False)
_WRITE = ToolAnnotations(readOnlyHint=False, destructiveHint=False, idempotentHint=True)
_DESTRUCTIVE = ToolAnnotations(destructiveHint=True, idempotentHint=False)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool(
    description=(
        'List all saved memories organized by category. Use when user asks "what do you remember?" '
        "or wants to see all stored knowledge."
    ),
    annotations=_READ_ONLY,
)
async def list_knowledge() -> str:
    """List categories and files."""
    memory = _get_memory()
    return json.dumps(memory.list_knowledge().to_dict(), indent=2)


@mcp.tool(
    description=(
        "Read a specific memory file by path. "
        "Use after list_knowledge to retrieve full content of a saved item."
    ),
    annotations=_READ_ONLY,
)
async def read_memory(
    path: Annotated[str, Field(
        description='Path to the memory file (e.g., "templates/user-story.md")',
    )],
) -> str:
    """Read one file."""
    memory = _get_memory()
    try:
        content = await memory.read(path)
    except ValueError as e:
        raise ToolError(f"Invalid path: {e}") from e
    except RemoteStoreError as e:
        raise ToolError(f"Error: {e}") from e

    if content is None:
        raise ToolError(f"File not found: {path}")
    return content


@mcp.tool(
    description=(
        'Save information to persistent memory. Use when user says "remember this", "save this", '
        '"store this", or asks you to memorize something. Memories persist across sessions.'
    ),
    annotations=_WRITE,
)
async def save_memory(
    category: Annotated[str, Field(
        description=(
            'Category folder for organizing memories (e.g., "projects", "people", '
            '"concepts", "templates"). Created if it does not exist.'
        ),
    )],
    name: Annotated[str, Field(
        description='File name (e.g., "user-story.md" or "user-story")',
    )],
    content: Annotated[str, Field(
        description="Content of the memory file",
    )],
) -> str:
    """Save a file."""
    memory = _get_memory()
    result = memory.save(category, name, content)
    if not result.success:
        raise ToolError(result.error or "Save failed")

    lines = [f"Saved: {result.path}"]
    url = memory.remote_url(result.path)
    if url:
        lines.append(f"Remote: {url}")
    return "\n".join(lines)


@mcp.tool(
    description="Delete a memory file. Use when user wants to forget or remove saved information.",
    annotations=_DESTRUCTIVE,
)
async def delete_memory(
    path: Annotated[str, Field(description="Path to the memory file to delete")],
) -> str:
    """Delete a file."""
    memory = _get_memory()
    result = memory.delete(path)
    if not result.success:
        raise ToolError(result.error or "Delete failed")
    return f"Deleted: {path}"


@mcp.tool(
    description=(
        'Search across all saved memories by keyword. Use when user says "search memory", '
        '"search for", "find in memory", or asks to recall/look up previously saved information.'
    ),
    annotations=_READ_ONLY,
)
async def search_memory(
    query: Annotated[str, Field(description="Search query (searches paths and content)")],
) -> str:
    """Search paths and content."""
    memory = _get_memory()
    hits = memory.search(query)
    if not hits:
        return f'No results found for: "{query}"'
    return "\n\n---\n\n".join(f"**{hit.path}**\n{hit.snippet}" for hit in hits)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    """Run the MCP stdio server."""
    import os
    import signal
    # anyio's stdin reader shields the blocking readline from task
    # cancellation, so the first Ctrl+C would otherwise be swallowed.
    signal.signal(signal.SIGINT, lambda *_: os._exit(130))

    load_config().validate()
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()

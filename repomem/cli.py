"""
CLI interface for repomem.

Usage:
    repomem mcp                  # run the MCP stdio server
    repomem queue                # show writes waiting to reach the repository
    repomem queue --failed       # show writes dropped after repeated failures
    repomem drain                # replay queued writes now
    repomem config               # show resolved configuration
    repomem init --repo owner/notes --token ghp_...
"""

import asyncio
import json
from typing import Optional

import typer
from typing_extensions import Annotated

from .config import ConfigError, get_home_dir, load_config, save_config
from .logging_config import configure_logging, enable_debug_mode


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"repomem {version('repomem')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


app = typer.Typer(
    name="repomem",
    help="Persistent agent memory stored in a GitHub repository.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
):
    """Persistent agent memory stored in a GitHub repository."""


def _load_valid_config():
    """Load and validate config, exiting with a clean message on error."""
    try:
        config = load_config()
        config.validate()
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    return config


@app.command()
def mcp():
    """Start MCP stdio server for AI agent integration."""
    _load_valid_config()
    configure_logging()
    from .mcp import main as mcp_main
    mcp_main()


@app.command("queue")
def queue_cmd(
    failed: Annotated[bool, typer.Option(
        "--failed",
        help="Show writes dropped after exhausting retries",
    )] = False,
    clear_failed: Annotated[bool, typer.Option(
        "--clear-failed",
        help="Empty the list of dropped writes",
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
    )] = False,
):
    """Show writes waiting to reach the repository."""
    from dataclasses import asdict
    from .write_queue import WriteQueue

    config = load_config()
    queue = WriteQueue(config.resolved_queue_path)

    if clear_failed:
        count = queue.clear_failed()
        typer.echo(f"Cleared {count} dropped writes")
        return

    if failed:
        entries = queue.list_failed()
        if output_json:
            typer.echo(json.dumps(entries, indent=2))
        elif not entries:
            typer.echo("No dropped writes.")
        else:
            for entry in entries:
                typer.echo(
                    f"{entry.get('failed_at', '')}  {entry.get('operation', '?'):6s}  "
                    f"{entry.get('path', '')}"
                )
        return

    items = queue.get_all()
    if output_json:
        typer.echo(json.dumps([asdict(item) for item in items], indent=2))
        return
    if not items:
        typer.echo("Queue is empty.")
        return
    for item in items:
        typer.echo(
            f"{item.enqueued_at}  {item.operation:6s}  {item.path}  "
            f"(retries: {item.retry_count})"
        )


@app.command()
def drain():
    """Warm the cache from the repository and replay queued writes."""
    config = _load_valid_config()
    configure_logging()

    from .api import Memory
    from .github import GitHubClient

    async def _run() -> int:
        remote = GitHubClient(config.repo, config.token, api_url=config.api_url)
        memory = Memory(remote, queue_path=config.resolved_queue_path, drain_on_success=False)
        try:
            await memory.start()
            return await memory.drain()
        finally:
            await memory.close()

    remaining = asyncio.run(_run())
    if remaining:
        typer.echo(f"{remaining} writes still queued")
    else:
        typer.echo("Queue drained.")


@app.command()
def config(
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
    )] = False,
):
    """Show the resolved configuration (token masked)."""
    try:
        cfg = load_config()
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    info = cfg.describe()
    if output_json:
        typer.echo(json.dumps(info, indent=2))
        return
    for key, value in info.items():
        typer.echo(f"{key:8s} {value if value is not None else '(not set)'}")


@app.command()
def init(
    repo: Annotated[str, typer.Option(
        "--repo", "-r",
        help="Repository in owner/name form",
        prompt=True,
    )],
    token: Annotated[str, typer.Option(
        "--token", "-t",
        help="GitHub access token with contents read/write",
        prompt=True,
        hide_input=True,
    )],
    api_url: Annotated[Optional[str], typer.Option(
        "--api-url",
        help="GitHub API base URL (GitHub Enterprise)",
    )] = None,
):
    """Write the config file."""
    # Environment overrides are not written to the file
    cfg = load_config(home=get_home_dir(), env={})
    cfg.repo = repo.strip()
    cfg.token = token.strip()
    if api_url:
        cfg.api_url = api_url.strip()
    try:
        cfg.validate()
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    save_config(cfg)
    typer.echo(f"Wrote {cfg.config_path}")


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="repomem CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()

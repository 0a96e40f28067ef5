"""slagent command line interface."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from . import __version__
from .commands import history, maintenance, watcher

app = typer.Typer(
    name="slagent",
    help="Watch coding agents (Claude Code, Codex) and record what happened in their sessions.",
    no_args_is_help=True,
    add_completion=False,
)


def _version_callback(value: bool):
    if value:
        typer.echo(f"slagent {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
):
    pass


@app.command("watch")
def watch_command(
    daemon: bool = typer.Option(False, "--daemon", "-d", help="Run the watcher in the background"),
    files: bool = typer.Option(
        False, "--files", help="Also watch the current directory for file changes"
    ),
):
    """Watch agent session logs and record sessions until stopped."""
    raise typer.Exit(code=watcher.watcher_start_command(daemon=daemon, watch_files=files))


@app.command("stop")
def stop_command():
    """Stop the background watcher."""
    raise typer.Exit(code=watcher.watcher_stop_command())


@app.command("status")
def status_command():
    """Show watcher state and store statistics."""
    raise typer.Exit(code=watcher.watcher_status_command())


@app.command("sessions")
def sessions_command(
    limit: int = typer.Option(10, "--limit", "-n", min=1, help="Maximum number of sessions"),
    unanalyzed: bool = typer.Option(False, "--unanalyzed", help="Only sessions not yet analyzed"),
    as_json: bool = typer.Option(False, "--json", help="Print summaries as JSON"),
):
    """List recorded sessions, newest first."""
    raise typer.Exit(code=history.sessions_command(limit=limit, unanalyzed=unanalyzed, as_json=as_json))


@app.command("events")
def events_command(session_id: str = typer.Argument(..., help="Session id")):
    """Print a session's recorded events as JSON lines."""
    raise typer.Exit(code=history.events_command(session_id))


@app.command("parse")
def parse_command(
    file: Path = typer.Argument(..., help="Session log file"),
    agent: str = typer.Option("claude", "--agent", "-a", help="Adapter to decode with (claude, codex)"),
):
    """Decode a session log without recording anything."""
    raise typer.Exit(code=history.parse_command(file, agent))


@app.command("bootstrap")
def bootstrap_command(
    path: Optional[Path] = typer.Argument(None, help="Project directory (default: current directory)"),
):
    """Seed sessions from a project's git history."""
    raise typer.Exit(code=maintenance.bootstrap_command(path))


@app.command("prune")
def prune_command(
    days: Optional[float] = typer.Option(
        None, "--days", help="Delete records older than this many days (default: retention_max_age_days)"
    ),
):
    """Delete old event logs and session summaries."""
    raise typer.Exit(code=maintenance.prune_command(days))


if __name__ == "__main__":
    app()

"""slagent sessions / events / parse."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.table import Table

from ..adapters import create_default_registry
from ..config import SlagentConfig
from ..store import Store

console = Console()
err_console = Console(stderr=True)

OUTCOME_STYLES = {
    "success": "green",
    "failure": "red",
    "partial": "yellow",
    "unknown": "dim",
}


def _fmt_ms(ts: int) -> str:
    return datetime.fromtimestamp(ts / 1000).strftime("%Y-%m-%d %H:%M")


def _duration(start: int, end: int) -> str:
    minutes = max(0, end - start) // 60000
    if minutes >= 60:
        return f"{minutes // 60}h{minutes % 60:02d}m"
    return f"{minutes}m"


def sessions_command(*, limit: int = 10, unanalyzed: bool = False, as_json: bool = False) -> int:
    store = Store(SlagentConfig.load().data_path)
    if unanalyzed:
        summaries = store.get_unanalyzed_sessions()[:limit]
    else:
        summaries = store.get_recent_sessions(limit=limit)

    if as_json:
        print(json.dumps([s.to_dict() for s in summaries], indent=2, ensure_ascii=False))
        return 0

    if not summaries:
        console.print("[dim]No sessions recorded yet[/dim]")
        return 0

    table = Table(show_header=True, header_style="bold")
    table.add_column("Session")
    table.add_column("Agent")
    table.add_column("Started")
    table.add_column("Duration", justify="right")
    table.add_column("Outcome")
    table.add_column("Files", justify="right")
    table.add_column("Interventions", justify="right")
    table.add_column("Prompt", overflow="ellipsis", max_width=40)
    for s in summaries:
        style = OUTCOME_STYLES.get(s.outcome, "")
        table.add_row(
            s.id,
            s.agent,
            _fmt_ms(s.started_at),
            _duration(s.started_at, s.ended_at),
            f"[{style}]{s.outcome}[/{style}]" if style else s.outcome,
            str(len(s.files_changed)),
            str(s.interventions),
            (s.prompt or "").splitlines()[0] if s.prompt else "",
        )
    console.print(table)
    return 0


def events_command(session_id: str) -> int:
    store = Store(SlagentConfig.load().data_path)
    events = store.get_session_events(session_id)
    if not events:
        console.print(f"[red]No events for session {session_id}[/red]")
        return 1
    for event in events:
        print(json.dumps(event.to_dict(), ensure_ascii=False))
    return 0


def parse_command(file: Path, agent: str) -> int:
    """Decode a whole session log with one adapter and print its events as JSON lines."""
    registry = create_default_registry()
    adapter = registry.get(agent)
    if adapter is None:
        console.print(f"[red]Unknown agent:[/red] {agent} (expected one of: {', '.join(registry.names())})")
        return 1
    if not file.is_file():
        console.print(f"[red]File not found:[/red] {file}")
        return 1

    events = asyncio.run(adapter.parse_conversation(file))
    for event in events:
        print(json.dumps(event.to_dict(), ensure_ascii=False))
    err_console.print(f"[dim]{len(events)} events[/dim]")
    return 0

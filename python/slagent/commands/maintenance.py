"""slagent bootstrap / prune."""

from __future__ import annotations

import math
from pathlib import Path
from typing import Optional

from rich.console import Console

from ..bootstrap import bootstrap_from_git
from ..config import SlagentConfig
from ..logging_config import setup_logger
from ..store import Store

logger = setup_logger("slagent.commands.maintenance", "watch.log")
console = Console()


def bootstrap_command(path: Optional[Path] = None) -> int:
    project = (path or Path.cwd()).expanduser()
    if not project.is_dir():
        console.print(f"[red]Not a directory:[/red] {project}")
        return 1

    store = Store(SlagentConfig.load().data_path)
    try:
        result = bootstrap_from_git(project, store)
    except OSError as e:
        console.print(f"[red]Bootstrap failed:[/red] {e}")
        logger.error(f"Bootstrap failed for {project}: {e}", exc_info=True)
        return 1

    if result.sessions_created == 0 and result.sessions_skipped:
        console.print(f"[dim]Already bootstrapped ({result.sessions_skipped} sessions)[/dim]")
        return 0
    if result.sessions_created == 0:
        console.print(f"[yellow]No git history found in {project}[/yellow]")
        return 0
    console.print(
        f"[green]✓[/green] Created {result.sessions_created} sessions "
        f"({result.events_created} events) from git history"
    )
    return 0


def prune_command(days: Optional[float] = None) -> int:
    config = SlagentConfig.load()
    max_age = config.retention_max_age_days if days is None else days
    if math.isnan(max_age) or max_age < 0:
        console.print(f"[red]Invalid age:[/red] {max_age}")
        return 1

    result = Store(config.data_path).prune_old_data(max_age)
    console.print(
        f"[green]✓[/green] Removed {result.events_deleted} event logs and "
        f"{result.sessions_deleted} session summaries older than {max_age:g} days"
    )
    return 0

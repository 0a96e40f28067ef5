"""slagent watch / stop / status."""

from __future__ import annotations

import asyncio
import os
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import Optional

from rich.console import Console

from ..adapters import create_default_registry
from ..config import SlagentConfig, default_config_path, get_default_config_content
from ..file_watcher import FileChange, FileWatcher
from ..logging_config import enable_console_output, get_log_directory, get_primary_log_path, setup_logger
from ..store import Store
from ..watcher_core import LiveWatcher, WatcherEvent

logger = setup_logger("slagent.commands.watcher", "watch.log")
console = Console()

STOP_GRACE_SECONDS = 5.0


def pid_file_path() -> Path:
    return get_log_directory() / "watcher.pid"


def _read_pid() -> Optional[int]:
    try:
        return int(pid_file_path().read_text().strip())
    except (OSError, ValueError):
        return None


def _is_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def detect_watcher_process() -> tuple[bool, Optional[int], str]:
    """(running, pid, mode) for the watcher recorded in the pid file."""
    pid = _read_pid()
    if pid is None:
        return False, None, ""
    if not _is_alive(pid):
        pid_file_path().unlink(missing_ok=True)
        return False, None, ""
    return True, pid, "daemon"


def _ensure_config() -> SlagentConfig:
    path = default_config_path()
    if not path.exists():
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(get_default_config_content(), encoding="utf-8")
            logger.info(f"Wrote default config to {path}")
        except OSError as e:
            logger.warning(f"Could not write default config {path}: {e}")
    return SlagentConfig.load(path)


def _print_watcher_event(event: WatcherEvent) -> None:
    where = f" [dim]{event.project}[/dim]" if event.project else ""
    if event.type == "agent_online":
        console.print(f"[green]●[/green] {event.agent} online{where}")
    elif event.type == "agent_offline":
        console.print(f"[dim]○ {event.agent} offline[/dim]{where}")
    elif event.type == "session_start":
        console.print(f"[cyan]▶[/cyan] {event.agent} session {event.session_id}{where}")
    elif event.type == "session_end":
        console.print(f"[yellow]■[/yellow] {event.agent} session {event.session_id} ended{where}")


def _log_file_change(change: FileChange) -> None:
    logger.debug(f"File changed: {change.path}")


async def run_watcher(
    config: SlagentConfig,
    *,
    watch_files: bool = False,
    project: Optional[Path] = None,
    interactive: bool = True,
) -> None:
    """Run the live watcher until SIGINT/SIGTERM, then seal whatever is still tracked."""
    store = Store(config.data_path)
    store.ensure_dirs()
    registry = create_default_registry(config)
    watcher = LiveWatcher(store, registry, config)
    watcher.on(lambda e: logger.info(f"{e.type}: agent={e.agent} session={e.session_id} project={e.project}"))
    if interactive:
        watcher.on(_print_watcher_event)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, watcher.stop)
        except (NotImplementedError, RuntimeError):
            pass

    file_watcher: Optional[FileWatcher] = None
    if watch_files:
        file_watcher = FileWatcher(project or Path.cwd(), _log_file_change, loop=loop)
        file_watcher.start()

    try:
        await watcher.start()
    finally:
        if file_watcher is not None:
            file_watcher.stop()
        sealed = await watcher.seal_all()
        if sealed:
            logger.info(f"Sealed {len(sealed)} sessions on shutdown")


def _spawn_daemon(watch_files: bool) -> int:
    running, pid, _mode = detect_watcher_process()
    if running:
        console.print(f"[yellow]Watcher already running (PID {pid})[/yellow]")
        return 0

    args = [sys.executable, "-m", "slagent", "watch"]
    if watch_files:
        args.append("--files")
    try:
        proc = subprocess.Popen(
            args,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
            cwd=str(Path.cwd()),
        )
    except OSError as e:
        console.print(f"[red]Failed to start watcher:[/red] {e}")
        return 1

    pid_file_path().write_text(str(proc.pid))
    logger.info(f"Started watcher daemon (PID {proc.pid})")
    console.print(f"[green]✓[/green] Watcher started in background (PID {proc.pid})")
    console.print(f"[dim]Logs: {get_primary_log_path()}[/dim]")
    return 0


def watcher_start_command(*, daemon: bool = False, watch_files: bool = False) -> int:
    if daemon:
        return _spawn_daemon(watch_files)

    config = _ensure_config()
    interactive = sys.stderr.isatty()
    if interactive:
        enable_console_output()
        console.print(
            f"[bold]Watching[/bold] {', '.join(config.agents) or 'no agents'} "
            f"(poll {config.poll_interval_seconds}s, data {config.data_path})"
        )

    pid_path = pid_file_path()
    pid_path.write_text(str(os.getpid()))
    try:
        asyncio.run(run_watcher(config, watch_files=watch_files, interactive=interactive))
    except KeyboardInterrupt:
        pass
    finally:
        if _read_pid() == os.getpid():
            pid_path.unlink(missing_ok=True)
    return 0


def watcher_stop_command() -> int:
    running, pid, _mode = detect_watcher_process()
    if not running or pid is None:
        console.print("[dim]Watcher is not running[/dim]")
        return 0

    try:
        os.kill(pid, signal.SIGTERM)
        logger.info(f"Sent SIGTERM to watcher (PID {pid})")
    except ProcessLookupError:
        pid_file_path().unlink(missing_ok=True)
        console.print("[dim]Watcher is not running[/dim]")
        return 0
    except PermissionError as e:
        console.print(f"[red]Cannot stop watcher (PID {pid}):[/red] {e}")
        return 1

    deadline = time.monotonic() + STOP_GRACE_SECONDS
    while time.monotonic() < deadline:
        time.sleep(0.1)
        if not _is_alive(pid):
            pid_file_path().unlink(missing_ok=True)
            console.print(f"[green]✓[/green] Watcher stopped (PID {pid})")
            return 0

    try:
        os.kill(pid, signal.SIGKILL)
        time.sleep(0.5)
        logger.info(f"Watcher (PID {pid}) force killed")
    except ProcessLookupError:
        pass
    pid_file_path().unlink(missing_ok=True)
    console.print(f"[yellow]Watcher force killed (PID {pid})[/yellow]")
    return 0


def watcher_status_command() -> int:
    config = SlagentConfig.load()
    running, pid, _mode = detect_watcher_process()
    if running:
        console.print(f"[green]●[/green] Watcher running (PID {pid})")
    else:
        console.print("[dim]○ Watcher not running[/dim]")

    store = Store(config.data_path)
    recent = store.get_recent_sessions(limit=1)
    unanalyzed = store.get_unanalyzed_sessions()
    console.print(f"  Agents:     {', '.join(config.agents) or '-'}")
    console.print(f"  Data:       {config.data_path}")
    console.print(f"  Log:        {get_primary_log_path()}")
    console.print(f"  Unanalyzed: {len(unanalyzed)} sessions")
    if recent:
        last = recent[0]
        console.print(f"  Last:       {last.id} ({last.agent}, {last.outcome})")
    return 0

from __future__ import annotations

import asyncio
import time
from pathlib import Path

from watchdog.events import FileModifiedEvent, FileMovedEvent, DirModifiedEvent

from slagent.file_watcher import FileWatcher, _ChangeHandler


def _collecting(tmp_path: Path, **kwargs) -> tuple[FileWatcher, list]:
    changes: list = []
    return FileWatcher(tmp_path, changes.append, **kwargs), changes


def test_handle_filters_ignored_and_outside_paths(tmp_path: Path) -> None:
    (tmp_path / ".gitignore").write_text("*.log\n", encoding="utf-8")
    watcher, changes = _collecting(tmp_path)
    root = watcher.project

    for path in ("src/a.py", "debug.log", "node_modules/x/index.js", ".git/HEAD"):
        watcher._handle(str(root / path))
    watcher._handle(str(root.parent / "elsewhere.py"))

    assert [c.path for c in changes] == ["src/a.py"]


def test_handler_skips_directories_and_reports_move_destinations(tmp_path: Path) -> None:
    watcher, changes = _collecting(tmp_path)
    handler = _ChangeHandler(watcher)
    root = watcher.project

    handler.on_any_event(DirModifiedEvent(str(root / "src")))
    handler.on_any_event(FileModifiedEvent(str(root / "a.py")))
    handler.on_any_event(FileMovedEvent(str(root / "b.py"), str(root / "c.py")))

    assert [c.path for c in changes] == ["a.py", "b.py", "c.py"]


def test_callback_errors_are_contained(tmp_path: Path) -> None:
    def explode(change):
        raise RuntimeError("bad callback")

    watcher = FileWatcher(tmp_path, explode)

    watcher._handle(str(watcher.project / "a.py"))


def test_changes_are_scheduled_onto_the_loop(tmp_path: Path) -> None:
    async def run() -> list:
        watcher, changes = _collecting(tmp_path, loop=asyncio.get_running_loop())
        watcher._handle(str(watcher.project / "a.py"))
        assert changes == []
        await asyncio.sleep(0)
        return changes

    assert [c.path for c in asyncio.run(run())] == ["a.py"]


def test_observer_delivers_real_writes(tmp_path: Path) -> None:
    watcher, changes = _collecting(tmp_path)
    watcher.start()
    try:
        assert watcher.running
        (tmp_path / "hello.txt").write_text("hi", encoding="utf-8")
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline and not any(c.path == "hello.txt" for c in changes):
            time.sleep(0.05)
    finally:
        watcher.stop()

    assert any(c.path == "hello.txt" for c in changes)
    assert not watcher.running

"""Recursive project change feed (watchdog), filtered through IgnoreMatcher."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .events import now_ms
from .ignore import IgnoreMatcher
from .logging_config import setup_logger

logger = setup_logger("slagent.file_watcher", "watch.log")


@dataclass(frozen=True)
class FileChange:
    path: str  # project-relative, "/"-separated
    timestamp: int


def _event_path(raw: bytes | str) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, watcher: "FileWatcher"):
        super().__init__()
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type in ("opened", "closed", "closed_no_write"):
            return
        paths = [_event_path(event.src_path)]
        dest = getattr(event, "dest_path", None)
        if dest:
            paths.append(_event_path(dest))
        for path in paths:
            self.watcher._handle(path)


class FileWatcher:
    """Delivers FileChange records for non-ignored files under a project.

    watchdog calls back on its observer thread; when an event loop is given, the
    callback is scheduled onto that loop instead.
    """

    def __init__(
        self,
        project: str | Path,
        callback: Callable[[FileChange], None],
        *,
        ignore: Optional[IgnoreMatcher] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.project = Path(project).resolve()
        self.callback = callback
        self.ignore = ignore or IgnoreMatcher.from_project(self.project)
        self.loop = loop
        self._observer: Optional[Observer] = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = Observer()
        observer.schedule(_ChangeHandler(self), str(self.project), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info(f"Watching files under {self.project}")

    def stop(self) -> None:
        observer = self._observer
        if observer is None:
            return
        self._observer = None
        observer.stop()
        observer.join(timeout=5)
        logger.info(f"Stopped watching files under {self.project}")

    def _handle(self, abs_path: str) -> None:
        try:
            rel = os.path.relpath(abs_path, str(self.project))
        except ValueError:
            return
        if rel.startswith(".."):
            return
        rel = rel.replace(os.sep, "/")
        if self.ignore.is_ignored(rel):
            return

        change = FileChange(path=rel, timestamp=now_ms())
        if self.loop is not None and not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self._deliver, change)
        else:
            self._deliver(change)

    def _deliver(self, change: FileChange) -> None:
        try:
            self.callback(change)
        except Exception as e:
            logger.warning(f"File change callback failed for {change.path}: {e}", exc_info=True)

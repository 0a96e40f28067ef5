"""On-disk event log and session summaries.

Layout under the data directory (default ~/.slagent):

    events/<sessionId>.jsonl    append-only, one canonical event per line
    sessions/<sessionId>.json   one SessionSummary per session

Appends are a single write() on an O_APPEND descriptor, so lines from concurrent
writers never interleave. Summaries are replaced atomically (temp file + rename).
"""

from __future__ import annotations

import json
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from .events import AdapterEvent, SessionSummary, event_from_dict
from .logging_config import setup_logger

logger = setup_logger("slagent.store", "watch.log")

DAY_SECONDS = 86_400


@dataclass(frozen=True)
class PruneResult:
    events_deleted: int
    sessions_deleted: int


def _file_stem(session_id: str) -> str:
    return str(session_id).replace("/", "_").replace(os.sep, "_") or "_"


class Store:
    """Durable record of observed sessions."""

    def __init__(self, root: Optional[str | Path] = None):
        self.root = Path(root).expanduser() if root is not None else Path.home() / ".slagent"
        self.events_dir = self.root / "events"
        self.sessions_dir = self.root / "sessions"

    def ensure_dirs(self) -> None:
        self.events_dir.mkdir(parents=True, exist_ok=True)
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

    def events_path(self, session_id: str) -> Path:
        return self.events_dir / f"{_file_stem(session_id)}.jsonl"

    def summary_path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{_file_stem(session_id)}.json"

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def append_event(self, event: AdapterEvent) -> None:
        """Append one event to its session log. OS errors propagate to the caller."""
        self.ensure_dirs()
        line = (json.dumps(event.to_dict(), ensure_ascii=False) + "\n").encode("utf-8")
        fd = os.open(self.events_path(event.session_id), os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
        try:
            os.write(fd, line)
        finally:
            os.close(fd)

    def append_events(self, events: Iterable[AdapterEvent]) -> int:
        count = 0
        for event in events:
            self.append_event(event)
            count += 1
        return count

    def get_session_events(self, session_id: str) -> list[AdapterEvent]:
        path = self.events_path(session_id)
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.warning(f"Cannot read events for {session_id}: {e}")
            return []

        events: list[AdapterEvent] = []
        for line in content.splitlines():
            if not line.strip():
                continue
            try:
                events.append(event_from_dict(json.loads(line)))
            except ValueError as e:
                logger.debug(f"Skipping undecodable event line in {path.name}: {e}")
        return events

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def save_session_summary(self, summary: SessionSummary) -> Path:
        self.ensure_dirs()
        target = self.summary_path(summary.id)
        fd, tmp = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(self.sessions_dir))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(summary.to_dict(), f, indent=2, ensure_ascii=False)
            os.replace(tmp, target)
        except Exception:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise
        return target

    def _read_summary(self, path: Path) -> Optional[SessionSummary]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                return None
            return SessionSummary.from_dict(data)
        except (OSError, ValueError, TypeError) as e:
            logger.debug(f"Unreadable summary {path.name}: {e}")
            return None

    def get_session_summary(self, session_id: str) -> Optional[SessionSummary]:
        return self._read_summary(self.summary_path(session_id))

    def _summary_files(self) -> list[Path]:
        try:
            files = [p for p in self.sessions_dir.iterdir() if p.suffix == ".json" and not p.name.startswith(".")]
        except OSError:
            return []

        def mtime(p: Path) -> float:
            try:
                return p.stat().st_mtime
            except OSError:
                return 0.0

        # Newest first
        return sorted(files, key=lambda p: (mtime(p), p.name), reverse=True)

    def get_recent_sessions(self, limit: int = 10) -> list[SessionSummary]:
        summaries: list[SessionSummary] = []
        for path in self._summary_files():
            if len(summaries) >= limit:
                break
            summary = self._read_summary(path)
            if summary is not None:
                summaries.append(summary)
        return summaries

    def get_unanalyzed_sessions(self) -> list[SessionSummary]:
        out = []
        for path in self._summary_files():
            summary = self._read_summary(path)
            if summary is not None and not summary.analyzed:
                out.append(summary)
        return out

    def mark_analyzed(self, session_id: str, reviewed_event_count: Optional[int] = None) -> bool:
        summary = self.get_session_summary(session_id)
        if summary is None:
            return False
        summary.analyzed = True
        if reviewed_event_count is None:
            reviewed_event_count = len(self.get_session_events(session_id))
        summary.reviewed_event_count = reviewed_event_count
        self.save_session_summary(summary)
        return True

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def prune_old_data(self, max_age_days: float) -> PruneResult:
        """Delete event logs and summaries last modified at or before now - max_age_days."""
        cutoff = time.time() - float(max_age_days) * DAY_SECONDS
        deleted = {"events": 0, "sessions": 0}

        for kind, directory in (("events", self.events_dir), ("sessions", self.sessions_dir)):
            try:
                entries = list(directory.iterdir())
            except OSError:
                continue
            for path in entries:
                try:
                    if not path.is_file() or path.stat().st_mtime > cutoff:
                        continue
                    path.unlink()
                    deleted[kind] += 1
                except OSError as e:
                    logger.debug(f"Prune skipped {path}: {e}")

        if deleted["events"] or deleted["sessions"]:
            logger.info(
                f"Pruned {deleted['events']} event logs and {deleted['sessions']} summaries "
                f"older than {max_age_days} days"
            )
        return PruneResult(events_deleted=deleted["events"], sessions_deleted=deleted["sessions"])

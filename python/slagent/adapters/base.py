"""
Session adapter base class.

An adapter knows where one agent keeps its session logs and how to decode them into
canonical events. Subclasses describe the on-disk layout (`iter_log_units`,
`project_log_units`) and the line format (`parse_line`); everything else - offset
tracking, liveness, the poll/poll_all contract - lives here.

Read offsets are held per adapter instance and are not persisted: after a restart
every log unit touched since the requested `since` is scanned again from the start.
"""

from __future__ import annotations

import asyncio
import json
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional

from ..events import AdapterEvent, ProjectEvent, now_ms
from ..logging_config import setup_logger
from ..process_probe import DEFAULT_PROBE_TIMEOUT_SECONDS, list_process_cwds, normalize_dir

logger = setup_logger("slagent.adapters", "watch.log")

LIVENESS_WINDOW_SECONDS = 5 * 60
PROBE_CACHE_SECONDS = 2.0


@dataclass(frozen=True)
class GlobalSessionInfo:
    project: str
    session_id: str
    session_path: str


def project_key(project: str | Path) -> str:
    """Canonical string form used to key projects across adapters."""
    return os.path.normpath(os.path.expanduser(str(project)))


def parse_timestamp(value: Any) -> int:
    """Epoch milliseconds from an ISO-8601 string or a numeric timestamp; now if absent."""
    if isinstance(value, bool):
        return now_ms()
    if isinstance(value, (int, float)):
        # Seconds vs milliseconds
        return int(value * 1000) if value < 1e12 else int(value)
    if isinstance(value, str) and value.strip():
        try:
            return int(datetime.fromisoformat(value.strip().replace("Z", "+00:00")).timestamp() * 1000)
        except ValueError:
            pass
    return now_ms()


def count_lines(text: Any) -> int:
    if not isinstance(text, str) or not text:
        return 0
    return len(text.splitlines())


def _mtime_ms(path: Path) -> Optional[float]:
    try:
        return path.stat().st_mtime * 1000
    except OSError:
        return None


def _is_complete_record(tail: bytes) -> bool:
    try:
        json.loads(tail.decode("utf-8"))
        return True
    except (UnicodeDecodeError, ValueError):
        return False


class SessionAdapter(ABC):
    """Base class for agent session-log adapters."""

    name: str = ""
    binary_name: str = ""

    def __init__(
        self,
        *,
        home: Optional[Path] = None,
        liveness_window_seconds: float = LIVENESS_WINDOW_SECONDS,
        probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
        probe_cache_seconds: float = PROBE_CACHE_SECONDS,
    ):
        self.home = Path(home) if home is not None else Path.home()
        self.liveness_window_seconds = float(liveness_window_seconds)
        self.probe_timeout_seconds = float(probe_timeout_seconds)
        self.probe_cache_seconds = float(probe_cache_seconds)

        # log unit path -> byte offset already consumed
        self._offsets: dict[str, int] = {}
        # (scanned_at, cwds) from the last process-table scan
        self._process_cwds_cache: Optional[tuple[float, list[str]]] = None

    # ------------------------------------------------------------------
    # Layout / format hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def iter_log_units(self) -> Iterator[tuple[str, Path]]:
        """Yield (project, log unit) for every log unit this agent has on disk."""

    @abstractmethod
    def project_log_units(self, project: str) -> list[Path]:
        """Log units belonging to `project`, in a stable listing order."""

    @abstractmethod
    def parse_line(self, line: str, session_id: str) -> list[AdapterEvent]:
        """Decode one raw log line. May raise; callers treat errors as a skipped line."""

    def session_id_for(self, log_unit: Path) -> str:
        return log_unit.stem

    def is_session_candidate(self, log_unit: Path) -> bool:
        """Whether a log unit may be reported as a project's active session."""
        return True

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    def _liveness_cutoff_ms(self) -> float:
        return now_ms() - self.liveness_window_seconds * 1000

    def _running_cwds(self) -> list[str]:
        now = time.monotonic()
        cached = self._process_cwds_cache
        if cached and (now - cached[0]) < self.probe_cache_seconds:
            return cached[1]
        cwds = list_process_cwds(self.binary_name or self.name, timeout=self.probe_timeout_seconds)
        self._process_cwds_cache = (now, cwds)
        return cwds

    def is_cli_running(self, project: str) -> bool:
        """Best-effort: is a `<binary_name>` process working in `project`?"""
        try:
            return normalize_dir(project) in self._running_cwds()
        except Exception as e:
            logger.debug(f"[{self.name}] process probe failed for {project}: {e}")
            return False

    async def check_cli_running(self, project: str) -> bool:
        """`is_cli_running` with the process scan run in the default executor."""
        try:
            cwds = await asyncio.get_event_loop().run_in_executor(None, self._running_cwds)
            return normalize_dir(project) in cwds
        except Exception as e:
            logger.debug(f"[{self.name}] process probe failed for {project}: {e}")
            return False

    async def detect_activity(self, project: str) -> bool:
        try:
            if await self.check_cli_running(project):
                return True
            cutoff = self._liveness_cutoff_ms()
            for unit in self.project_log_units(project_key(project)):
                mtime = _mtime_ms(unit)
                if mtime is not None and mtime >= cutoff:
                    return True
        except Exception as e:
            logger.debug(f"[{self.name}] detect_activity failed for {project}: {e}")
        return False

    # ------------------------------------------------------------------
    # Active session resolution
    # ------------------------------------------------------------------

    def _newest_unit(self, units: list[Path]) -> Optional[tuple[Path, float]]:
        newest: Optional[tuple[Path, float]] = None
        for unit in units:
            if not self.is_session_candidate(unit):
                continue
            mtime = _mtime_ms(unit)
            if mtime is None:
                continue
            # Strict comparison keeps the first-encountered unit on ties.
            if newest is None or mtime > newest[1]:
                newest = (unit, mtime)
        return newest

    def get_active_session_path(self, project: str) -> Optional[str]:
        try:
            newest = self._newest_unit(self.project_log_units(project_key(project)))
        except Exception as e:
            logger.debug(f"[{self.name}] active session lookup failed for {project}: {e}")
            return None
        return str(newest[0]) if newest else None

    def get_active_session_id(self, project: str) -> Optional[str]:
        path = self.get_active_session_path(project)
        return self.session_id_for(Path(path)) if path else None

    async def get_all_active_sessions(self) -> list[GlobalSessionInfo]:
        """One entry per active project, pointing at that project's newest log unit."""
        cutoff = self._liveness_cutoff_ms()
        newest_by_project: dict[str, tuple[Path, float]] = {}
        try:
            for project, unit in self.iter_log_units():
                if not self.is_session_candidate(unit):
                    continue
                mtime = _mtime_ms(unit)
                if mtime is None:
                    continue
                current = newest_by_project.get(project)
                if current is None or mtime > current[1]:
                    newest_by_project[project] = (unit, mtime)
        except Exception as e:
            logger.warning(f"[{self.name}] session scan failed: {e}")
            return []

        results: list[GlobalSessionInfo] = []
        for project, (unit, mtime) in newest_by_project.items():
            if mtime < cutoff and not await self.check_cli_running(project):
                continue
            results.append(
                GlobalSessionInfo(
                    project=project,
                    session_id=self.session_id_for(unit),
                    session_path=str(unit),
                )
            )
        return results

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def poll(self, project: str, since: float) -> list[AdapterEvent]:
        """New events appended to `project`'s log units modified at or after `since` (ms)."""
        events: list[AdapterEvent] = []
        try:
            units = self.project_log_units(project_key(project))
        except Exception as e:
            logger.debug(f"[{self.name}] poll listing failed for {project}: {e}")
            return events

        for unit in units:
            mtime = _mtime_ms(unit)
            if mtime is None or mtime < since:
                continue
            events.extend(self._read_new_lines(unit))
            await asyncio.sleep(0)
        return events

    async def poll_all(self, since: float) -> list[ProjectEvent]:
        """New events across every project, each tagged with its owning project."""
        events: list[ProjectEvent] = []
        try:
            units = list(self.iter_log_units())
        except Exception as e:
            logger.warning(f"[{self.name}] poll_all listing failed: {e}")
            return events

        for project, unit in units:
            mtime = _mtime_ms(unit)
            if mtime is None or mtime < since:
                continue
            for event in self._read_new_lines(unit):
                events.append(ProjectEvent(project=project, event=event))
            await asyncio.sleep(0)
        return events

    async def parse_conversation(self, log_unit: str | Path) -> list[AdapterEvent]:
        """Decode a whole log unit from scratch, ignoring tracked offsets."""
        path = Path(log_unit)
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug(f"[{self.name}] cannot read {path}: {e}")
            return []
        return self._decode_lines(content, self.session_id_for(path))

    def reset_offsets(self) -> None:
        self._offsets.clear()

    def _decode_lines(self, text: str, session_id: str) -> list[AdapterEvent]:
        events: list[AdapterEvent] = []
        for line in text.splitlines():
            if not line.strip():
                continue
            try:
                events.extend(self.parse_line(line, session_id))
            except Exception:
                # Malformed line
                continue
        return events

    def _read_new_lines(self, log_unit: Path) -> list[AdapterEvent]:
        key = str(log_unit)
        offset = self._offsets.get(key, 0)
        try:
            size = log_unit.stat().st_size
            if size < offset:
                logger.debug(f"[{self.name}] {log_unit.name} shrank, re-reading from start")
                offset = 0
            if size == offset:
                return []
            with open(log_unit, "rb") as f:
                f.seek(offset)
                chunk = f.read(size - offset)
        except OSError as e:
            logger.debug(f"[{self.name}] read failed for {log_unit}: {e}")
            return []

        consumed = chunk.rfind(b"\n") + 1
        tail = chunk[consumed:]
        # A trailing line without newline is held back unless it is already a whole record.
        if tail.strip() and _is_complete_record(tail):
            consumed = len(chunk)
        self._offsets[key] = offset + consumed

        if consumed == 0:
            return []
        text = chunk[:consumed].decode("utf-8", errors="replace")
        return self._decode_lines(text, self.session_id_for(log_unit))

"""Derive user-intervention signals for a finished session.

Three independent sources, each best-effort (a missing git binary, a directory that
is not a repository, or unreadable files simply yield no signal):

- recent commit subjects (reverts, fixups)
- files the agent touched that changed again afterwards (manual edits)
- long gaps between agent actions (long pauses)
"""

from __future__ import annotations

import asyncio
import os
import re
from pathlib import Path
from typing import Iterable, Optional

from .events import (
    AdapterEvent,
    SessionEndEvent,
    SessionStartEvent,
    UserInterventionEvent,
    dedupe_paths,
    now_ms,
)
from .ignore import IgnoreMatcher
from .logging_config import setup_logger

logger = setup_logger("slagent.signals", "watch.log")

DEFAULT_COMMIT_WINDOW = 20
DEFAULT_LONG_PAUSE_SECONDS = 5 * 60
GIT_TIMEOUT_SECONDS = 5.0

_REVERT_RE = re.compile(r"\brevert", re.IGNORECASE)
_FIXUP_RE = re.compile(r"\b(fixup|squash|amend)\b", re.IGNORECASE)


def classify_commit_subject(subject: str) -> Optional[str]:
    """`revert`, `fixup` or None for one commit subject. Revert wins over fixup."""
    if _REVERT_RE.search(subject):
        return "revert"
    if _FIXUP_RE.search(subject):
        return "fixup"
    return None


async def run_git(args: list[str], cwd: str | Path, timeout: float = GIT_TIMEOUT_SECONDS) -> Optional[str]:
    """stdout of `git <args>` in `cwd`, or None on any failure (including timeout)."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (OSError, ValueError) as e:
        logger.debug(f"git {args[0]} could not start in {cwd}: {e}")
        return None

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.debug(f"git {args[0]} timed out after {timeout}s in {cwd}")
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()
        return None

    if proc.returncode != 0:
        logger.debug(f"git {args[0]} failed in {cwd}: {stderr.decode('utf-8', errors='replace').strip()}")
        return None
    return stdout.decode("utf-8", errors="replace")


class SignalEnricher:
    """Intervention detection for one project directory."""

    def __init__(
        self,
        project: str | Path,
        *,
        ignore: Optional[IgnoreMatcher] = None,
        commit_window: int = DEFAULT_COMMIT_WINDOW,
        long_pause_seconds: float = DEFAULT_LONG_PAUSE_SECONDS,
        git_timeout_seconds: float = GIT_TIMEOUT_SECONDS,
    ):
        self.project = Path(project)
        self._ignore = ignore
        self.commit_window = int(commit_window)
        self.long_pause_seconds = float(long_pause_seconds)
        self.git_timeout_seconds = float(git_timeout_seconds)

    @property
    def ignore(self) -> IgnoreMatcher:
        if self._ignore is None:
            self._ignore = IgnoreMatcher.from_project(self.project)
        return self._ignore

    async def check_git_signals(self, session_id: str, since: Optional[int] = None) -> list[UserInterventionEvent]:
        """One revert/fixup event per matching subject among the last `commit_window` commits."""
        args = ["log", "-n", str(self.commit_window), "--format=%s"]
        if since is not None:
            args.append(f"--since={int(since // 1000)}")
        try:
            out = await run_git(args, self.project, timeout=self.git_timeout_seconds)
        except Exception as e:
            logger.debug(f"Git signal check failed for {self.project}: {e}")
            return []
        if not out:
            return []

        ts = now_ms()
        events: list[UserInterventionEvent] = []
        for line in out.splitlines():
            subject = line.strip()
            if not subject:
                continue
            signal = classify_commit_subject(subject)
            if signal is None:
                continue
            events.append(
                UserInterventionEvent(session_id=session_id, timestamp=ts, signal=signal, detail=subject)
            )
        return events

    def detect_manual_edits(
        self, files: Iterable[str], cutoff_ms: float, session_id: str = ""
    ) -> list[UserInterventionEvent]:
        """Touched files whose mtime is after `cutoff_ms`."""
        events: list[UserInterventionEvent] = []
        for file in dedupe_paths(files):
            if not file or file == "unknown":
                continue
            path = Path(file)
            if not path.is_absolute():
                path = self.project / path
            try:
                if self.ignore.is_ignored(path):
                    continue
                mtime_ms = os.stat(path).st_mtime * 1000
            except OSError:
                # Deleted since the agent touched it
                continue
            except Exception as e:
                logger.debug(f"Manual edit check failed for {file}: {e}")
                continue
            if mtime_ms > cutoff_ms:
                events.append(
                    UserInterventionEvent(
                        session_id=session_id,
                        timestamp=int(mtime_ms),
                        signal="manual_edit",
                        detail=file,
                    )
                )
        return events

    def detect_timing_signals(self, events: Iterable[AdapterEvent]) -> list[UserInterventionEvent]:
        """A long_pause for every gap between agent actions longer than the threshold."""
        threshold_ms = self.long_pause_seconds * 1000
        activity = [
            e
            for e in events
            if not isinstance(e, (SessionStartEvent, SessionEndEvent, UserInterventionEvent))
        ]
        results: list[UserInterventionEvent] = []
        for prev, curr in zip(activity, activity[1:]):
            gap = curr.timestamp - prev.timestamp
            if gap > threshold_ms:
                results.append(
                    UserInterventionEvent(
                        session_id=curr.session_id,
                        timestamp=curr.timestamp,
                        signal="long_pause",
                        detail=f"{int(gap / 60000 + 0.5)}min gap",
                    )
                )
        return results

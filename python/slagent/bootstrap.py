"""Seed the store with synthetic sessions reconstructed from git history.

Commits by the same author less than 30 minutes apart are grouped into one
`git-<hash8>` session. Groups that already have a summary are left alone, so
re-running adds only new history. Each commit contributes file_edit events (from numstat);
test-related commits contribute an inferred test_result.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .events import (
    AdapterEvent,
    FileEditEvent,
    SessionEndEvent,
    SessionOutcome,
    SessionStartEvent,
    SessionSummary,
    TestResultEvent,
    dedupe_paths,
)
from .logging_config import setup_logger
from .store import Store

logger = setup_logger("slagent.bootstrap", "watch.log")

SESSION_GAP_MS = 30 * 60 * 1000
GIT_LOG_TIMEOUT_SECONDS = 30
GIT_DIFF_TIMEOUT_SECONDS = 10
BOOTSTRAP_AGENT = "git"

_FIELD_SEP = "\x1f"


@dataclass(frozen=True)
class GitCommit:
    hash: str
    timestamp: int
    author: str
    message: str


@dataclass(frozen=True)
class BootstrapResult:
    sessions_created: int
    events_created: int
    sessions_skipped: int = 0


def _git(args: list[str], cwd: Path, timeout: float) -> Optional[str]:
    try:
        proc = subprocess.run(
            ["git", *args],
            cwd=str(cwd),
            text=True,
            capture_output=True,
            check=False,
            timeout=timeout,
        )
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.debug(f"git {args[0]} failed in {cwd}: {e}")
        return None
    if proc.returncode != 0:
        logger.debug(f"git {args[0]} exited {proc.returncode} in {cwd}: {proc.stderr.strip()}")
        return None
    return proc.stdout


def read_commits(project: Path) -> list[GitCommit]:
    """Non-merge commits on all refs, oldest first."""
    out = _git(
        ["log", "--all", "--no-merges", f"--format=%H{_FIELD_SEP}%at{_FIELD_SEP}%aN{_FIELD_SEP}%s"],
        project,
        GIT_LOG_TIMEOUT_SECONDS,
    )
    if not out:
        return []
    commits: list[GitCommit] = []
    for line in out.splitlines():
        parts = line.split(_FIELD_SEP, 3)
        if len(parts) != 4:
            continue
        sha, at, author, message = parts
        try:
            ts = int(at) * 1000
        except ValueError:
            continue
        commits.append(GitCommit(hash=sha, timestamp=ts, author=author, message=message))
    commits.sort(key=lambda c: c.timestamp)
    return commits


def group_commits(commits: list[GitCommit], gap_ms: int = SESSION_GAP_MS) -> list[list[GitCommit]]:
    groups: list[list[GitCommit]] = []
    current: list[GitCommit] = []
    for commit in commits:
        if current and (commit.author != current[-1].author or commit.timestamp - current[-1].timestamp >= gap_ms):
            groups.append(current)
            current = []
        current.append(commit)
    if current:
        groups.append(current)
    return groups


def commit_file_events(commit: GitCommit, session_id: str, project: Path) -> list[FileEditEvent]:
    out = _git(
        ["diff-tree", "--root", "--no-commit-id", "-r", "--numstat", commit.hash],
        project,
        GIT_DIFF_TIMEOUT_SECONDS,
    )
    events: list[FileEditEvent] = []
    for line in (out or "").splitlines():
        parts = line.split("\t", 2)
        if len(parts) != 3:
            continue
        added, removed, path = parts
        events.append(
            FileEditEvent(
                session_id=session_id,
                timestamp=commit.timestamp,
                path=path,
                # Binary files report "-"
                lines_added=int(added) if added.isdigit() else 0,
                lines_removed=int(removed) if removed.isdigit() else 0,
                tool="git",
            )
        )
    return events


def is_test_commit(message: str) -> bool:
    lower = message.lower()
    return any(word in lower for word in ("test", "spec", "jest", "pytest"))


def is_failure_commit(message: str) -> bool:
    lower = message.lower()
    return any(word in lower for word in ("fix", "revert", "broken"))


def _is_intervention(message: str) -> bool:
    lower = message.lower()
    return lower.startswith("revert") or lower.startswith("fixup!") or lower.startswith("squash!")


def determine_outcome(group: list[GitCommit]) -> SessionOutcome:
    messages = [c.message.lower() for c in group]
    if any(m.startswith("revert") for m in messages):
        return "failure"
    has_fixup = any(m.startswith("fixup!") or m.startswith("squash!") for m in messages)
    has_bug_fix = any("fix" in m and ("bug" in m or "error" in m or "crash" in m) for m in messages)
    if has_fixup or has_bug_fix:
        return "partial"
    return "success"


def bootstrap_from_git(project: str | Path, store: Optional[Store] = None) -> BootstrapResult:
    """Create one summarized session per commit group found in `project`'s history."""
    root = Path(project).expanduser().resolve()
    store = store or Store()
    commits = read_commits(root)
    if not commits:
        logger.info(f"No git history to bootstrap from in {root}")
        return BootstrapResult(sessions_created=0, events_created=0)

    sessions_created = 0
    events_created = 0
    sessions_skipped = 0
    for group in group_commits(commits):
        first, last = group[0], group[-1]
        session_id = f"git-{first.hash[:8]}"
        if store.get_session_summary(session_id) is not None:
            sessions_skipped += 1
            logger.debug(f"Skipping {session_id}: already bootstrapped")
            continue
        events: list[AdapterEvent] = [
            SessionStartEvent(
                session_id=session_id, agent=BOOTSTRAP_AGENT, timestamp=first.timestamp, prompt=first.message
            )
        ]
        files: list[str] = []
        for commit in group:
            file_events = commit_file_events(commit, session_id, root)
            events.extend(file_events)
            files.extend(e.path for e in file_events)
            if is_test_commit(commit.message):
                failed = is_failure_commit(commit.message)
                events.append(
                    TestResultEvent(
                        session_id=session_id,
                        timestamp=commit.timestamp,
                        framework="git-inferred",
                        passed=0 if failed else 1,
                        failed=1 if failed else 0,
                        skipped=0,
                        raw=commit.message,
                    )
                )
        events.append(SessionEndEvent(session_id=session_id, timestamp=last.timestamp))

        events_created += store.append_events(events)
        store.save_session_summary(
            SessionSummary(
                id=session_id,
                agent=BOOTSTRAP_AGENT,
                prompt=first.message,
                project_cwd=str(root),
                started_at=first.timestamp,
                ended_at=last.timestamp,
                outcome=determine_outcome(group),
                files_changed=dedupe_paths(files),
                interventions=sum(1 for c in group if _is_intervention(c.message)),
                analyzed=False,
            )
        )
        sessions_created += 1

    logger.info(f"Bootstrapped {sessions_created} sessions ({events_created} events) from {root}")
    return BootstrapResult(
        sessions_created=sessions_created,
        events_created=events_created,
        sessions_skipped=sessions_skipped,
    )

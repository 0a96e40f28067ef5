"""
Codex Adapter

Handles session discovery and decoding for Codex CLI. Codex stores sessions in a
date hierarchy (~/.codex/sessions/YYYY/MM/DD/rollout-*.jsonl); each file names its
owning project in an embedded `session_meta` record.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Iterator, Optional

from ..events import (
    AdapterEvent,
    CommandRunEvent,
    FileEditEvent,
    SessionEndEvent,
    SessionStartEvent,
    UserInterventionEvent,
)
from ..logging_config import setup_logger
from .base import SessionAdapter, parse_timestamp, project_key
from .runner_output import detect_test_result

logger = setup_logger("slagent.adapters.codex", "watch.log")

COMMAND_FUNCTIONS = {"exec_command", "shell", "local_shell", "container.exec"}
SESSION_META_SCAN_LINES = 20

_PATCH_FILE_RE = re.compile(r"^\*\*\* (Add|Update|Delete) File:\s*(.+?)\s*$")
_EXIT_CODE_RE = re.compile(r"exit code:?\s*(\d+)", re.IGNORECASE)


def parse_patch_sections(patch: str) -> list[tuple[str, int, int]]:
    """Split an apply_patch body into (path, added, removed) per file section."""
    sections: list[list[Any]] = []
    current: Optional[list[Any]] = None
    for line in patch.splitlines():
        m = _PATCH_FILE_RE.match(line)
        if m:
            current = [m.group(2), 0, 0]
            sections.append(current)
            continue
        if line.startswith("*** ") or current is None:
            continue
        if line.startswith("+"):
            current[1] += 1
        elif line.startswith("-"):
            current[2] += 1
    return [(str(s[0]), int(s[1]), int(s[2])) for s in sections]


def _command_from_args(args: dict) -> str:
    cmd = args.get("cmd") or args.get("command") or ""
    if isinstance(cmd, list):
        parts = [str(p) for p in cmd]
        # ["bash", "-lc", "<script>"] -> "<script>"
        if len(parts) >= 3 and parts[1] in ("-lc", "-c"):
            return parts[2]
        return " ".join(parts)
    return str(cmd)


def _load_json_maybe(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


class CodexAdapter(SessionAdapter):
    """Adapter for Codex CLI sessions."""

    name = "codex"
    binary_name = "codex"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # session file -> project cwd from its session_meta record
        self._cwd_cache: dict[str, str] = {}

    @property
    def sessions_dir(self) -> Path:
        return self.home / ".codex" / "sessions"

    def is_session_valid(self, session_file: Path) -> bool:
        """Check if this looks like a Codex session file."""
        return session_file.name.startswith("rollout-") and session_file.name.endswith(".jsonl")

    def walk_session_files(self) -> list[Path]:
        """All session files under the YYYY/MM/DD hierarchy, in date order."""
        root = self.sessions_dir
        files: list[Path] = []
        if not root.is_dir():
            return files

        def subdirs(parent: Path, width: int) -> list[Path]:
            try:
                return sorted(
                    p for p in parent.iterdir()
                    if p.is_dir() and p.name.isdigit() and len(p.name) == width
                )
            except OSError:
                return []

        for year in subdirs(root, 4):
            for month in subdirs(year, 2):
                for day in subdirs(month, 2):
                    try:
                        files.extend(sorted(p for p in day.glob("*.jsonl") if self.is_session_valid(p)))
                    except OSError:
                        continue
        return files

    def extract_project_path(self, session_file: Path) -> Optional[str]:
        """Extract project path from Codex session file metadata."""
        key = str(session_file)
        cached = self._cwd_cache.get(key)
        if cached is not None:
            return cached
        try:
            with open(session_file, "r", encoding="utf-8", errors="replace") as f:
                for i, line in enumerate(f):
                    if i >= SESSION_META_SCAN_LINES:
                        break
                    try:
                        data = json.loads(line)
                    except ValueError:
                        continue
                    if isinstance(data, dict) and data.get("type") == "session_meta":
                        cwd = (data.get("payload") or {}).get("cwd")
                        if cwd:
                            # Only positive results are cached; a fresh file may not have its meta yet.
                            self._cwd_cache[key] = project_key(cwd)
                            return self._cwd_cache[key]
        except OSError:
            pass
        return None

    def iter_log_units(self) -> Iterator[tuple[str, Path]]:
        for session_file in self.walk_session_files():
            project = self.extract_project_path(session_file)
            if project:
                yield project, session_file

    def project_log_units(self, project: str) -> list[Path]:
        key = project_key(project)
        return [unit for p, unit in self.iter_log_units() if p == key]

    # ------------------------------------------------------------------
    # Line decoding
    # ------------------------------------------------------------------

    def parse_line(self, line: str, session_id: str) -> list[AdapterEvent]:
        msg = json.loads(line)
        if not isinstance(msg, dict):
            return []
        payload = msg.get("payload")
        if not isinstance(payload, dict):
            return []

        ts = parse_timestamp(msg.get("timestamp"))
        msg_type = msg.get("type")
        ptype = payload.get("type")

        if msg_type == "event_msg":
            if ptype == "task_started":
                prompt = payload.get("text") or payload.get("message") or None
                return [SessionStartEvent(session_id=session_id, agent=self.name, timestamp=ts, prompt=prompt)]
            if ptype == "task_complete":
                return [SessionEndEvent(session_id=session_id, timestamp=ts)]
            if ptype == "turn_aborted":
                return [
                    UserInterventionEvent(
                        session_id=session_id,
                        timestamp=ts,
                        signal="abort",
                        detail=str(payload.get("reason") or "") or None,
                    )
                ]
            return []

        if msg_type != "response_item":
            return []

        if ptype == "function_call":
            name = payload.get("name")
            args = _load_json_maybe(payload.get("arguments"))
            if not isinstance(args, dict):
                args = {}
            if name in COMMAND_FUNCTIONS:
                # Exit status arrives later with the function output.
                return [
                    CommandRunEvent(
                        session_id=session_id,
                        timestamp=ts,
                        command=_command_from_args(args),
                        exit_code=0,
                    )
                ]
            if name == "apply_patch":
                return self._patch_events(str(args.get("input") or ""), session_id, ts)
            return []

        if ptype == "function_call_output":
            return self._output_events(payload.get("output"), session_id, ts)

        if ptype == "custom_tool_call" and payload.get("name") == "apply_patch":
            patch = payload.get("input")
            return self._patch_events(patch if isinstance(patch, str) else "", session_id, ts)

        return []

    def _patch_events(self, patch: str, session_id: str, ts: int) -> list[AdapterEvent]:
        sections = parse_patch_sections(patch)
        if not sections:
            added = sum(1 for l in patch.splitlines() if l.startswith("+"))
            removed = sum(1 for l in patch.splitlines() if l.startswith("-"))
            sections = [("unknown", added, removed)]
        return [
            FileEditEvent(
                session_id=session_id,
                timestamp=ts,
                path=path,
                lines_added=added,
                lines_removed=removed,
                tool="apply_patch",
            )
            for path, added, removed in sections
        ]

    def _output_events(self, raw_output: Any, session_id: str, ts: int) -> list[AdapterEvent]:
        events: list[AdapterEvent] = []
        exit_code: Optional[int] = None
        output = _load_json_maybe(raw_output)

        if isinstance(output, dict):
            meta = output.get("metadata") or {}
            if isinstance(meta, dict) and isinstance(meta.get("exit_code"), int):
                exit_code = meta["exit_code"]
            output = output.get("output")
        text = output if isinstance(output, str) else ""

        if exit_code is None:
            m = _EXIT_CODE_RE.search(text)
            if m:
                exit_code = int(m.group(1))

        if exit_code:
            events.append(
                CommandRunEvent(
                    session_id=session_id,
                    timestamp=ts,
                    command="(codex exec)",
                    exit_code=exit_code,
                    stdout=text[:500],
                )
            )

        summary = detect_test_result(text)
        if summary is not None:
            events.append(summary.to_event(session_id, ts))
        return events

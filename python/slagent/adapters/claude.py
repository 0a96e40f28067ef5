"""
Claude Code Adapter

Claude Code keeps one directory per project under ~/.claude/projects/, named after
the project's absolute path with every "/" replaced by "-":

    /Users/dev/my-project  ->  -Users-dev-my-project

Each directory holds one <sessionId>.jsonl per session.
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from ..events import AdapterEvent, CommandRunEvent, FileEditEvent
from ..logging_config import setup_logger
from .base import SessionAdapter, count_lines, parse_timestamp, project_key
from .runner_output import detect_test_result

logger = setup_logger("slagent.adapters.claude", "watch.log")

WRITE_TOOLS = {"Write", "write_to_file", "create_file"}
EDIT_TOOLS = {"Edit", "edit_file", "str_replace", "str_replace_based_edit_tool"}
COMMAND_TOOLS = {"Bash", "execute_command"}

_EXIT_CODE_RE = re.compile(r"exit code:?\s*(\d+)", re.IGNORECASE)
_MAX_PENDING_COMMANDS = 1000


def decode_project_dir_name(
    encoded: str,
    *,
    filler: str = "-",
    is_dir: Callable[[str], bool] = os.path.isdir,
) -> str:
    """
    Recover a project path from Claude's flattened directory name.

    The encoding is lossy when a real path segment contains the filler character
    (`my-project`). For the remaining tokens, the longest filler-joined run that
    names an existing directory wins; on a miss the run is shortened by one token,
    and a lone token is taken as-is. Only read-only existence checks are made.

    Example:
        -Users-dev-my-project -> /Users/dev/my-project   (if that directory exists)
    """
    if not encoded.startswith(filler):
        return encoded.replace(filler, "/")

    tokens = encoded[len(filler):].split(filler)
    path = ""
    i = 0
    while i < len(tokens):
        j = len(tokens)
        while j > i + 1:
            candidate = path + "/" + filler.join(tokens[i:j])
            if is_dir(candidate):
                break
            j -= 1
        path = path + "/" + filler.join(tokens[i:j])
        i = j
    return path or "/"


def encode_project_path(project: str) -> str:
    return project.replace("/", "-")


def _diff_counts(hunks: Any) -> Optional[tuple[int, int]]:
    """(+, -) line counts from a structured patch (list of hunks with `lines`)."""
    if not isinstance(hunks, list) or not hunks:
        return None
    added = removed = 0
    for hunk in hunks:
        if not isinstance(hunk, dict):
            continue
        for line in hunk.get("lines") or []:
            if not isinstance(line, str):
                continue
            if line.startswith("+"):
                added += 1
            elif line.startswith("-"):
                removed += 1
    return added, removed


def _tool_result_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, dict) and item.get("type") == "text":
                parts.append(str(item.get("text", "")))
            elif isinstance(item, str):
                parts.append(item)
        return "\n".join(parts)
    return json.dumps(content)


class ClaudeAdapter(SessionAdapter):
    """Adapter for Claude Code sessions."""

    name = "claude"
    binary_name = "claude"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # encoded dir name -> decoded project path
        self._decoded_dirs: dict[str, str] = {}
        # tool_use_id -> command, so failing Bash results can name their command
        self._pending_commands: dict[str, str] = {}

    @property
    def projects_dir(self) -> Path:
        return self.home / ".claude" / "projects"

    def find_project_dir(self, project: str) -> Optional[Path]:
        if not self.projects_dir.is_dir():
            return None
        key = project_key(project)
        candidate = self.projects_dir / encode_project_path(key)
        if candidate.is_dir():
            return candidate
        # Newer Claude builds also flatten dots and underscores.
        alt = self.projects_dir / re.sub(r"[^A-Za-z0-9-]", "-", key)
        if alt.is_dir():
            return alt
        return None

    def decode_dir(self, dir_name: str) -> str:
        cached = self._decoded_dirs.get(dir_name)
        if cached is None:
            cached = decode_project_dir_name(dir_name)
            self._decoded_dirs[dir_name] = cached
        return cached

    def is_session_candidate(self, log_unit: Path) -> bool:
        # agent-*.jsonl are sidechain transcripts of the parent session
        return not log_unit.name.startswith("agent-")

    def iter_log_units(self) -> Iterator[tuple[str, Path]]:
        projects_dir = self.projects_dir
        if not projects_dir.is_dir():
            return
        for project_dir in sorted(projects_dir.iterdir()):
            try:
                if not project_dir.is_dir():
                    continue
                units = sorted(project_dir.glob("*.jsonl"))
            except OSError:
                continue
            project = self.decode_dir(project_dir.name)
            for unit in units:
                yield project, unit

    def project_log_units(self, project: str) -> list[Path]:
        project_dir = self.find_project_dir(project)
        if project_dir is None:
            return []
        try:
            return sorted(project_dir.glob("*.jsonl"))
        except OSError:
            return []

    # ------------------------------------------------------------------
    # Line decoding
    # ------------------------------------------------------------------

    def parse_line(self, line: str, session_id: str) -> list[AdapterEvent]:
        msg = json.loads(line)
        if not isinstance(msg, dict):
            return []

        events: list[AdapterEvent] = []
        ts = parse_timestamp(msg.get("timestamp"))
        msg_type = msg.get("type")
        message = msg.get("message")
        content = message.get("content") if isinstance(message, dict) else None

        if msg_type == "assistant" and content:
            blocks = content if isinstance(content, list) else [content]
            for block in blocks:
                if isinstance(block, dict) and block.get("type") == "tool_use":
                    events.extend(self._tool_use_events(block, session_id, ts))

        if msg_type in ("user", "human", "tool_result") and isinstance(content, list):
            for block in content:
                if not isinstance(block, dict) or block.get("type") != "tool_result":
                    continue
                events.extend(self._tool_result_events(block, session_id, ts))

        return events

    def _tool_use_events(self, block: dict, session_id: str, ts: int) -> list[AdapterEvent]:
        tool = str(block.get("name") or "")
        inp = block.get("input") or {}
        if not isinstance(inp, dict):
            inp = {}
        path = str(inp.get("file_path") or inp.get("path") or inp.get("notebook_path") or "unknown")

        if tool in WRITE_TOOLS:
            return [
                FileEditEvent(
                    session_id=session_id,
                    timestamp=ts,
                    path=path,
                    lines_added=count_lines(inp.get("content")),
                    lines_removed=0,
                    tool=tool,
                )
            ]

        if tool in EDIT_TOOLS:
            counts = _diff_counts(inp.get("structuredPatch"))
            if counts is None:
                counts = (
                    count_lines(inp.get("new_string") or inp.get("new_str")),
                    count_lines(inp.get("old_string") or inp.get("old_str")),
                )
            return [
                FileEditEvent(
                    session_id=session_id,
                    timestamp=ts,
                    path=path,
                    lines_added=counts[0],
                    lines_removed=counts[1],
                    tool=tool,
                )
            ]

        if tool == "MultiEdit":
            added = removed = 0
            for edit in inp.get("edits") or []:
                if isinstance(edit, dict):
                    added += count_lines(edit.get("new_string"))
                    removed += count_lines(edit.get("old_string"))
            return [
                FileEditEvent(
                    session_id=session_id,
                    timestamp=ts,
                    path=path,
                    lines_added=added,
                    lines_removed=removed,
                    tool=tool,
                )
            ]

        if tool == "NotebookEdit":
            return [
                FileEditEvent(
                    session_id=session_id,
                    timestamp=ts,
                    path=path,
                    lines_added=count_lines(inp.get("new_source")),
                    lines_removed=0,
                    tool=tool,
                )
            ]

        if tool in COMMAND_TOOLS:
            command = str(inp.get("command") or "")
            tool_use_id = block.get("id")
            if tool_use_id:
                if len(self._pending_commands) >= _MAX_PENDING_COMMANDS:
                    self._pending_commands.pop(next(iter(self._pending_commands)))
                self._pending_commands[str(tool_use_id)] = command
            # Exit status arrives later with the tool result.
            return [CommandRunEvent(session_id=session_id, timestamp=ts, command=command, exit_code=0)]

        return []

    def _tool_result_events(self, block: dict, session_id: str, ts: int) -> list[AdapterEvent]:
        events: list[AdapterEvent] = []
        tool_use_id = str(block.get("tool_use_id") or "")
        command = self._pending_commands.pop(tool_use_id, None)
        raw = block.get("content")
        if not raw:
            return events
        text = _tool_result_text(raw)

        summary = detect_test_result(text)
        if summary is not None:
            events.append(summary.to_event(session_id, ts))

        if block.get("is_error") and command is not None:
            m = _EXIT_CODE_RE.search(text)
            events.append(
                CommandRunEvent(
                    session_id=session_id,
                    timestamp=ts,
                    command=command,
                    exit_code=int(m.group(1)) if m else 1,
                    stderr=text[:500],
                )
            )
        return events

"""Canonical, agent-agnostic events and session summaries.

Every adapter decodes its native log format into the event types below. They are
serialized one per line into the per-session event log and are the contract handed
to downstream analysis, so the on-disk keys stay camelCase.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Iterable, Literal, Optional, Union

SessionOutcome = Literal["success", "failure", "partial", "unknown"]
InterventionSignal = Literal["manual_edit", "revert", "fixup", "long_pause", "abort"]

INTERVENTION_SIGNALS = ("manual_edit", "revert", "fixup", "long_pause", "abort")


def now_ms() -> int:
    """Wall clock in epoch milliseconds."""
    return int(time.time() * 1000)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


class _EventMixin:
    type: ClassVar[str]

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type}
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if value is None:
                continue
            out[_camel(f.name)] = value
        return out


@dataclass(frozen=True)
class SessionStartEvent(_EventMixin):
    type: ClassVar[str] = "session_start"

    session_id: str
    agent: str
    timestamp: int
    prompt: Optional[str] = None


@dataclass(frozen=True)
class SessionEndEvent(_EventMixin):
    type: ClassVar[str] = "session_end"

    session_id: str
    timestamp: int
    exit_code: Optional[int] = None


@dataclass(frozen=True)
class FileEditEvent(_EventMixin):
    type: ClassVar[str] = "file_edit"

    session_id: str
    timestamp: int
    path: str
    lines_added: int
    lines_removed: int
    tool: Optional[str] = None


@dataclass(frozen=True)
class CommandRunEvent(_EventMixin):
    type: ClassVar[str] = "command_run"

    session_id: str
    timestamp: int
    command: str
    exit_code: int
    stdout: Optional[str] = None
    stderr: Optional[str] = None


@dataclass(frozen=True)
class TestResultEvent(_EventMixin):
    type: ClassVar[str] = "test_result"
    __test__ = False  # not a pytest test class

    session_id: str
    timestamp: int
    framework: str
    passed: int
    failed: int
    skipped: int
    raw: Optional[str] = None


@dataclass(frozen=True)
class UserInterventionEvent(_EventMixin):
    type: ClassVar[str] = "user_intervention"

    session_id: str
    timestamp: int
    signal: InterventionSignal
    detail: Optional[str] = None


AdapterEvent = Union[
    SessionStartEvent,
    SessionEndEvent,
    FileEditEvent,
    CommandRunEvent,
    TestResultEvent,
    UserInterventionEvent,
]

EVENT_TYPES: dict[str, type] = {
    cls.type: cls
    for cls in (
        SessionStartEvent,
        SessionEndEvent,
        FileEditEvent,
        CommandRunEvent,
        TestResultEvent,
        UserInterventionEvent,
    )
}


def event_from_dict(data: dict[str, Any]) -> AdapterEvent:
    """Rebuild an event from its serialized form.

    Raises:
        ValueError: unknown event type or missing required fields
    """
    if not isinstance(data, dict):
        raise ValueError(f"Event must be an object, got {type(data).__name__}")
    cls = EVENT_TYPES.get(str(data.get("type", "")))
    if cls is None:
        raise ValueError(f"Unknown event type: {data.get('type')!r}")

    known = {f.name for f in fields(cls)}
    kwargs = {}
    for key, value in data.items():
        if key == "type":
            continue
        name = _snake(key)
        if name in known:
            kwargs[name] = value
    try:
        return cls(**kwargs)
    except TypeError as e:
        raise ValueError(f"Invalid {cls.type} event: {e}") from e


@dataclass(frozen=True)
class ProjectEvent:
    """An event tagged with the project directory whose log produced it."""

    project: str
    event: AdapterEvent


@dataclass
class SessionSummary:
    id: str
    agent: str
    prompt: str
    started_at: int
    ended_at: int
    outcome: SessionOutcome = "unknown"
    files_changed: list[str] = field(default_factory=list)
    interventions: int = 0
    analyzed: bool = False
    project_cwd: Optional[str] = None
    reviewed_event_count: Optional[int] = None

    def __post_init__(self) -> None:
        if self.ended_at < self.started_at:
            self.ended_at = self.started_at

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            out[_camel(f.name)] = list(value) if isinstance(value, list) else value
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionSummary":
        known = {f.name for f in fields(cls)}
        kwargs = {_snake(k): v for k, v in data.items() if _snake(k) in known}
        return cls(**kwargs)


def derive_outcome(events: Iterable[AdapterEvent]) -> SessionOutcome:
    """Resolve a session outcome from its test_result events alone.

    A failing run together with a separate clean run is `partial` no matter the
    counts or the order in which they arrived.
    """
    has_failures = False
    has_successes = False
    for event in events:
        if not isinstance(event, TestResultEvent):
            continue
        if event.failed > 0:
            has_failures = True
        elif event.passed > 0:
            has_successes = True

    if has_failures and has_successes:
        return "partial"
    if has_failures:
        return "failure"
    if has_successes:
        return "success"
    return "unknown"


def dedupe_paths(paths: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for p in paths:
        if p in seen:
            continue
        seen.add(p)
        out.append(p)
    return out

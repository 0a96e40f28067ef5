from __future__ import annotations

import math
import os
import time
from pathlib import Path

import pytest

from slagent.events import (
    FileEditEvent,
    SessionEndEvent,
    SessionStartEvent,
    SessionSummary,
)
from slagent.store import Store


def _summary(session_id: str, **overrides) -> SessionSummary:
    fields = dict(id=session_id, agent="claude", prompt="p", started_at=1_000, ended_at=2_000)
    fields.update(overrides)
    return SessionSummary(**fields)


def _age(path: Path, seconds: float) -> None:
    past = time.time() - seconds
    os.utime(path, (past, past))


def test_events_are_read_back_in_arrival_order(store: Store) -> None:
    events = [
        SessionStartEvent(session_id="s1", agent="claude", timestamp=3),
        FileEditEvent(session_id="s1", timestamp=1, path="a.py", lines_added=1, lines_removed=0),
        SessionEndEvent(session_id="s1", timestamp=2),
    ]
    for event in events:
        store.append_event(event)

    assert store.get_session_events("s1") == events
    assert store.get_session_events("other") == []


def test_undecodable_lines_are_skipped(store: Store) -> None:
    store.append_event(SessionStartEvent(session_id="s1", agent="claude", timestamp=1))
    with open(store.events_path("s1"), "a", encoding="utf-8") as f:
        f.write("not json\n")
        f.write('{"type": "telemetry", "sessionId": "s1", "timestamp": 2}\n')
    store.append_event(SessionEndEvent(session_id="s1", timestamp=3))

    types = [e.type for e in store.get_session_events("s1")]

    assert types == ["session_start", "session_end"]


def test_append_failure_propagates(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    store = Store(blocker)

    with pytest.raises(OSError):
        store.append_event(SessionEndEvent(session_id="s1", timestamp=1))


def test_summary_round_trip_and_atomic_write(store: Store) -> None:
    summary = _summary("s1", outcome="partial", files_changed=["a.py", "b.py"], interventions=2)

    store.save_session_summary(summary)
    store.save_session_summary(summary)

    assert store.get_session_summary("s1") == summary
    assert [p.name for p in store.sessions_dir.iterdir()] == ["s1.json"]


def test_missing_or_corrupt_summary_reads_as_none(store: Store) -> None:
    assert store.get_session_summary("nope") is None

    store.ensure_dirs()
    store.summary_path("bad").write_text("{truncated", encoding="utf-8")
    assert store.get_session_summary("bad") is None


def test_recent_sessions_newest_first(store: Store) -> None:
    for i, sid in enumerate(["old", "mid", "new"]):
        store.save_session_summary(_summary(sid))
        _age(store.summary_path(sid), 300 - i * 100)

    recent = store.get_recent_sessions(limit=2)

    assert [s.id for s in recent] == ["new", "mid"]


def test_unanalyzed_and_mark_analyzed(store: Store) -> None:
    store.save_session_summary(_summary("a"))
    store.save_session_summary(_summary("b", analyzed=True))
    store.append_event(SessionStartEvent(session_id="a", agent="claude", timestamp=1))
    store.append_event(SessionEndEvent(session_id="a", timestamp=2))

    assert [s.id for s in store.get_unanalyzed_sessions()] == ["a"]

    assert store.mark_analyzed("a") is True
    marked = store.get_session_summary("a")
    assert marked is not None and marked.analyzed
    assert marked.reviewed_event_count == 2
    assert store.get_unanalyzed_sessions() == []
    assert store.mark_analyzed("missing") is False


def test_prune_deletes_only_old_files(store: Store) -> None:
    store.append_event(SessionEndEvent(session_id="old", timestamp=1))
    store.append_event(SessionEndEvent(session_id="new", timestamp=1))
    store.save_session_summary(_summary("old"))
    store.save_session_summary(_summary("new"))
    _age(store.events_path("old"), 10 * 86_400)
    _age(store.summary_path("old"), 10 * 86_400)

    result = store.prune_old_data(7)

    assert (result.events_deleted, result.sessions_deleted) == (1, 1)
    assert store.get_session_events("old") == []
    assert store.get_session_summary("new") is not None


def test_prune_zero_days_deletes_everything_and_infinity_nothing(store: Store) -> None:
    store.append_event(SessionEndEvent(session_id="s1", timestamp=1))
    store.save_session_summary(_summary("s1"))
    _age(store.events_path("s1"), 5)
    _age(store.summary_path("s1"), 5)

    kept = store.prune_old_data(math.inf)
    assert (kept.events_deleted, kept.sessions_deleted) == (0, 0)

    removed = store.prune_old_data(0)
    assert (removed.events_deleted, removed.sessions_deleted) == (1, 1)


def test_prune_on_empty_store(store: Store) -> None:
    result = store.prune_old_data(1)

    assert (result.events_deleted, result.sessions_deleted) == (0, 0)

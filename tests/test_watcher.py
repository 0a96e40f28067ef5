from __future__ import annotations

import asyncio
from pathlib import Path

from slagent.adapters import AdapterRegistry
from slagent.adapters.base import GlobalSessionInfo, SessionAdapter
from slagent.config import SlagentConfig
from slagent.events import (
    CommandRunEvent,
    FileEditEvent,
    ProjectEvent,
    SessionEndEvent,
    SessionStartEvent,
    TestResultEvent,
    UserInterventionEvent,
)
from slagent.watcher_core import LiveWatcher

PROJECT = "/work/app"


class ScriptedAdapter(SessionAdapter):
    """Adapter whose poll results and active sessions are set by the test."""

    def __init__(self, name: str = "claude"):
        super().__init__()
        self.name = name
        self.active: list[GlobalSessionInfo] = []
        self.pending: list[ProjectEvent] = []
        self.polled_since: list[float] = []
        self.fail = False

    def iter_log_units(self):
        return iter(())

    def project_log_units(self, project):
        return []

    def parse_line(self, line, session_id):
        return []

    async def poll_all(self, since):
        self.polled_since.append(since)
        if self.fail:
            raise RuntimeError("disk on fire")
        events, self.pending = self.pending, []
        return events

    async def get_all_active_sessions(self):
        return list(self.active)

    def set_active(self, *session_ids: str) -> None:
        self.active = [GlobalSessionInfo(PROJECT, sid, f"/logs/{sid}.jsonl") for sid in session_ids]


class NullEnricher:
    def __init__(self, git_signals=()):
        self.git_signals = list(git_signals)
        self.git_since: list = []

    async def check_git_signals(self, session_id, since=None):
        self.git_since.append(since)
        return list(self.git_signals)

    def detect_manual_edits(self, files, cutoff_ms, session_id=""):
        return []

    def detect_timing_signals(self, events):
        return []


class Clock:
    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now


def _watcher(store, *adapters, enricher=None, clock=None, config=None):
    registry = AdapterRegistry()
    for adapter in adapters:
        registry.register(adapter)
    enricher = enricher or NullEnricher()
    watcher = LiveWatcher(
        store,
        registry,
        config or SlagentConfig(startup_backfill_seconds=60),
        enricher_factory=lambda project: enricher,
        clock=clock or Clock(),
    )
    seen: list[tuple[str, str | None]] = []
    watcher.on(lambda e: seen.append((e.type, e.session_id)))
    return watcher, seen


def test_session_lifecycle_follows_liveness(store) -> None:
    adapter = ScriptedAdapter()
    watcher, seen = _watcher(store, adapter)

    adapter.set_active("s1")
    asyncio.run(watcher.tick())
    adapter.set_active()
    asyncio.run(watcher.tick())
    asyncio.run(watcher.tick())

    assert seen == [
        ("agent_online", None),
        ("session_start", "s1"),
        ("session_end", "s1"),
        ("agent_offline", None),
    ]
    assert [e.type for e in store.get_session_events("s1")] == ["session_start", "session_end"]
    summary = store.get_session_summary("s1")
    assert summary is not None
    assert (summary.agent, summary.project_cwd, summary.outcome) == ("claude", PROJECT, "unknown")
    assert watcher.sessions == {}


def test_new_session_id_seals_the_previous_one(store) -> None:
    adapter = ScriptedAdapter()
    watcher, seen = _watcher(store, adapter)

    adapter.set_active("s1")
    asyncio.run(watcher.tick())
    adapter.set_active("s2")
    asyncio.run(watcher.tick())

    assert seen == [
        ("agent_online", None),
        ("session_start", "s1"),
        ("session_end", "s1"),
        ("session_start", "s2"),
    ]
    assert store.get_session_summary("s1") is not None
    assert store.get_session_summary("s2") is None
    assert watcher.sessions[("claude", PROJECT)].session_id == "s2"


def test_events_for_untracked_project_open_a_session(store) -> None:
    adapter = ScriptedAdapter()
    watcher, seen = _watcher(store, adapter)

    adapter.pending = [
        ProjectEvent(PROJECT, FileEditEvent(session_id="x", timestamp=1_000, path="a.py", lines_added=1, lines_removed=0))
    ]
    asyncio.run(watcher.tick())

    session = watcher.sessions[("claude", PROJECT)]
    assert (session.session_id, session.start_time, session.event_count) == ("x", 1_000, 1)
    assert seen == [("agent_online", None), ("session_start", "x")]

    asyncio.run(watcher.tick())

    assert [e.type for e in store.get_session_events("x")] == ["session_start", "file_edit", "session_end"]
    assert store.get_session_summary("x").files_changed == ["a.py"]


def test_events_are_rekeyed_to_the_tracked_session(store) -> None:
    adapter = ScriptedAdapter()
    watcher, _ = _watcher(store, adapter)

    adapter.set_active("s1")
    adapter.pending = [
        ProjectEvent(
            PROJECT, FileEditEvent(session_id="other", timestamp=5, path="b.py", lines_added=2, lines_removed=1)
        )
    ]
    asyncio.run(watcher.tick())

    events = store.get_session_events("s1")
    assert [(e.type, e.session_id) for e in events] == [("session_start", "s1"), ("file_edit", "s1")]
    assert store.get_session_events("other") == []


def test_failing_adapter_does_not_block_others(store) -> None:
    broken = ScriptedAdapter("codex")
    broken.fail = True
    healthy = ScriptedAdapter("claude")
    healthy.set_active("s1")
    clock = Clock()
    watcher, _ = _watcher(store, broken, healthy, clock=clock)
    initial = clock.now - 60_000

    clock.now += 5_000
    first_tick = clock.now
    asyncio.run(watcher.tick())
    clock.now += 5_000
    asyncio.run(watcher.tick())

    assert ("claude", PROJECT) in watcher.sessions
    assert broken.polled_since == [initial, initial]
    assert healthy.polled_since == [initial, first_tick]


def test_seal_unknown_session_is_a_noop(store) -> None:
    watcher, seen = _watcher(store, ScriptedAdapter())

    assert asyncio.run(watcher.seal_session(("claude", "/nowhere"))) is None
    assert seen == []


def test_seal_derives_outcome_and_counts_interventions(store) -> None:
    adapter = ScriptedAdapter()
    revert = UserInterventionEvent(session_id="s1", timestamp=9, signal="revert", detail='Revert "x"')
    enricher = NullEnricher(git_signals=[revert])
    clock = Clock()
    watcher, _ = _watcher(store, adapter, enricher=enricher, clock=clock)

    adapter.set_active("s1")
    adapter.pending = [
        ProjectEvent(PROJECT, SessionStartEvent(session_id="s1", agent="claude", timestamp=1, prompt="fix it")),
        ProjectEvent(PROJECT, FileEditEvent(session_id="s1", timestamp=2, path="a.py", lines_added=1, lines_removed=0)),
        ProjectEvent(PROJECT, FileEditEvent(session_id="s1", timestamp=3, path="a.py", lines_added=1, lines_removed=0)),
        ProjectEvent(
            PROJECT, TestResultEvent(session_id="s1", timestamp=4, framework="pytest", passed=3, failed=1, skipped=0)
        ),
        ProjectEvent(
            PROJECT, TestResultEvent(session_id="s1", timestamp=5, framework="pytest", passed=4, failed=0, skipped=0)
        ),
    ]
    asyncio.run(watcher.tick())
    started = watcher.sessions[("claude", PROJECT)].start_time

    summary = asyncio.run(watcher.seal_session(("claude", PROJECT)))

    assert summary is not None
    assert summary.prompt == "fix it"
    assert summary.outcome == "partial"
    assert summary.files_changed == ["a.py"]
    assert summary.interventions == 1
    assert enricher.git_since == [started]
    assert store.get_session_summary("s1").outcome == "partial"
    assert [e.type for e in store.get_session_events("s1")][-2:] == ["session_end", "user_intervention"]


def test_listener_errors_are_contained(store) -> None:
    adapter = ScriptedAdapter()
    watcher, seen = _watcher(store, adapter)

    def explode(event):
        raise RuntimeError("listener bug")

    watcher._listeners.insert(0, explode)
    adapter.set_active("s1")
    asyncio.run(watcher.tick())

    assert seen == [("agent_online", None), ("session_start", "s1")]


def test_status_reports_tracked_sessions(store) -> None:
    adapter = ScriptedAdapter()
    watcher, _ = _watcher(store, adapter)
    adapter.set_active("s1")
    adapter.pending = [
        ProjectEvent(PROJECT, FileEditEvent(session_id="s1", timestamp=2, path="a.py", lines_added=1, lines_removed=0))
    ]

    asyncio.run(watcher.tick())
    status = watcher.get_status()

    assert status.running is False
    assert status.total_events == 1
    assert [(s.session_id, s.live) for s in status.sessions] == [("s1", True)]


def test_start_and_stop(store) -> None:
    adapter = ScriptedAdapter()
    watcher, _ = _watcher(
        store, adapter, config=SlagentConfig(poll_interval_seconds=0.1, startup_backfill_seconds=60)
    )

    async def run() -> None:
        task = asyncio.create_task(watcher.start())
        await asyncio.sleep(0.25)
        assert watcher.running
        watcher.stop()
        await asyncio.wait_for(task, timeout=2)

    asyncio.run(run())

    assert watcher.running is False
    assert len(adapter.polled_since) >= 2


def test_store_layout(store, tmp_path: Path) -> None:
    adapter = ScriptedAdapter()
    watcher, _ = _watcher(store, adapter)
    adapter.set_active("s1")
    asyncio.run(watcher.tick())
    asyncio.run(watcher.seal_all())

    assert store.events_path("s1").parent.parent == tmp_path / "data"
    assert store.summary_path("s1").exists()


def test_reopened_session_id_gets_its_own_end_and_summary(store) -> None:
    adapter = ScriptedAdapter()
    watcher, _ = _watcher(store, adapter)
    adapter.set_active("s1")
    adapter.pending = [
        ProjectEvent(
            PROJECT, TestResultEvent(session_id="s1", timestamp=4, framework="pytest", passed=0, failed=2, skipped=0)
        )
    ]
    asyncio.run(watcher.tick())
    adapter.set_active()
    asyncio.run(watcher.tick())
    assert store.get_session_summary("s1").outcome == "failure"

    adapter.set_active("s1")
    asyncio.run(watcher.tick())
    adapter.set_active()
    asyncio.run(watcher.tick())

    assert [e.type for e in store.get_session_events("s1")] == [
        "session_start",
        "test_result",
        "session_end",
        "session_start",
        "session_end",
    ]
    assert store.get_session_summary("s1").outcome == "unknown"


def test_routed_end_followed_by_activity_still_closes_the_session(store) -> None:
    adapter = ScriptedAdapter("codex")
    watcher, _ = _watcher(store, adapter)
    adapter.set_active("s1")
    adapter.pending = [
        ProjectEvent(PROJECT, SessionEndEvent(session_id="s1", timestamp=10)),
        ProjectEvent(PROJECT, CommandRunEvent(session_id="s1", timestamp=20, command="make", exit_code=0)),
    ]
    asyncio.run(watcher.tick())
    adapter.set_active()
    asyncio.run(watcher.tick())

    types = [e.type for e in store.get_session_events("s1")]
    assert types == ["session_start", "session_end", "command_run", "session_end"]


def test_routed_end_as_last_event_is_not_duplicated(store) -> None:
    adapter = ScriptedAdapter("codex")
    watcher, _ = _watcher(store, adapter)
    adapter.set_active("s1")
    adapter.pending = [
        ProjectEvent(PROJECT, CommandRunEvent(session_id="s1", timestamp=20, command="make", exit_code=0)),
        ProjectEvent(PROJECT, SessionEndEvent(session_id="s1", timestamp=30)),
    ]
    asyncio.run(watcher.tick())
    adapter.set_active()
    asyncio.run(watcher.tick())

    types = [e.type for e in store.get_session_events("s1")]
    assert types == ["session_start", "command_run", "session_end"]

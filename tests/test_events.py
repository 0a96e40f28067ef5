from __future__ import annotations

import pytest

from slagent.events import (
    CommandRunEvent,
    FileEditEvent,
    SessionStartEvent,
    SessionSummary,
    TestResultEvent,
    UserInterventionEvent,
    dedupe_paths,
    derive_outcome,
    event_from_dict,
)


def _test_result(passed: int, failed: int) -> TestResultEvent:
    return TestResultEvent(session_id="s", timestamp=1, framework="pytest", passed=passed, failed=failed, skipped=0)


def test_event_to_dict_uses_camel_case_and_drops_none() -> None:
    event = FileEditEvent(session_id="s1", timestamp=10, path="a.py", lines_added=2, lines_removed=0)

    assert event.to_dict() == {
        "type": "file_edit",
        "sessionId": "s1",
        "timestamp": 10,
        "path": "a.py",
        "linesAdded": 2,
        "linesRemoved": 0,
    }


def test_event_from_dict_rebuilds_event() -> None:
    event = CommandRunEvent(session_id="s1", timestamp=5, command="npm test", exit_code=1, stderr="boom")

    assert event_from_dict(event.to_dict()) == event


def test_event_from_dict_rejects_unknown_type() -> None:
    with pytest.raises(ValueError):
        event_from_dict({"type": "telemetry", "sessionId": "s1", "timestamp": 1})


def test_event_from_dict_rejects_missing_fields() -> None:
    with pytest.raises(ValueError):
        event_from_dict({"type": "file_edit", "sessionId": "s1"})


def test_derive_outcome_partial_regardless_of_order() -> None:
    assert derive_outcome([_test_result(3, 1), _test_result(4, 0)]) == "partial"
    assert derive_outcome([_test_result(4, 0), _test_result(0, 2)]) == "partial"


def test_derive_outcome_single_categories() -> None:
    assert derive_outcome([_test_result(0, 2)]) == "failure"
    assert derive_outcome([_test_result(5, 0)]) == "success"
    assert derive_outcome([_test_result(0, 0)]) == "unknown"
    assert derive_outcome([SessionStartEvent(session_id="s", agent="claude", timestamp=1)]) == "unknown"


def test_derive_outcome_ignores_interventions() -> None:
    events = [
        _test_result(5, 0),
        UserInterventionEvent(session_id="s", timestamp=2, signal="revert", detail="Revert x"),
    ]

    assert derive_outcome(events) == "success"


def test_summary_clamps_end_before_start() -> None:
    summary = SessionSummary(id="s", agent="claude", prompt="", started_at=100, ended_at=50)

    assert summary.ended_at == 100


def test_summary_dict_keys_and_unknown_keys() -> None:
    summary = SessionSummary(
        id="s",
        agent="codex",
        prompt="do it",
        started_at=1,
        ended_at=2,
        outcome="success",
        files_changed=["a.py"],
        project_cwd="/p",
    )
    data = summary.to_dict()

    assert data["startedAt"] == 1
    assert data["filesChanged"] == ["a.py"]
    assert data["projectCwd"] == "/p"
    assert "reviewedEventCount" not in data

    data["somethingNew"] = True
    assert SessionSummary.from_dict(data) == summary


def test_dedupe_paths_keeps_first_seen_order() -> None:
    assert dedupe_paths(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]

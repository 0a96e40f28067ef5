from __future__ import annotations

import asyncio

import pytest

from slagent.adapters import AdapterRegistry, ClaudeAdapter, CodexAdapter, create_default_registry
from slagent.adapters.base import SessionAdapter
from slagent.config import SlagentConfig


class StaticAdapter(SessionAdapter):
    def __init__(self, name: str, active: bool = False, broken: bool = False):
        super().__init__()
        self.name = name
        self.active = active
        self.broken = broken

    def iter_log_units(self):
        return iter(())

    def project_log_units(self, project):
        return []

    def parse_line(self, line, session_id):
        return []

    async def detect_activity(self, project):
        if self.broken:
            raise RuntimeError("probe exploded")
        return self.active


def test_default_registry_order_and_lookup() -> None:
    registry = create_default_registry()

    assert registry.names() == ["claude", "codex"]
    assert isinstance(registry.get("claude"), ClaudeAdapter)
    assert isinstance(registry.get_adapter("codex"), CodexAdapter)
    assert registry.get("cursor") is None


def test_default_registry_honors_config_agents() -> None:
    only_codex = create_default_registry(SlagentConfig(agents=["codex"]))
    reordered = create_default_registry(SlagentConfig(agents=["codex", "claude", "cursor"]))

    assert only_codex.names() == ["codex"]
    assert reordered.names() == ["claude", "codex"]


def test_default_registry_passes_liveness_settings() -> None:
    registry = create_default_registry(SlagentConfig(liveness_window_seconds=42, probe_timeout_seconds=1))

    adapter = registry.get("claude")
    assert adapter is not None
    assert adapter.liveness_window_seconds == 42
    assert adapter.probe_timeout_seconds == 1


def test_register_requires_a_name() -> None:
    with pytest.raises(ValueError):
        AdapterRegistry().register(StaticAdapter(""))


def test_detect_active_isolates_failures() -> None:
    registry = AdapterRegistry()
    registry.register(StaticAdapter("broken", broken=True))
    registry.register(StaticAdapter("idle"))
    registry.register(StaticAdapter("busy", active=True))

    active = asyncio.run(registry.detect_active("/some/project"))

    assert [a.name for a in active] == ["busy"]
    assert len(registry) == 3

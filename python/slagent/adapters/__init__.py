"""Session adapters for the agents slagent can observe.

Each adapter knows where one agent keeps its session logs and how to decode them
into canonical events (Claude Code, Codex CLI).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterator, Optional

from ..logging_config import setup_logger
from .base import GlobalSessionInfo, SessionAdapter
from .claude import ClaudeAdapter
from .codex import CodexAdapter

if TYPE_CHECKING:
    from ..config import SlagentConfig

logger = setup_logger("slagent.adapters.registry", "watch.log")

__all__ = [
    "AdapterRegistry",
    "ClaudeAdapter",
    "CodexAdapter",
    "GlobalSessionInfo",
    "SessionAdapter",
    "create_default_registry",
]

ADAPTER_CLASSES: dict[str, type[SessionAdapter]] = {
    ClaudeAdapter.name: ClaudeAdapter,
    CodexAdapter.name: CodexAdapter,
}


class AdapterRegistry:
    """Ordered collection of adapters, keyed by adapter name."""

    def __init__(self) -> None:
        self._adapters: dict[str, SessionAdapter] = {}

    def register(self, adapter: SessionAdapter) -> None:
        if not adapter.name:
            raise ValueError(f"{type(adapter).__name__} has no name")
        if adapter.name in self._adapters:
            logger.debug(f"Replacing registered adapter: {adapter.name}")
        self._adapters[adapter.name] = adapter

    def get(self, name: str) -> Optional[SessionAdapter]:
        return self._adapters.get(name)

    get_adapter = get

    def all(self) -> list[SessionAdapter]:
        return list(self._adapters.values())

    def names(self) -> list[str]:
        return list(self._adapters)

    def __iter__(self) -> Iterator[SessionAdapter]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self._adapters)

    async def detect_active(self, project: str) -> list[SessionAdapter]:
        """Adapters currently showing activity in `project`.

        Each adapter is checked on its own; one failing never hides another's result.
        """
        active: list[SessionAdapter] = []
        for adapter in self.all():
            try:
                if await adapter.detect_activity(project):
                    active.append(adapter)
            except Exception as e:
                logger.warning(f"[{adapter.name}] activity check failed for {project}: {e}")
        return active


def create_default_registry(config: Optional["SlagentConfig"] = None) -> AdapterRegistry:
    """Registry with the built-in adapters, in Claude-then-Codex order."""
    registry = AdapterRegistry()
    enabled = list(config.agents) if config is not None else list(ADAPTER_CLASSES)
    kwargs = {}
    if config is not None:
        kwargs = {
            "liveness_window_seconds": config.liveness_window_seconds,
            "probe_timeout_seconds": config.probe_timeout_seconds,
        }

    for name, cls in ADAPTER_CLASSES.items():
        if name not in enabled:
            continue
        registry.register(cls(**kwargs))

    unknown = [a for a in enabled if a not in ADAPTER_CLASSES]
    if unknown:
        logger.warning(f"Ignoring unknown agents in config: {', '.join(unknown)}")
    return registry

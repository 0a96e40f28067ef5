"""slagent configuration (~/.slagent/config.yaml)."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from .logging_config import setup_logger

logger = setup_logger("slagent.config", "watch.log")

KNOWN_AGENTS = ("claude", "codex")


def default_config_path() -> Path:
    raw = os.environ.get("SLAGENT_CONFIG", "").strip()
    if raw:
        return Path(raw).expanduser()
    return Path.home() / ".slagent" / "config.yaml"


@dataclass
class SlagentConfig:
    """Runtime settings shared by the watcher, adapters and CLI."""

    data_dir: str = "~/.slagent"
    poll_interval_seconds: float = 5.0
    liveness_window_seconds: float = 300.0
    startup_backfill_seconds: float = 1800.0
    long_pause_seconds: float = 300.0
    commit_window: int = 20
    probe_timeout_seconds: float = 3.0
    retention_max_age_days: float = 90.0
    agents: list[str] = field(default_factory=lambda: list(KNOWN_AGENTS))

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SlagentConfig":
        """Build a config from a parsed YAML mapping.

        Unknown keys are ignored; values that cannot be coerced keep their default.
        """
        config = cls()
        for f in fields(cls):
            if f.name not in data or data[f.name] is None:
                continue
            raw = data[f.name]
            current = getattr(config, f.name)
            try:
                if f.name == "agents":
                    if isinstance(raw, str):
                        raw = [raw]
                    value: Any = [str(a).strip().lower() for a in raw if str(a).strip()]
                elif isinstance(current, int):
                    value = int(raw)
                elif isinstance(current, float):
                    value = float(raw)
                else:
                    value = str(raw)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring invalid config value {f.name}={raw!r}")
                continue
            setattr(config, f.name, value)

        if config.poll_interval_seconds <= 0:
            config.poll_interval_seconds = 5.0
        return config

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "SlagentConfig":
        """Load config from disk, falling back to defaults when missing or unreadable."""
        config_path = path or default_config_path()
        data: dict[str, Any] = {}
        if config_path.exists():
            try:
                loaded = yaml.safe_load(config_path.read_text(encoding="utf-8"))
                if isinstance(loaded, dict):
                    data = loaded
            except Exception as e:
                logger.warning(f"Failed to read config {config_path}: {e}")

        config = cls.from_dict(data)

        raw_interval = os.environ.get("SLAGENT_POLL_INTERVAL_SECONDS", "").strip()
        if raw_interval:
            try:
                config.poll_interval_seconds = max(0.5, float(raw_interval))
            except ValueError:
                pass
        return config

    def save(self, path: Optional[Path] = None) -> Path:
        config_path = path or default_config_path()
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(asdict(self), f, default_flow_style=False, sort_keys=False)
        return config_path


def get_default_config_content() -> str:
    """Default config.yaml content, written by `slagent watch` on first run."""
    return yaml.safe_dump(asdict(SlagentConfig()), default_flow_style=False, sort_keys=False)

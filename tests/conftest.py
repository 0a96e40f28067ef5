from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

import pytest

# Keep test runs from writing into the real ~/.slagent/.logs
os.environ.setdefault("SLAGENT_LOG_DIR", tempfile.mkdtemp(prefix="slagent-test-logs-"))

from slagent.store import Store  # noqa: E402


@pytest.fixture
def store(tmp_path: Path) -> Store:
    return Store(tmp_path / "data")


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch) -> Path:
    """Point SLAGENT_CONFIG at a config whose data_dir lives under tmp_path."""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(f"data_dir: {tmp_path / 'data'}\n", encoding="utf-8")
    monkeypatch.setenv("SLAGENT_CONFIG", str(config_path))
    monkeypatch.delenv("SLAGENT_POLL_INTERVAL_SECONDS", raising=False)
    return config_path


def write_jsonl(path: Path, records: list, *, mode: str = "w") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, mode, encoding="utf-8") as f:
        for record in records:
            line = record if isinstance(record, str) else json.dumps(record)
            f.write(line + "\n")

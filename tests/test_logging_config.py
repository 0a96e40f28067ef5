from __future__ import annotations

import logging
from pathlib import Path

from slagent import logging_config
from slagent.logging_config import get_log_level, setup_logger, temporary_log_level


def test_log_level_from_env(monkeypatch) -> None:
    monkeypatch.setenv("SLAGENT_LOG_LEVEL", "debug")
    assert get_log_level() == logging.DEBUG

    monkeypatch.setenv("SLAGENT_LOG_LEVEL", "chatty")
    assert get_log_level() == logging.INFO


def test_log_directory_override(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("SLAGENT_LOG_DIR", str(tmp_path / "logs"))

    assert logging_config.get_log_directory() == tmp_path / "logs"
    assert logging_config.get_primary_log_path() == tmp_path / "logs" / "watch.log"


def test_setup_logger_does_not_duplicate_handlers(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("SLAGENT_LOG_DIR", str(tmp_path))

    first = setup_logger("slagent.test_once", "watch.log")
    second = setup_logger("slagent.test_once", "watch.log")
    first.info("hello")

    assert first is second
    assert len(first.handlers) == 1
    assert first.propagate is False
    assert "hello" in (tmp_path / "watch.log").read_text(encoding="utf-8")


def test_only_the_primary_log_gets_a_file(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("SLAGENT_LOG_DIR", str(tmp_path))

    assert setup_logger("slagent.test_other", "other.log").handlers == []


def test_temporary_log_level_restores() -> None:
    logger = setup_logger("slagent.test_level")
    before = logger.level

    with temporary_log_level("slagent.test_level", logging.ERROR):
        assert logger.level == logging.ERROR

    assert logger.level == before

"""
slagent Logging Configuration

Provides centralized logging setup for the watcher, adapters and CLI.
Supports file rotation and environment variable configuration.
"""

import logging
import os
import sys
import tempfile
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


_LOG_DIR_CACHE: tuple[str | None, Path] | None = None
PRIMARY_LOG_FILENAME = "watch.log"


def get_log_level() -> int:
    """
    Get log level from environment variable or default to INFO.

    Environment variable: SLAGENT_LOG_LEVEL
    Valid values: DEBUG, INFO, WARNING, ERROR, CRITICAL
    """
    level_name = os.getenv("SLAGENT_LOG_LEVEL", "INFO").upper()

    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }

    return level_map.get(level_name, logging.INFO)


def get_log_directory() -> Path:
    """
    Get the log directory path.

    Default: ~/.slagent/.logs/
    Can be overridden with SLAGENT_LOG_DIR environment variable.
    """
    global _LOG_DIR_CACHE

    log_dir_str = os.getenv("SLAGENT_LOG_DIR")
    if _LOG_DIR_CACHE is not None and _LOG_DIR_CACHE[0] == log_dir_str:
        return _LOG_DIR_CACHE[1]

    candidates: list[Path] = []
    if log_dir_str:
        candidates.append(Path(log_dir_str).expanduser())
    else:
        candidates.append(Path.home() / ".slagent" / ".logs")

    # Fallback for restricted environments (e.g., sandboxed runners).
    candidates.append(Path(tempfile.gettempdir()) / "slagent-logs")

    def can_write_files(directory: Path) -> bool:
        try:
            directory.mkdir(parents=True, exist_ok=True)
            probe = directory / f".write_probe_{os.getpid()}_{os.urandom(4).hex()}"
            probe.write_text("ok", encoding="utf-8")
            probe.unlink(missing_ok=True)
            return True
        except Exception:
            return False

    for candidate in candidates:
        if can_write_files(candidate):
            _LOG_DIR_CACHE = (log_dir_str, candidate)
            return candidate

    # Nothing writable: keep callers deterministic, the logger falls back to stderr.
    chosen = candidates[0]
    _LOG_DIR_CACHE = (log_dir_str, chosen)
    return chosen


def get_primary_log_path() -> Path:
    """Get canonical log file path (~/.slagent/.logs/watch.log by default)."""
    return get_log_directory() / PRIMARY_LOG_FILENAME


def setup_logger(
    name: str,
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    console_output: bool = False,
) -> logging.Logger:
    """
    Set up a logger with file rotation and optional console output.

    Args:
        name: Logger name (e.g., 'slagent.watcher_core', 'slagent.adapters.claude')
        log_file: Log filename hint. Only `watch.log` is persisted to file.
        max_bytes: Maximum size of the log file before rotation (default: 10MB)
        console_output: Whether to also output to console/stderr (default: False)

    Returns:
        logging.Logger: Configured logger instance

    Example:
        >>> logger = setup_logger('slagent.store', 'watch.log')
        >>> logger.info("Store ready")
        >>> logger.debug("Appending to: %s", path)
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        # Keep logger level in sync with env var, but avoid duplicating handlers.
        logger.setLevel(get_log_level())
        return logger

    logger.setLevel(get_log_level())
    logger.propagate = False

    formatter = logging.Formatter(
        fmt="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )

    # File handler is allowed only for the canonical watcher log.
    if log_file and log_file == PRIMARY_LOG_FILENAME:
        try:
            file_handler = RotatingFileHandler(
                get_primary_log_path(), maxBytes=max_bytes, backupCount=1, encoding="utf-8"
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except Exception as e:
            # Don't let logging setup break the application
            print(f"Warning: Failed to set up file logging: {e}", file=sys.stderr)

    if console_output:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(get_log_level())
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def enable_console_output(prefix: str = "slagent") -> None:
    """Attach a stderr handler to every already-configured slagent logger.

    Used by `slagent watch` in the foreground so log lines show up in the terminal.
    """
    formatter = logging.Formatter(
        fmt="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s", datefmt="%H:%M:%S"
    )
    for name, candidate in list(logging.Logger.manager.loggerDict.items()):
        if not name.startswith(prefix) or not isinstance(candidate, logging.Logger):
            continue
        if any(getattr(h, "_slagent_console", False) for h in candidate.handlers):
            continue
        handler = logging.StreamHandler()
        handler.setLevel(get_log_level())
        handler.setFormatter(formatter)
        handler._slagent_console = True  # type: ignore[attr-defined]
        candidate.addHandler(handler)


# Context manager for temporary log level changes
class temporary_log_level:
    """
    Context manager to temporarily change log level.

    Example:
        >>> with temporary_log_level('slagent.watcher_core', logging.DEBUG):
        ...     await watcher.tick()
    """

    def __init__(self, logger_name: str, level: int):
        self.logger = logging.getLogger(logger_name)
        self.original_level = self.logger.level
        self.new_level = level

    def __enter__(self):
        self.logger.setLevel(self.new_level)
        return self.logger

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.logger.setLevel(self.original_level)
        return False

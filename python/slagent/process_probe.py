"""Best-effort process table introspection (PID -> working directory).

Linux reads /proc directly. Other platforms shell out to `pgrep` and `lsof`, each
invocation bounded by a hard timeout. Every failure mode (missing tools, permission
errors, timeouts) degrades to "no processes found".
"""

from __future__ import annotations

import os
import platform
import subprocess
from pathlib import Path

from .logging_config import setup_logger

logger = setup_logger("slagent.process_probe", "watch.log")

DEFAULT_PROBE_TIMEOUT_SECONDS = 3.0


def normalize_dir(path: str | Path) -> str:
    try:
        return os.path.realpath(os.path.expanduser(str(path)))
    except Exception:
        return str(path)


def _run(args: list[str], timeout: float) -> str:
    try:
        proc = subprocess.run(
            args,
            text=True,
            capture_output=True,
            check=False,
            timeout=float(timeout),
        )
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.debug(f"Probe {args[0]} failed: {e}")
        return ""
    return proc.stdout or ""


def _linux_pids_named(binary_name: str) -> list[int]:
    pids: list[int] = []
    for entry in os.listdir("/proc"):
        if not entry.isdigit():
            continue
        try:
            comm = Path(f"/proc/{entry}/comm").read_text(encoding="utf-8").strip()
        except OSError:
            continue
        if comm == binary_name[:15]:
            pids.append(int(entry))
            continue
        # Node-based CLIs show up as `node /path/to/bin/<name>`.
        try:
            raw = Path(f"/proc/{entry}/cmdline").read_bytes()
        except OSError:
            continue
        argv = [a for a in raw.decode("utf-8", errors="replace").split("\0") if a]
        if any(os.path.basename(a) == binary_name for a in argv[:2]):
            pids.append(int(entry))
    return pids


def _linux_cwd(pid: int) -> str | None:
    try:
        return os.readlink(f"/proc/{pid}/cwd")
    except OSError:
        return None


def _lsof_cwd(pid: int, timeout: float) -> str | None:
    out = _run(["lsof", "-a", "-p", str(pid), "-d", "cwd", "-Fn"], timeout)
    for line in out.splitlines():
        if line.startswith("n"):
            return line[1:]
    return None


def list_process_cwds(binary_name: str, *, timeout: float = DEFAULT_PROBE_TIMEOUT_SECONDS) -> list[str]:
    """Working directories of every running process named `binary_name`."""
    cwds: list[str] = []
    try:
        if platform.system() == "Linux" and os.path.isdir("/proc"):
            for pid in _linux_pids_named(binary_name):
                cwd = _linux_cwd(pid)
                if cwd:
                    cwds.append(normalize_dir(cwd))
            return cwds

        out = _run(["pgrep", "-x", binary_name], timeout)
        for token in out.split():
            if not token.isdigit():
                continue
            cwd = _lsof_cwd(int(token), timeout)
            if cwd:
                cwds.append(normalize_dir(cwd))
    except Exception as e:
        logger.debug(f"Process scan for {binary_name} failed: {e}")
    return cwds


def is_process_running_in(
    binary_name: str, project: str | Path, *, timeout: float = DEFAULT_PROBE_TIMEOUT_SECONDS
) -> bool:
    """True if a process named `binary_name` has `project` as its working directory."""
    target = normalize_dir(project)
    return target in list_process_cwds(binary_name, timeout=timeout)

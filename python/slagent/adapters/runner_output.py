"""Classify test-runner output captured from agent tool results.

Patterns are tried in a fixed priority order and the first one that matches wins.
Runner-specific formats come before the generic "N passed / N failed" grammar so
that, e.g., cargo output is never claimed by the generic rule.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional

from ..events import TestResultEvent

RAW_EXCERPT_CHARS = 500

_COUNT_RE = re.compile(
    r"(\d+)\s+(passed|failed|skipped|todo|errors?|xfailed|xpassed|ignored|pending)\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class RunnerSummary:
    framework: str
    passed: int
    failed: int
    skipped: int
    raw: str

    def to_event(self, session_id: str, timestamp: int) -> TestResultEvent:
        return TestResultEvent(
            session_id=session_id,
            timestamp=timestamp,
            framework=self.framework,
            passed=self.passed,
            failed=self.failed,
            skipped=self.skipped,
            raw=self.raw,
        )


def _tally(segment: str) -> dict[str, int]:
    counts = {"passed": 0, "failed": 0, "skipped": 0}
    for num, label in _COUNT_RE.findall(segment):
        label = label.lower()
        n = int(num)
        if label in ("passed", "xpassed"):
            counts["passed"] += n
        elif label in ("failed", "error", "errors"):
            counts["failed"] += n
        else:
            counts["skipped"] += n
    return counts


def _jest(text: str) -> Optional[tuple[int, int, int]]:
    m = re.search(r"^\s*Tests:\s+(.*?\d+\s+total)", text, re.MULTILINE)
    if not m:
        return None
    c = _tally(m.group(1))
    return c["passed"], c["failed"], c["skipped"]


def _vitest(text: str) -> Optional[tuple[int, int, int]]:
    m = re.search(r"^\s*Tests\s+(.+?)\s*\(\d+\)\s*$", text, re.MULTILINE)
    if not m:
        return None
    c = _tally(m.group(1))
    if not (c["passed"] or c["failed"]):
        return None
    return c["passed"], c["failed"], c["skipped"]


def _cargo(text: str) -> Optional[tuple[int, int, int]]:
    matches = re.findall(
        r"test result: \w+\. (\d+) passed; (\d+) failed; (\d+) ignored", text
    )
    if not matches:
        return None
    passed = sum(int(m[0]) for m in matches)
    failed = sum(int(m[1]) for m in matches)
    skipped = sum(int(m[2]) for m in matches)
    return passed, failed, skipped


def _go(text: str) -> Optional[tuple[int, int, int]]:
    results = re.findall(r"^(ok|FAIL)[ \t]+\S+", text, re.MULTILINE)
    if not results:
        return None
    return results.count("ok"), results.count("FAIL"), 0


def _mocha(text: str) -> Optional[tuple[int, int, int]]:
    m = re.search(r"^\s*(\d+) passing\b", text, re.MULTILINE)
    if not m:
        return None
    failing = re.search(r"^\s*(\d+) failing\b", text, re.MULTILINE)
    pending = re.search(r"^\s*(\d+) pending\b", text, re.MULTILINE)
    return (
        int(m.group(1)),
        int(failing.group(1)) if failing else 0,
        int(pending.group(1)) if pending else 0,
    )


def _pytest(text: str) -> Optional[tuple[int, int, int]]:
    m = re.search(r"^=+ (.+?) in [\d.]+s\b.*=+\s*$", text, re.MULTILINE)
    if not m:
        return None
    c = _tally(m.group(1))
    if not (c["passed"] or c["failed"] or c["skipped"]):
        return None
    return c["passed"], c["failed"], c["skipped"]


def _generic(text: str) -> Optional[tuple[int, int, int]]:
    passed = re.search(r"(\d+)\s+passed", text)
    failed = re.search(r"(\d+)\s+failed", text)
    if not passed and not failed:
        return None
    skipped = re.search(r"(\d+)\s+skipped", text)
    return (
        int(passed.group(1)) if passed else 0,
        int(failed.group(1)) if failed else 0,
        int(skipped.group(1)) if skipped else 0,
    )


PATTERNS: list[tuple[str, Callable[[str], Optional[tuple[int, int, int]]]]] = [
    ("jest", _jest),
    ("vitest", _vitest),
    ("cargo", _cargo),
    ("go", _go),
    ("mocha", _mocha),
    ("pytest", _pytest),
    ("generic", _generic),
]


def detect_test_result(output: str) -> Optional[RunnerSummary]:
    """Return the first matching runner summary for `output`, or None."""
    if not output:
        return None
    for framework, matcher in PATTERNS:
        counts = matcher(output)
        if counts is None:
            continue
        passed, failed, skipped = counts
        return RunnerSummary(
            framework=framework,
            passed=passed,
            failed=failed,
            skipped=skipped,
            raw=output[:RAW_EXCERPT_CHARS],
        )
    return None

from __future__ import annotations

import pytest

from slagent.adapters.runner_output import RAW_EXCERPT_CHARS, detect_test_result


@pytest.mark.parametrize(
    "output, framework, counts",
    [
        ("Tests:       1 failed, 4 passed, 5 total\nTime: 2s", "jest", (4, 1, 0)),
        (" Test Files  2 passed (2)\n      Tests  1 failed | 2 passed (3)\n", "vitest", (2, 1, 0)),
        (
            "running 13 tests\ntest result: ok. 12 passed; 0 failed; 1 ignored; 0 measured; 0 filtered out\n",
            "cargo",
            (12, 0, 1),
        ),
        ("ok  \texample.com/a\t0.01s\nFAIL\texample.com/b\t0.02s\nFAIL\n", "go", (1, 1, 0)),
        ("  3 passing (20ms)\n  1 failing\n  2 pending\n", "mocha", (3, 1, 2)),
        ("==== 2 failed, 10 passed, 1 skipped in 0.52s ====", "pytest", (10, 2, 1)),
        ("Summary: 5 passed, 1 failed", "generic", (5, 1, 0)),
    ],
)
def test_detects_runner_output(output: str, framework: str, counts: tuple) -> None:
    result = detect_test_result(output)

    assert result is not None
    assert result.framework == framework
    assert (result.passed, result.failed, result.skipped) == counts


def test_cargo_output_is_not_claimed_by_generic_grammar() -> None:
    output = "test result: FAILED. 3 passed; 2 failed; 0 ignored; 0 measured"

    result = detect_test_result(output)

    assert result is not None
    assert result.framework == "cargo"
    assert (result.passed, result.failed) == (3, 2)


def test_pytest_errors_count_as_failures() -> None:
    result = detect_test_result("===== 1 failed, 3 passed, 2 errors in 1.20s =====")

    assert result is not None
    assert result.framework == "pytest"
    assert result.failed == 3


def test_no_match_returns_none() -> None:
    assert detect_test_result("") is None
    assert detect_test_result("compiled successfully") is None


def test_raw_excerpt_is_truncated() -> None:
    output = "x" * 1000 + "\n2 passed"

    result = detect_test_result(output)

    assert result is not None
    assert len(result.raw) == RAW_EXCERPT_CHARS

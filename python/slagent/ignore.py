"""gitignore-style path filtering for a project directory.

Rules come from a small built-in list, then the project's .gitignore, then
.git/info/exclude. Every rule is evaluated in order and the last one that matches
decides, so a later `!pattern` can re-include a path an earlier rule excluded.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from .logging_config import setup_logger

logger = setup_logger("slagent.ignore", "watch.log")

BUILTIN_IGNORES = (".slagent/", ".git/", "node_modules/", ".DS_Store")


def glob_to_regex(pattern: str) -> str:
    """Translate a gitignore glob body into a regex fragment (no anchors)."""
    out: list[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        ch = pattern[i]
        if ch == "\\" and i + 1 < n:
            out.append(re.escape(pattern[i + 1]))
            i += 2
        elif pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif ch == "*":
            out.append("[^/]*")
            i += 1
        elif ch == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(ch))
            i += 1
    return "".join(out)


@dataclass(frozen=True)
class IgnoreRule:
    source: str
    negated: bool
    dir_only: bool
    anchored: bool
    body: str

    @classmethod
    def parse(cls, raw: str) -> Optional["IgnoreRule"]:
        line = raw.rstrip("\n").rstrip("\r")
        # Trailing spaces are insignificant unless escaped.
        if not line.endswith("\\ "):
            line = line.rstrip()
        if not line.strip() or line.startswith("#"):
            return None

        pattern = line
        negated = False
        if pattern.startswith("!"):
            negated = True
            pattern = pattern[1:]
        elif pattern.startswith("\\!") or pattern.startswith("\\#"):
            pattern = pattern[1:]

        dir_only = pattern.endswith("/")
        pattern = pattern.rstrip("/")
        if not pattern:
            return None

        anchored = pattern.startswith("/") or "/" in pattern.lstrip("/")
        pattern = pattern.lstrip("/")
        return cls(
            source=raw.strip(),
            negated=negated,
            dir_only=dir_only,
            anchored=anchored,
            body=glob_to_regex(pattern),
        )

    def matches(self, rel_path: str, is_dir: bool = False) -> bool:
        prefix = "^" if self.anchored else "(?:^|/)"
        if self.dir_only:
            if re.search(prefix + self.body + "/", rel_path):
                return True
            return is_dir and re.search(prefix + self.body + "$", rel_path) is not None
        return re.search(prefix + self.body + "(?:/|$)", rel_path) is not None


class IgnoreMatcher:
    """Decides whether a project-relative path is ignored."""

    def __init__(self, project: Optional[str | Path] = None, rules: Iterable[str] = BUILTIN_IGNORES):
        self.project = Path(project) if project is not None else None
        self.rules: list[IgnoreRule] = []
        self.add_rules(rules)

    @classmethod
    def from_project(cls, project: str | Path) -> "IgnoreMatcher":
        """Built-in rules plus the project's .gitignore and .git/info/exclude."""
        matcher = cls(project)
        root = Path(project)
        for rules_file in (root / ".gitignore", root / ".git" / "info" / "exclude"):
            try:
                content = rules_file.read_text(encoding="utf-8", errors="replace")
            except OSError:
                continue
            matcher.add_rules(content.splitlines())
        return matcher

    def add_rules(self, lines: Iterable[str]) -> None:
        for line in lines:
            rule = IgnoreRule.parse(line)
            if rule is not None:
                self.rules.append(rule)

    def relative(self, path: str | Path) -> str:
        raw = str(path)
        if self.project is not None and os.path.isabs(raw):
            try:
                raw = os.path.relpath(raw, str(self.project))
            except ValueError:
                pass
        rel = raw.replace(os.sep, "/")
        while rel.startswith("./"):
            rel = rel[2:]
        return rel.lstrip("/")

    def is_ignored(self, path: str | Path, is_dir: bool = False) -> bool:
        rel = self.relative(path)
        if not rel or rel == ".":
            return False
        ignored = False
        for rule in self.rules:
            if rule.matches(rel, is_dir):
                ignored = not rule.negated
        return ignored

    __call__ = is_ignored

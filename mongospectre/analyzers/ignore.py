"""
Suppression file support.

A .mongospectreignore file in the working directory lists findings to
hide, one per line:

    # comment
    UNUSED_INDEX app.users.idx_email
    MISSING_TTL app.sessions
    *  app.tmp_*
    DYNAMIC_COLLECTION collName

Every component may be "*"; the collection may end in "*" for a prefix
match. A target with a single segment is a collection in any database.
Matching is case-insensitive.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, NamedTuple

if TYPE_CHECKING:
    from mongospectre.models import Finding

logger = logging.getLogger(__name__)

IGNORE_FILENAME = ".mongospectreignore"
WILDCARD = "*"


def match_glob(pattern: str, value: str) -> bool:
    """Exact, "*" or trailing-"*" prefix match, case-insensitive."""
    pattern = pattern.lower()
    value = value.lower()
    if pattern == WILDCARD:
        return True
    if pattern.endswith(WILDCARD):
        return value.startswith(pattern[:-1])
    return pattern == value


class IgnoreRule(NamedTuple):
    type: str
    database: str
    collection: str
    index: str = ""

    @classmethod
    def parse(cls, line: str) -> IgnoreRule | None:
        """Parse one non-comment line, or None if it is malformed."""
        parts = line.split()
        if len(parts) < 2:
            return None
        segments = parts[1].split(".", 2)
        if len(segments) == 1:
            return cls(parts[0], WILDCARD, segments[0])
        if len(segments) == 2:
            return cls(parts[0], segments[0], segments[1])
        return cls(parts[0], segments[0], segments[1], segments[2])

    def matches(self, finding: Finding) -> bool:
        if self.type != WILDCARD and self.type.lower() != finding.type.lower():
            return False
        if self.database and not match_glob(self.database, finding.database):
            return False
        if not match_glob(self.collection, finding.collection):
            return False
        if self.index and not match_glob(self.index, finding.index):
            return False
        return True


class IgnoreFilter:
    """A set of suppression rules."""

    def __init__(self, rules: list[IgnoreRule] | None = None):
        self.rules = list(rules or [])

    @classmethod
    def parse(cls, text: str) -> IgnoreFilter:
        rules = []
        for lineno, raw in enumerate(text.splitlines(), 1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            rule = IgnoreRule.parse(line)
            if rule is None:
                logger.warning("%s:%d: ignoring malformed rule %r", IGNORE_FILENAME, lineno, line)
                continue
            rules.append(rule)
        return cls(rules)

    @classmethod
    def load(cls, directory: Path | None = None) -> IgnoreFilter:
        """
        Load the ignore file from a directory.

        Args:
            directory: Directory to look in (defaults to the working directory).

        Returns:
            The filter; empty when the file does not exist.
        """
        path = Path(directory or Path.cwd()) / IGNORE_FILENAME
        if not path.is_file():
            return cls()
        logger.debug("Loading ignore rules from %s", path)
        return cls.parse(path.read_text(encoding="utf-8"))

    def __len__(self) -> int:
        return len(self.rules)

    def is_ignored(self, finding: Finding) -> bool:
        return any(rule.matches(finding) for rule in self.rules)

    def apply(self, findings: list[Finding]) -> tuple[list[Finding], int]:
        """
        Drop suppressed findings.

        Args:
            findings: Findings to filter.

        Returns:
            Tuple of (surviving findings in their original order, suppressed count).
        """
        if not self.rules:
            return list(findings), 0
        survivors = [f for f in findings if not self.is_ignored(f)]
        return survivors, len(findings) - len(survivors)

"""
Collection reference patterns.

Each rule is a regex with one capture group for the collection name and
the pattern kind it reports. Rules overlap, so order matters: the first
rule to name a collection on a line wins and later duplicates are dropped.
"""

from __future__ import annotations

import logging
import re
from typing import NamedTuple

from mongospectre.models import (
    PATTERN_BRACKET,
    PATTERN_DOT_ACCESS,
    PATTERN_DRIVER_CALL,
    PATTERN_ORM,
)

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 120

DOT_ACCESS_OPERATIONS = (
    "find", "insert", "update", "delete", "aggregate", "count", "distinct",
    "drop", "create_index", "remove", "replace", "bulk_write", "watch",
    "rename", "map_reduce",
)


class CollectionMatch(NamedTuple):
    collection: str
    pattern: str


class CollectionScanner:
    """Find collection references on one logical line."""

    PATTERNS = [
        # Go driver: db.Collection("users"), trailing comma allowed
        (re.compile(r'\.Collection\(\s*"([^"]+)"\s*,?\s*\)'), PATTERN_DRIVER_CALL, False),
        # Node/Java/C#/PyMongo style accessors, optional generic argument
        (
            re.compile(
                r"""\.(?:collection|getCollection|GetCollection)(?:<[^<>()]*>)?\(\s*["']([^"']+)["']\s*,?\s*\)"""
            ),
            PATTERN_DRIVER_CALL,
            False,
        ),
        # Mongoose: mongoose.model("User", schema); the mapper pluralizes
        (re.compile(r"""(?:mongoose\.)?\bmodel\(\s*["']([^"']+)["']"""), PATTERN_ORM, True),
        # MongoEngine: meta = {'collection': 'users'}
        (re.compile(r"""['"]collection['"]\s*:\s*["']([^"']+)["']"""), PATTERN_ORM, False),
        # PyMongo: db["users"]
        (re.compile(r"""\bdb\[["']([^"']+)["']\]"""), PATTERN_BRACKET, False),
        # Shell / PyMongo attribute access: db.users.find(...)
        (
            re.compile(r"\bdb\.([a-z][a-z0-9_]+)\.(?:" + "|".join(DOT_ACCESS_OPERATIONS) + r")"),
            PATTERN_DOT_ACCESS,
            False,
        ),
        # Aggregation join: {$lookup: {from: "orders", ...}}
        (
            re.compile(
                r"""["'`]?\$lookup["'`]?\s*:\s*\{[^{}]*?["']?\bfrom["']?\s*:\s*["']([^"']+)["']"""
            ),
            PATTERN_DRIVER_CALL,
            False,
        ),
    ]

    def scan_line(self, line: str) -> list[CollectionMatch]:
        """
        Extract collection references from one logical line.

        ORM model names that are not all lowercase are reported twice: as
        written and in the pluralized lowercase form the mapper derives.

        Args:
            line: Logical source line.

        Returns:
            Matches in rule order, deduplicated by collection name.
        """
        matches: list[CollectionMatch] = []
        for regex, kind, pluralized in self.PATTERNS:
            for m in regex.finditer(line):
                name = m.group(1)
                if not is_valid_collection_name(name):
                    continue
                matches.append(CollectionMatch(name, kind))
                if pluralized and name != name.lower():
                    plural = pluralize(name)
                    if is_valid_collection_name(plural):
                        matches.append(CollectionMatch(plural, kind))
        return dedup_matches(matches)


def is_valid_collection_name(name: str) -> bool:
    """
    Reject names that cannot be literal collection names.

    Empty or over-long names, template placeholders ("$", "{", "}") and
    paths ("/" or "\\") are rejected.
    """
    if not name or len(name) > MAX_NAME_LENGTH:
        return False
    if any(c in name for c in "${}"):
        return False
    if "/" in name or "\\" in name:
        return False
    return True


def pluralize(name: str) -> str:
    """
    Naive English plural of a model name, lowercased.

    Mirrors the mapper's convention: "ss", "sh", "ch" or "x" endings take
    "es"; consonant + "y" becomes "ies"; everything else takes "s".
    """
    lower = name.lower()
    if lower.endswith(("ss", "sh", "ch", "x")):
        return lower + "es"
    if len(lower) > 1 and lower.endswith("y") and lower[-2] not in "aeiou":
        return lower[:-1] + "ies"
    return lower + "s"


def dedup_matches(matches: list[CollectionMatch]) -> list[CollectionMatch]:
    """Keep the first match per collection name."""
    seen: set[str] = set()
    out: list[CollectionMatch] = []
    for m in matches:
        if m.collection in seen:
            continue
        seen.add(m.collection)
        out.append(m)
    return out

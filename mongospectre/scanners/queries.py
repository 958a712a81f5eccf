"""
Queried-field extraction.

Runs an ordered set of regexes over a logical line to find the fields a
query filters, sorts or projects on, then sweeps driver-call and
pipeline-stage lines for the remaining keys of multi-field documents.
"""

from __future__ import annotations

import logging
import re
from typing import NamedTuple

from mongospectre.models import (
    USAGE_EQUALITY,
    USAGE_RANGE,
    USAGE_SORT,
    USAGE_UNKNOWN,
)

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 120

# Identifiers that look like keys but are call names, stage attributes or literals
RESERVED_NAMES = frozenset({
    "true", "false", "null", "nil", "undefined", "None", "True", "False",
    "find", "findOne", "findOneAndUpdate", "findOneAndDelete", "findOneAndReplace",
    "updateOne", "updateMany", "deleteOne", "deleteMany",
    "countDocuments", "count_documents", "aggregate",
    "sort", "limit", "skip", "projection",
    "bson", "Key", "Value",
    "from", "as", "localField", "foreignField", "let", "pipeline", "path",
    "preserveNullAndEmptyArrays", "input", "cond", "in", "then", "else", "case",
})

USAGE_PRIORITY = {
    USAGE_SORT: 4,
    USAGE_RANGE: 3,
    USAGE_EQUALITY: 2,
    USAGE_UNKNOWN: 1,
}

_FIELD = r"[a-zA-Z_][a-zA-Z0-9_.]*"
_QUERY_CALLS_DQ = (
    "find|findOne|find_one|findOneAndUpdate|findOneAndDelete|findOneAndReplace|"
    "updateOne|updateMany|deleteOne|deleteMany|countDocuments|count_documents|aggregate"
)
_QUERY_CALLS_SQ = (
    "find|findOne|find_one|update_one|update_many|delete_one|delete_many|"
    "count_documents|aggregate"
)
_QUERY_CALLS_BARE = (
    "find|findOne|find_one|updateOne|updateMany|deleteOne|deleteMany|"
    "countDocuments|count_documents|aggregate"
)

OBJECT_KEY_CONTEXT_RE = re.compile(
    r"\.(find|findOne|find_one|findOneAndUpdate|findOneAndDelete|findOneAndReplace|"
    r"updateOne|updateMany|update_one|update_many|deleteOne|deleteMany|delete_one|"
    r"delete_many|countDocuments|count_documents|aggregate|sort)\(",
    re.IGNORECASE,
)
PIPELINE_STAGE_CONTEXT_RE = re.compile(
    r"""["`']\$(?:match|sort|project|group|addFields|set|bucket|facet|lookup|unwind)["`']"""
)
QUERY_CONTEXT_RE = re.compile(
    r"\.(findOneAndUpdate|findOneAndDelete|findOneAndReplace|findOne|find_one|find|"
    r"updateOne|updateMany|update_one|update_many|deleteOne|deleteMany|delete_one|"
    r"delete_many|countDocuments|count_documents|aggregate|sort)\("
)

_FIELD_REF_RE = re.compile(r"""["']\$(""" + _FIELD + r""")["'](\s*:)?""")
_OBJECT_KEY_RE = re.compile(r"""["']?(\$?)(""" + _FIELD + r""")["']?\s*:""")
_SORT_CALL_RE = re.compile(r"\.sort\(\s*\{([^}]*)\}")
_SORT_STAGE_RE = re.compile(r"""["`']\$sort["`']\s*:\s*\{([^}]*)\}""")
_SORT_PAIR_RE = re.compile(r"""["']?(""" + _FIELD + r""")["']?\s*:\s*(-?1)\b""")
_RANGE_FIELD_RE = re.compile(
    r"""["']?(""" + _FIELD + r""")["']?\s*:\s*\{\s*["']?\$(?:gt|gte|lt|lte|ne|nin|in|regex|not)\b"""
)


class FieldMatch(NamedTuple):
    field: str
    usage: str
    direction: int = 0
    context: str = ""


class QueryFieldScanner:
    """Extract queried field names from one logical line."""

    # (regex, capture group, usage)
    PATTERNS = [
        # Go: bson.M{"status": ...} / bson.D{...}
        (re.compile(r'bson\.[MD]\{.*?"(' + _FIELD + r')":'), 1, USAGE_EQUALITY),
        # Go: bson.D{{Key: "email", Value: ...}}
        (re.compile(r'Key:\s*"([a-zA-Z_][a-zA-Z0-9_.]+)"'), 1, USAGE_EQUALITY),
        # Driver calls with a double-quoted first key
        (
            re.compile(r"\.(" + _QUERY_CALLS_DQ + r')\(\s*\{[^}]*?"(' + _FIELD + r')":'),
            2,
            USAGE_EQUALITY,
        ),
        # Driver calls with a single-quoted first key
        (
            re.compile(r"\.(" + _QUERY_CALLS_SQ + r")\(\s*\{[^}]*?'(" + _FIELD + r")':"),
            2,
            USAGE_EQUALITY,
        ),
        # Driver calls with a bare first key (JS object literal)
        (
            re.compile(r"\.(" + _QUERY_CALLS_BARE + r")\(\s*\{[^}]*?([a-zA-Z_][a-zA-Z0-9_]*):"),
            2,
            USAGE_EQUALITY,
        ),
        # {"$match": {"status": ...}}
        (re.compile(r'["`]\$match["`]\s*:\s*\{[^}]*?"(' + _FIELD + r')":'), 1, USAGE_EQUALITY),
        # {"$project": {...}} / {"$addFields": {...}}
        (
            re.compile(r"""["`']\$(?:project|addFields)["`']\s*:\s*\{[^}]*?"(""" + _FIELD + r')":'),
            1,
            USAGE_UNKNOWN,
        ),
        # {"$group": {"_id": "$customer"}}
        (
            re.compile(r"""["`']\$group["`']\s*:\s*\{[^}]*?"?\$(""" + _FIELD + r')"?'),
            1,
            USAGE_UNKNOWN,
        ),
        # Any "key": "$field" reference
        (re.compile(r""":\s*["']\$(""" + _FIELD + r""")["']"""), 1, USAGE_UNKNOWN),
        # {"$unwind": "$items"}
        (
            re.compile(r"""["`']\$unwind["`']\s*:\s*["']\$(""" + _FIELD + r""")["']"""),
            1,
            USAGE_UNKNOWN,
        ),
        # $lookup join keys
        (
            re.compile(r"""["'](?:localField|foreignField)["']\s*:\s*["'](""" + _FIELD + r""")["']"""),
            1,
            USAGE_UNKNOWN,
        ),
    ]

    def scan_line(self, line: str) -> list[FieldMatch]:
        """
        Extract queried fields from one logical line.

        When the same field is found several times the strongest usage wins
        (sort, then range, then equality, then unknown).

        Args:
            line: Logical source line.

        Returns:
            Matches in discovery order, one per field.
        """
        context = query_context(line)
        by_field: dict[str, FieldMatch] = {}

        def add(match: FieldMatch) -> None:
            if not is_valid_field_name(match.field):
                return
            existing = by_field.get(match.field)
            if existing is None:
                by_field[match.field] = match._replace(context=match.context or context)
                return
            usage = existing.usage
            direction = existing.direction
            if USAGE_PRIORITY[match.usage] > USAGE_PRIORITY[existing.usage]:
                usage = match.usage
                if match.direction:
                    direction = match.direction
            elif not direction and match.direction:
                direction = match.direction
            by_field[match.field] = existing._replace(usage=usage, direction=direction)

        for regex, group, usage in self.PATTERNS:
            for m in regex.finditer(line):
                add(FieldMatch(m.group(group), usage, 0, context))

        sort_fields = extract_sort_fields(line)
        sort_set = {f.field for f in sort_fields}
        for sf in sort_fields:
            add(sf._replace(context=context))

        range_fields = extract_range_fields(line)
        range_set = set(range_fields)
        for name in range_fields:
            add(FieldMatch(name, USAGE_RANGE, 0, context))

        for name in extract_object_keys(line):
            if name in sort_set:
                continue
            add(FieldMatch(name, USAGE_RANGE if name in range_set else USAGE_EQUALITY, 0, context))

        for name in extract_field_refs(line):
            add(FieldMatch(name, USAGE_UNKNOWN, 0, context))

        return list(by_field.values())


def extract_object_keys(line: str) -> list[str]:
    """Every non-operator "key": on a driver-call or pipeline-stage line."""
    if not OBJECT_KEY_CONTEXT_RE.search(line) and not PIPELINE_STAGE_CONTEXT_RE.search(line):
        return []
    fields = []
    for m in _OBJECT_KEY_RE.finditer(line):
        if m.group(1) == "$":
            continue
        if is_valid_field_name(m.group(2)):
            fields.append(m.group(2))
    return fields


def extract_sort_fields(line: str) -> list[FieldMatch]:
    """Fields and directions from .sort({...}) calls and $sort stages."""
    fields: list[FieldMatch] = []
    seen: set[str] = set()
    for segment_re in (_SORT_CALL_RE, _SORT_STAGE_RE):
        for segment in segment_re.finditer(line):
            for m in _SORT_PAIR_RE.finditer(segment.group(1)):
                name = m.group(1)
                if not is_valid_field_name(name) or name in seen:
                    continue
                seen.add(name)
                direction = -1 if m.group(2).startswith("-") else 1
                fields.append(FieldMatch(name, USAGE_SORT, direction))
    return fields


def extract_range_fields(line: str) -> list[str]:
    """Fields compared with $gt, $lt, $in, $regex and friends."""
    fields: list[str] = []
    for m in _RANGE_FIELD_RE.finditer(line):
        name = m.group(1)
        if is_valid_field_name(name) and name not in fields:
            fields.append(name)
    return fields


def extract_field_refs(line: str) -> list[str]:
    """"$field" references not used as keys, on pipeline-stage lines only."""
    if not PIPELINE_STAGE_CONTEXT_RE.search(line):
        return []
    fields = []
    for m in _FIELD_REF_RE.finditer(line):
        if m.group(2):
            continue
        if is_valid_field_name(m.group(1)):
            fields.append(m.group(1))
    return fields


def query_context(line: str) -> str:
    """Lowercased query call name, "aggregate" for pipeline lines, else "query"."""
    m = QUERY_CONTEXT_RE.search(line)
    if m:
        return m.group(1).lower()
    if PIPELINE_STAGE_CONTEXT_RE.search(line):
        return "aggregate"
    return "query"


def is_valid_field_name(name: str) -> bool:
    """Reject empty, over-long, operator and reserved names."""
    if not name or len(name) > MAX_NAME_LENGTH:
        return False
    if name.startswith("$"):
        return False
    return name not in RESERVED_NAMES

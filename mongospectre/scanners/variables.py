"""
Intra-file variable resolution.

Harvests string constants so that db.Collection(usersColl) can be traced
back to "users", and tracks which identifiers hold collection handles so
that calls on them (coll.InsertOne(...)) can be attributed.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from mongospectre.models import PATTERN_DRIVER_CALL
from mongospectre.scanners.collections import CollectionMatch, is_valid_collection_name

if TYPE_CHECKING:
    from mongospectre.scanners.lines import LogicalLine

logger = logging.getLogger(__name__)

# (regex, name group, value group)
STRING_VAR_DEFS = [
    # Go: const usersColl = "users" / var usersColl string = "users"
    (re.compile(r'(?:const|var)\s+([a-zA-Z_]\w*)\s+(?:string\s*)?=\s*"([^"]+)"'), 1, 2),
    (re.compile(r'(?:const|var)\s+([a-zA-Z_]\w*)\s*=\s*"([^"]+)"'), 1, 2),
    # JS/TS: const usersColl = 'users'
    (re.compile(r"""(?:const|let|var)\s+([a-zA-Z_]\w*)\s*=\s*["']([^"']+)["']"""), 1, 2),
    # Python/Ruby module level: USERS = "users"
    (re.compile(r"""^([a-zA-Z_]\w*)\s*=\s*["']([^"']+)["']"""), 1, 2),
]

# Collection-selecting calls whose single argument is a bare identifier
VAR_COLLECTION_CALLS = [
    re.compile(r"\.Collection\(\s*([a-zA-Z_]\w*)\s*,?\s*\)"),
    re.compile(r"\.(?:collection|getCollection|GetCollection)(?:<[^<>()]*>)?\(\s*([a-zA-Z_]\w*)\s*,?\s*\)"),
]

# Assignment target at the start of a line: coll := ..., const users = ...,
# IMongoCollection<User> users = ..., self.users = ...
BINDING_RE = re.compile(
    r"^\s*(?:(?:const|let|var|val|final|private|public|protected|static|readonly)\s+)*"
    r"(?:[A-Za-z_][\w.<>\[\],]*\s+)?"
    r"(?:self\.|this\.|@)?([A-Za-z_]\w*)\s*(?::=|=)(?!=)"
)

# Receiver of a method call: coll.find(...), this.users.insertOne(...)
RECEIVER_CALL_RE = re.compile(r"\b([A-Za-z_]\w*)\s*\.\s*[A-Za-z_]\w*\s*\(")


def collect_string_vars(lines: list[LogicalLine]) -> dict[str, str]:
    """
    Harvest identifier -> string value definitions from a whole file.

    Later definitions of the same identifier overwrite earlier ones.
    """
    variables: dict[str, str] = {}
    for logical in lines:
        for regex, name_group, value_group in STRING_VAR_DEFS:
            for m in regex.finditer(logical.text):
                variables[m.group(name_group)] = m.group(value_group)
    return variables


def resolve_var_collections(
    line: str,
    variables: dict[str, str],
) -> tuple[list[CollectionMatch], list[str]]:
    """
    Resolve identifier arguments of collection-selecting calls.

    Args:
        line: Logical source line.
        variables: Output of collect_string_vars() for the same file.

    Returns:
        Tuple of (resolved matches, unresolved identifier names).
    """
    resolved: list[CollectionMatch] = []
    dynamic: list[str] = []
    for regex in VAR_COLLECTION_CALLS:
        for m in regex.finditer(line):
            name = m.group(1)
            value = variables.get(name)
            if value is None:
                dynamic.append(name)
            elif is_valid_collection_name(value):
                resolved.append(CollectionMatch(value, PATTERN_DRIVER_CALL))
    return resolved, dynamic


def binding_target(line: str) -> str | None:
    """Identifier assigned on this line, if the line is an assignment."""
    m = BINDING_RE.match(line)
    return m.group(1) if m else None


def bound_receiver(line: str, bindings: dict[str, str]) -> str | None:
    """
    Collection of the first method call whose receiver is a bound handle.

    Args:
        line: Logical source line.
        bindings: identifier -> collection name for the current file.

    Returns:
        Collection name, or None.
    """
    if not bindings:
        return None
    for m in RECEIVER_CALL_RE.finditer(line):
        collection = bindings.get(m.group(1))
        if collection is not None:
            return collection
    return None

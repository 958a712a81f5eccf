"""
Shared lookups used by the rule modules.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mongospectre.models import PATTERN_ORM, USAGE_UNKNOWN
from mongospectre.scanners.collections import pluralize

if TYPE_CHECKING:
    from mongospectre.models import (
        CollectionInfo,
        CollectionRef,
        FieldRef,
        Finding,
        Inventory,
        KeyField,
        ScanResult,
    )

logger = logging.getLogger(__name__)

GIB = 1024 * 1024 * 1024
MIB = 1024 * 1024


class Analyzer:
    """
    Base class for rule modules.

    Subclasses implement analyze() as a pure function of its inputs: no
    state is kept between calls and the output is sorted.
    """

    name = "analyzer"

    def analyze(self, scan: ScanResult | None, inventory: Inventory) -> list[Finding]:
        raise NotImplementedError


def find_collection(name: str, collections: list[CollectionInfo]) -> CollectionInfo | None:
    """
    Case-insensitive lookup of a collection by name.

    Only answers "does this name exist anywhere". When several databases
    hold the name the first in (database, name) order is returned; rules
    that judge a collection's contents use find_collections() instead.
    """
    matches = find_collections(name, collections)
    return matches[0] if matches else None


def find_collections(name: str, collections: list[CollectionInfo]) -> list[CollectionInfo]:
    """Every collection with this name, case-insensitively, in (database, name) order."""
    lowered = name.lower()
    return sorted(
        (c for c in collections if c.name.lower() == lowered),
        key=lambda c: (c.database, c.name),
    )


def data_collections(inventory: Inventory) -> list[CollectionInfo]:
    """Non-view collections in (database, name) order."""
    return sorted(
        (c for c in inventory.collections if c.type != "view"),
        key=lambda c: (c.database, c.name),
    )


def referenced_names(scan: ScanResult | None) -> set[str]:
    """Lowercased collection names referenced anywhere in the scan."""
    if scan is None:
        return set()
    return {name.lower() for name in scan.collections}


def orm_model_names(scan: ScanResult | None) -> set[str]:
    """Lowercased model names whose collection is derived by pluralizing."""
    if scan is None:
        return set()
    return {ref.collection.lower() for ref in scan.refs if ref.pattern == PATTERN_ORM}


def is_present(name: str, collections: list[CollectionInfo], orm_names: set[str]) -> bool:
    """
    Whether a referenced name exists in the cluster.

    ORM model names count as present when their pluralized collection exists.
    """
    if find_collection(name, collections) is not None:
        return True
    if name.lower() in orm_names:
        return find_collection(pluralize(name), collections) is not None
    return False


def first_refs(scan: ScanResult | None) -> dict[str, CollectionRef]:
    """First reference to each collection, keyed by lowercased name."""
    first: dict[str, CollectionRef] = {}
    if scan is None:
        return first
    for ref in scan.refs:
        first.setdefault(ref.collection.lower(), ref)
    return first


def location_of(ref: CollectionRef | FieldRef | None) -> dict[str, object] | None:
    if ref is None:
        return None
    return {"file": ref.file, "line": ref.line}


def queried_fields(scan: ScanResult | None) -> dict[str, dict[str, list[FieldRef]]]:
    """
    Group queryable field references by collection.

    Fields with unknown usage (projections, group keys) are left out since
    they never drive index selection.

    Returns:
        Lowercased collection name -> field name -> references, with both
        levels in sorted key order.
    """
    grouped: dict[str, dict[str, list[FieldRef]]] = {}
    if scan is None:
        return grouped
    for fr in scan.field_refs:
        if fr.usage == USAGE_UNKNOWN:
            continue
        grouped.setdefault(fr.collection.lower(), {}).setdefault(fr.field, []).append(fr)
    return {
        coll: {f: grouped[coll][f] for f in sorted(grouped[coll])}
        for coll in sorted(grouped)
    }


def is_field_indexed(field_name: str, collection: CollectionInfo) -> bool:
    """True if some index on the collection leads with field_name."""
    return any(idx.key and idx.key[0].field == field_name for idx in collection.indexes)


def is_key_prefix(a: list[KeyField], b: list[KeyField]) -> bool:
    """True if key list a is a prefix of b, comparing field and direction."""
    if not a or len(a) > len(b):
        return False
    return all(x.field == y.field and x.direction == y.direction for x, y in zip(a, b))


def format_key(key: list[KeyField]) -> str:
    """Render an index key as {field: dir, ...}."""
    return "{" + ", ".join(f"{k.field}: {k.direction}" for k in key) + "}"


def index_name(key: list[KeyField]) -> str:
    """Default server-side index name: {a: 1, b: -1} -> "a_1_b_-1"."""
    return "_".join(f"{k.field}_{k.direction}" for k in key)

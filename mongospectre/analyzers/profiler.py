"""
Profiler correlation.

Matches slow operations recorded by the database profiler back to the
source lines that issue them, by collection and filter-field overlap.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, NamedTuple

from mongospectre.analyzers.base import Analyzer
from mongospectre.models import (
    SEVERITY_HIGH,
    SEVERITY_MEDIUM,
    Finding,
    FindingType,
    sort_findings,
)

if TYPE_CHECKING:
    from mongospectre.models import Inventory, ProfileEntry, ScanResult

logger = logging.getLogger(__name__)

MAX_LISTED_LOCATIONS = 5


class SourceLocation(NamedTuple):
    file: str
    line: int

    def __str__(self) -> str:
        return f"{self.file}:{self.line}"


class _CollectionStats:
    """Per-collection accumulator for correlated profiler entries."""

    def __init__(self, database: str, collection: str):
        self.database = database
        self.collection = collection
        self.samples = 0
        self.collscans = 0
        self.total_ms = 0
        self.locations: set[SourceLocation] = set()
        self.collscan_locations: set[SourceLocation] = set()
        self.shapes: dict[str, int] = {}


def is_collection_scan(plan_summary: str) -> bool:
    return "COLLSCAN" in plan_summary.upper()


def shape_key(entry: ProfileEntry) -> str:
    """Identity of a query shape: the command shape if known, else its fields."""
    if entry.command_shape:
        return entry.command_shape
    filters = ",".join(sorted({f.lower() for f in entry.filter_fields}))
    sorts = ",".join(sorted({f.lower() for f in entry.sort_fields}))
    return f"filter[{filters}] sort[{sorts}]"


def source_locations(scan: ScanResult) -> dict[str, dict[SourceLocation, set[str]]]:
    """
    Index FieldRefs by collection and source line.

    Returns:
        Lowercased collection -> location -> lowercased fields used there.
    """
    by_collection: dict[str, dict[SourceLocation, set[str]]] = {}
    for fr in scan.field_refs:
        loc = SourceLocation(fr.file, fr.line)
        by_collection.setdefault(fr.collection.lower(), {}).setdefault(loc, set()).add(fr.field.lower())
    return by_collection


def _format_locations(locations: set[SourceLocation]) -> str:
    ordered = sorted(locations)
    listed = ", ".join(str(loc) for loc in ordered[:MAX_LISTED_LOCATIONS])
    if len(ordered) > MAX_LISTED_LOCATIONS:
        listed += f" (+{len(ordered) - MAX_LISTED_LOCATIONS} more)"
    return listed


class ProfilerAnalyzer(Analyzer):
    """Correlate profiler entries with source locations."""

    name = "profiler"

    def __init__(self, frequent_query_count: int = 3):
        """
        Initialize the profiler analyzer.

        Args:
            frequent_query_count: Occurrences of one shape that make it frequent.
        """
        self.frequent_query_count = frequent_query_count

    def analyze(self, scan: ScanResult | None, inventory: Inventory) -> list[Finding]:
        if scan is None or not inventory.profile_entries:
            return []

        locations = source_locations(scan)
        stats: dict[tuple[str, str], _CollectionStats] = {}

        for entry in inventory.profile_entries:
            coll_locations = locations.get(entry.collection.lower())
            if not coll_locations:
                continue
            wanted = {f.lower() for f in entry.filter_fields}
            matched = {loc for loc, fields in coll_locations.items() if fields & wanted}
            if not matched:
                continue

            key = (entry.database.lower(), entry.collection.lower())
            stat = stats.get(key)
            if stat is None:
                stat = stats[key] = _CollectionStats(entry.database, entry.collection)
            stat.samples += 1
            stat.total_ms += entry.duration_ms
            stat.locations |= matched
            if is_collection_scan(entry.plan_summary):
                stat.collscans += 1
                stat.collscan_locations |= matched
            shape = shape_key(entry)
            stat.shapes[shape] = stat.shapes.get(shape, 0) + 1

        findings: list[Finding] = []
        for key in sorted(stats):
            findings.extend(self._findings_for(stats[key]))
        return sort_findings(findings)

    def _findings_for(self, stat: _CollectionStats) -> list[Finding]:
        findings = []
        first = min(stat.locations)
        if stat.collscans:
            first_scan = min(stat.collscan_locations)
            findings.append(Finding(
                type=FindingType.COLLECTION_SCAN_SOURCE,
                severity=SEVERITY_HIGH,
                database=stat.database,
                collection=stat.collection,
                message=(
                    f"code at {_format_locations(stat.collscan_locations)} matches "
                    f"COLLSCAN profiler queries ({stat.collscans} samples)"
                ),
                location={"file": first_scan.file, "line": first_scan.line},
            ))
        if stat.samples > stat.collscans:
            avg = stat.total_ms // stat.samples
            findings.append(Finding(
                type=FindingType.SLOW_QUERY_SOURCE,
                severity=SEVERITY_MEDIUM,
                database=stat.database,
                collection=stat.collection,
                message=(
                    f"code at {_format_locations(stat.locations)} matches slow profiler "
                    f"queries (avg {avg}ms across {stat.samples} samples)"
                ),
                location={"file": first.file, "line": first.line},
            ))
        frequent = sorted(
            (shape, count) for shape, count in stat.shapes.items()
            if count >= self.frequent_query_count
        )
        if frequent:
            shapes = "; ".join(f"{shape} x{count}" for shape, count in frequent)
            findings.append(Finding(
                type=FindingType.FREQUENT_SLOW_QUERY,
                severity=SEVERITY_MEDIUM,
                database=stat.database,
                collection=stat.collection,
                message=f"query shape(s) seen repeatedly in profiler: {shapes}",
                location={"file": first.file, "line": first.line},
            ))
        return findings

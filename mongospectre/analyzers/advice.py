"""
Compound index advice.

Every query site in code (one file, line and call) becomes an index key
in equality, sort, range order. Identical keys are counted across the
code base and compared with the indexes that exist, which yields new
compound index suggestions, existing indexes in the wrong field order,
indexes one field short of a query, and indexes made redundant by a
longer one.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from mongospectre.analyzers.base import (
    Analyzer,
    find_collections,
    format_key,
    index_name,
    is_key_prefix,
)
from mongospectre.models import (
    SEVERITY_INFO,
    SEVERITY_LOW,
    USAGE_EQUALITY,
    USAGE_RANGE,
    USAGE_SORT,
    USAGE_UNKNOWN,
    Finding,
    FindingType,
    KeyField,
    sort_findings,
)

if TYPE_CHECKING:
    from mongospectre.models import CollectionInfo, FieldRef, IndexInfo, Inventory, ScanResult

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 5

# A field used several ways in one query keeps its strongest role
ROLE_PRIORITY = {USAGE_SORT: 4, USAGE_RANGE: 3, USAGE_EQUALITY: 2}


@dataclass
class QuerySite:
    file: str
    line: int
    fields: dict[str, tuple[str, str, int]] = field(default_factory=dict)  # lowered -> (name, usage, direction)

    def add(self, ref: FieldRef) -> None:
        name = ref.field.strip()
        if not name:
            return
        direction = 0
        if ref.usage == USAGE_SORT:
            direction = -1 if ref.direction == -1 else 1
        lowered = name.lower()
        existing = self.fields.get(lowered)
        if existing is None:
            self.fields[lowered] = (name, ref.usage, direction)
        elif ROLE_PRIORITY.get(ref.usage, 1) > ROLE_PRIORITY.get(existing[1], 1):
            self.fields[lowered] = (existing[0], ref.usage, direction or existing[2])

    def esr_key(self) -> list[KeyField]:
        """Equality fields, then sort fields, then range fields; _id is left out."""
        groups: dict[str, list[KeyField]] = {USAGE_EQUALITY: [], USAGE_SORT: [], USAGE_RANGE: []}
        for name, usage, direction in self.fields.values():
            if name == "_id" or usage not in groups:
                continue
            groups[usage].append(KeyField(name, direction if usage == USAGE_SORT else 1))
        return groups[USAGE_EQUALITY] + groups[USAGE_SORT] + groups[USAGE_RANGE]


@dataclass
class QueryPattern:
    key: list[KeyField]
    frequency: int = 0
    files: set[str] = field(default_factory=set)
    location: dict[str, object] | None = None

    @property
    def signature(self) -> str:
        return ",".join(f"{k.field}:{k.direction}" for k in self.key)


def query_sites(scan: ScanResult) -> dict[str, dict[str, QuerySite]]:
    """Query sites by lowercased collection, keyed by "file:line:call"."""
    sites: dict[str, dict[str, QuerySite]] = {}
    for ref in scan.field_refs:
        coll = ref.collection.strip().lower()
        if not coll or not ref.field or ref.usage == USAGE_UNKNOWN:
            continue
        site_key = f"{ref.file}:{ref.line}:{ref.context.strip().lower()}"
        site = sites.setdefault(coll, {}).setdefault(site_key, QuerySite(ref.file, ref.line))
        site.add(ref)
    return sites


def query_patterns(sites: dict[str, QuerySite]) -> list[QueryPattern]:
    """Distinct multi-field keys, most frequent first."""
    by_signature: dict[str, QueryPattern] = {}
    for site_key in sorted(sites):
        site = sites[site_key]
        key = site.esr_key()
        if len(key) < 2:
            continue
        pattern = QueryPattern(key)
        pattern = by_signature.setdefault(pattern.signature, pattern)
        pattern.frequency += 1
        pattern.files.add(site.file)
        if pattern.location is None:
            pattern.location = {"file": site.file, "line": site.line}
    return sorted(by_signature.values(), key=lambda p: (-p.frequency, -len(p.key), p.signature))


def is_replaceable(idx: IndexInfo) -> bool:
    """Plain ascending/descending index that a longer one could stand in for."""
    if idx.is_identity or idx.unique or idx.sparse or idx.ttl_seconds is not None or not idx.key:
        return False
    return all(k.direction in (1, -1) for k in idx.key)


def stats_unavailable(c: CollectionInfo) -> bool:
    """Secondary indexes exist but none reported $indexStats."""
    secondary = [i for i in c.indexes if not i.is_identity]
    return bool(secondary) and all(i.usage_ops is None for i in secondary)


def is_covered(key: list[KeyField], indexes: list[IndexInfo]) -> bool:
    return any(idx.key and is_key_prefix(key, idx.key) for idx in indexes)


def common_prefix_len(a: list[KeyField], b: list[KeyField]) -> int:
    n = 0
    for x, y in zip(a, b):
        if x.field != y.field or x.direction != y.direction:
            break
        n += 1
    return n


def same_key_set(a: list[KeyField], b: list[KeyField]) -> bool:
    return Counter((k.field, k.direction) for k in a) == Counter((k.field, k.direction) for k in b)


class IndexAdviceAnalyzer(Analyzer):
    """Compound index suggestions derived from query shapes in code."""

    name = "advice"

    def __init__(self, min_docs: int = 1_000):
        """
        Args:
            min_docs: Collections with fewer documents get no advice.
        """
        self.min_docs = min_docs

    def analyze(self, scan: ScanResult | None, inventory: Inventory) -> list[Finding]:
        if scan is None or not scan.field_refs:
            return []
        findings: list[Finding] = []
        sites = query_sites(scan)
        for coll_name in sorted(sites):
            patterns = query_patterns(sites[coll_name])
            if not patterns:
                continue
            for c in find_collections(coll_name, inventory.collections):
                if c.type == "view" or c.doc_count < self.min_docs:
                    continue
                if stats_unavailable(c):
                    logger.debug("%s.%s: no index stats, skipping index advice", c.database, c.name)
                    continue
                findings.extend(self._redundant(c))
                findings.extend(self._order_warnings(c, patterns))
                findings.extend(self._partial_coverage(c, patterns))
                findings.extend(self._suggestions(c, patterns))
        return sort_findings(findings)

    @staticmethod
    def _redundant(c: CollectionInfo) -> list[Finding]:
        findings = []
        for idx in c.indexes:
            if not is_replaceable(idx):
                continue
            covers = [
                other for other in c.indexes
                if other is not idx
                and is_replaceable(other)
                and len(idx.key) < len(other.key)
                and is_key_prefix(idx.key, other.key)
            ]
            if not covers:
                continue
            cover = min(covers, key=lambda o: (len(o.key), o.name))
            findings.append(Finding(
                type=FindingType.REDUNDANT_INDEX,
                severity=SEVERITY_LOW,
                database=c.database,
                collection=c.name,
                index=idx.name,
                message=f'index "{idx.name}" is redundant; "{cover.name}" serves the same queries',
            ))
        return findings

    @staticmethod
    def _order_warnings(c: CollectionInfo, patterns: list[QueryPattern]) -> list[Finding]:
        best: dict[str, QueryPattern] = {}
        for pattern in patterns:
            n = len(pattern.key)
            for idx in c.indexes:
                if idx.is_identity or len(idx.key) < n or idx.name in best:
                    continue
                if is_key_prefix(pattern.key, idx.key) or not same_key_set(idx.key[:n], pattern.key):
                    continue
                best[idx.name] = pattern
        return [
            Finding(
                type=FindingType.INDEX_ORDER_WARNING,
                severity=SEVERITY_LOW,
                database=c.database,
                collection=c.name,
                index=name,
                message=(
                    f'index "{name}" orders its fields differently from the queries that use them; '
                    f"prefer {format_key(best[name].key)} (seen {best[name].frequency} times)"
                ),
                location=best[name].location,
            )
            for name in sorted(best)
        ]

    @staticmethod
    def _partial_coverage(c: CollectionInfo, patterns: list[QueryPattern]) -> list[Finding]:
        findings: dict[str, Finding] = {}
        for pattern in patterns:
            n = len(pattern.key)
            if n < 3 or is_covered(pattern.key, c.indexes):
                continue
            best_name, best_prefix = "", 0
            for idx in sorted(c.indexes, key=lambda i: i.name):
                if idx.is_identity or not idx.key:
                    continue
                prefix = common_prefix_len(idx.key, pattern.key)
                if prefix > best_prefix:
                    best_name, best_prefix = idx.name, prefix
            if not best_name or best_prefix != n - 1 or best_name in findings:
                continue
            findings[best_name] = Finding(
                type=FindingType.PARTIAL_COVERAGE,
                severity=SEVERITY_INFO,
                database=c.database,
                collection=c.name,
                index=best_name,
                message=(
                    f'index "{best_name}" covers {best_prefix}/{n} fields of a frequent query; '
                    f"add {format_key(pattern.key[best_prefix:])} for full coverage "
                    f"(seen {pattern.frequency} times)"
                ),
                location=pattern.location,
            )
        return list(findings.values())

    @staticmethod
    def _suggestions(c: CollectionInfo, patterns: list[QueryPattern]) -> list[Finding]:
        candidates = []
        for pattern in patterns:
            if is_covered(pattern.key, c.indexes):
                continue
            replaces = sorted(
                (idx for idx in c.indexes
                 if is_replaceable(idx) and len(idx.key) < len(pattern.key) and is_key_prefix(idx.key, pattern.key)),
                key=lambda idx: (len(idx.key), idx.name),
            )
            candidates.append((pattern, [idx.name for idx in replaces]))
        candidates.sort(key=lambda pr: (-pr[0].frequency, -len(pr[0].key), -len(pr[1]), pr[0].signature))

        findings = []
        for pattern, replaces in candidates[:MAX_SUGGESTIONS]:
            findings.append(Finding(
                type=FindingType.COMPOUND_INDEX_SUGGESTION,
                severity=SEVERITY_INFO,
                database=c.database,
                collection=c.name,
                index=index_name(pattern.key),
                message=(
                    f"consider compound index {format_key(pattern.key)} "
                    f"({pattern.frequency} query site(s) across {len(pattern.files)} file(s)); "
                    f"replaces: {', '.join(replaces) or 'none'}"
                ),
                location=pattern.location,
            ))
        return findings

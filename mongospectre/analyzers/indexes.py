"""
Index rules.

Flags unused, duplicated, redundant and oversized indexes from the cluster
side, and queries in code that no index can serve.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from mongospectre.analyzers.base import (
    GIB,
    MIB,
    Analyzer,
    data_collections,
    find_collections,
    format_key,
    is_field_indexed,
    is_key_prefix,
    location_of,
    queried_fields,
    referenced_names,
)
from mongospectre.models import (
    SEVERITY_HIGH,
    SEVERITY_INFO,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    Finding,
    FindingType,
    sort_findings,
)

if TYPE_CHECKING:
    from mongospectre.models import CollectionInfo, FieldRef, IndexInfo, Inventory, ScanResult

logger = logging.getLogger(__name__)


class IndexAnalyzer(Analyzer):
    """Unused, orphaned, duplicate, missing and oversized indexes."""

    name = "indexes"

    def __init__(
        self,
        index_usage_days: int = 30,
        missing_index_docs: int = 10_000,
        small_collection_docs: int = 1_000,
        max_indexes: int = 10,
        large_index_bytes: int = GIB,
        now: datetime | None = None,
    ):
        """
        Initialize the index analyzer.

        Args:
            index_usage_days: Minimum age of the usage window before zero ops counts.
            missing_index_docs: Document count above which only _id is a problem.
            small_collection_docs: Below this, unindexed queries are only suggestions.
            max_indexes: Index count above which writes are over-indexed.
            large_index_bytes: Size above which a single index is flagged.
            now: Reference time for usage windows (defaults to the current UTC time).
        """
        self.index_usage_days = index_usage_days
        self.missing_index_docs = missing_index_docs
        self.small_collection_docs = small_collection_docs
        self.max_indexes = max_indexes
        self.large_index_bytes = large_index_bytes
        self.now = now or datetime.now(timezone.utc)

    def analyze(self, scan: ScanResult | None, inventory: Inventory) -> list[Finding]:
        """
        Run the index rules.

        Args:
            scan: Source scan, or None for an inventory-only audit.
            inventory: Cluster snapshot.

        Returns:
            Sorted findings.
        """
        referenced = referenced_names(scan)
        findings: list[Finding] = []
        for c in data_collections(inventory):
            is_referenced = scan is None or c.name.lower() in referenced
            findings.extend(self._unused_indexes(c, is_referenced))
            findings.extend(self._duplicate_indexes(c))
            findings.extend(self._single_field_redundant(c))
            if is_referenced:
                findings.extend(self._missing_index(c))
            findings.extend(self._index_bloat(c))
            findings.extend(self._over_indexed(c))
            findings.extend(self._large_indexes(c))
        if scan is not None:
            findings.extend(self._unindexed_queries(scan, inventory))
        return sort_findings(findings)

    def is_stale(self, idx: IndexInfo) -> bool:
        """Zero recorded ops over a usage window at least index_usage_days long."""
        if idx.is_identity or idx.usage_ops is None or idx.usage_ops != 0:
            return False
        if idx.usage_since is None:
            return False
        since = idx.usage_since
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        return self.now - since >= timedelta(days=self.index_usage_days)

    def _unused_indexes(self, c: CollectionInfo, is_referenced: bool) -> list[Finding]:
        findings = []
        for idx in c.indexes:
            if not self.is_stale(idx):
                continue
            if is_referenced:
                findings.append(Finding(
                    type=FindingType.UNUSED_INDEX,
                    severity=SEVERITY_MEDIUM,
                    database=c.database,
                    collection=c.name,
                    index=idx.name,
                    message=f'index "{idx.name}" has 0 operations in the last {self.index_usage_days} days',
                ))
            else:
                findings.append(Finding(
                    type=FindingType.ORPHANED_INDEX,
                    severity=SEVERITY_LOW,
                    database=c.database,
                    collection=c.name,
                    index=idx.name,
                    message=f'index "{idx.name}" on unreferenced collection "{c.name}" has 0 operations',
                ))
        return findings

    @staticmethod
    def _duplicate_indexes(c: CollectionInfo) -> list[Finding]:
        candidates = sorted((i for i in c.indexes if not i.is_identity), key=lambda i: i.name)
        flagged: dict[str, Finding] = {}
        for a in candidates:
            for b in candidates:
                if a is b or a.name in flagged:
                    continue
                if len(a.key) < len(b.key) and is_key_prefix(a.key, b.key):
                    covered_by = b.name
                elif a.key == b.key and a.name > b.name:
                    # Identical keys: keep the lexicographically first name
                    covered_by = b.name
                else:
                    continue
                flagged[a.name] = Finding(
                    type=FindingType.DUPLICATE_INDEX,
                    severity=SEVERITY_MEDIUM,
                    database=c.database,
                    collection=c.name,
                    index=a.name,
                    message=f'index "{a.name}" {format_key(a.key)} is a prefix of "{covered_by}"',
                )
        return list(flagged.values())

    @staticmethod
    def _single_field_redundant(c: CollectionInfo) -> list[Finding]:
        findings = []
        compounds = sorted((i for i in c.indexes if len(i.key) > 1), key=lambda i: i.name)
        for single in c.indexes:
            if single.is_identity or len(single.key) != 1:
                continue
            cover = next((i for i in compounds if is_key_prefix(single.key, i.key)), None)
            if cover is None:
                continue
            findings.append(Finding(
                type=FindingType.SINGLE_FIELD_REDUNDANT,
                severity=SEVERITY_LOW,
                database=c.database,
                collection=c.name,
                index=single.name,
                message=f'single-field index "{single.name}" is covered by compound index "{cover.name}"',
            ))
        return findings

    def _missing_index(self, c: CollectionInfo) -> list[Finding]:
        if c.doc_count < self.missing_index_docs:
            return []
        if any(not idx.is_identity for idx in c.indexes):
            return []
        return [Finding(
            type=FindingType.MISSING_INDEX,
            severity=SEVERITY_HIGH,
            database=c.database,
            collection=c.name,
            message=f"collection has {c.doc_count} documents but only the _id index",
        )]

    @staticmethod
    def _index_bloat(c: CollectionInfo) -> list[Finding]:
        if c.size <= 0 or c.total_index_size <= c.size:
            return []
        ratio = c.total_index_size / c.size
        return [Finding(
            type=FindingType.INDEX_BLOAT,
            severity=SEVERITY_MEDIUM,
            database=c.database,
            collection=c.name,
            message=(
                f"total index size ({c.total_index_size / MIB:.1f} MB) exceeds data size "
                f"({c.size / MIB:.1f} MB), ratio {ratio:.1f}:1"
            ),
        )]

    def _over_indexed(self, c: CollectionInfo) -> list[Finding]:
        if len(c.indexes) <= self.max_indexes:
            return []
        return [Finding(
            type=FindingType.WRITE_HEAVY_OVER_INDEXED,
            severity=SEVERITY_MEDIUM,
            database=c.database,
            collection=c.name,
            message=f"collection has {len(c.indexes)} indexes; every write updates all of them",
        )]

    def _large_indexes(self, c: CollectionInfo) -> list[Finding]:
        findings = []
        for idx in c.indexes:
            if idx.size < self.large_index_bytes or idx.size <= 0:
                continue
            findings.append(Finding(
                type=FindingType.LARGE_INDEX,
                severity=SEVERITY_LOW,
                database=c.database,
                collection=c.name,
                index=idx.name,
                message=f'index "{idx.name}" is {idx.size / GIB:.1f} GB',
            ))
        return findings

    def _unindexed_queries(self, scan: ScanResult, inventory: Inventory) -> list[Finding]:
        findings = []
        for coll_name, fields in queried_fields(scan).items():
            # The same name may live in several databases; judge each one
            for c in find_collections(coll_name, inventory.collections):
                if c.type != "view":
                    findings.extend(self._unindexed_fields(c, fields))
        return findings

    def _unindexed_fields(self, c: CollectionInfo, fields: dict[str, list[FieldRef]]) -> list[Finding]:
        missing = [f for f in fields if f != "_id" and not is_field_indexed(f, c)]
        if not missing:
            return []
        quoted = ", ".join(f'"{f}"' for f in missing)
        first = fields[missing[0]][0]
        if c.doc_count < self.small_collection_docs:
            return [Finding(
                type=FindingType.SUGGEST_INDEX,
                severity=SEVERITY_INFO,
                database=c.database,
                collection=c.name,
                message=(
                    f"consider an index on {quoted} "
                    f"(collection has {c.doc_count} documents)"
                ),
                location=location_of(first),
            )]
        return [Finding(
            type=FindingType.UNINDEXED_QUERY,
            severity=SEVERITY_MEDIUM,
            database=c.database,
            collection=c.name,
            message=f"field(s) {quoted} queried in code but no index leads with them",
            location=location_of(first),
        )]

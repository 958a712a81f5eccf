"""
Collection-level rules.

Compares the collections referenced in code with the ones that exist in
the cluster, and flags size and retention problems on the cluster side.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mongospectre.analyzers.base import (
    Analyzer,
    data_collections,
    first_refs,
    is_present,
    location_of,
    orm_model_names,
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
    from mongospectre.models import CollectionInfo, Inventory, ScanResult

logger = logging.getLogger(__name__)

TIMESTAMP_FIELD_HINTS = frozenset({"created_at", "updated_at", "timestamp", "expires_at"})


class CollectionAnalyzer(Analyzer):
    """Missing, unused, oversized and retention-less collections."""

    name = "collections"

    def __init__(self, oversized_docs: int = 1_000_000):
        """
        Initialize the collection analyzer.

        Args:
            oversized_docs: Document count above which a collection is oversized.
        """
        self.oversized_docs = oversized_docs

    def analyze(self, scan: ScanResult | None, inventory: Inventory) -> list[Finding]:
        """
        Run the collection rules.

        Args:
            scan: Source scan, or None for an inventory-only audit.
            inventory: Cluster snapshot.

        Returns:
            Sorted findings.
        """
        findings: list[Finding] = []
        if scan is not None:
            findings.extend(self._missing_collections(scan, inventory))
            findings.extend(self._dynamic_collections(scan))
        findings.extend(self._unused_collections(scan, inventory))
        for c in data_collections(inventory):
            findings.extend(self._oversized(c))
            findings.extend(self._missing_ttl(c, scan))
        return sort_findings(findings)

    def _missing_collections(self, scan: ScanResult, inventory: Inventory) -> list[Finding]:
        orm_names = orm_model_names(scan)
        first = first_refs(scan)
        findings = []
        for name in scan.collections:
            if is_present(name, inventory.collections, orm_names):
                continue
            findings.append(Finding(
                type=FindingType.MISSING_COLLECTION,
                severity=SEVERITY_HIGH,
                collection=name,
                message=f'collection "{name}" referenced in code but does not exist in database',
                location=location_of(first.get(name.lower())),
            ))
        return findings

    def _unused_collections(self, scan: ScanResult | None, inventory: Inventory) -> list[Finding]:
        referenced = referenced_names(scan)
        findings = []
        for c in data_collections(inventory):
            if c.name.lower() in referenced:
                continue
            if c.doc_count > 0:
                # Without a scan nothing is known about references
                if scan is None:
                    continue
                findings.append(Finding(
                    type=FindingType.UNUSED_COLLECTION,
                    severity=SEVERITY_MEDIUM,
                    database=c.database,
                    collection=c.name,
                    message=f"collection has {c.doc_count} documents but is not referenced in code",
                ))
            else:
                findings.append(Finding(
                    type=FindingType.UNUSED_COLLECTION,
                    severity=SEVERITY_LOW,
                    database=c.database,
                    collection=c.name,
                    message="collection has 0 documents",
                ))
        return findings

    def _oversized(self, c: CollectionInfo) -> list[Finding]:
        if c.doc_count <= self.oversized_docs:
            return []
        return [Finding(
            type=FindingType.OVERSIZED_COLLECTION,
            severity=SEVERITY_MEDIUM,
            database=c.database,
            collection=c.name,
            message=f"collection has {c.doc_count} documents (threshold {self.oversized_docs})",
        )]

    def _missing_ttl(self, c: CollectionInfo, scan: ScanResult | None) -> list[Finding]:
        ttl_fields = set()
        for idx in c.indexes:
            if idx.ttl_seconds is not None:
                ttl_fields.update(k.field.lower() for k in idx.key)

        candidates: set[str] = set()
        for idx in c.indexes:
            candidates.update(k.field for k in idx.key)
        if scan is not None:
            lowered = c.name.lower()
            candidates.update(w.field for w in scan.write_refs if w.collection.lower() == lowered)
            candidates.update(f.field for f in scan.field_refs if f.collection.lower() == lowered)

        fields = sorted(
            f for f in candidates
            if f.lower() in TIMESTAMP_FIELD_HINTS and f.lower() not in ttl_fields
        )
        if not fields:
            return []
        quoted = ", ".join(f'"{f}"' for f in fields)
        return [Finding(
            type=FindingType.MISSING_TTL,
            severity=SEVERITY_LOW,
            database=c.database,
            collection=c.name,
            message=f"timestamp field(s) {quoted} have no TTL index",
        )]

    @staticmethod
    def _dynamic_collections(scan: ScanResult) -> list[Finding]:
        seen: dict[str, Finding] = {}
        for dr in scan.dynamic_refs:
            if dr.variable.lower() in seen:
                continue
            seen[dr.variable.lower()] = Finding(
                type=FindingType.DYNAMIC_COLLECTION,
                severity=SEVERITY_INFO,
                collection=dr.variable,
                message=(
                    f'collection name from variable "{dr.variable}" could not be '
                    f"resolved statically ({dr.file}:{dr.line})"
                ),
                location={"file": dr.file, "line": dr.line},
            )
        return list(seen.values())

"""
Data modeling anti-patterns seen in sampled documents.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mongospectre.analyzers.base import MIB, Analyzer, data_collections
from mongospectre.analyzers.schema import plain_path
from mongospectre.models import (
    SEVERITY_INFO,
    SEVERITY_LOW,
    Finding,
    FindingType,
    sort_findings,
)

if TYPE_CHECKING:
    from mongospectre.models import CollectionInfo, Inventory, SampleStats, ScanResult

logger = logging.getLogger(__name__)

MAX_ARRAY_ELEMENTS = 100
MAX_NESTING_DEPTH = 5
MAX_DOC_SIZE_BYTES = 1_000_000
MAX_FIELD_COUNT = 200

# Types that never collide with "object"
_NEUTRAL_TYPES = frozenset({"object", "null", "array"})


def path_depth(path: str) -> int:
    """Nesting depth ignoring array markers: "a.b[].c" -> 3."""
    return plain_path(path).count(".") + 1


def format_bytes(size: int) -> str:
    if size >= MIB:
        return f"{size / MIB:.1f} MB"
    if size >= 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size} bytes"


class AntiPatternAnalyzer(Analyzer):
    """Unbounded arrays, deep nesting, oversized and overly wide documents."""

    name = "antipatterns"

    def analyze(self, scan: ScanResult | None, inventory: Inventory) -> list[Finding]:
        findings: list[Finding] = []
        for c in data_collections(inventory):
            sample = c.sample
            if sample is None or sample.sample_size == 0:
                continue
            findings.extend(self._unbounded_arrays(c, sample))
            findings.extend(self._deep_nesting(c, sample))
            findings.extend(self._large_document(c, sample))
            findings.extend(self._name_collisions(c, sample))
            findings.extend(self._field_count(c, sample))
            findings.extend(self._numeric_names(c, sample))
        return sort_findings(findings)

    @staticmethod
    def _unbounded_arrays(c: CollectionInfo, sample: SampleStats) -> list[Finding]:
        findings = []
        for path, length in sorted(sample.array_lengths.items()):
            if length <= MAX_ARRAY_ELEMENTS:
                continue
            findings.append(Finding(
                type=FindingType.UNBOUNDED_ARRAY,
                severity=SEVERITY_LOW,
                database=c.database,
                collection=c.name,
                index=path,
                message=f'array field "{path}" holds up to {length} elements and may grow without bound',
            ))
        return findings

    @staticmethod
    def _deep_nesting(c: CollectionInfo, sample: SampleStats) -> list[Finding]:
        findings = []
        for fs in sample.fields:
            depth = path_depth(fs.path)
            if depth <= MAX_NESTING_DEPTH:
                continue
            findings.append(Finding(
                type=FindingType.DEEP_NESTING,
                severity=SEVERITY_LOW,
                database=c.database,
                collection=c.name,
                index=fs.path,
                message=f'field "{fs.path}" is nested {depth} levels deep, which is hard to index and query',
            ))
        return findings

    @staticmethod
    def _large_document(c: CollectionInfo, sample: SampleStats) -> list[Finding]:
        if sample.max_doc_size <= MAX_DOC_SIZE_BYTES:
            return []
        return [Finding(
            type=FindingType.LARGE_DOCUMENT,
            severity=SEVERITY_LOW,
            database=c.database,
            collection=c.name,
            message=(
                f"largest sampled document is {format_bytes(sample.max_doc_size)}, "
                "approaching the 16 MB BSON limit"
            ),
        )]

    @staticmethod
    def _name_collisions(c: CollectionInfo, sample: SampleStats) -> list[Finding]:
        findings = []
        for fs in sample.fields:
            if "object" not in fs.types:
                continue
            scalars = sorted(t for t in fs.types if t not in _NEUTRAL_TYPES)
            if not scalars:
                continue
            findings.append(Finding(
                type=FindingType.FIELD_NAME_COLLISION,
                severity=SEVERITY_LOW,
                database=c.database,
                collection=c.name,
                index=fs.path,
                message=f'field "{fs.path}" is an object in some documents and {", ".join(scalars)} in others',
            ))
        return findings

    @staticmethod
    def _field_count(c: CollectionInfo, sample: SampleStats) -> list[Finding]:
        if sample.max_field_count <= MAX_FIELD_COUNT:
            return []
        return [Finding(
            type=FindingType.EXCESSIVE_FIELD_COUNT,
            severity=SEVERITY_INFO,
            database=c.database,
            collection=c.name,
            message=f"documents have up to {sample.max_field_count} top-level fields",
        )]

    @staticmethod
    def _numeric_names(c: CollectionInfo, sample: SampleStats) -> list[Finding]:
        findings = []
        for fs in sample.fields:
            if not any(seg.isdigit() for seg in plain_path(fs.path).split(".")):
                continue
            findings.append(Finding(
                type=FindingType.NUMERIC_FIELD_NAMES,
                severity=SEVERITY_INFO,
                database=c.database,
                collection=c.name,
                index=fs.path,
                message=f'field path "{fs.path}" has a numeric segment; an array may be stored as an object',
            ))
        return findings

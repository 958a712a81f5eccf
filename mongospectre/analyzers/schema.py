"""
Schema drift between code and sampled documents.

Works on the SampleStats attached to each collection during inventory.
Fields named in code (queries and writes) are checked against the paths
actually present in the sample, and every sampled path is checked for
mixed BSON types. Each finding carries the field path in its index slot
so that findings on different fields of one collection stay distinct.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mongospectre.analyzers.base import Analyzer, data_collections
from mongospectre.models import (
    SEVERITY_INFO,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    Finding,
    FindingType,
    sort_findings,
)

if TYPE_CHECKING:
    from mongospectre.models import CollectionInfo, FieldSample, Inventory, ScanResult, SampleStats

logger = logging.getLogger(__name__)

RARE_FIELD_RATIO = 0.10
UNDOCUMENTED_FIELD_RATIO = 0.90


def code_fields(scan: ScanResult | None) -> dict[str, set[str]]:
    """Field names used in code, by lowercased collection name."""
    fields: dict[str, set[str]] = {}
    if scan is None:
        return fields
    for ref in [*scan.field_refs, *scan.write_refs]:
        coll = ref.collection.strip().lower()
        if coll and ref.field:
            fields.setdefault(coll, set()).add(ref.field)
    return fields


def plain_path(path: str) -> str:
    """Sampled path without array markers: "items[].sku" -> "items.sku"."""
    return path.replace("[]", "")


def format_types(types: dict[str, int]) -> str:
    return ", ".join(f"{t}({n})" for t, n in sorted(types.items()))


def is_documented(path: str, fields: set[str]) -> bool:
    """A sampled path is documented when code names it, a parent or a child of it."""
    path = plain_path(path)
    for f in fields:
        if f == path or path.startswith(f + ".") or f.startswith(path + "."):
            return True
    return False


class SchemaAnalyzer(Analyzer):
    """Missing, rare, undocumented and inconsistently typed fields."""

    name = "schema"

    def analyze(self, scan: ScanResult | None, inventory: Inventory) -> list[Finding]:
        referenced = code_fields(scan)
        findings: list[Finding] = []
        for c in data_collections(inventory):
            sample = c.sample
            if sample is None or sample.sample_size == 0:
                continue
            findings.extend(self._type_inconsistency(c, sample))
            fields = referenced.get(c.name.lower())
            if fields:
                findings.extend(self._code_fields_in_sample(c, sample, fields))
                findings.extend(self._undocumented(c, sample, fields))
        return sort_findings(findings)

    @staticmethod
    def _code_fields_in_sample(c: CollectionInfo, sample: SampleStats, fields: set[str]) -> list[Finding]:
        by_path: dict[str, FieldSample] = {}
        for fs in sample.fields:
            by_path.setdefault(plain_path(fs.path), fs)

        findings = []
        for field_name in sorted(fields):
            if field_name == "_id":
                continue
            fs = by_path.get(field_name)
            if fs is None:
                findings.append(Finding(
                    type=FindingType.MISSING_FIELD,
                    severity=SEVERITY_MEDIUM,
                    database=c.database,
                    collection=c.name,
                    index=field_name,
                    message=(
                        f'field "{field_name}" is used in code but absent from '
                        f"{sample.sample_size} sampled documents"
                    ),
                ))
                continue
            ratio = fs.count / sample.sample_size
            if ratio < RARE_FIELD_RATIO:
                findings.append(Finding(
                    type=FindingType.RARE_FIELD,
                    severity=SEVERITY_LOW,
                    database=c.database,
                    collection=c.name,
                    index=field_name,
                    message=(
                        f'field "{field_name}" is used in code but present in only '
                        f"{fs.count}/{sample.sample_size} sampled documents ({ratio:.0%})"
                    ),
                ))
        return findings

    @staticmethod
    def _type_inconsistency(c: CollectionInfo, sample: SampleStats) -> list[Finding]:
        findings = []
        for fs in sample.fields:
            if len([t for t in fs.types if t != "null"]) <= 1:
                continue
            findings.append(Finding(
                type=FindingType.TYPE_INCONSISTENCY,
                severity=SEVERITY_MEDIUM,
                database=c.database,
                collection=c.name,
                index=fs.path,
                message=(
                    f'field "{fs.path}" has mixed types in {sample.sample_size} '
                    f"sampled documents: {format_types(fs.types)}"
                ),
            ))
        return findings

    @staticmethod
    def _undocumented(c: CollectionInfo, sample: SampleStats, fields: set[str]) -> list[Finding]:
        findings = []
        for fs in sample.fields:
            if fs.path == "_id" or fs.path.startswith("_id."):
                continue
            ratio = fs.count / sample.sample_size
            if ratio < UNDOCUMENTED_FIELD_RATIO or is_documented(fs.path, fields):
                continue
            findings.append(Finding(
                type=FindingType.UNDOCUMENTED_FIELD,
                severity=SEVERITY_INFO,
                database=c.database,
                collection=c.name,
                index=fs.path,
                message=(
                    f'field "{fs.path}" is in {fs.count}/{sample.sample_size} sampled '
                    f"documents ({ratio:.0%}) but never used in code"
                ),
            ))
        return findings

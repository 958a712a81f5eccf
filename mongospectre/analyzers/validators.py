"""
Schema validator drift.

Compares the fields and value types written in code with the $jsonSchema
validator attached to each collection.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mongospectre.analyzers.base import Analyzer, find_collections
from mongospectre.models import (
    SEVERITY_INFO,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    VALUE_BOOL,
    VALUE_NUMBER,
    VALUE_OBJECT_ID,
    VALUE_UNKNOWN,
    Finding,
    FindingType,
    sort_findings,
)

if TYPE_CHECKING:
    from typing import Iterable

    from mongospectre.models import CollectionInfo, Inventory, ScanResult, WriteRef

logger = logging.getLogger(__name__)

# BSON type aliases -> inferred value types
BSON_TYPE_ALIASES = {
    "int": VALUE_NUMBER,
    "long": VALUE_NUMBER,
    "double": VALUE_NUMBER,
    "decimal": VALUE_NUMBER,
    "number": VALUE_NUMBER,
    "boolean": VALUE_BOOL,
    "bool": VALUE_BOOL,
    "objectid": VALUE_OBJECT_ID,
}


def normalize_bson_types(raw: Iterable[str]) -> list[str]:
    """Map bsonType / type names onto the value types inferred from code."""
    out = set()
    for t in raw:
        t = t.strip()
        if not t:
            continue
        out.add(BSON_TYPE_ALIASES.get(t.lower(), t.lower()))
    return sorted(out)


class ValidatorAnalyzer(Analyzer):
    """Missing validators and schema drift against code writes."""

    name = "validators"

    def analyze(self, scan: ScanResult | None, inventory: Inventory) -> list[Finding]:
        if scan is None or not scan.write_refs:
            return []

        writes: dict[str, dict[str, set[str]]] = {}
        for wr in scan.write_refs:
            coll = wr.collection.strip().lower()
            if coll:
                writes.setdefault(coll, {}).setdefault(wr.field, set()).add(wr.value_type or VALUE_UNKNOWN)

        findings: list[Finding] = []
        for coll_name in sorted(writes):
            for c in find_collections(coll_name, inventory.collections):
                if c.type == "view":
                    continue
                findings.extend(self._check_collection(c, writes[coll_name], scan.write_refs))
        return sort_findings(findings)

    def _check_collection(
        self,
        c: CollectionInfo,
        written: dict[str, set[str]],
        write_refs: list[WriteRef],
    ) -> list[Finding]:
        location = _first_write(c.name, write_refs)
        if c.validator is None:
            return [Finding(
                type=FindingType.VALIDATOR_MISSING,
                severity=SEVERITY_MEDIUM,
                database=c.database,
                collection=c.name,
                message=f'collection "{c.name}" is written in code but has no JSON schema validator',
                location=location,
            )]

        validator = c.validator
        action = (validator.validation_action or "error").strip().lower()
        level = (validator.validation_level or "strict").strip().lower()
        findings = []

        if action == "warn":
            findings.append(Finding(
                type=FindingType.VALIDATOR_WARN_ONLY,
                severity=SEVERITY_INFO,
                database=c.database,
                collection=c.name,
                message="validator action is warn; schema violations are logged but not rejected",
            ))

        props = validator.properties
        if not props:
            return findings

        absent: list[str] = []
        mismatches: list[str] = []
        for field_name in sorted(written):
            if field_name == "_id":
                continue
            allowed = props.get(field_name)
            if allowed is None:
                absent.append(field_name)
                continue
            allowed_types = set(normalize_bson_types(allowed))
            if not allowed_types:
                continue
            observed = sorted(t for t in written[field_name] if t != VALUE_UNKNOWN and t not in allowed_types)
            if observed:
                mismatches.append(
                    f'"{field_name}" expects [{", ".join(sorted(allowed_types))}] '
                    f'but code writes [{", ".join(observed)}]'
                )

        if absent:
            quoted = ", ".join(f'"{f}"' for f in absent)
            findings.append(Finding(
                type=FindingType.FIELD_NOT_IN_VALIDATOR,
                severity=SEVERITY_MEDIUM,
                database=c.database,
                collection=c.name,
                message=f"field(s) {quoted} written in code but missing from validator properties",
                location=location,
            ))
        if mismatches:
            findings.append(Finding(
                type=FindingType.VALIDATOR_STALE,
                severity=SEVERITY_MEDIUM,
                database=c.database,
                collection=c.name,
                message="validator types disagree with code writes: " + "; ".join(mismatches),
                location=location,
            ))
        if (absent or mismatches) and action == "error" and level == "strict":
            findings.append(Finding(
                type=FindingType.VALIDATOR_STRICT_RISK,
                severity=SEVERITY_LOW,
                database=c.database,
                collection=c.name,
                message="validator is in strict/error mode with a stale schema; mismatched writes will be rejected",
            ))
        return findings


def _first_write(collection: str, write_refs: list[WriteRef]) -> dict[str, object] | None:
    lowered = collection.lower()
    for wr in write_refs:
        if wr.collection.lower() == lowered:
            return {"file": wr.file, "line": wr.line}
    return None

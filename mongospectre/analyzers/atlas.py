"""
Atlas advisory rules.

Turns Performance Advisor suggestions, open alerts, cluster tier and
version information from the Atlas Admin API into findings. Suggestions
are correlated with the fields queried in code.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from mongospectre.analyzers.base import GIB, Analyzer
from mongospectre.models import (
    SEVERITY_HIGH,
    SEVERITY_INFO,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    Finding,
    FindingType,
    sort_findings,
)
from mongospectre.utils import split_namespace

if TYPE_CHECKING:
    from mongospectre.models import AtlasAdvisory, Inventory, ScanResult

logger = logging.getLogger(__name__)

ATLAS_DATABASE = "atlas"
SMALL_TIER_MAX = 10
SMALL_TIER_STORAGE_LIMIT = 500 * GIB

ACTIVE_ALERT_STATUSES = frozenset({"", "OPEN", "TRACKING", "CREATED"})
INACTIVE_ALERT_STATUSES = frozenset({"CLOSED", "RESOLVED", "CANCELED", "CANCELLED", "INACTIVE"})

_TIER_RE = re.compile(r"^M(\d+)")
_VERSION_PART_RE = re.compile(r"^(\d+)")


def is_active_alert(status: str) -> bool:
    """Unknown statuses count as active."""
    return status.strip().upper() not in INACTIVE_ALERT_STATUSES


def atlas_tier(instance_size: str) -> int:
    """Numeric tier of an instance size name: "M30" -> 30, "R40" -> 0."""
    m = _TIER_RE.match(instance_size.strip().upper())
    return int(m.group(1)) if m else 0


def normalize_version(raw: str) -> str:
    """
    Normalize a version string to MAJOR.MINOR.PATCH.

    "v7.0" -> "7.0.0", "6.0.12-ent" -> "6.0.12"; fewer than two numeric
    parts yields "".
    """
    raw = raw.strip().lower()
    if raw.startswith("v"):
        raw = raw[1:]
    nums: list[str] = []
    for part in raw.split("."):
        m = _VERSION_PART_RE.match(part)
        if not m:
            break
        nums.append(m.group(1))
        if len(nums) == 3:
            break
    if len(nums) < 2:
        return ""
    while len(nums) < 3:
        nums.append("0")
    return ".".join(nums)


def compare_version(a: str, b: str) -> int:
    """Return -1, 0 or 1 comparing two version strings numerically."""
    def parts(v: str) -> tuple[int, ...]:
        norm = normalize_version(v)
        return tuple(int(p) for p in norm.split(".")) if norm else (0, 0, 0)

    pa, pb = parts(a), parts(b)
    return (pa > pb) - (pa < pb)


def cluster_label(advisory: AtlasAdvisory) -> str:
    return advisory.cluster.name.strip() or advisory.project_id or ATLAS_DATABASE


class AtlasAnalyzer(Analyzer):
    """Performance Advisor, alerts, tier and version checks."""

    name = "atlas"

    def analyze(self, scan: ScanResult | None, inventory: Inventory) -> list[Finding]:
        advisory = inventory.atlas
        if advisory is None:
            return []
        findings: list[Finding] = []
        findings.extend(self._suggestions(advisory, scan))
        findings.extend(self._alerts(advisory))
        findings.extend(self._tier(advisory, inventory))
        findings.extend(self._version(advisory))
        return sort_findings(findings)

    @staticmethod
    def _suggestions(advisory: AtlasAdvisory, scan: ScanResult | None) -> list[Finding]:
        queried: dict[str, set[str]] = {}
        if scan is not None:
            for fr in scan.field_refs:
                queried.setdefault(fr.collection.lower(), set()).add(fr.field.lower())

        findings = []
        seen = set()
        for suggestion in advisory.suggested_indexes:
            namespace = suggestion.namespace.strip()
            fields = list(dict.fromkeys(f.strip() for f in suggestion.index_fields if f.strip()))
            if not namespace or not fields:
                continue
            dedup_key = (namespace.lower(), tuple(fields))
            if dedup_key in seen:
                continue
            seen.add(dedup_key)

            db, coll = split_namespace(namespace)
            coll_fields = queried.get(coll.lower(), set())
            matches = sorted(f for f in fields if f.lower() in coll_fields)
            spec = "{" + ", ".join(f"{f}: 1" for f in fields) + "}"
            message = f"Atlas Performance Advisor suggests index {spec}"
            if matches:
                message += f"; matching queried code fields: {', '.join(matches)}"
            elif scan is not None:
                message += "; suggested fields were not detected in code queries"
            findings.append(Finding(
                type=FindingType.ATLAS_INDEX_SUGGESTION,
                severity=SEVERITY_LOW if matches else SEVERITY_INFO,
                database=db or ATLAS_DATABASE,
                collection=coll,
                index="_".join(f"{f}_1" for f in fields),
                message=message,
            ))
        return findings

    @staticmethod
    def _alerts(advisory: AtlasAdvisory) -> list[Finding]:
        label = cluster_label(advisory)
        findings = []
        for alert in advisory.alerts:
            if not is_active_alert(alert.status):
                continue
            event = alert.event_type_name.strip() or "UNKNOWN"
            status = alert.status.strip().upper() or "OPEN"
            findings.append(Finding(
                type=FindingType.ATLAS_ALERT_ACTIVE,
                severity=SEVERITY_MEDIUM,
                database=ATLAS_DATABASE,
                collection=label,
                index=event,
                message=f'active Atlas alert "{event}" (status {status})',
            ))
        return findings

    @staticmethod
    def _tier(advisory: AtlasAdvisory, inventory: Inventory) -> list[Finding]:
        tier = atlas_tier(advisory.cluster.instance_size_name)
        if tier <= 0 or tier > SMALL_TIER_MAX:
            return []
        total = sum(c.storage_size for c in inventory.collections)
        if total < SMALL_TIER_STORAGE_LIMIT:
            return []
        return [Finding(
            type=FindingType.ATLAS_TIER_MISMATCH,
            severity=SEVERITY_HIGH,
            database=ATLAS_DATABASE,
            collection=cluster_label(advisory),
            message=(
                f"cluster tier {advisory.cluster.instance_size_name} may be undersized "
                f"for {total / GIB:.1f} GB storage"
            ),
        )]

    @staticmethod
    def _version(advisory: AtlasAdvisory) -> list[Finding]:
        current = normalize_version(advisory.cluster.mongodb_version)
        if not current:
            return []
        latest = ""
        for v in advisory.available_versions:
            norm = normalize_version(v)
            if norm and (not latest or compare_version(norm, latest) > 0):
                latest = norm
        if not latest or compare_version(current, latest) >= 0:
            return []
        return [Finding(
            type=FindingType.ATLAS_VERSION_BEHIND,
            severity=SEVERITY_MEDIUM,
            database=ATLAS_DATABASE,
            collection=cluster_label(advisory),
            message=f"cluster MongoDB version {current} is behind available version {latest}",
        )]

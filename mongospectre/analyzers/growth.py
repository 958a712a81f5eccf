"""
Collection growth rules.

The size checks need only the current inventory. The growth rates need the
collections recorded in a baseline report and compare each one with its
current stats by (database, name).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from mongospectre.analyzers.antipatterns import format_bytes
from mongospectre.analyzers.base import GIB, Analyzer, data_collections
from mongospectre.models import (
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    Finding,
    FindingType,
    sort_findings,
)

if TYPE_CHECKING:
    from mongospectre.models import CollectionInfo, Inventory, ScanResult

logger = logging.getLogger(__name__)

RAPID_GROWTH_PCT = 50.0
RAPID_GROWTH_BYTES = GIB
APPROACHING_LIMIT_BYTES = 12 * GIB
RECLAIM_RATIO = 2.0


def growth_pct(old: int, new: int) -> float:
    return (new - old) / old * 100.0


def format_elapsed(seconds: float) -> str:
    """Coarse elapsed time: "3 days", "5 hours" or "12 minutes"."""
    if seconds >= 86400:
        return f"{int(seconds // 86400)} days"
    if seconds >= 3600:
        return f"{int(seconds // 3600)} hours"
    return f"{max(int(seconds // 60), 0)} minutes"


class GrowthAnalyzer(Analyzer):
    """Size limits, reclaimable storage and growth since a baseline."""

    name = "growth"

    def __init__(
        self,
        previous: list[CollectionInfo] | None = None,
        previous_time: datetime | None = None,
        now: datetime | None = None,
    ):
        """
        Args:
            previous: Collections from a baseline report, None without one.
            previous_time: When the baseline was taken.
            now: Reference time for the elapsed period (defaults to the current UTC time).
        """
        self.previous = {(c.database, c.name): c for c in previous or []}
        self.previous_time = previous_time
        self.now = now or datetime.now(timezone.utc)

    def analyze(self, scan: ScanResult | None, inventory: Inventory) -> list[Finding]:
        findings: list[Finding] = []
        for c in data_collections(inventory):
            findings.extend(self._approaching_limit(c))
            findings.extend(self._storage_reclaim(c))
            old = self.previous.get((c.database, c.name))
            if old is not None:
                findings.extend(self._rapid_growth(c, old))
                findings.extend(self._index_outpacing(c, old))
        return sort_findings(findings)

    def _period(self) -> str:
        if self.previous_time is None:
            return "since the baseline"
        return f"in {format_elapsed((self.now - self.previous_time).total_seconds())}"

    def _rapid_growth(self, c: CollectionInfo, old: CollectionInfo) -> list[Finding]:
        if old.size <= 0 or c.size <= old.size:
            return []
        pct = growth_pct(old.size, c.size)
        grown = c.size - old.size
        if pct < RAPID_GROWTH_PCT and grown < RAPID_GROWTH_BYTES:
            return []
        return [Finding(
            type=FindingType.RAPID_GROWTH,
            severity=SEVERITY_MEDIUM,
            database=c.database,
            collection=c.name,
            message=(
                f"data size grew {pct:.0f}% ({format_bytes(old.size)} -> {format_bytes(c.size)}) "
                f"{self._period()}"
            ),
        )]

    def _index_outpacing(self, c: CollectionInfo, old: CollectionInfo) -> list[Finding]:
        if old.size <= 0 or old.total_index_size <= 0 or c.size <= 0 or c.total_index_size <= 0:
            return []
        data_pct = growth_pct(old.size, c.size)
        index_pct = growth_pct(old.total_index_size, c.total_index_size)
        if index_pct <= data_pct or index_pct <= 0:
            return []
        return [Finding(
            type=FindingType.INDEX_GROWTH_OUTPACING,
            severity=SEVERITY_LOW,
            database=c.database,
            collection=c.name,
            message=(
                f"index size grew {index_pct:.0f}% while data grew {data_pct:.0f}% {self._period()}; "
                "review indexes for redundancy"
            ),
        )]

    @staticmethod
    def _approaching_limit(c: CollectionInfo) -> list[Finding]:
        if c.size < APPROACHING_LIMIT_BYTES:
            return []
        return [Finding(
            type=FindingType.APPROACHING_LIMIT,
            severity=SEVERITY_MEDIUM,
            database=c.database,
            collection=c.name,
            message=f"data size is {c.size / GIB:.1f} GB; consider sharding or archiving",
        )]

    @staticmethod
    def _storage_reclaim(c: CollectionInfo) -> list[Finding]:
        if c.size <= 0 or c.storage_size <= c.size * RECLAIM_RATIO:
            return []
        return [Finding(
            type=FindingType.STORAGE_RECLAIM,
            severity=SEVERITY_LOW,
            database=c.database,
            collection=c.name,
            message=(
                f"storage size {format_bytes(c.storage_size)} is {c.storage_size / c.size:.1f}x "
                f"the data size {format_bytes(c.size)}; compact may reclaim space"
            ),
        )]

"""
Rule engine.

Runs every rule module over one (scan, inventory) pair, drops findings on
excluded names, collapses findings that share a canonical key and returns
them in a stable order.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mongospectre.analyzers.advice import IndexAdviceAnalyzer
from mongospectre.analyzers.antipatterns import AntiPatternAnalyzer
from mongospectre.analyzers.atlas import AtlasAnalyzer
from mongospectre.analyzers.collections import CollectionAnalyzer
from mongospectre.analyzers.growth import GrowthAnalyzer
from mongospectre.analyzers.indexes import IndexAnalyzer
from mongospectre.analyzers.profiler import ProfilerAnalyzer
from mongospectre.analyzers.replset import ReplicaSetAnalyzer
from mongospectre.analyzers.schema import SchemaAnalyzer
from mongospectre.analyzers.security import SecurityAnalyzer
from mongospectre.analyzers.sharding import ShardingAnalyzer
from mongospectre.analyzers.urilint import UriAnalyzer
from mongospectre.analyzers.users import UserAnalyzer
from mongospectre.analyzers.validators import ValidatorAnalyzer
from mongospectre.config import DEFAULT_CONFIG
from mongospectre.models import severity_rank, sort_findings
from mongospectre.utils import matches_any

if TYPE_CHECKING:
    from datetime import datetime
    from typing import Any

    from mongospectre.analyzers.base import Analyzer
    from mongospectre.analyzers.baseline import Snapshot
    from mongospectre.models import Finding, Inventory, ScanResult

logger = logging.getLogger(__name__)


def dedup_findings(findings: list[Finding]) -> list[Finding]:
    """
    Keep one finding per canonical key.

    The highest severity wins; ties keep the first message in sort order.

    Args:
        findings: Findings in any order.

    Returns:
        Sorted findings with unique canonical keys.
    """
    best: dict[tuple[str, str, str, str], Finding] = {}
    for f in sort_findings(findings):
        key = f.canonical_key()
        kept = best.get(key)
        if kept is None or severity_rank(f.severity) > severity_rank(kept.severity):
            best[key] = f
    return sort_findings(list(best.values()))


class RuleEngine:
    """Apply the full rule catalog to a scan and an inventory."""

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        now: datetime | None = None,
        previous: Snapshot | None = None,
    ):
        """
        Initialize the rule engine.

        Args:
            config: Configuration dictionary (merged with defaults).
            now: Reference time for index usage windows and growth periods.
            previous: Baseline report; its collection stats enable growth rates.
        """
        self.config = config or DEFAULT_CONFIG
        thresholds = dict(DEFAULT_CONFIG["thresholds"])
        thresholds.update(self.config.get("thresholds") or {})
        exclude = self.config.get("exclude") or {}
        self.exclude_collections = list(exclude.get("collections") or [])
        self.exclude_databases = list(exclude.get("databases") or [])

        self.analyzers: list[Analyzer] = [
            CollectionAnalyzer(oversized_docs=thresholds["oversized_docs"]),
            IndexAnalyzer(
                index_usage_days=thresholds["index_usage_days"],
                missing_index_docs=thresholds["missing_index_docs"],
                small_collection_docs=thresholds["small_collection_docs"],
                max_indexes=thresholds["max_indexes"],
                large_index_bytes=thresholds["large_index_bytes"],
                now=now,
            ),
            ShardingAnalyzer(
                large_storage_bytes=thresholds["large_storage_bytes"],
                unbalanced_ratio=thresholds["unbalanced_ratio"],
            ),
            ProfilerAnalyzer(frequent_query_count=thresholds["frequent_query_count"]),
            ValidatorAnalyzer(),
            UserAnalyzer(),
            AtlasAnalyzer(),
            SecurityAnalyzer(),
            ReplicaSetAnalyzer(),
            SchemaAnalyzer(),
            AntiPatternAnalyzer(),
            IndexAdviceAnalyzer(min_docs=thresholds["small_collection_docs"]),
            GrowthAnalyzer(
                previous=previous.collections if previous is not None else None,
                previous_time=previous.timestamp if previous is not None else None,
                now=now,
            ),
        ]
        uri = self.config.get("uri") or ""
        if self.config.get("lint_uri") and uri:
            self.analyzers.append(UriAnalyzer(uri))

    def run(self, scan: ScanResult | None, inventory: Inventory) -> list[Finding]:
        """
        Run all rules.

        Args:
            scan: Source scan, or None for an inventory-only audit.
            inventory: Cluster snapshot.

        Returns:
            Deduplicated findings in canonical-key order.
        """
        findings: list[Finding] = []
        for analyzer in self.analyzers:
            produced = analyzer.analyze(scan, inventory)
            logger.debug("%s: %d findings", analyzer.name, len(produced))
            findings.extend(produced)
        return dedup_findings([f for f in findings if not self.is_excluded(f)])

    def is_excluded(self, finding: Finding) -> bool:
        if finding.collection and matches_any(finding.collection, self.exclude_collections):
            return True
        if finding.database and matches_any(finding.database, self.exclude_databases):
            return True
        return False

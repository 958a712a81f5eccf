"""
Sharding rules: shard key choice, chunk balance and the balancer.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mongospectre.analyzers.base import GIB, Analyzer, data_collections, format_key
from mongospectre.models import (
    SEVERITY_HIGH,
    SEVERITY_MEDIUM,
    Finding,
    FindingType,
    sort_findings,
)

if TYPE_CHECKING:
    from mongospectre.models import Inventory, ScanResult, ShardedCollection

logger = logging.getLogger(__name__)

MONOTONIC_KEY_NAMES = frozenset({"_id", "created_at", "createdat", "timestamp", "ts"})
MONOTONIC_KEY_SUFFIXES = ("_at", "At", "time", "Time", "date", "Date")


def is_monotonic_key(field_name: str) -> bool:
    """Heuristic for fields whose values only grow (ObjectIds, timestamps)."""
    if field_name.lower() in MONOTONIC_KEY_NAMES:
        return True
    return field_name.endswith(MONOTONIC_KEY_SUFFIXES)


def sampled_suffix(chunk_limit_hit: bool) -> str:
    return " (first 10000 chunks sampled)" if chunk_limit_hit else ""


class ShardingAnalyzer(Analyzer):
    """Unsharded large collections, hot shard keys, chunk skew, balancer."""

    name = "sharding"

    def __init__(self, large_storage_bytes: int = 10 * GIB, unbalanced_ratio: float = 0.75):
        """
        Initialize the sharding analyzer.

        Args:
            large_storage_bytes: Storage size above which a collection should be sharded.
            unbalanced_ratio: Largest shard share of chunks above which distribution is skewed.
        """
        self.large_storage_bytes = large_storage_bytes
        self.unbalanced_ratio = unbalanced_ratio

    def analyze(self, scan: ScanResult | None, inventory: Inventory) -> list[Finding]:
        sharding = inventory.sharding
        if sharding is None or not sharding.enabled:
            return []

        findings: list[Finding] = []
        sharded = set()
        for coll in sorted(sharding.collections, key=lambda c: c.namespace):
            sharded.add((coll.database.lower(), coll.collection.lower()))
            findings.extend(self._monotonic_key(coll))
            findings.extend(self._unbalanced(coll, sharding.shards))
            findings.extend(self._jumbo(coll))

        for c in data_collections(inventory):
            if c.storage_size < self.large_storage_bytes:
                continue
            if (c.database.lower(), c.name.lower()) in sharded:
                continue
            findings.append(Finding(
                type=FindingType.UNSHARDED_LARGE,
                severity=SEVERITY_MEDIUM,
                database=c.database,
                collection=c.name,
                message=f"collection storage is {c.storage_size / GIB:.1f} GB and collection is not sharded",
            ))

        if not sharding.balancer_enabled:
            findings.append(Finding(
                type=FindingType.BALANCER_DISABLED,
                severity=SEVERITY_MEDIUM,
                database="config",
                collection="settings",
                message="chunk balancer is disabled",
            ))
        return sort_findings(findings)

    @staticmethod
    def _monotonic_key(coll: ShardedCollection) -> list[Finding]:
        if not coll.key:
            return []
        first = coll.key[0]
        # Hashed keys (direction 0) spread monotonic values
        if first.direction == 0 or not is_monotonic_key(first.field):
            return []
        return [Finding(
            type=FindingType.MONOTONIC_SHARD_KEY,
            severity=SEVERITY_MEDIUM,
            database=coll.database,
            collection=coll.collection,
            message=f"shard key {format_key(coll.key)} is monotonic and concentrates inserts on one shard",
        )]

    def _unbalanced(self, coll: ShardedCollection, shards: list[str]) -> list[Finding]:
        loads = {shard: 0 for shard in shards}
        loads.update(coll.chunk_distribution)
        total = sum(loads.values())
        if len(loads) < 2 or total <= 0:
            return []
        busiest = max(sorted(loads), key=lambda s: loads[s])
        share = loads[busiest] / total
        if share <= self.unbalanced_ratio:
            return []
        return [Finding(
            type=FindingType.UNBALANCED_CHUNKS,
            severity=SEVERITY_HIGH,
            database=coll.database,
            collection=coll.collection,
            message=(
                f"chunk distribution is unbalanced: {busiest} holds {loads[busiest]} of "
                f"{total} chunks ({share:.0%}){sampled_suffix(coll.chunk_limit_hit)}"
            ),
        )]

    @staticmethod
    def _jumbo(coll: ShardedCollection) -> list[Finding]:
        if coll.jumbo_chunks <= 0:
            return []
        return [Finding(
            type=FindingType.JUMBO_CHUNKS,
            severity=SEVERITY_HIGH,
            database=coll.database,
            collection=coll.collection,
            message=f"{coll.jumbo_chunks} jumbo chunk(s) detected{sampled_suffix(coll.chunk_limit_hit)}",
        )]

"""
Replica set topology rules.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mongospectre.analyzers.base import Analyzer
from mongospectre.models import (
    SEVERITY_HIGH,
    SEVERITY_INFO,
    SEVERITY_MEDIUM,
    Finding,
    FindingType,
    sort_findings,
)

if TYPE_CHECKING:
    from mongospectre.models import Inventory, ReplicaSetInfo, ScanResult

logger = logging.getLogger(__name__)

UNHEALTHY_STATES = frozenset({
    "RECOVERING",
    "STARTUP",
    "STARTUP2",
    "DOWN",
    "ROLLBACK",
    "REMOVED",
    "UNKNOWN",
})

MIN_OPLOG_WINDOW_HOURS = 24


class ReplicaSetAnalyzer(Analyzer):
    """Member count, health, oplog window and election eligibility."""

    name = "replset"

    def analyze(self, scan: ScanResult | None, inventory: Inventory) -> list[Finding]:
        info = inventory.replica_set
        if info is None or not info.name:
            return []

        findings: list[Finding] = []
        members = info.members

        def add(finding_type: str, severity: str, message: str, index: str = "") -> None:
            findings.append(Finding(
                type=finding_type,
                severity=severity,
                collection=info.name,
                index=index,
                message=message,
            ))

        if len(members) <= 1:
            add(
                FindingType.SINGLE_MEMBER_REPLSET, SEVERITY_HIGH,
                f'replica set "{info.name}" has only {len(members)} member; no failover capability',
            )

        voting = sum(1 for m in members if m.votes > 0)
        if voting > 0 and voting % 2 == 0:
            add(
                FindingType.EVEN_MEMBER_COUNT, SEVERITY_MEDIUM,
                f'replica set "{info.name}" has {voting} voting members; an even count risks tied elections',
            )

        for m in sorted(members, key=lambda m: m.name):
            state = m.state.upper()
            if m.health == 0 or state in UNHEALTHY_STATES:
                add(
                    FindingType.MEMBER_UNHEALTHY, SEVERITY_HIGH,
                    f"replica set member {m.name} is {state or 'UNKNOWN'} (health={m.health})",
                    index=m.name,
                )

        if 0 < info.oplog_window_hours < MIN_OPLOG_WINDOW_HOURS:
            add(
                FindingType.OPLOG_SMALL, SEVERITY_MEDIUM,
                f"oplog window is {info.oplog_window_hours:.1f} hours; "
                f"less than {MIN_OPLOG_WINDOW_HOURS}h risks unrecoverable replication lag",
            )

        if len(members) > 3 and not any(m.hidden for m in members):
            add(
                FindingType.NO_HIDDEN_MEMBER, SEVERITY_INFO,
                f'replica set "{info.name}" has {len(members)} members but no hidden member '
                "for analytics or backup workloads",
            )

        findings.extend(self._priority_zero(info))
        return sort_findings(findings)

    @staticmethod
    def _priority_zero(info: ReplicaSetInfo) -> list[Finding]:
        if not info.members:
            return []
        zero = sum(1 for m in info.members if m.priority == 0)
        if zero * 2 <= len(info.members):
            return []
        return [Finding(
            type=FindingType.PRIORITY_ZERO_MAJORITY,
            severity=SEVERITY_HIGH,
            collection=info.name,
            message=(
                f'replica set "{info.name}" has {zero}/{len(info.members)} members with priority 0; '
                "the majority cannot become primary"
            ),
        )]

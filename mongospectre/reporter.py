"""
Report rendering for mongospectre.

A Report bundles findings with run metadata and optional scan and
inventory data; render() turns it into JSON, text, SARIF 2.1.0 or the
spectre/v1 ingest envelope.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from mongospectre import __version__
from mongospectre.models import (
    SEVERITY_HIGH,
    SEVERITY_INFO,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    FindingType,
    max_severity,
)

if TYPE_CHECKING:
    from typing import Any

    from mongospectre.analyzers.baseline import BaselineDiff
    from mongospectre.models import CollectionInfo, Finding, ScanResult

logger = logging.getLogger(__name__)

FORMAT_JSON = "json"
FORMAT_TEXT = "text"
FORMAT_SARIF = "sarif"
FORMAT_SPECTRE = "spectre"

SARIF_SCHEMA = "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/main/sarif-2.1/schema/sarif-schema-2.1.0.json"
INFORMATION_URI = "https://github.com/ppiankov/mongospectre"

SARIF_LEVELS = {
    SEVERITY_HIGH: "error",
    SEVERITY_MEDIUM: "warning",
    SEVERITY_LOW: "note",
    SEVERITY_INFO: "none",
}

SEVERITY_LABELS = {
    SEVERITY_HIGH: "HIGH",
    SEVERITY_MEDIUM: "MEDIUM",
    SEVERITY_LOW: "LOW",
    SEVERITY_INFO: "INFO",
}

# SARIF rule descriptors
RULE_DESCRIPTIONS = {
    FindingType.MISSING_COLLECTION: "Collection referenced in code does not exist",
    FindingType.UNUSED_COLLECTION: "Collection exists but is unused",
    FindingType.OVERSIZED_COLLECTION: "Collection has a very high document count",
    FindingType.MISSING_TTL: "Timestamp collection without TTL index",
    FindingType.DYNAMIC_COLLECTION: "Collection name chosen at runtime",
    FindingType.UNUSED_INDEX: "Index has never been used",
    FindingType.ORPHANED_INDEX: "Index on unreferenced collection with zero usage",
    FindingType.DUPLICATE_INDEX: "Index is a prefix duplicate of another",
    FindingType.MISSING_INDEX: "Collection may need additional indexes",
    FindingType.UNINDEXED_QUERY: "Queried field has no covering index",
    FindingType.SUGGEST_INDEX: "Consider adding an index for queried field",
    FindingType.INDEX_BLOAT: "Indexes are larger than the data they cover",
    FindingType.WRITE_HEAVY_OVER_INDEXED: "Too many indexes slow down writes",
    FindingType.LARGE_INDEX: "Single index is very large",
    FindingType.UNSHARDED_LARGE: "Large collection without sharding",
    FindingType.MONOTONIC_SHARD_KEY: "Shard key is monotonic and may create hot shards",
    FindingType.UNBALANCED_CHUNKS: "Chunk distribution is heavily skewed",
    FindingType.JUMBO_CHUNKS: "Jumbo chunks cannot be split automatically",
    FindingType.BALANCER_DISABLED: "Chunk balancer is disabled",
    FindingType.COLLECTION_SCAN_SOURCE: "Code location correlates with profiler COLLSCAN queries",
    FindingType.SLOW_QUERY_SOURCE: "Code location correlates with slow profiler queries",
    FindingType.FREQUENT_SLOW_QUERY: "Repeated slow query shape in profiler",
    FindingType.VALIDATOR_MISSING: "Collection writes are not constrained by a validator",
    FindingType.FIELD_NOT_IN_VALIDATOR: "Code writes a field missing from validator properties",
    FindingType.VALIDATOR_STALE: "Validator field type does not match code write type",
    FindingType.VALIDATOR_STRICT_RISK: "Strict/error validator can reject writes on schema drift",
    FindingType.VALIDATOR_WARN_ONLY: "Validator is warn-only and does not reject invalid writes",
    FindingType.OVERPRIVILEGED_USER: "User holds administrative roles",
    FindingType.MULTIPLE_ADMIN_USERS: "Several users hold root-equivalent roles",
    FindingType.ADMIN_IN_DATA_DB: "Administrative user defined on an application database",
    FindingType.DUPLICATE_USER: "Same username defined on several databases",
    FindingType.ATLAS_INDEX_SUGGESTION: "Atlas Performance Advisor recommends an index",
    FindingType.ATLAS_ALERT_ACTIVE: "Atlas project has active alerts",
    FindingType.ATLAS_TIER_MISMATCH: "Atlas cluster tier may be undersized for current data footprint",
    FindingType.ATLAS_VERSION_BEHIND: "Atlas cluster version is behind available project versions",
    FindingType.AUTH_DISABLED: "Authentication is disabled",
    FindingType.BIND_ALL_INTERFACES: "Server listens on all network interfaces",
    FindingType.TLS_DISABLED: "TLS is disabled",
    FindingType.TLS_ALLOW_INVALID_CERTS: "TLS accepts invalid certificates",
    FindingType.AUDIT_LOG_DISABLED: "Audit log is disabled",
    FindingType.LOCALHOST_EXCEPTION_ACTIVE: "Localhost authentication bypass is enabled",
    FindingType.SINGLE_MEMBER_REPLSET: "Replica set has a single member",
    FindingType.EVEN_MEMBER_COUNT: "Replica set has an even number of voting members",
    FindingType.MEMBER_UNHEALTHY: "Replica set member is unhealthy",
    FindingType.OPLOG_SMALL: "Oplog window is short",
    FindingType.NO_HIDDEN_MEMBER: "Large replica set without a hidden member",
    FindingType.PRIORITY_ZERO_MAJORITY: "Most members can never become primary",
    FindingType.MISSING_FIELD: "Field used in code is absent from sampled documents",
    FindingType.RARE_FIELD: "Field used in code is rare in sampled documents",
    FindingType.UNDOCUMENTED_FIELD: "Common field in sampled documents is never used in code",
    FindingType.TYPE_INCONSISTENCY: "Field holds several BSON types across documents",
    FindingType.UNBOUNDED_ARRAY: "Array field may grow without bound",
    FindingType.DEEP_NESTING: "Field is deeply nested",
    FindingType.LARGE_DOCUMENT: "Sampled document is close to the BSON size limit",
    FindingType.FIELD_NAME_COLLISION: "Field is an object in some documents and a scalar in others",
    FindingType.EXCESSIVE_FIELD_COUNT: "Documents have very many top-level fields",
    FindingType.NUMERIC_FIELD_NAMES: "Field path has a numeric segment",
    FindingType.URI_NO_AUTH: "Connection string has no credentials",
    FindingType.URI_NO_TLS: "Connection string does not enable TLS",
    FindingType.URI_NO_RETRY_WRITES: "Connection string does not enable retryable writes",
    FindingType.URI_PLAINTEXT_PASSWORD: "Connection string embeds a password",
    FindingType.URI_DEFAULT_AUTH_SOURCE: "Connection string relies on the default authSource",
    FindingType.URI_SHORT_TIMEOUT: "Connection string timeout is very short",
    FindingType.URI_NO_READ_PREFERENCE: "Connection string does not set a read preference",
    FindingType.URI_DIRECT_CONNECTION: "Direct connection bypasses topology discovery",
    FindingType.COMPOUND_INDEX_SUGGESTION: "Compound index would serve repeated query shapes",
    FindingType.INDEX_ORDER_WARNING: "Index field order does not match queries",
    FindingType.REDUNDANT_INDEX: "Index is a prefix of a longer index",
    FindingType.PARTIAL_COVERAGE: "Index covers all but one field of a frequent query",
    FindingType.SINGLE_FIELD_REDUNDANT: "Single-field index is covered by a compound index",
    FindingType.INACTIVE_USER: "Database user has not authenticated recently",
    FindingType.FAILED_AUTH_ONLY: "Database user has only failed authentications",
    FindingType.INACTIVE_PRIVILEGED_USER: "Privileged database user has not authenticated recently",
    FindingType.ATLAS_USER_NO_SCOPE: "Atlas user can reach every cluster in the project",
    FindingType.RAPID_GROWTH: "Collection grew quickly since the baseline",
    FindingType.INDEX_GROWTH_OUTPACING: "Indexes grew faster than data since the baseline",
    FindingType.APPROACHING_LIMIT: "Collection data size is very large",
    FindingType.STORAGE_RECLAIM: "Storage size far exceeds data size",
}


@dataclass
class ReportMetadata:
    command: str = ""
    version: str = __version__
    timestamp: str = ""
    host: str = ""
    database: str = ""
    server_version: str = ""
    repo_path: str = ""
    uri_hash: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "version": self.version,
            "command": self.command,
            "timestamp": self.timestamp,
        }
        optional = (
            ("host", self.host),
            ("database", self.database),
            ("mongodbVersion", self.server_version),
            ("repoPath", self.repo_path),
            ("uriHash", self.uri_hash),
        )
        for key, value in optional:
            if value:
                data[key] = value
        return data


@dataclass
class Report:
    metadata: ReportMetadata
    findings: list[Finding] = field(default_factory=list)
    scan: ScanResult | None = None
    collections: list[CollectionInfo] | None = None
    baseline: BaselineDiff | None = None
    suppressed: int = 0

    @property
    def max_severity(self) -> str:
        return max_severity(self.findings)

    def summary(self) -> dict[str, int]:
        counts = {
            "total": len(self.findings),
            SEVERITY_HIGH: 0,
            SEVERITY_MEDIUM: 0,
            SEVERITY_LOW: 0,
            SEVERITY_INFO: 0,
        }
        for f in self.findings:
            if f.severity in counts:
                counts[f.severity] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "metadata": self.metadata.to_dict(),
            "findings": [f.to_dict() for f in self.findings],
            "maxSeverity": self.max_severity,
            "summary": self.summary(),
        }
        if self.suppressed:
            data["suppressed"] = self.suppressed
        if self.baseline is not None:
            data["baseline"] = {
                "summary": self.baseline.summary(),
                "findings": self.baseline.to_dict(),
            }
        if self.scan is not None:
            data["scan"] = self.scan.to_dict()
        if self.collections:
            data["collections"] = [c.to_dict() for c in self.collections]
        return data


def build_report(
    command: str,
    findings: list[Finding],
    now: datetime | None = None,
    **metadata: Any,
) -> Report:
    """
    Create a Report stamped with the current UTC time.

    Args:
        command: Subcommand that produced the findings.
        findings: Findings in their final order.
        now: Timestamp override.
        **metadata: Extra ReportMetadata fields (host, database, ...).
    """
    now = now or datetime.now(timezone.utc)
    meta = ReportMetadata(
        command=command,
        timestamp=now.strftime("%Y-%m-%dT%H:%M:%SZ"),
        **metadata,
    )
    return Report(metadata=meta, findings=list(findings))


# =============================================================================
# Renderers
# =============================================================================

def render_json(report: Report) -> str:
    return json.dumps(report.to_dict(), indent=2, default=str)


def render_text(report: Report) -> str:
    """One line per finding plus a summary, with a header when metadata is set."""
    lines = []
    meta = report.metadata
    if meta.command:
        header = f"mongospectre {meta.version} | {meta.command}" if meta.version else f"mongospectre | {meta.command}"
        if meta.server_version:
            header += f" | MongoDB {meta.server_version}"
        if meta.host:
            header += f" | {meta.host}"
        if meta.database:
            header += f" | db={meta.database}"
        lines.extend([header, ""])

    if report.baseline is not None:
        lines.append(render_baseline_diff(report.baseline))

    if not report.findings:
        lines.append("No findings.")
        return "\n".join(lines)

    for f in report.findings:
        label = SEVERITY_LABELS.get(f.severity, f.severity.upper())
        target = f.target()
        suffix = f" ({target})" if target else ""
        lines.append(f"[{label}] {f.type}: {f.message}{suffix}")

    s = report.summary()
    lines.append("")
    lines.append(
        f"Summary: {s['total']} findings "
        f"(high={s[SEVERITY_HIGH]} medium={s[SEVERITY_MEDIUM]} low={s[SEVERITY_LOW]} info={s[SEVERITY_INFO]})"
    )
    if report.suppressed:
        lines.append(f"Suppressed by ignore file: {report.suppressed}")
    return "\n".join(lines)


def render_baseline_diff(diff: BaselineDiff) -> str:
    """New and resolved findings followed by the diff counts."""
    lines = []
    for f in diff.new:
        lines.append(f"+ [new] {f.type}: {f.message}")
    for f in diff.resolved:
        lines.append(f"- [resolved] {f.type}: {f.message}")
    counts = diff.summary()
    lines.append("")
    lines.append(
        f"Baseline diff: {counts['new']} new, {counts['resolved']} resolved, {counts['unchanged']} unchanged"
    )
    lines.append("")
    return "\n".join(lines)


def sarif_result(finding: Finding) -> dict[str, Any]:
    location: dict[str, Any] = {
        "logicalLocations": [{
            "fullyQualifiedName": finding.target(),
            "kind": "object",
        }],
    }
    if finding.location and finding.location.get("file"):
        physical: dict[str, Any] = {"artifactLocation": {"uri": finding.location["file"]}}
        if finding.location.get("line"):
            physical["region"] = {"startLine": int(finding.location["line"])}
        location["physicalLocation"] = physical
    return {
        "ruleId": finding.type,
        "level": SARIF_LEVELS.get(finding.severity, "none"),
        "message": {"text": finding.message},
        "locations": [location],
    }


def render_sarif(report: Report) -> str:
    """SARIF 2.1.0 log with one result per finding."""
    rules = []
    for rule_id in sorted({f.type for f in report.findings}):
        rule: dict[str, Any] = {"id": rule_id}
        if rule_id in RULE_DESCRIPTIONS:
            rule["shortDescription"] = {"text": RULE_DESCRIPTIONS[rule_id]}
        rules.append(rule)

    log = {
        "$schema": SARIF_SCHEMA,
        "version": "2.1.0",
        "runs": [{
            "tool": {
                "driver": {
                    "name": "mongospectre",
                    "version": report.metadata.version,
                    "informationUri": INFORMATION_URI,
                    "rules": rules,
                },
            },
            "results": [sarif_result(f) for f in report.findings],
        }],
    }
    return json.dumps(log, indent=2)


def render_spectre(report: Report) -> str:
    """spectre/v1 ingest envelope."""
    envelope = {
        "schema": "spectre/v1",
        "tool": "mongospectre",
        "version": report.metadata.version,
        "timestamp": report.metadata.timestamp,
        "target": {
            "type": "mongodb",
            "uri_hash": report.metadata.uri_hash,
        },
        "findings": [f.to_dict() for f in report.findings],
        "summary": report.summary(),
    }
    return json.dumps(envelope, indent=2)


RENDERERS: dict[str, Callable[[Report], str]] = {
    FORMAT_JSON: render_json,
    FORMAT_TEXT: render_text,
    FORMAT_SARIF: render_sarif,
    FORMAT_SPECTRE: render_spectre,
}


def render(report: Report, fmt: str) -> str:
    """
    Render a report.

    Raises:
        ValueError: For an unknown format.
    """
    renderer = RENDERERS.get(fmt)
    if renderer is None:
        raise ValueError(f"unknown format {fmt!r}; choose from {', '.join(sorted(RENDERERS))}")
    return renderer(report)

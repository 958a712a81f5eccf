"""
Data models: scan references, cluster inventory, findings.

Everything here is a plain dataclass held in memory for one audit run.
The to_dict() methods produce the JSON shapes used in reports and read
back by the baseline differ.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


# Collection reference pattern kinds
PATTERN_DRIVER_CALL = "driver_call"
PATTERN_BRACKET = "bracket"
PATTERN_ORM = "orm"
PATTERN_DOT_ACCESS = "dot_access"

# Field usage
USAGE_EQUALITY = "equality"
USAGE_SORT = "sort"
USAGE_RANGE = "range"
USAGE_UNKNOWN = "unknown"

# Inferred value types of written fields
VALUE_UNKNOWN = "unknown"
VALUE_STRING = "string"
VALUE_NUMBER = "number"
VALUE_BOOL = "bool"
VALUE_NULL = "null"
VALUE_OBJECT = "object"
VALUE_ARRAY = "array"
VALUE_DATE = "date"
VALUE_OBJECT_ID = "objectId"

SEVERITY_INFO = "info"
SEVERITY_LOW = "low"
SEVERITY_MEDIUM = "medium"
SEVERITY_HIGH = "high"

SEVERITY_RANK = {
    SEVERITY_INFO: 0,
    SEVERITY_LOW: 1,
    SEVERITY_MEDIUM: 2,
    SEVERITY_HIGH: 3,
}


class FindingType:
    """Finding type names. Values are stable and appear in reports."""

    MISSING_COLLECTION = "MISSING_COLLECTION"
    UNUSED_COLLECTION = "UNUSED_COLLECTION"
    OVERSIZED_COLLECTION = "OVERSIZED_COLLECTION"
    MISSING_TTL = "MISSING_TTL"
    DYNAMIC_COLLECTION = "DYNAMIC_COLLECTION"

    UNUSED_INDEX = "UNUSED_INDEX"
    ORPHANED_INDEX = "ORPHANED_INDEX"
    DUPLICATE_INDEX = "DUPLICATE_INDEX"
    MISSING_INDEX = "MISSING_INDEX"
    UNINDEXED_QUERY = "UNINDEXED_QUERY"
    SUGGEST_INDEX = "SUGGEST_INDEX"
    INDEX_BLOAT = "INDEX_BLOAT"
    WRITE_HEAVY_OVER_INDEXED = "WRITE_HEAVY_OVER_INDEXED"
    LARGE_INDEX = "LARGE_INDEX"

    UNSHARDED_LARGE = "UNSHARDED_LARGE"
    MONOTONIC_SHARD_KEY = "MONOTONIC_SHARD_KEY"
    UNBALANCED_CHUNKS = "UNBALANCED_CHUNKS"
    JUMBO_CHUNKS = "JUMBO_CHUNKS"
    BALANCER_DISABLED = "BALANCER_DISABLED"

    COLLECTION_SCAN_SOURCE = "COLLECTION_SCAN_SOURCE"
    SLOW_QUERY_SOURCE = "SLOW_QUERY_SOURCE"
    FREQUENT_SLOW_QUERY = "FREQUENT_SLOW_QUERY"

    VALIDATOR_MISSING = "VALIDATOR_MISSING"
    FIELD_NOT_IN_VALIDATOR = "FIELD_NOT_IN_VALIDATOR"
    VALIDATOR_STALE = "VALIDATOR_STALE"
    VALIDATOR_STRICT_RISK = "VALIDATOR_STRICT_RISK"
    VALIDATOR_WARN_ONLY = "VALIDATOR_WARN_ONLY"

    OVERPRIVILEGED_USER = "OVERPRIVILEGED_USER"
    MULTIPLE_ADMIN_USERS = "MULTIPLE_ADMIN_USERS"
    ADMIN_IN_DATA_DB = "ADMIN_IN_DATA_DB"
    DUPLICATE_USER = "DUPLICATE_USER"

    ATLAS_INDEX_SUGGESTION = "ATLAS_INDEX_SUGGESTION"
    ATLAS_ALERT_ACTIVE = "ATLAS_ALERT_ACTIVE"
    ATLAS_TIER_MISMATCH = "ATLAS_TIER_MISMATCH"
    ATLAS_VERSION_BEHIND = "ATLAS_VERSION_BEHIND"

    AUTH_DISABLED = "AUTH_DISABLED"
    BIND_ALL_INTERFACES = "BIND_ALL_INTERFACES"
    TLS_DISABLED = "TLS_DISABLED"
    TLS_ALLOW_INVALID_CERTS = "TLS_ALLOW_INVALID_CERTS"
    AUDIT_LOG_DISABLED = "AUDIT_LOG_DISABLED"
    LOCALHOST_EXCEPTION_ACTIVE = "LOCALHOST_EXCEPTION_ACTIVE"

    SINGLE_MEMBER_REPLSET = "SINGLE_MEMBER_REPLSET"
    EVEN_MEMBER_COUNT = "EVEN_MEMBER_COUNT"
    MEMBER_UNHEALTHY = "MEMBER_UNHEALTHY"
    OPLOG_SMALL = "OPLOG_SMALL"
    NO_HIDDEN_MEMBER = "NO_HIDDEN_MEMBER"
    PRIORITY_ZERO_MAJORITY = "PRIORITY_ZERO_MAJORITY"

    MISSING_FIELD = "MISSING_FIELD"
    RARE_FIELD = "RARE_FIELD"
    UNDOCUMENTED_FIELD = "UNDOCUMENTED_FIELD"
    TYPE_INCONSISTENCY = "TYPE_INCONSISTENCY"

    UNBOUNDED_ARRAY = "UNBOUNDED_ARRAY"
    DEEP_NESTING = "DEEP_NESTING"
    LARGE_DOCUMENT = "LARGE_DOCUMENT"
    FIELD_NAME_COLLISION = "FIELD_NAME_COLLISION"
    EXCESSIVE_FIELD_COUNT = "EXCESSIVE_FIELD_COUNT"
    NUMERIC_FIELD_NAMES = "NUMERIC_FIELD_NAMES"

    URI_NO_AUTH = "URI_NO_AUTH"
    URI_NO_TLS = "URI_NO_TLS"
    URI_NO_RETRY_WRITES = "URI_NO_RETRY_WRITES"
    URI_PLAINTEXT_PASSWORD = "URI_PLAINTEXT_PASSWORD"
    URI_DEFAULT_AUTH_SOURCE = "URI_DEFAULT_AUTH_SOURCE"
    URI_SHORT_TIMEOUT = "URI_SHORT_TIMEOUT"
    URI_NO_READ_PREFERENCE = "URI_NO_READ_PREFERENCE"
    URI_DIRECT_CONNECTION = "URI_DIRECT_CONNECTION"

    COMPOUND_INDEX_SUGGESTION = "COMPOUND_INDEX_SUGGESTION"
    INDEX_ORDER_WARNING = "INDEX_ORDER_WARNING"
    REDUNDANT_INDEX = "REDUNDANT_INDEX"
    PARTIAL_COVERAGE = "PARTIAL_COVERAGE"
    SINGLE_FIELD_REDUNDANT = "SINGLE_FIELD_REDUNDANT"

    INACTIVE_USER = "INACTIVE_USER"
    FAILED_AUTH_ONLY = "FAILED_AUTH_ONLY"
    INACTIVE_PRIVILEGED_USER = "INACTIVE_PRIVILEGED_USER"
    ATLAS_USER_NO_SCOPE = "ATLAS_USER_NO_SCOPE"

    RAPID_GROWTH = "RAPID_GROWTH"
    INDEX_GROWTH_OUTPACING = "INDEX_GROWTH_OUTPACING"
    APPROACHING_LIMIT = "APPROACHING_LIMIT"
    STORAGE_RECLAIM = "STORAGE_RECLAIM"


# =============================================================================
# Source scan
# =============================================================================

@dataclass
class CollectionRef:
    collection: str
    file: str
    line: int
    pattern: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection": self.collection,
            "file": self.file,
            "line": self.line,
            "pattern": self.pattern,
        }


@dataclass
class FieldRef:
    collection: str
    field: str
    file: str
    line: int
    usage: str = USAGE_UNKNOWN
    direction: int = 0  # sort direction, 0 when not a sort field
    context: str = ""   # lowercased call name, "aggregate" or "query"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "collection": self.collection,
            "field": self.field,
            "file": self.file,
            "line": self.line,
            "usage": self.usage,
        }
        if self.direction:
            data["direction"] = self.direction
        if self.context:
            data["queryContext"] = self.context
        return data


@dataclass
class WriteRef:
    collection: str
    field: str
    value_type: str
    file: str
    line: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection": self.collection,
            "field": self.field,
            "valueType": self.value_type,
            "file": self.file,
            "line": self.line,
        }


@dataclass
class DynamicRef:
    variable: str
    file: str
    line: int

    def to_dict(self) -> dict[str, Any]:
        return {"variable": self.variable, "file": self.file, "line": self.line}


@dataclass
class ScanResult:
    repo_path: str
    refs: list[CollectionRef] = field(default_factory=list)
    field_refs: list[FieldRef] = field(default_factory=list)
    write_refs: list[WriteRef] = field(default_factory=list)
    dynamic_refs: list[DynamicRef] = field(default_factory=list)
    collections: list[str] = field(default_factory=list)
    files_scanned: int = 0
    files_skipped: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "repoPath": self.repo_path,
            "refs": [r.to_dict() for r in self.refs],
            "fieldRefs": [r.to_dict() for r in self.field_refs],
            "writeRefs": [r.to_dict() for r in self.write_refs],
            "dynamicRefs": [r.to_dict() for r in self.dynamic_refs],
            "collections": list(self.collections),
            "filesScanned": self.files_scanned,
            "filesSkipped": self.files_skipped,
        }


# =============================================================================
# Cluster inventory
# =============================================================================

@dataclass
class KeyField:
    field: str
    direction: int = 1


@dataclass
class IndexInfo:
    name: str
    key: list[KeyField] = field(default_factory=list)
    unique: bool = False
    sparse: bool = False
    ttl_seconds: int | None = None
    usage_ops: int | None = None       # None when $indexStats was unavailable
    usage_since: datetime | None = None
    size: int = 0

    @property
    def is_identity(self) -> bool:
        return self.name == "_id_"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "key": [{"field": k.field, "direction": k.direction} for k in self.key],
        }
        if self.unique:
            data["unique"] = True
        if self.sparse:
            data["sparse"] = True
        if self.ttl_seconds is not None:
            data["ttl"] = self.ttl_seconds
        if self.size:
            data["size"] = self.size
        if self.usage_ops is not None:
            data["stats"] = {
                "ops": self.usage_ops,
                "since": self.usage_since.isoformat() if self.usage_since else None,
            }
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexInfo":
        key = [
            KeyField(str(k.get("field", "")), int(k.get("direction", 1)))
            for k in data.get("key") or []
            if isinstance(k, dict)
        ]
        return cls(
            name=str(data.get("name", "")),
            key=key,
            unique=bool(data.get("unique")),
            sparse=bool(data.get("sparse")),
            ttl_seconds=data.get("ttl"),
            size=int(data.get("size") or 0),
        )


@dataclass
class Validator:
    properties: dict[str, list[str]] = field(default_factory=dict)  # field -> normalized types
    required: list[str] = field(default_factory=list)
    validation_level: str = "strict"
    validation_action: str = "error"

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema": {
                "properties": {k: list(v) for k, v in sorted(self.properties.items())},
                "required": list(self.required),
            },
            "validationLevel": self.validation_level,
            "validationAction": self.validation_action,
        }


@dataclass
class FieldSample:
    """One flattened field path seen in sampled documents."""

    path: str                      # dotted, arrays marked with "[]"
    count: int = 0                 # documents in which the path appeared
    types: dict[str, int] = field(default_factory=dict)  # BSON type name -> occurrences

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "count": self.count, "types": dict(sorted(self.types.items()))}


@dataclass
class SampleStats:
    """Summary of a $sample read of one collection."""

    sample_size: int = 0
    fields: list[FieldSample] = field(default_factory=list)
    array_lengths: dict[str, int] = field(default_factory=dict)  # array path -> max length seen
    max_doc_size: int = 0
    max_field_count: int = 0       # top-level fields of the widest document

    def field_at(self, path: str) -> FieldSample | None:
        for fs in self.fields:
            if fs.path == path:
                return fs
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sampleSize": self.sample_size,
            "fields": [f.to_dict() for f in self.fields],
            "maxDocSize": self.max_doc_size,
            "maxFieldCount": self.max_field_count,
        }


@dataclass
class CollectionInfo:
    database: str
    name: str
    doc_count: int = 0
    storage_size: int = 0
    indexes: list[IndexInfo] = field(default_factory=list)
    validator: Validator | None = None
    type: str = "collection"
    size: int = 0
    total_index_size: int = 0
    sample: SampleStats | None = None  # None when not sampled

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CollectionInfo":
        """Rebuild the stats part of a report entry. Validators and samples are not read back."""
        return cls(
            database=str(data.get("database") or ""),
            name=str(data.get("name") or ""),
            doc_count=int(data.get("docCount") or 0),
            storage_size=int(data.get("storageSize") or 0),
            indexes=[IndexInfo.from_dict(i) for i in data.get("indexes") or [] if isinstance(i, dict)],
            type=str(data.get("type") or "collection"),
            size=int(data.get("size") or 0),
            total_index_size=int(data.get("totalIndexSize") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "database": self.database,
            "name": self.name,
            "type": self.type,
            "docCount": self.doc_count,
            "size": self.size,
            "storageSize": self.storage_size,
            "totalIndexSize": self.total_index_size,
            "indexes": [i.to_dict() for i in self.indexes],
        }
        if self.validator is not None:
            data["validator"] = self.validator.to_dict()
        if self.sample is not None:
            data["sample"] = self.sample.to_dict()
        return data


@dataclass
class ProfileEntry:
    database: str
    collection: str
    filter_fields: list[str] = field(default_factory=list)
    duration_ms: int = 0
    plan_summary: str = ""
    command_shape: str = ""
    sort_fields: list[str] = field(default_factory=list)
    timestamp: datetime | None = None


@dataclass
class ShardedCollection:
    namespace: str
    database: str
    collection: str
    key: list[KeyField] = field(default_factory=list)
    chunk_count: int = 0
    chunk_distribution: dict[str, int] = field(default_factory=dict)
    jumbo_chunks: int = 0
    chunk_limit_hit: bool = False


@dataclass
class ShardingInfo:
    enabled: bool = False
    balancer_enabled: bool = True
    shards: list[str] = field(default_factory=list)
    collections: list[ShardedCollection] = field(default_factory=list)


@dataclass
class UserRole:
    role: str
    db: str


@dataclass
class UserInfo:
    username: str
    database: str
    roles: list[UserRole] = field(default_factory=list)
    scopes: list[str] = field(default_factory=list)  # Atlas cluster/data lake scopes; empty = every cluster


@dataclass
class AccessLogEntry:
    """One authentication attempt from the Atlas database access history."""

    username: str
    auth_source: str = ""
    timestamp: str = ""
    ip_address: str = ""
    auth_result: bool = False
    failure_reason: str = ""


@dataclass
class SecurityInfo:
    auth_enabled: bool = False
    tls_mode: str = ""
    tls_allow_invalid_certs: bool = False
    bind_ip: str = ""
    audit_log_enabled: bool = False
    localhost_auth_bypass: bool = False


@dataclass
class ReplicaSetMember:
    name: str
    state: str = ""
    health: int = 1
    votes: int = 1
    priority: float = 1.0
    hidden: bool = False


@dataclass
class ReplicaSetInfo:
    name: str = ""
    members: list[ReplicaSetMember] = field(default_factory=list)
    oplog_window_hours: float = 0.0


@dataclass
class AtlasCluster:
    name: str
    id: str = ""
    mongodb_version: str = ""
    instance_size_name: str = ""


@dataclass
class SuggestedIndex:
    namespace: str
    index_fields: list[str] = field(default_factory=list)


@dataclass
class AtlasAlert:
    event_type_name: str
    status: str = ""
    id: str = ""


@dataclass
class AtlasAdvisory:
    project_id: str
    cluster: AtlasCluster
    suggested_indexes: list[SuggestedIndex] = field(default_factory=list)
    alerts: list[AtlasAlert] = field(default_factory=list)
    available_versions: list[str] = field(default_factory=list)
    database_users: list[UserInfo] = field(default_factory=list)
    access_logs: list[AccessLogEntry] | None = None  # None when the history could not be read


@dataclass
class Inventory:
    """Snapshot of a cluster. Optional parts are None when not collected."""

    server_version: str = ""
    collections: list[CollectionInfo] = field(default_factory=list)
    profile_entries: list[ProfileEntry] = field(default_factory=list)
    sharding: ShardingInfo | None = None
    users: list[UserInfo] = field(default_factory=list)
    security: SecurityInfo | None = None
    replica_set: ReplicaSetInfo | None = None
    atlas: AtlasAdvisory | None = None
    warnings: list[str] = field(default_factory=list)


# =============================================================================
# Findings
# =============================================================================

@dataclass
class Finding:
    type: str
    severity: str
    database: str = ""
    collection: str = ""
    index: str = ""
    message: str = ""
    location: dict[str, Any] | None = None

    def canonical_key(self) -> tuple[str, str, str, str]:
        """Identity of the finding. The message is not part of it."""
        return (
            self.type,
            self.database.lower(),
            self.collection.lower(),
            self.index.lower(),
        )

    def key_string(self) -> str:
        """Canonical key as one string, used to label notification events."""
        return "|".join(self.canonical_key())

    def target(self) -> str:
        """db.collection[.index] with empty parts left out."""
        return ".".join(p for p in (self.database, self.collection, self.index) if p)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "severity": self.severity}
        if self.database:
            data["database"] = self.database
        if self.collection:
            data["collection"] = self.collection
        if self.index:
            data["index"] = self.index
        data["message"] = self.message
        if self.location:
            data["location"] = dict(self.location)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Finding":
        return cls(
            type=str(data.get("type", "")),
            severity=str(data.get("severity", SEVERITY_INFO)),
            database=str(data.get("database") or ""),
            collection=str(data.get("collection") or ""),
            index=str(data.get("index") or ""),
            message=str(data.get("message") or ""),
            location=data.get("location") or None,
        )


def severity_rank(severity: str) -> int:
    return SEVERITY_RANK.get(severity, 0)


def max_severity(findings: list[Finding]) -> str:
    """Highest severity among findings, "info" when there are none."""
    best = SEVERITY_INFO
    for f in findings:
        if severity_rank(f.severity) > severity_rank(best):
            best = f.severity
    return best


def sort_findings(findings: list[Finding]) -> list[Finding]:
    """Deterministic order: canonical key, then severity (highest first), then message."""
    return sorted(
        findings,
        key=lambda f: (f.canonical_key(), -severity_rank(f.severity), f.message),
    )

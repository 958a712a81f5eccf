"""Tests for the individual rule modules."""

from datetime import timedelta

import pytest

from mongospectre.analyzers.atlas import AtlasAnalyzer, atlas_tier, compare_version, normalize_version
from mongospectre.analyzers.collections import CollectionAnalyzer
from mongospectre.analyzers.indexes import IndexAnalyzer
from mongospectre.analyzers.profiler import ProfilerAnalyzer
from mongospectre.analyzers.replset import ReplicaSetAnalyzer
from mongospectre.analyzers.security import SecurityAnalyzer
from mongospectre.analyzers.sharding import ShardingAnalyzer, is_monotonic_key
from mongospectre.analyzers.users import UserAnalyzer
from mongospectre.analyzers.validators import ValidatorAnalyzer, normalize_bson_types
from mongospectre.models import (
    AccessLogEntry,
    AtlasAdvisory,
    AtlasAlert,
    AtlasCluster,
    DynamicRef,
    FindingType,
    Inventory,
    KeyField,
    ProfileEntry,
    ReplicaSetInfo,
    ReplicaSetMember,
    SecurityInfo,
    ShardedCollection,
    ShardingInfo,
    SuggestedIndex,
    UserInfo,
    UserRole,
    Validator,
)

from conftest import NOW, id_index, make_collection, make_index, make_scan

GIB = 1024 ** 3


def by_type(findings):
    return {f.type: f for f in findings}


# =============================================================================
# Collections
# =============================================================================

def test_missing_ttl_on_timestamp_index():
    c = make_collection("sessions", indexes=[id_index(), make_index("created_at_1", "created_at")])
    findings = CollectionAnalyzer().analyze(make_scan(["sessions"]), Inventory(collections=[c]))

    ttl = by_type(findings)[FindingType.MISSING_TTL]
    assert ttl.severity == "low"
    assert ttl.message == 'timestamp field(s) "created_at" have no TTL index'


def test_ttl_index_satisfies_retention():
    c = make_collection("sessions", indexes=[id_index(), make_index("exp", "created_at", ttl=3600)])
    findings = CollectionAnalyzer().analyze(make_scan(["sessions"]), Inventory(collections=[c]))
    assert FindingType.MISSING_TTL not in by_type(findings)


def test_missing_ttl_from_written_fields():
    """Timestamp fields written in code count even without an index on them."""
    c = make_collection("events", docs=3)
    scan = make_scan(["events"], writes=[("events", "expires_at", "date")])
    findings = CollectionAnalyzer().analyze(scan, Inventory(collections=[c]))
    assert '"expires_at"' in by_type(findings)[FindingType.MISSING_TTL].message


def test_oversized_collection():
    c = make_collection("logs", docs=101)
    findings = CollectionAnalyzer(oversized_docs=100).analyze(make_scan(["logs"]), Inventory(collections=[c]))
    assert by_type(findings)[FindingType.OVERSIZED_COLLECTION].severity == "medium"


def test_dynamic_collection_reported_once():
    scan = make_scan([])
    scan.dynamic_refs = [DynamicRef("collName", "a.go", 3), DynamicRef("collName", "b.go", 9)]
    findings = CollectionAnalyzer().analyze(scan, Inventory())

    assert len(findings) == 1
    assert findings[0].type == FindingType.DYNAMIC_COLLECTION
    assert findings[0].severity == "info"
    assert findings[0].location == {"file": "a.go", "line": 3}


def test_views_are_not_unused():
    view = make_collection("report", docs=0, type="view")
    assert CollectionAnalyzer().analyze(make_scan([]), Inventory(collections=[view])) == []


# =============================================================================
# Indexes
# =============================================================================

@pytest.fixture
def index_analyzer():
    return IndexAnalyzer(now=NOW)


def stale(name, *fields):
    return make_index(name, *fields, ops=0, since=NOW - timedelta(days=40))


def test_unused_index_on_referenced_collection(index_analyzer):
    c = make_collection("users", docs=50, indexes=[id_index(), stale("email_1", "email")])
    findings = index_analyzer.analyze(make_scan(["users"]), Inventory(collections=[c]))

    f = by_type(findings)[FindingType.UNUSED_INDEX]
    assert (f.severity, f.index) == ("medium", "email_1")


def test_orphaned_index_on_unreferenced_collection(index_analyzer):
    c = make_collection("legacy", docs=50, indexes=[id_index(), stale("email_1", "email")])
    findings = index_analyzer.analyze(make_scan([]), Inventory(collections=[c]))

    f = by_type(findings)[FindingType.ORPHANED_INDEX]
    assert (f.severity, f.index) == ("low", "email_1")
    assert FindingType.UNUSED_INDEX not in by_type(findings)


def test_recent_or_unknown_usage_not_stale(index_analyzer):
    young = make_index("a_1", "a", ops=0, since=NOW - timedelta(days=5))
    unknown = make_index("b_1", "b")
    used = make_index("c_1", "c", ops=12, since=NOW - timedelta(days=90))
    for idx in (young, unknown, used, stale("_id_", "_id")):
        assert not index_analyzer.is_stale(idx)


def test_duplicate_prefix_index(index_analyzer):
    c = make_collection("users", indexes=[
        id_index(),
        make_index("email_1", "email"),
        make_index("email_1_name_1", "email", "name"),
    ])
    findings = index_analyzer.analyze(make_scan(["users"]), Inventory(collections=[c]))

    dup = by_type(findings)[FindingType.DUPLICATE_INDEX]
    assert dup.index == "email_1"
    assert dup.message == 'index "email_1" {email: 1} is a prefix of "email_1_name_1"'


def test_direction_mismatch_is_not_duplicate(index_analyzer):
    c = make_collection("users", indexes=[
        id_index(),
        make_index("a", "email"),
        make_index("b", "-email", "name"),
    ])
    findings = index_analyzer.analyze(make_scan(["users"]), Inventory(collections=[c]))
    assert FindingType.DUPLICATE_INDEX not in by_type(findings)


def test_identical_keys_flag_later_name(index_analyzer):
    c = make_collection("users", indexes=[id_index(), make_index("x", "email"), make_index("y", "email")])
    findings = index_analyzer.analyze(make_scan(["users"]), Inventory(collections=[c]))
    dups = [f for f in findings if f.type == FindingType.DUPLICATE_INDEX]
    assert [f.index for f in dups] == ["y"]


def test_unindexed_query_and_suggestion(index_analyzer):
    """Large collections get UNINDEXED_QUERY, small ones only a suggestion."""
    big = make_collection("orders", docs=50_000, indexes=[id_index(), make_index("status_1", "status")])
    small = make_collection("tags", docs=10)
    scan = make_scan(
        ["orders", "tags"],
        fields=[("orders", "status"), ("orders", "customer"), ("orders", "_id"), ("tags", "label")],
    )
    findings = index_analyzer.analyze(scan, Inventory(collections=[big, small]))

    unindexed = [f for f in findings if f.type == FindingType.UNINDEXED_QUERY]
    assert len(unindexed) == 1
    assert unindexed[0].collection == "orders"
    assert '"customer"' in unindexed[0].message
    assert '"status"' not in unindexed[0].message

    suggest = [f for f in findings if f.type == FindingType.SUGGEST_INDEX]
    assert [(f.collection, f.severity) for f in suggest] == [("tags", "info")]


def test_index_bloat_over_indexed_and_large(index_analyzer):
    analyzer = IndexAnalyzer(max_indexes=2, large_index_bytes=100, now=NOW)
    c = make_collection(
        "users",
        size=100,
        total_index_size=300,
        indexes=[id_index(), make_index("a", "a", size=200), make_index("b", "b")],
    )
    found = by_type(analyzer.analyze(make_scan(["users"]), Inventory(collections=[c])))

    assert FindingType.INDEX_BLOAT in found
    assert FindingType.WRITE_HEAVY_OVER_INDEXED in found
    assert found[FindingType.LARGE_INDEX].index == "a"


def test_single_field_index_covered_by_compound(index_analyzer):
    c = make_collection("users", indexes=[
        id_index(),
        make_index("email_1", "email"),
        make_index("email_1_name_1", "email", "name"),
        make_index("name_1", "name"),
    ])
    findings = index_analyzer.analyze(make_scan(["users"]), Inventory(collections=[c]))

    redundant = [f for f in findings if f.type == FindingType.SINGLE_FIELD_REDUNDANT]
    assert [(f.index, f.severity) for f in redundant] == [("email_1", "low")]
    assert redundant[0].message == 'single-field index "email_1" is covered by compound index "email_1_name_1"'


def test_unindexed_query_checks_every_database(index_analyzer):
    """A collection name shared by two databases is judged in each of them."""
    indexed = make_collection("orders", database="app", docs=50_000,
                              indexes=[id_index(), make_index("status_1", "status")])
    bare = make_collection("orders", database="archive", docs=50_000)
    scan = make_scan(["orders"], fields=[("orders", "status")])
    findings = index_analyzer.analyze(scan, Inventory(collections=[indexed, bare]))

    unindexed = [(f.database, f.collection) for f in findings if f.type == FindingType.UNINDEXED_QUERY]
    assert unindexed == [("archive", "orders")]


# =============================================================================
# Validators
# =============================================================================

def test_validator_missing():
    c = make_collection("users")
    scan = make_scan(["users"], writes=[("users", "email", "string")])
    findings = ValidatorAnalyzer().analyze(scan, Inventory(collections=[c]))

    assert [f.type for f in findings] == [FindingType.VALIDATOR_MISSING]
    assert findings[0].location == {"file": "write.go", "line": 1}


def test_validator_drift_in_strict_mode():
    validator = Validator(properties={"email": ["string"], "_id": ["objectId"]})
    c = make_collection("users", validator=validator)
    scan = make_scan(["users"], writes=[
        ("users", "email", "number"),
        ("users", "age", "number"),
        ("users", "_id", "objectId"),
    ])
    found = by_type(ValidatorAnalyzer().analyze(scan, Inventory(collections=[c])))

    assert found[FindingType.FIELD_NOT_IN_VALIDATOR].message.startswith('field(s) "age"')
    assert '"email" expects [string] but code writes [number]' in found[FindingType.VALIDATOR_STALE].message
    assert found[FindingType.VALIDATOR_STRICT_RISK].severity == "low"


def test_validator_warn_only():
    validator = Validator(properties={"email": ["string"]}, validation_action="warn")
    c = make_collection("users", validator=validator)
    scan = make_scan(["users"], writes=[("users", "age", "number")])
    found = by_type(ValidatorAnalyzer().analyze(scan, Inventory(collections=[c])))

    assert found[FindingType.VALIDATOR_WARN_ONLY].severity == "info"
    assert FindingType.FIELD_NOT_IN_VALIDATOR in found
    assert FindingType.VALIDATOR_STRICT_RISK not in found


def test_unknown_written_type_never_mismatches():
    c = make_collection("users", validator=Validator(properties={"email": ["string"]}))
    scan = make_scan(["users"], writes=[("users", "email", "unknown")])
    assert ValidatorAnalyzer().analyze(scan, Inventory(collections=[c])) == []


def test_validator_checked_in_every_database():
    guarded = make_collection("users", database="app", validator=Validator(properties={"email": ["string"]}))
    open_ = make_collection("users", database="legacy")
    scan = make_scan(["users"], writes=[("users", "email", "string")])
    findings = ValidatorAnalyzer().analyze(scan, Inventory(collections=[guarded, open_]))

    assert [(f.type, f.database) for f in findings] == [(FindingType.VALIDATOR_MISSING, "legacy")]


def test_normalize_bson_types():
    assert normalize_bson_types(["int", "long", "string", "objectId", ""]) == ["number", "objectId", "string"]


# =============================================================================
# Sharding
# =============================================================================

def test_sharding_findings():
    events = ShardedCollection(
        namespace="app.events",
        database="app",
        collection="events",
        key=[KeyField("created_at", 1)],
        chunk_count=10,
        chunk_distribution={"s1": 9, "s2": 1},
        jumbo_chunks=2,
    )
    sharding = ShardingInfo(enabled=True, balancer_enabled=False, shards=["s1", "s2"], collections=[events])
    inventory = Inventory(
        collections=[
            make_collection("events", storage_size=5000),
            make_collection("logs", storage_size=5000),
        ],
        sharding=sharding,
    )
    findings = ShardingAnalyzer(large_storage_bytes=1000).analyze(None, inventory)
    found = {(f.type, f.collection) for f in findings}

    assert (FindingType.MONOTONIC_SHARD_KEY, "events") in found
    assert (FindingType.UNBALANCED_CHUNKS, "events") in found
    assert (FindingType.JUMBO_CHUNKS, "events") in found
    assert (FindingType.UNSHARDED_LARGE, "logs") in found
    assert (FindingType.UNSHARDED_LARGE, "events") not in found
    assert (FindingType.BALANCER_DISABLED, "settings") in found


def test_hashed_shard_key_not_monotonic():
    coll = ShardedCollection("app.e", "app", "e", key=[KeyField("_id", 0)])
    inventory = Inventory(sharding=ShardingInfo(enabled=True, shards=["s1"], collections=[coll]))
    assert ShardingAnalyzer().analyze(None, inventory) == []


def test_empty_shard_counts_toward_balance():
    """A shard holding no chunks still makes the distribution skewed."""
    coll = ShardedCollection("app.e", "app", "e", key=[KeyField("sku", 1)], chunk_distribution={"s1": 4})
    inventory = Inventory(sharding=ShardingInfo(enabled=True, shards=["s1", "s2"], collections=[coll]))
    found = by_type(ShardingAnalyzer().analyze(None, inventory))
    assert "s1 holds 4 of 4 chunks (100%)" in found[FindingType.UNBALANCED_CHUNKS].message


def test_sharding_disabled():
    assert ShardingAnalyzer().analyze(None, Inventory(sharding=ShardingInfo(enabled=False))) == []


def test_monotonic_key_heuristic():
    assert is_monotonic_key("_id")
    assert is_monotonic_key("updatedAt")
    assert not is_monotonic_key("customer_id")


# =============================================================================
# Profiler
# =============================================================================

def entry(plan="COLLSCAN", fields=("status",), shape="H1", ms=150):
    return ProfileEntry(
        database="app",
        collection="orders",
        filter_fields=list(fields),
        duration_ms=ms,
        plan_summary=plan,
        command_shape=shape,
    )


def test_profiler_collscan_and_frequent():
    scan = make_scan(["orders"], fields=[("orders", "status")])
    inventory = Inventory(profile_entries=[entry(), entry(), entry()])
    found = by_type(ProfilerAnalyzer().analyze(scan, inventory))

    assert found[FindingType.COLLECTION_SCAN_SOURCE].severity == "high"
    assert found[FindingType.COLLECTION_SCAN_SOURCE].location == {"file": "query.go", "line": 1}
    assert "H1 x3" in found[FindingType.FREQUENT_SLOW_QUERY].message
    assert FindingType.SLOW_QUERY_SOURCE not in found


def test_profiler_slow_indexed_query():
    scan = make_scan(["orders"], fields=[("orders", "status")])
    inventory = Inventory(profile_entries=[entry("IXSCAN { status: 1 }", ms=100), entry("IXSCAN", ms=300)])
    found = by_type(ProfilerAnalyzer().analyze(scan, inventory))

    assert "avg 200ms across 2 samples" in found[FindingType.SLOW_QUERY_SOURCE].message
    assert FindingType.COLLECTION_SCAN_SOURCE not in found


def test_profiler_requires_field_overlap():
    scan = make_scan(["orders"], fields=[("orders", "status")])
    inventory = Inventory(profile_entries=[entry(fields=("customer",))])
    assert ProfilerAnalyzer().analyze(scan, inventory) == []


# =============================================================================
# Users
# =============================================================================

def test_user_rules():
    users = [
        UserInfo("root", "admin", [UserRole("root", "admin")]),
        UserInfo("ops", "admin", [UserRole("clusterAdmin", "admin")]),
        UserInfo("alice", "app", [UserRole("dbOwner", "app")]),
        UserInfo("alice", "reporting", [UserRole("read", "reporting")]),
    ]
    findings = UserAnalyzer().analyze(None, Inventory(users=users))
    found = {(f.type, f.collection) for f in findings}

    assert (FindingType.OVERPRIVILEGED_USER, "root") in found
    assert (FindingType.OVERPRIVILEGED_USER, "ops") in found
    assert (FindingType.MULTIPLE_ADMIN_USERS, "") in found
    assert (FindingType.ADMIN_IN_DATA_DB, "alice") in found
    assert (FindingType.DUPLICATE_USER, "alice") in found


def test_atlas_users_inactive_and_unscoped():
    atlas_users = [
        UserInfo("active", "admin", [UserRole("readWrite", "app")], scopes=["Cluster0"]),
        UserInfo("idle", "admin", [UserRole("read", "app")], scopes=["Cluster0"]),
        UserInfo("boss", "admin", [UserRole("readWriteAnyDatabase", "admin")], scopes=["Cluster0"]),
        UserInfo("typo", "admin", [UserRole("read", "app")]),
    ]
    logs = [
        AccessLogEntry("active", auth_result=True),
        AccessLogEntry("active", auth_result=False),
        AccessLogEntry("typo", auth_result=False),
    ]
    adv = advisory(database_users=atlas_users, access_logs=logs)
    findings = UserAnalyzer().analyze(None, Inventory(atlas=adv))
    found = {f.collection: (f.type, f.severity) for f in findings if f.type != FindingType.ATLAS_USER_NO_SCOPE}

    assert "active" not in found
    assert found["idle"] == (FindingType.INACTIVE_USER, "medium")
    assert found["boss"] == (FindingType.INACTIVE_PRIVILEGED_USER, "high")
    assert found["typo"] == (FindingType.FAILED_AUTH_ONLY, "medium")
    unscoped = [f.collection for f in findings if f.type == FindingType.ATLAS_USER_NO_SCOPE]
    assert unscoped == ["typo"]


def test_atlas_users_without_access_history():
    """No access log means no inactivity verdicts, only scope checks."""
    adv = advisory(database_users=[UserInfo("svc", "admin", [UserRole("read", "app")])])
    findings = UserAnalyzer().analyze(None, Inventory(atlas=adv))
    assert [(f.type, f.collection) for f in findings] == [(FindingType.ATLAS_USER_NO_SCOPE, "svc")]


def test_native_users_take_precedence_over_atlas_users():
    adv = advisory(
        database_users=[UserInfo("root", "admin", [UserRole("root", "admin")], scopes=["Cluster0"])],
    )
    native = [UserInfo("app", "app", [UserRole("readWrite", "app")])]
    findings = UserAnalyzer().analyze(None, Inventory(users=native, atlas=adv))
    assert FindingType.OVERPRIVILEGED_USER not in by_type(findings)

    findings = UserAnalyzer().analyze(None, Inventory(atlas=adv))
    assert by_type(findings)[FindingType.OVERPRIVILEGED_USER].collection == "root"


def test_no_users_no_findings():
    assert UserAnalyzer().analyze(None, Inventory()) == []


# =============================================================================
# Security
# =============================================================================

def test_insecure_defaults():
    info = SecurityInfo(bind_ip="127.0.0.1, 0.0.0.0", localhost_auth_bypass=True, tls_allow_invalid_certs=True)
    findings = SecurityAnalyzer().analyze(None, Inventory(security=info))

    assert {f.type for f in findings} == {
        FindingType.AUTH_DISABLED,
        FindingType.BIND_ALL_INTERFACES,
        FindingType.TLS_DISABLED,
        FindingType.TLS_ALLOW_INVALID_CERTS,
        FindingType.AUDIT_LOG_DISABLED,
        FindingType.LOCALHOST_EXCEPTION_ACTIVE,
    }
    assert all(f.database == "admin" for f in findings)


def test_hardened_server():
    info = SecurityInfo(auth_enabled=True, tls_mode="requireTLS", bind_ip="10.0.0.5", audit_log_enabled=True)
    assert SecurityAnalyzer().analyze(None, Inventory(security=info)) == []


# =============================================================================
# Replica set
# =============================================================================

def test_single_member_replica_set():
    info = ReplicaSetInfo(name="rs0", members=[ReplicaSetMember("a:27017", "PRIMARY")])
    found = by_type(ReplicaSetAnalyzer().analyze(None, Inventory(replica_set=info)))
    assert found[FindingType.SINGLE_MEMBER_REPLSET].severity == "high"
    assert FindingType.EVEN_MEMBER_COUNT not in found


def test_replica_set_topology_findings():
    members = [
        ReplicaSetMember("a:27017", "PRIMARY"),
        ReplicaSetMember("b:27017", "SECONDARY"),
        ReplicaSetMember("c:27017", "SECONDARY"),
        ReplicaSetMember("d:27017", "DOWN", health=0),
    ]
    info = ReplicaSetInfo(name="rs0", members=members, oplog_window_hours=5.0)
    found = by_type(ReplicaSetAnalyzer().analyze(None, Inventory(replica_set=info)))

    assert FindingType.EVEN_MEMBER_COUNT in found
    assert found[FindingType.MEMBER_UNHEALTHY].index == "d:27017"
    assert FindingType.OPLOG_SMALL in found
    assert FindingType.NO_HIDDEN_MEMBER in found
    assert FindingType.SINGLE_MEMBER_REPLSET not in found


def test_priority_zero_majority():
    members = [
        ReplicaSetMember("a", "PRIMARY"),
        ReplicaSetMember("b", "SECONDARY", priority=0),
        ReplicaSetMember("c", "SECONDARY", priority=0),
    ]
    info = ReplicaSetInfo(name="rs0", members=members, oplog_window_hours=48)
    found = by_type(ReplicaSetAnalyzer().analyze(None, Inventory(replica_set=info)))
    assert set(found) == {FindingType.PRIORITY_ZERO_MAJORITY}


def test_not_a_replica_set():
    assert ReplicaSetAnalyzer().analyze(None, Inventory()) == []


# =============================================================================
# Atlas
# =============================================================================

def advisory(**kwargs):
    cluster = kwargs.pop("cluster", AtlasCluster("Cluster0", mongodb_version="6.0.5", instance_size_name="M30"))
    return AtlasAdvisory(project_id="p1", cluster=cluster, **kwargs)


def test_atlas_suggestions_correlated_with_code():
    adv = advisory(suggested_indexes=[
        SuggestedIndex("app.orders", ["status", "created_at"]),
        SuggestedIndex("app.orders", ["status", "created_at"]),
        SuggestedIndex("app.users", ["nickname"]),
    ])
    scan = make_scan(["orders"], fields=[("orders", "status")])
    findings = AtlasAnalyzer().analyze(scan, Inventory(atlas=adv))

    orders = [f for f in findings if f.collection == "orders"]
    assert len(orders) == 1
    assert orders[0].severity == "low"
    assert orders[0].index == "status_1_created_at_1"
    assert "matching queried code fields: status" in orders[0].message
    users = [f for f in findings if f.collection == "users"]
    assert users[0].severity == "info"


def test_atlas_alerts_tier_and_version():
    adv = advisory(
        cluster=AtlasCluster("Cluster0", mongodb_version="6.0.5", instance_size_name="M10"),
        alerts=[AtlasAlert("HOST_DOWN", "OPEN"), AtlasAlert("DISK_FULL", "CLOSED")],
        available_versions=["6.0.5", "7.0.2", "v5.0"],
    )
    inventory = Inventory(atlas=adv, collections=[make_collection("big", storage_size=600 * GIB)])
    found = by_type(AtlasAnalyzer().analyze(None, inventory))

    alert = found[FindingType.ATLAS_ALERT_ACTIVE]
    assert (alert.database, alert.collection, alert.index) == ("atlas", "Cluster0", "HOST_DOWN")
    assert found[FindingType.ATLAS_TIER_MISMATCH].severity == "high"
    assert "behind available version 7.0.2" in found[FindingType.ATLAS_VERSION_BEHIND].message


@pytest.mark.parametrize(
    ("raw", "normalized"),
    [("v7.0", "7.0.0"), ("6.0.12-ent", "6.0.12"), ("8", ""), ("7.0.2.1", "7.0.2")],
)
def test_normalize_version(raw, normalized):
    assert normalize_version(raw) == normalized


def test_compare_version_and_tier():
    assert compare_version("6.0.10", "6.0.9") == 1
    assert compare_version("7.0", "7.0.0") == 0
    assert atlas_tier("M30") == 30
    assert atlas_tier("R40") == 0

"""Shared fixtures and in-memory adapters for mongospectre tests."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from mongospectre.adapters.base import AdapterError, AtlasAPI, DatabaseInspector
from mongospectre.models import (
    PATTERN_DRIVER_CALL,
    USAGE_EQUALITY,
    USAGE_RANGE,
    USAGE_SORT,
    AccessLogEntry,
    AtlasAlert,
    AtlasCluster,
    CollectionInfo,
    CollectionRef,
    FieldRef,
    IndexInfo,
    KeyField,
    ScanResult,
    UserInfo,
    WriteRef,
)

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


def make_index(
    name: str,
    *fields: str,
    ops: int | None = None,
    since: datetime | None = None,
    ttl: int | None = None,
    size: int = 0,
) -> IndexInfo:
    """Index with ascending keys; prefix a field with "-" for descending."""
    key = [
        KeyField(f[1:], -1) if f.startswith("-") else KeyField(f, 1)
        for f in fields
    ]
    return IndexInfo(name=name, key=key, usage_ops=ops, usage_since=since, ttl_seconds=ttl, size=size)


def id_index() -> IndexInfo:
    return make_index("_id_", "_id")


def make_collection(
    name: str,
    database: str = "app",
    docs: int = 0,
    indexes: list[IndexInfo] | None = None,
    **kwargs: Any,
) -> CollectionInfo:
    return CollectionInfo(
        database=database,
        name=name,
        doc_count=docs,
        indexes=indexes if indexes is not None else [id_index()],
        **kwargs,
    )


def make_scan(
    collections: list[str] | None = None,
    fields: list[tuple[str, str]] | None = None,
    writes: list[tuple[str, str, str]] | None = None,
) -> ScanResult:
    """
    ScanResult with one reference per collection.

    Args:
        collections: Referenced collection names.
        fields: (collection, field) equality queries.
        writes: (collection, field, value type) writes.
    """
    result = ScanResult(repo_path="/repo")
    for i, name in enumerate(collections or [], 1):
        result.refs.append(CollectionRef(name, "app.go", i, PATTERN_DRIVER_CALL))
    for i, (coll, field_name) in enumerate(fields or [], 1):
        result.field_refs.append(FieldRef(coll, field_name, "query.go", i, usage=USAGE_EQUALITY))
    for i, (coll, field_name, value_type) in enumerate(writes or [], 1):
        result.write_refs.append(WriteRef(coll, field_name, value_type, "write.go", i))
    result.collections = sorted({r.collection for r in result.refs})
    return result


def make_query(
    collection: str,
    line: int,
    eq: tuple[str, ...] = (),
    sort: tuple[str, ...] = (),
    range_: tuple[str, ...] = (),
    file: str = "query.go",
) -> list[FieldRef]:
    """Field refs of one find() call; prefix a sort field with "-" for descending."""
    refs = [FieldRef(collection, f, file, line, usage=USAGE_EQUALITY, context="find") for f in eq]
    for f in sort:
        direction = -1 if f.startswith("-") else 1
        refs.append(FieldRef(collection, f.lstrip("-"), file, line, usage=USAGE_SORT, direction=direction, context="find"))
    refs.extend(FieldRef(collection, f, file, line, usage=USAGE_RANGE, context="find") for f in range_)
    return refs


class FakeInspector(DatabaseInspector):
    """DatabaseInspector backed by plain Python data."""

    def __init__(
        self,
        collections: list[CollectionInfo] | None = None,
        server_version: str = "7.0.4",
        validators: dict[str, dict] | None = None,
        profile: dict[str, list] | None = None,
        sharding: Any = None,
        security: Any = None,
        replica_set: Any = None,
        users: dict[str, list] | None = None,
        samples: dict[tuple[str, str], list[dict]] | None = None,
        failures: dict[str, Exception] | None = None,
    ):
        self.collections = collections or []
        self.version = server_version
        self.validators = validators or {}
        self.profile = profile or {}
        self.sharding = sharding
        self.security = security
        self.replica_set = replica_set
        self.users = users or {}
        self.samples = samples or {}
        self.failures = failures or {}
        self.calls: list[str] = []
        self.closed = False

    def _call(self, operation: str, deadline: Any) -> None:
        self.calls.append(operation)
        deadline.check(operation)
        if operation in self.failures:
            raise self.failures[operation]

    def close(self) -> None:
        self.closed = True

    def server_version(self, deadline):
        self._call("server_version", deadline)
        return self.version

    def list_databases(self, deadline, database=""):
        self._call("list_databases", deadline)
        if database:
            return [database]
        return sorted({c.database for c in self.collections})

    def list_collections(self, database, deadline):
        self._call("list_collections", deadline)
        return [c for c in self.collections if c.database == database]

    def get_validators(self, database, deadline):
        self._call("get_validators", deadline)
        return dict(self.validators.get(database, {}))

    def read_profiler(self, database, limit, deadline):
        self._call("read_profiler", deadline)
        return list(self.profile.get(database, []))[:limit]

    def inspect_sharding(self, deadline):
        self._call("inspect_sharding", deadline)
        return self.sharding

    def inspect_security(self, deadline):
        self._call("inspect_security", deadline)
        return self.security

    def inspect_replica_set(self, deadline):
        self._call("inspect_replica_set", deadline)
        return self.replica_set

    def list_users(self, database, deadline):
        self._call("list_users", deadline)
        return list(self.users.get(database, []))

    def sample_documents(self, database, collection, size, deadline):
        self._call("sample_documents", deadline)
        return list(self.samples.get((database, collection), []))[:size]


class FakeAtlas(AtlasAPI):
    """AtlasAPI returning fixed data."""

    def __init__(
        self,
        cluster: AtlasCluster | None = None,
        project_id: str = "proj1",
        suggestions: list | None = None,
        alerts: list[AtlasAlert] | None = None,
        versions: list[str] | None = None,
        database_users: list[UserInfo] | None = None,
        access_logs: list[AccessLogEntry] | None = None,
        failures: dict[str, Exception] | None = None,
    ):
        self.cluster = cluster or AtlasCluster(name="Cluster0", id="c1", mongodb_version="6.0.5", instance_size_name="M10")
        self.project_id = project_id
        self.suggestions = suggestions or []
        self.alerts = alerts or []
        self.versions = versions or []
        self.database_users = database_users or []
        self.access_logs = access_logs or []
        self.failures = failures or {}
        self.calls: list[str] = []

    def _call(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.failures:
            raise self.failures[operation]

    def list_projects(self, deadline):
        self._call("list_projects")
        return [{"id": self.project_id, "name": "Project"}]

    def list_clusters(self, project_id, deadline):
        self._call("list_clusters")
        return [self.cluster]

    def get_cluster(self, project_id, cluster, deadline):
        self._call("get_cluster")
        return self.cluster

    def list_suggested_indexes(self, project_id, cluster, deadline):
        self._call("list_suggested_indexes")
        return list(self.suggestions)

    def list_alerts(self, project_id, deadline):
        self._call("list_alerts")
        return list(self.alerts)

    def list_mongodb_versions(self, project_id, deadline):
        self._call("list_mongodb_versions")
        return list(self.versions)

    def list_database_users(self, project_id, deadline):
        self._call("list_database_users")
        return list(self.database_users)

    def list_access_logs(self, project_id, cluster, deadline):
        self._call("list_access_logs")
        return list(self.access_logs)

    def resolve_project_id_by_cluster(self, cluster, deadline):
        self._call("resolve_project_id_by_cluster")
        if cluster != self.cluster.name:
            raise AdapterError("resolve_project_id_by_cluster", f"cluster {cluster!r} not found")
        return self.project_id


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def repo(tmp_path):
    """Factory writing files under a temporary repository root."""

    def write(files: dict[str, str]):
        for rel, content in files.items():
            path = tmp_path / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        return tmp_path

    return write

"""
PyMongo implementation of DatabaseInspector.

Every call runs inside pymongo.timeout() with the deadline's remaining
time, so server selection, network I/O and server-side execution are all
bounded by the caller. Only read commands are issued.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import TYPE_CHECKING

import pymongo
from bson.timestamp import Timestamp
from pymongo.errors import OperationFailure, PyMongoError

from mongospectre.adapters.base import AdapterError, DatabaseInspector, DeadlineExceeded
from mongospectre.analyzers.validators import normalize_bson_types
from mongospectre.models import (
    CollectionInfo,
    IndexInfo,
    KeyField,
    ProfileEntry,
    ReplicaSetInfo,
    ReplicaSetMember,
    SecurityInfo,
    ShardedCollection,
    ShardingInfo,
    UserInfo,
    UserRole,
    Validator,
)
from mongospectre.utils import split_namespace

if TYPE_CHECKING:
    from typing import Any, Iterator

    from mongospectre.adapters.base import Deadline

logger = logging.getLogger(__name__)

SYSTEM_DATABASES = frozenset({"admin", "local", "config"})
SHARDING_CHUNK_LIMIT = 10_000
DEFAULT_CONNECT_TIMEOUT = 30.0

NAMESPACE_NOT_FOUND = 26
NO_REPLICATION_ENABLED = 76
NOT_YET_INITIALIZED = 94

PROFILE_COMMAND_KEYS = (
    "find", "aggregate", "count", "distinct", "delete", "update", "findAndModify", "findandmodify",
)


def to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    return 0


def key_fields(key: Any) -> list[KeyField]:
    """Index or shard key document -> KeyFields. Non-numeric directions ("hashed", "text") become 0."""
    if not isinstance(key, dict):
        return []
    fields = []
    for name, direction in key.items():
        numeric = isinstance(direction, (int, float)) and not isinstance(direction, bool)
        fields.append(KeyField(field=name, direction=int(direction) if numeric else 0))
    return fields


def extract_profile_fields(value: Any, prefix: str = "") -> list[str]:
    """Sorted dotted field paths of a filter or sort document, skipping operators."""
    fields: set[str] = set()

    def walk(node: Any, path: str) -> None:
        if isinstance(node, dict):
            for key, nested in node.items():
                if not key:
                    continue
                if key.startswith("$"):
                    walk(nested, path)
                    continue
                name = f"{path}.{key}" if path else key
                fields.add(name)
                walk(nested, name)
        elif isinstance(node, list):
            for nested in node:
                walk(nested, path)

    walk(value, prefix)
    return sorted(fields)


def profile_entry_from_doc(default_db: str, doc: dict[str, Any]) -> ProfileEntry | None:
    """Build a ProfileEntry from a system.profile document."""
    command = doc.get("command") if isinstance(doc.get("command"), dict) else {}
    collection = ""
    for key in PROFILE_COMMAND_KEYS:
        if isinstance(command.get(key), str) and command[key]:
            collection = command[key]
            break
    ns_db, ns_coll = split_namespace(str(doc.get("ns") or ""))
    collection = collection or ns_coll
    if not collection:
        return None

    filter_fields = extract_profile_fields(command.get("filter")) or extract_profile_fields(doc.get("query"))
    duration = to_int(doc.get("millis")) or to_int(doc.get("durationMillis"))
    ts = doc.get("ts")
    return ProfileEntry(
        database=ns_db or default_db,
        collection=collection,
        filter_fields=filter_fields,
        duration_ms=duration,
        plan_summary=str(doc.get("planSummary") or ""),
        command_shape=str(doc.get("queryHash") or ""),
        sort_fields=extract_profile_fields(command.get("sort")),
        timestamp=ts if isinstance(ts, datetime) else None,
    )


def validator_from_options(options: dict[str, Any]) -> Validator | None:
    """Parse a $jsonSchema validator from listCollections options."""
    validator = options.get("validator")
    if not isinstance(validator, dict):
        return None
    schema = validator.get("$jsonSchema")
    if not isinstance(schema, dict):
        return None

    properties: dict[str, list[str]] = {}
    for name, field_schema in (schema.get("properties") or {}).items():
        if not isinstance(field_schema, dict):
            continue
        raw = field_schema.get("bsonType") or field_schema.get("type") or []
        if isinstance(raw, str):
            raw = [raw]
        properties[name] = normalize_bson_types(t for t in raw if isinstance(t, str))

    required = [r for r in schema.get("required") or [] if isinstance(r, str)]
    return Validator(
        properties=properties,
        required=required,
        validation_level=str(options.get("validationLevel") or "strict"),
        validation_action=str(options.get("validationAction") or "error"),
    )


class PyMongoInspector(DatabaseInspector):
    """DatabaseInspector over a pymongo.MongoClient."""

    def __init__(self, client: pymongo.MongoClient):
        self.client = client

    @classmethod
    def connect(cls, uri: str, deadline: Deadline) -> PyMongoInspector:
        """
        Open a client and verify the server is reachable.

        Raises:
            AdapterError: If the server cannot be reached in time.
        """
        deadline.check("connect")
        remaining = deadline.remaining()
        timeout_ms = int((remaining if remaining is not None else DEFAULT_CONNECT_TIMEOUT) * 1000)
        try:
            client = pymongo.MongoClient(
                uri,
                appname="mongospectre",
                serverSelectionTimeoutMS=timeout_ms,
                connectTimeoutMS=timeout_ms,
            )
        except (PyMongoError, ValueError) as e:
            raise AdapterError("connect", str(e)) from e
        inspector = cls(client)
        try:
            with inspector._call("ping", deadline):
                client.admin.command("ping")
        except AdapterError:
            client.close()
            raise
        return inspector

    def close(self) -> None:
        self.client.close()

    @contextmanager
    def _call(self, operation: str, deadline: Deadline) -> Iterator[None]:
        """Bound a block by the deadline and translate driver errors."""
        deadline.check(operation)
        try:
            with pymongo.timeout(deadline.remaining()):
                yield
        except PyMongoError as e:
            if e.timeout:
                raise DeadlineExceeded(operation, str(e)) from e
            raise AdapterError(operation, str(e)) from e

    # -------------------------------------------------------------------------
    # Required inventory
    # -------------------------------------------------------------------------

    def server_version(self, deadline: Deadline) -> str:
        with self._call("server_version", deadline):
            info = self.client.admin.command("buildInfo")
        return str(info.get("version") or "")

    def list_databases(self, deadline: Deadline, database: str = "") -> list[str]:
        if database:
            return [database]
        with self._call("list_databases", deadline):
            names = self.client.list_database_names()
        return sorted(n for n in names if n not in SYSTEM_DATABASES)

    def list_collections(self, database: str, deadline: Deadline) -> list[CollectionInfo]:
        db = self.client[database]
        with self._call("list_collections", deadline):
            specs = sorted(db.list_collections(), key=lambda s: s["name"])

        collections = []
        for spec in specs:
            name = spec["name"]
            if name.startswith("system."):
                continue
            info = CollectionInfo(database=database, name=name, type=spec.get("type", "collection"))
            if info.type != "view":
                sizes = self._fill_stats(info, deadline)
                self._fill_indexes(info, sizes, deadline)
            collections.append(info)
        return collections

    def _fill_stats(self, info: CollectionInfo, deadline: Deadline) -> dict[str, int]:
        try:
            with self._call("collStats", deadline):
                stats = self.client[info.database].command("collStats", info.name)
        except DeadlineExceeded:
            raise
        except AdapterError as e:
            logger.debug("collStats %s.%s unavailable: %s", info.database, info.name, e)
            return {}
        info.doc_count = to_int(stats.get("count"))
        info.size = to_int(stats.get("size"))
        info.storage_size = to_int(stats.get("storageSize"))
        info.total_index_size = to_int(stats.get("totalIndexSize"))
        return {name: to_int(size) for name, size in (stats.get("indexSizes") or {}).items()}

    def _fill_indexes(self, info: CollectionInfo, sizes: dict[str, int], deadline: Deadline) -> None:
        coll = self.client[info.database][info.name]
        try:
            with self._call("list_indexes", deadline):
                specs = list(coll.list_indexes())
        except DeadlineExceeded:
            raise
        except AdapterError as e:
            logger.debug("listIndexes %s.%s unavailable: %s", info.database, info.name, e)
            return

        usage: dict[str, tuple[int, datetime | None]] = {}
        try:
            with self._call("index_stats", deadline):
                for doc in coll.aggregate([{"$indexStats": {}}]):
                    accesses = doc.get("accesses") or {}
                    since = accesses.get("since")
                    usage[doc.get("name", "")] = (
                        to_int(accesses.get("ops")),
                        since if isinstance(since, datetime) else None,
                    )
        except DeadlineExceeded:
            raise
        except AdapterError as e:
            logger.debug("$indexStats %s.%s unavailable: %s", info.database, info.name, e)

        for spec in specs:
            name = spec.get("name", "")
            ttl = spec.get("expireAfterSeconds")
            ops, since = usage.get(name, (None, None))
            info.indexes.append(IndexInfo(
                name=name,
                key=key_fields(spec.get("key")),
                unique=bool(spec.get("unique", False)),
                sparse=bool(spec.get("sparse", False)),
                ttl_seconds=to_int(ttl) if ttl is not None else None,
                usage_ops=ops,
                usage_since=since,
                size=sizes.get(name, 0),
            ))

    # -------------------------------------------------------------------------
    # Enrichment
    # -------------------------------------------------------------------------

    def get_validators(self, database: str, deadline: Deadline) -> dict[str, Validator]:
        with self._call("get_validators", deadline):
            specs = list(self.client[database].list_collections())
        validators = {}
        for spec in specs:
            validator = validator_from_options(spec.get("options") or {})
            if validator is not None:
                validators[spec["name"]] = validator
        return validators

    def read_profiler(self, database: str, limit: int, deadline: Deadline) -> list[ProfileEntry]:
        limit = limit if limit > 0 else 1000
        try:
            with self._call("read_profiler", deadline):
                docs = list(
                    self.client[database]["system.profile"]
                    .find()
                    .sort("ts", pymongo.DESCENDING)
                    .limit(limit)
                )
        except AdapterError as e:
            cause = e.__cause__
            if isinstance(cause, OperationFailure) and cause.code == NAMESPACE_NOT_FOUND:
                return []
            raise
        entries = []
        for doc in docs:
            entry = profile_entry_from_doc(database, doc)
            if entry is not None:
                entries.append(entry)
        return entries

    def inspect_sharding(self, deadline: Deadline) -> ShardingInfo:
        config = self.client["config"]
        with self._call("inspect_sharding", deadline):
            shard_docs = list(config["shards"].find({}))
        if not shard_docs:
            return ShardingInfo(enabled=False)

        info = ShardingInfo(
            enabled=True,
            shards=sorted(str(d["_id"]) for d in shard_docs if d.get("_id")),
        )
        with self._call("inspect_sharding", deadline):
            coll_docs = list(config["collections"].find(
                {"dropped": {"$ne": True}, "key": {"$exists": True}}
            ))
        for doc in sorted(coll_docs, key=lambda d: str(d.get("_id", ""))):
            ns = str(doc.get("_id") or "")
            db_name, coll_name = split_namespace(ns)
            if not db_name or not coll_name:
                continue
            sharded = ShardedCollection(
                namespace=ns,
                database=db_name,
                collection=coll_name,
                key=key_fields(doc.get("key")),
            )
            chunk_filter = {"uuid": doc["uuid"]} if doc.get("uuid") is not None else {"ns": ns}
            with self._call("inspect_sharding", deadline):
                chunks = list(config["chunks"].find(chunk_filter).limit(SHARDING_CHUNK_LIMIT + 1))
            if len(chunks) > SHARDING_CHUNK_LIMIT:
                chunks = chunks[:SHARDING_CHUNK_LIMIT]
                sharded.chunk_limit_hit = True
            for chunk in chunks:
                shard = str(chunk.get("shard") or "")
                if shard:
                    sharded.chunk_distribution[shard] = sharded.chunk_distribution.get(shard, 0) + 1
                    sharded.chunk_count += 1
                if chunk.get("jumbo"):
                    sharded.jumbo_chunks += 1
            info.collections.append(sharded)

        with self._call("inspect_sharding", deadline):
            balancer = config["settings"].find_one({"_id": "balancer"})
        if balancer:
            info.balancer_enabled = not balancer.get("stopped", False) and balancer.get("mode") != "off"
        return info

    def inspect_security(self, deadline: Deadline) -> SecurityInfo:
        info = SecurityInfo()
        with self._call("inspect_security", deadline):
            params = self.client.admin.command("getParameter", "*")
        if params.get("authenticationMechanisms"):
            info.auth_enabled = True
        info.tls_mode = str(params.get("tlsMode") or "")
        info.localhost_auth_bypass = bool(params.get("enableLocalhostAuthBypass", False))
        info.tls_allow_invalid_certs = bool(params.get("tlsAllowInvalidCertificates", False))

        try:
            with self._call("inspect_security", deadline):
                opts = self.client.admin.command("getCmdLineOpts")
        except DeadlineExceeded:
            raise
        except AdapterError as e:
            # Managed deployments often deny getCmdLineOpts
            logger.debug("getCmdLineOpts unavailable: %s", e)
            return info

        parsed = opts.get("parsed") or {}
        net = parsed.get("net") or {}
        if isinstance(net.get("bindIp"), str):
            info.bind_ip = net["bindIp"]
        if net.get("bindIpAll"):
            info.bind_ip = "0.0.0.0"
        tls = net.get("tls") or net.get("ssl") or {}
        if not info.tls_mode and isinstance(tls.get("mode"), str):
            info.tls_mode = tls["mode"]
        if (parsed.get("security") or {}).get("authorization") == "enabled":
            info.auth_enabled = True
        if (parsed.get("auditLog") or {}).get("destination"):
            info.audit_log_enabled = True
        return info

    def inspect_replica_set(self, deadline: Deadline) -> ReplicaSetInfo | None:
        try:
            with self._call("inspect_replica_set", deadline):
                status = self.client.admin.command("replSetGetStatus")
        except AdapterError as e:
            cause = e.__cause__
            if isinstance(cause, OperationFailure) and cause.code in (NO_REPLICATION_ENABLED, NOT_YET_INITIALIZED):
                return None
            raise

        config_members: dict[str, dict[str, Any]] = {}
        try:
            with self._call("inspect_replica_set", deadline):
                rs_config = self.client.admin.command("replSetGetConfig")
            for m in (rs_config.get("config") or {}).get("members") or []:
                config_members[str(m.get("host", ""))] = m
        except DeadlineExceeded:
            raise
        except AdapterError as e:
            logger.debug("replSetGetConfig unavailable: %s", e)

        info = ReplicaSetInfo(name=str(status.get("set") or ""))
        for m in status.get("members") or []:
            name = str(m.get("name") or "")
            conf = config_members.get(name, {})
            info.members.append(ReplicaSetMember(
                name=name,
                state=str(m.get("stateStr") or ""),
                health=to_int(m.get("health", 1)),
                votes=to_int(conf.get("votes", 1)),
                priority=float(conf.get("priority", 1)),
                hidden=bool(conf.get("hidden", False)),
            ))
        info.oplog_window_hours = self._oplog_window_hours(deadline)
        return info

    def _oplog_window_hours(self, deadline: Deadline) -> float:
        oplog = self.client["local"]["oplog.rs"]
        try:
            with self._call("oplog_window", deadline):
                first = oplog.find_one({}, sort=[("$natural", pymongo.ASCENDING)], projection={"ts": 1})
                last = oplog.find_one({}, sort=[("$natural", pymongo.DESCENDING)], projection={"ts": 1})
        except DeadlineExceeded:
            raise
        except AdapterError as e:
            logger.debug("oplog window unavailable: %s", e)
            return 0.0
        if not first or not last:
            return 0.0
        first_ts, last_ts = first.get("ts"), last.get("ts")
        if not isinstance(first_ts, Timestamp) or not isinstance(last_ts, Timestamp):
            return 0.0
        return max(0, last_ts.time - first_ts.time) / 3600.0

    def list_users(self, database: str, deadline: Deadline) -> list[UserInfo]:
        with self._call("list_users", deadline):
            result = self.client[database].command("usersInfo", 1)
        users = []
        for u in result.get("users") or []:
            users.append(UserInfo(
                username=str(u.get("user") or ""),
                database=str(u.get("db") or database),
                roles=[
                    UserRole(role=str(r.get("role") or ""), db=str(r.get("db") or ""))
                    for r in u.get("roles") or []
                ],
            ))
        return users

    def sample_documents(
        self,
        database: str,
        collection: str,
        size: int,
        deadline: Deadline,
    ) -> list[dict[str, Any]]:
        with self._call("sample_documents", deadline):
            return list(self.client[database][collection].aggregate([{"$sample": {"size": max(1, size)}}]))

"""
Atlas Admin API v2 client.

Implements AtlasAPI over httpx with HTTP digest authentication. Requests
are spaced at least rate_limit_ms apart and every request is bounded by
the caller's deadline.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING
from urllib.parse import quote

import httpx

from mongospectre import __version__
from mongospectre.adapters.base import AdapterError, AtlasAPI, DeadlineExceeded
from mongospectre.models import (
    AccessLogEntry,
    AtlasAlert,
    AtlasCluster,
    SuggestedIndex,
    UserInfo,
    UserRole,
)

if TYPE_CHECKING:
    from typing import Any

    from mongospectre.adapters.base import Deadline

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://cloud.mongodb.com"
DEFAULT_TIMEOUT = 30.0
DEFAULT_RATE_LIMIT_MS = 250
ACCEPT_HEADER = "application/vnd.atlas.2024-10-23+json"
ACCESS_LOG_PAGE_SIZE = 25
ACCESS_LOG_MAX_PAGES = 40

_INSTANCE_SPEC_KEYS = ("electableSpecs", "effectiveElectableSpecs", "analyticsSpecs", "readOnlySpecs")


class AtlasAPIError(AdapterError):
    """Non-2xx response from the Atlas Admin API."""

    def __init__(self, operation: str, status_code: int, code: str = "", message: str = ""):
        self.status_code = status_code
        self.code = code
        self.api_message = message or httpx.codes.get_reason_phrase(status_code) or "error"
        if code:
            detail = f"atlas api {status_code} ({code}): {self.api_message}"
        else:
            detail = f"atlas api {status_code}: {self.api_message}"
        super().__init__(operation, detail)


def first_string(raw: Any, *keys: str) -> str:
    """First non-empty value among keys, rendered as a string."""
    if not isinstance(raw, dict):
        return ""
    for key in keys:
        value = raw.get(key)
        if isinstance(value, bool) or value is None:
            continue
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        text = str(value).strip()
        if text:
            return text
    return ""


def parse_cluster(raw: dict[str, Any]) -> AtlasCluster:
    return AtlasCluster(
        name=first_string(raw, "name"),
        id=first_string(raw, "id"),
        mongodb_version=first_string(raw, "mongoDBVersion"),
        instance_size_name=instance_size(raw),
    )


def instance_size(raw: dict[str, Any]) -> str:
    """Instance size from providerSettings (v1 shape) or replicationSpecs (v2 shape)."""
    size = first_string(raw.get("providerSettings"), "instanceSizeName", "instanceSize")
    if size:
        return size
    for rep in raw.get("replicationSpecs") or []:
        if not isinstance(rep, dict):
            continue
        for region in rep.get("regionConfigs") or []:
            if not isinstance(region, dict):
                continue
            for key in _INSTANCE_SPEC_KEYS:
                size = first_string(region.get(key), "instanceSize", "instanceSizeName")
                if size:
                    return size
    return ""


def parse_index_fields(value: Any) -> list[str]:
    """
    Field names of a suggested index.

    Accepts ["a", "b"], [{"a": 1}, {"b": -1}], [{"field": "a"}] and {"a": 1}.
    """
    fields: list[str] = []

    def add(name: Any) -> None:
        name = str(name).strip()
        if name and name not in fields:
            fields.append(name)

    if isinstance(value, list):
        for entry in value:
            if isinstance(entry, str):
                add(entry)
            elif isinstance(entry, dict):
                for key in sorted(entry):
                    if key.lower() == "field" and first_string(entry, key):
                        add(first_string(entry, key))
                    else:
                        add(key)
    elif isinstance(value, dict):
        for key in sorted(value):
            add(key)
    return fields


def parse_suggested_index(raw: dict[str, Any]) -> SuggestedIndex | None:
    namespace = first_string(raw, "namespace", "collectionNamespace", "ns")
    if not namespace:
        db = first_string(raw, "db", "database", "dbName")
        coll = first_string(raw, "collection", "collectionName")
        namespace = f"{db}.{coll}" if db and coll else coll
    fields = (
        parse_index_fields(raw.get("index"))
        or parse_index_fields(raw.get("keys"))
        or parse_index_fields(raw.get("suggestedIndex"))
    )
    if not namespace or not fields:
        return None
    return SuggestedIndex(namespace=namespace, index_fields=fields)


class AtlasClient(AtlasAPI):
    """Read-only Atlas Admin API client."""

    def __init__(
        self,
        public_key: str,
        private_key: str,
        base_url: str = DEFAULT_BASE_URL,
        rate_limit_ms: int = DEFAULT_RATE_LIMIT_MS,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            public_key: API key public part (digest username).
            private_key: API key private part (digest password).
            base_url: API origin.
            rate_limit_ms: Minimum spacing between requests.
            transport: Optional httpx transport (tests pass a MockTransport).

        Raises:
            AdapterError: If credentials are missing.
        """
        if not public_key.strip() or not private_key.strip():
            raise AdapterError("atlas", "atlas credentials are required")
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.min_interval = (rate_limit_ms if rate_limit_ms > 0 else DEFAULT_RATE_LIMIT_MS) / 1000.0
        self._lock = threading.Lock()
        self._last_request = 0.0
        self._client = httpx.Client(
            base_url=self.base_url,
            auth=httpx.DigestAuth(public_key, private_key),
            headers={"Accept": ACCEPT_HEADER, "User-Agent": f"mongospectre/{__version__}"},
            timeout=DEFAULT_TIMEOUT,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _wait_rate_limit(self, deadline: Deadline, operation: str) -> None:
        while True:
            with self._lock:
                wait = self.min_interval - (time.monotonic() - self._last_request)
                if wait <= 0:
                    self._last_request = time.monotonic()
                    return
            remaining = deadline.remaining()
            if remaining is not None and remaining < wait:
                raise DeadlineExceeded(operation, "deadline exceeded waiting for rate limit")
            if deadline.cancel is not None:
                if deadline.cancel.wait(wait):
                    raise DeadlineExceeded(operation, "cancelled")
            else:
                time.sleep(wait)

    def _get(
        self,
        operation: str,
        path: str,
        deadline: Deadline,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        GET a path and decode the JSON body.

        Raises:
            DeadlineExceeded: If the deadline passes before or during the request.
            AtlasAPIError: On a non-2xx response.
            AdapterError: On transport or decoding failures.
        """
        deadline.check(operation)
        self._wait_rate_limit(deadline, operation)
        remaining = deadline.remaining()
        timeout = DEFAULT_TIMEOUT if remaining is None else min(DEFAULT_TIMEOUT, remaining)
        logger.debug("atlas GET %s", path)
        try:
            response = self._client.get(path, params=params, timeout=timeout)
        except httpx.TimeoutException as e:
            raise DeadlineExceeded(operation, str(e) or "request timed out") from e
        except httpx.HTTPError as e:
            raise AdapterError(operation, str(e)) from e

        if not response.is_success:
            code, message = "", ""
            try:
                payload = response.json()
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                code = first_string(payload, "errorCode", "code")
                message = first_string(payload, "detail", "error", "reason", "message")
            raise AtlasAPIError(operation, response.status_code, code, message)

        try:
            return response.json()
        except ValueError as e:
            raise AdapterError(operation, f"decode atlas response: {e}") from e

    def _results(self, operation: str, path: str, deadline: Deadline, params: dict[str, Any]) -> list[Any]:
        payload = self._get(operation, path, deadline, params)
        if not isinstance(payload, dict):
            return []
        return list(payload.get("results") or [])

    @staticmethod
    def _require(operation: str, **values: str) -> None:
        for name, value in values.items():
            if not value.strip():
                raise AdapterError(operation, f"atlas {name.replace('_', ' ')} is required")

    @staticmethod
    def _group_path(project_id: str, *parts: str) -> str:
        segments = ["/api/atlas/v2/groups", quote(project_id, safe="")]
        segments.extend(quote(p, safe="") if i % 2 else p for i, p in enumerate(parts))
        return "/".join(segments)

    # -------------------------------------------------------------------------
    # AtlasAPI
    # -------------------------------------------------------------------------

    def list_projects(self, deadline: Deadline) -> list[dict[str, Any]]:
        results = self._results(
            "list_projects", "/api/atlas/v2/groups", deadline,
            {"itemsPerPage": 500, "includeCount": "false"},
        )
        projects = []
        for raw in results:
            project_id = first_string(raw, "id", "groupId")
            if project_id:
                projects.append({"id": project_id, "name": first_string(raw, "name")})
        return projects

    def list_clusters(self, project_id: str, deadline: Deadline) -> list[AtlasCluster]:
        self._require("list_clusters", project_id=project_id)
        results = self._results(
            "list_clusters", self._group_path(project_id, "clusters"), deadline,
            {"itemsPerPage": 200, "includeCount": "false"},
        )
        clusters = [parse_cluster(raw) for raw in results if isinstance(raw, dict)]
        return [c for c in clusters if c.name]

    def get_cluster(self, project_id: str, cluster: str, deadline: Deadline) -> AtlasCluster:
        self._require("get_cluster", project_id=project_id, cluster_name=cluster)
        raw = self._get("get_cluster", self._group_path(project_id, "clusters", cluster), deadline)
        parsed = parse_cluster(raw if isinstance(raw, dict) else {})
        if not parsed.name:
            parsed.name = cluster
        return parsed

    def list_suggested_indexes(self, project_id: str, cluster: str, deadline: Deadline) -> list[SuggestedIndex]:
        self._require("list_suggested_indexes", project_id=project_id, cluster_name=cluster)
        path = self._group_path(project_id, "clusters", cluster) + "/performanceAdvisor/suggestedIndexes"
        results = self._results(
            "list_suggested_indexes", path, deadline,
            {"itemsPerPage": 200, "includeCount": "false"},
        )
        items = []
        for raw in results:
            if isinstance(raw, dict):
                suggestion = parse_suggested_index(raw)
                if suggestion is not None:
                    items.append(suggestion)
        return items

    def list_alerts(self, project_id: str, deadline: Deadline) -> list[AtlasAlert]:
        self._require("list_alerts", project_id=project_id)
        results = self._results(
            "list_alerts", self._group_path(project_id, "alerts"), deadline,
            {"itemsPerPage": 200, "includeCount": "false"},
        )
        alerts = []
        for raw in results:
            event = first_string(raw, "eventTypeName", "eventType")
            if not event:
                continue
            alerts.append(AtlasAlert(
                event_type_name=event,
                status=first_string(raw, "status"),
                id=first_string(raw, "id", "_id"),
            ))
        return alerts

    def list_mongodb_versions(self, project_id: str, deadline: Deadline) -> list[str]:
        self._require("list_mongodb_versions", project_id=project_id)
        results = self._results(
            "list_mongodb_versions", self._group_path(project_id, "mongoDBVersions"), deadline,
            {"itemsPerPage": 100, "includeCount": "false"},
        )
        versions = []
        for raw in results:
            if isinstance(raw, str):
                version = raw.strip()
            else:
                version = first_string(raw, "version", "name", "mongoDBVersion")
            if version:
                versions.append(version)
        return versions

    def list_database_users(self, project_id: str, deadline: Deadline) -> list[UserInfo]:
        self._require("list_database_users", project_id=project_id)
        results = self._results(
            "list_database_users", self._group_path(project_id, "databaseUsers"), deadline,
            {"itemsPerPage": 500, "includeCount": "false"},
        )
        users = []
        for raw in results:
            username = first_string(raw, "username")
            if not username:
                continue
            roles = [
                UserRole(role=first_string(r, "roleName"), db=first_string(r, "databaseName"))
                for r in raw.get("roles") or []
                if isinstance(r, dict)
            ]
            scopes = [
                first_string(s, "name")
                for s in raw.get("scopes") or []
                if isinstance(s, dict) and first_string(s, "name")
            ]
            users.append(UserInfo(
                username=username,
                database=first_string(raw, "databaseName") or "admin",
                roles=roles,
                scopes=scopes,
            ))
        return users

    def list_access_logs(self, project_id: str, cluster: str, deadline: Deadline) -> list[AccessLogEntry]:
        """
        Authentication history of a cluster.

        Atlas serves at most ACCESS_LOG_PAGE_SIZE entries per page. Reading
        stops at the first short page or after ACCESS_LOG_MAX_PAGES pages.
        """
        self._require("list_access_logs", project_id=project_id, cluster_name=cluster)
        path = (
            f"/api/atlas/v2/groups/{quote(project_id, safe='')}"
            f"/dbAccessHistory/clusters/{quote(cluster, safe='')}"
        )
        entries: list[AccessLogEntry] = []
        for page in range(1, ACCESS_LOG_MAX_PAGES + 1):
            results = self._results(
                "list_access_logs", path, deadline,
                {"itemsPerPage": ACCESS_LOG_PAGE_SIZE, "pageNum": page, "includeCount": "false"},
            )
            for raw in results:
                username = first_string(raw, "username")
                if not username:
                    continue
                entries.append(AccessLogEntry(
                    username=username,
                    auth_source=first_string(raw, "authSource"),
                    timestamp=first_string(raw, "timestamp"),
                    ip_address=first_string(raw, "ipAddress"),
                    auth_result=raw.get("authResult") is True,
                    failure_reason=first_string(raw, "failureReason"),
                ))
            if len(results) < ACCESS_LOG_PAGE_SIZE:
                return entries
        logger.debug("list_access_logs: stopped after %d pages", ACCESS_LOG_MAX_PAGES)
        return entries

    def resolve_project_id_by_cluster(self, cluster: str, deadline: Deadline) -> str:
        """
        Find the project owning a cluster by asking every visible project.

        Projects answering 404 are skipped; any other error propagates.
        """
        cluster = cluster.strip()
        self._require("resolve_project_id_by_cluster", cluster_name=cluster)
        for project in self.list_projects(deadline):
            try:
                self.get_cluster(project["id"], cluster, deadline)
            except AtlasAPIError as e:
                if e.status_code == 404:
                    continue
                raise
            return project["id"]
        raise AdapterError("resolve_project_id_by_cluster", f'atlas project for cluster "{cluster}" not found')

"""
Adapter contracts.

The rule engine never talks to a database or an HTTP API directly. It is
handed objects implementing DatabaseInspector and AtlasAPI; the concrete
PyMongo and httpx implementations live next to this module, and tests
substitute in-memory fakes.

Every call takes a Deadline. Implementations check it before doing any
I/O and bound their blocking calls by its remaining time. Failures are
raised as AdapterError; callers decide whether an error is fatal.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import threading
    from typing import Any

    from mongospectre.models import (
        AccessLogEntry,
        AtlasAlert,
        AtlasCluster,
        CollectionInfo,
        ProfileEntry,
        ReplicaSetInfo,
        SecurityInfo,
        ShardingInfo,
        SuggestedIndex,
        UserInfo,
        Validator,
    )

logger = logging.getLogger(__name__)


class AdapterError(RuntimeError):
    """An adapter call failed."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation}: {message}")
        self.operation = operation


class DeadlineExceeded(AdapterError):
    """The propagated deadline passed or was cancelled."""


class Deadline:
    """
    Absolute deadline shared by every adapter call of one run.

    A deadline may also be tied to a threading.Event; setting the event
    expires it immediately, which is how watch mode interrupts an audit.
    """

    def __init__(self, expires_at: float | None = None, cancel: threading.Event | None = None):
        """
        Args:
            expires_at: time.monotonic() value after which calls fail, or None for no limit.
            cancel: Optional event that expires the deadline when set.
        """
        self.expires_at = expires_at
        self.cancel = cancel

    @classmethod
    def after(cls, seconds: float | None, cancel: threading.Event | None = None) -> Deadline:
        """Deadline `seconds` from now; None or a non-positive value means unbounded."""
        if seconds is None or seconds <= 0:
            return cls(None, cancel)
        return cls(time.monotonic() + seconds, cancel)

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    @property
    def expired(self) -> bool:
        if self.cancelled:
            return True
        return self.expires_at is not None and time.monotonic() >= self.expires_at

    def remaining(self) -> float | None:
        """Seconds left, 0.0 once expired, or None when unbounded."""
        if self.cancelled:
            return 0.0
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    def check(self, operation: str) -> None:
        """
        Raise if no time is left.

        Raises:
            DeadlineExceeded: If the deadline passed or was cancelled.
        """
        if self.cancelled:
            raise DeadlineExceeded(operation, "cancelled")
        if self.expired:
            raise DeadlineExceeded(operation, "deadline exceeded")


class DatabaseInspector(ABC):
    """
    Read-only view of a MongoDB deployment.

    Implementations never write to the cluster.
    """

    def __enter__(self) -> DatabaseInspector:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @abstractmethod
    def close(self) -> None:
        """Release the connection."""

    @abstractmethod
    def server_version(self, deadline: Deadline) -> str:
        """Server version string, e.g. "7.0.4"."""

    @abstractmethod
    def list_databases(self, deadline: Deadline, database: str = "") -> list[str]:
        """Non-system database names, or just `database` when scoped."""

    @abstractmethod
    def list_collections(self, database: str, deadline: Deadline) -> list[CollectionInfo]:
        """Collections of one database with stats and indexes."""

    @abstractmethod
    def get_validators(self, database: str, deadline: Deadline) -> dict[str, Validator]:
        """Collection name -> $jsonSchema validator for one database."""

    @abstractmethod
    def read_profiler(self, database: str, limit: int, deadline: Deadline) -> list[ProfileEntry]:
        """Newest profiler entries of one database, at most `limit`."""

    @abstractmethod
    def inspect_sharding(self, deadline: Deadline) -> ShardingInfo:
        """Sharding topology; enabled=False on a non-sharded deployment."""

    @abstractmethod
    def inspect_security(self, deadline: Deadline) -> SecurityInfo:
        """Authentication, TLS, bind address and audit settings."""

    @abstractmethod
    def inspect_replica_set(self, deadline: Deadline) -> ReplicaSetInfo | None:
        """Replica set status, or None when not running as a replica set."""

    @abstractmethod
    def list_users(self, database: str, deadline: Deadline) -> list[UserInfo]:
        """Users defined on one database."""

    @abstractmethod
    def sample_documents(
        self,
        database: str,
        collection: str,
        size: int,
        deadline: Deadline,
    ) -> list[dict[str, Any]]:
        """Up to `size` randomly sampled documents."""


class AtlasAPI(ABC):
    """Read-only subset of the Atlas Admin API."""

    def __enter__(self) -> AtlasAPI:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        """Release the HTTP client."""

    @abstractmethod
    def list_projects(self, deadline: Deadline) -> list[dict[str, Any]]:
        """Projects visible to the API key."""

    @abstractmethod
    def list_clusters(self, project_id: str, deadline: Deadline) -> list[AtlasCluster]:
        """Clusters of a project."""

    @abstractmethod
    def get_cluster(self, project_id: str, cluster: str, deadline: Deadline) -> AtlasCluster:
        """One cluster by name."""

    @abstractmethod
    def list_suggested_indexes(self, project_id: str, cluster: str, deadline: Deadline) -> list[SuggestedIndex]:
        """Performance Advisor index suggestions for a cluster."""

    @abstractmethod
    def list_alerts(self, project_id: str, deadline: Deadline) -> list[AtlasAlert]:
        """Alerts of a project."""

    @abstractmethod
    def list_mongodb_versions(self, project_id: str, deadline: Deadline) -> list[str]:
        """MongoDB versions available to the project."""

    @abstractmethod
    def list_database_users(self, project_id: str, deadline: Deadline) -> list[UserInfo]:
        """Database users managed by Atlas."""

    @abstractmethod
    def list_access_logs(self, project_id: str, cluster: str, deadline: Deadline) -> list[AccessLogEntry]:
        """Database authentication attempts on a cluster."""

    @abstractmethod
    def resolve_project_id_by_cluster(self, cluster: str, deadline: Deadline) -> str:
        """Find the project that owns a cluster name."""

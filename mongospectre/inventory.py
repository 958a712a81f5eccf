"""
Inventory collection.

Builds an Inventory snapshot from a DatabaseInspector and, optionally, an
AtlasAPI client. Server version, database list and collection list are
required; a failure there aborts the audit with InventoryError. Everything
else is enrichment: a failing call is logged, recorded in
Inventory.warnings and leaves its part of the snapshot empty.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mongospectre.adapters.base import AdapterError
from mongospectre.config import DEFAULT_CONFIG
from mongospectre.models import AtlasAdvisory, Inventory
from mongospectre.sampling import summarize_documents
from mongospectre.utils import matches_any

if TYPE_CHECKING:
    from typing import Any, Callable, TypeVar

    from mongospectre.adapters.base import AtlasAPI, DatabaseInspector, Deadline
    from mongospectre.models import CollectionInfo

    T = TypeVar("T")

logger = logging.getLogger(__name__)


class InventoryError(RuntimeError):
    """A required inventory call failed."""


class InventoryCollector:
    """Collect one Inventory per call to collect()."""

    def __init__(
        self,
        inspector: DatabaseInspector,
        atlas: AtlasAPI | None = None,
        config: dict[str, Any] | None = None,
    ):
        """
        Args:
            inspector: Database adapter.
            atlas: Optional Atlas Admin API adapter.
            config: Configuration dictionary (merged with defaults).
        """
        self.inspector = inspector
        self.atlas = atlas
        self.config = config or DEFAULT_CONFIG
        exclude = self.config.get("exclude") or {}
        self.exclude_collections = list(exclude.get("collections") or [])
        self.exclude_databases = list(exclude.get("databases") or [])
        thresholds = self.config.get("thresholds") or {}
        self.profiler_limit = int(
            thresholds.get("profiler_limit", DEFAULT_CONFIG["thresholds"]["profiler_limit"])
        )
        self.sample_size = int(
            thresholds.get("sample_size", DEFAULT_CONFIG["thresholds"]["sample_size"])
        )

    def collect(self, deadline: Deadline, database: str = "") -> Inventory:
        """
        Take a snapshot of the cluster.

        Args:
            deadline: Deadline shared by every adapter call.
            database: Restrict the audit to one database.

        Returns:
            Inventory with warnings for every enrichment call that failed.

        Raises:
            InventoryError: If a required call fails, or the deadline is
                cancelled during enrichment.
        """
        inventory = Inventory()
        inventory.server_version = self._require(
            self.inspector.server_version, deadline,
        )
        databases = self._require(
            self.inspector.list_databases, deadline, database,
        )
        databases = [d for d in databases if not matches_any(d, self.exclude_databases)]

        for db_name in databases:
            collections = self._require(
                self.inspector.list_collections, db_name, deadline,
            )
            collections = [c for c in collections if not matches_any(c.name, self.exclude_collections)]
            self._attach_validators(inventory, db_name, collections, deadline)
            if self.sample_size > 0:
                self._attach_samples(inventory, db_name, collections, deadline)
            inventory.collections.extend(collections)

            entries = self._enrich(
                inventory, deadline, "read_profiler",
                self.inspector.read_profiler, db_name, self.profiler_limit, deadline,
            )
            inventory.profile_entries.extend(
                e for e in entries or [] if not matches_any(e.collection, self.exclude_collections)
            )

        for db_name in sorted(set(databases) | {"admin"}):
            users = self._enrich(
                inventory, deadline, "list_users", self.inspector.list_users, db_name, deadline,
            )
            inventory.users.extend(users or [])

        inventory.sharding = self._enrich(
            inventory, deadline, "inspect_sharding", self.inspector.inspect_sharding, deadline,
        )
        inventory.security = self._enrich(
            inventory, deadline, "inspect_security", self.inspector.inspect_security, deadline,
        )
        inventory.replica_set = self._enrich(
            inventory, deadline, "inspect_replica_set", self.inspector.inspect_replica_set, deadline,
        )

        if self.atlas is not None:
            inventory.atlas = self._collect_atlas(inventory, deadline)

        inventory.collections.sort(key=lambda c: (c.database, c.name))
        logger.debug(
            "Inventory: %d collections, %d profiler entries, %d users, %d warnings",
            len(inventory.collections), len(inventory.profile_entries),
            len(inventory.users), len(inventory.warnings),
        )
        return inventory

    def _attach_validators(
        self,
        inventory: Inventory,
        database: str,
        collections: list[CollectionInfo],
        deadline: Deadline,
    ) -> None:
        validators = self._enrich(
            inventory, deadline, "get_validators", self.inspector.get_validators, database, deadline,
        )
        for info in collections:
            if validators and info.name in validators:
                info.validator = validators[info.name]

    def _attach_samples(
        self,
        inventory: Inventory,
        database: str,
        collections: list[CollectionInfo],
        deadline: Deadline,
    ) -> None:
        for info in collections:
            if info.type == "view" or info.name.startswith("system.") or info.doc_count <= 0:
                continue
            docs = self._enrich(
                inventory, deadline, "sample_documents",
                self.inspector.sample_documents, database, info.name, self.sample_size, deadline,
            )
            if docs:
                info.sample = summarize_documents(docs)

    def _collect_atlas(self, inventory: Inventory, deadline: Deadline) -> AtlasAdvisory | None:
        atlas_config = self.config.get("atlas") or {}
        cluster_name = atlas_config.get("cluster") or ""
        project_id = atlas_config.get("project_id") or ""
        if not cluster_name:
            self._warn(inventory, "atlas: no cluster configured, skipping Atlas enrichment")
            return None

        if not project_id:
            project_id = self._enrich(
                inventory, deadline, "resolve_project_id_by_cluster",
                self.atlas.resolve_project_id_by_cluster, cluster_name, deadline,
            )
            if not project_id:
                return None

        cluster = self._enrich(
            inventory, deadline, "get_cluster", self.atlas.get_cluster, project_id, cluster_name, deadline,
        )
        if cluster is None:
            return None

        advisory = AtlasAdvisory(project_id=project_id, cluster=cluster)
        advisory.suggested_indexes = self._enrich(
            inventory, deadline, "list_suggested_indexes",
            self.atlas.list_suggested_indexes, project_id, cluster_name, deadline,
        ) or []
        advisory.alerts = self._enrich(
            inventory, deadline, "list_alerts", self.atlas.list_alerts, project_id, deadline,
        ) or []
        advisory.available_versions = self._enrich(
            inventory, deadline, "list_mongodb_versions",
            self.atlas.list_mongodb_versions, project_id, deadline,
        ) or []
        advisory.database_users = self._enrich(
            inventory, deadline, "list_database_users", self.atlas.list_database_users, project_id, deadline,
        ) or []
        if advisory.database_users:
            advisory.access_logs = self._enrich(
                inventory, deadline, "list_access_logs",
                self.atlas.list_access_logs, project_id, cluster_name, deadline,
            )
        return advisory

    def _require(self, func: Callable[..., T], *args: Any) -> T:
        try:
            return func(*args)
        except AdapterError as e:
            raise InventoryError(f"required call failed: {e}") from e

    def _enrich(
        self,
        inventory: Inventory,
        deadline: Deadline,
        operation: str,
        func: Callable[..., T],
        *args: Any,
    ) -> T | None:
        try:
            return func(*args)
        except AdapterError as e:
            if deadline.cancelled:
                raise InventoryError(f"{operation} cancelled") from e
            self._warn(inventory, str(e))
            return None

    @staticmethod
    def _warn(inventory: Inventory, message: str) -> None:
        logger.warning("%s", message)
        inventory.warnings.append(message)


def collect_inventory(
    inspector: DatabaseInspector,
    deadline: Deadline,
    config: dict[str, Any] | None = None,
    atlas: AtlasAPI | None = None,
    database: str = "",
) -> Inventory:
    """Convenience wrapper around InventoryCollector.collect()."""
    return InventoryCollector(inspector, atlas=atlas, config=config).collect(deadline, database=database)

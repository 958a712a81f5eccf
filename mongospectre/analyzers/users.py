"""
Database user rules.

Native users come from usersInfo. Atlas-managed users add scope checks
and, with the Atlas access history, inactivity checks. When usersInfo
returned nobody the Atlas users stand in for the native ones.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mongospectre.analyzers.base import Analyzer
from mongospectre.models import (
    SEVERITY_HIGH,
    SEVERITY_INFO,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    Finding,
    FindingType,
    sort_findings,
)

if TYPE_CHECKING:
    from mongospectre.models import AccessLogEntry, Inventory, ScanResult, UserInfo

logger = logging.getLogger(__name__)

# Roles that administer a single database
ADMIN_ROLES = frozenset({"dbAdmin", "dbOwner", "root", "userAdmin"})

# Roles that reach across every database
CLUSTER_ADMIN_ROLES = frozenset({
    "root",
    "clusterAdmin",
    "userAdminAnyDatabase",
    "dbAdminAnyDatabase",
})

# Atlas keeps this many days of access history
ACCESS_HISTORY_DAYS = 7


def is_privileged(user: UserInfo) -> bool:
    """Cluster-admin roles or read-write access to every database."""
    return any(r.role in CLUSTER_ADMIN_ROLES or r.role == "readWriteAnyDatabase" for r in user.roles)


class UserAnalyzer(Analyzer):
    """Over-privileged, duplicated, misplaced and inactive users."""

    name = "users"

    def analyze(self, scan: ScanResult | None, inventory: Inventory) -> list[Finding]:
        atlas_users: list[UserInfo] = []
        access_logs: list[AccessLogEntry] | None = None
        if inventory.atlas is not None:
            atlas_users = sorted(inventory.atlas.database_users, key=lambda u: (u.database, u.username))
            access_logs = inventory.atlas.access_logs

        users = sorted(inventory.users, key=lambda u: (u.database, u.username)) or atlas_users
        findings: list[Finding] = []
        if users:
            findings.extend(self._overprivileged(users))
            findings.extend(self._multiple_admins(users))
            findings.extend(self._admin_in_data_db(users))
            findings.extend(self._duplicates(users))
        findings.extend(self._no_scope(atlas_users))
        if access_logs is not None:
            findings.extend(self._inactive(atlas_users, access_logs))
        return sort_findings(findings)

    @staticmethod
    def _overprivileged(users: list[UserInfo]) -> list[Finding]:
        findings = []
        for u in users:
            broad = sorted({r.role for r in u.roles if r.role in CLUSTER_ADMIN_ROLES})
            if not broad:
                continue
            findings.append(Finding(
                type=FindingType.OVERPRIVILEGED_USER,
                severity=SEVERITY_HIGH,
                database=u.database,
                collection=u.username,
                message=f'user "{u.username}" has broad privileges: {", ".join(broad)}',
            ))
        return findings

    @staticmethod
    def _multiple_admins(users: list[UserInfo]) -> list[Finding]:
        admins = sorted({
            u.username for u in users
            if any(r.role in CLUSTER_ADMIN_ROLES for r in u.roles)
        })
        if len(admins) <= 1:
            return []
        return [Finding(
            type=FindingType.MULTIPLE_ADMIN_USERS,
            severity=SEVERITY_MEDIUM,
            database="admin",
            message=f'{len(admins)} users have cluster-admin roles: {", ".join(admins)}',
        )]

    @staticmethod
    def _admin_in_data_db(users: list[UserInfo]) -> list[Finding]:
        findings = []
        for u in users:
            if u.database == "admin":
                continue
            roles = sorted({r.role for r in u.roles if r.role in ADMIN_ROLES})
            if not roles:
                continue
            findings.append(Finding(
                type=FindingType.ADMIN_IN_DATA_DB,
                severity=SEVERITY_MEDIUM,
                database=u.database,
                collection=u.username,
                message=f'user "{u.username}" has admin role {roles[0]} in non-admin database "{u.database}"',
            ))
        return findings

    @staticmethod
    def _duplicates(users: list[UserInfo]) -> list[Finding]:
        by_name: dict[str, set[str]] = {}
        for u in users:
            by_name.setdefault(u.username, set()).add(u.database)
        findings = []
        for username in sorted(by_name):
            dbs = sorted(by_name[username])
            if len(dbs) < 2:
                continue
            findings.append(Finding(
                type=FindingType.DUPLICATE_USER,
                severity=SEVERITY_LOW,
                database="admin",
                collection=username,
                message=f'user "{username}" is defined on {len(dbs)} databases: {", ".join(dbs)}',
            ))
        return findings

    @staticmethod
    def _no_scope(users: list[UserInfo]) -> list[Finding]:
        findings = []
        for u in users:
            if u.scopes or not u.roles:
                continue
            findings.append(Finding(
                type=FindingType.ATLAS_USER_NO_SCOPE,
                severity=SEVERITY_INFO,
                database=u.database,
                collection=u.username,
                message=f'Atlas user "{u.username}" has no cluster scope and can reach every cluster in the project',
            ))
        return findings

    @staticmethod
    def _inactive(users: list[UserInfo], logs: list[AccessLogEntry]) -> list[Finding]:
        succeeded = {e.username for e in logs if e.auth_result}
        failed = {e.username for e in logs if not e.auth_result}
        findings = []
        for u in users:
            if u.username in succeeded:
                continue
            if u.username in failed:
                kind, severity = FindingType.FAILED_AUTH_ONLY, SEVERITY_MEDIUM
                message = f'user "{u.username}" has only failed authentication attempts in the last {ACCESS_HISTORY_DAYS} days'
            elif is_privileged(u):
                kind, severity = FindingType.INACTIVE_PRIVILEGED_USER, SEVERITY_HIGH
                message = f'privileged user "{u.username}" has not authenticated in the last {ACCESS_HISTORY_DAYS} days'
            else:
                kind, severity = FindingType.INACTIVE_USER, SEVERITY_MEDIUM
                message = f'user "{u.username}" has not authenticated in the last {ACCESS_HISTORY_DAYS} days'
            findings.append(Finding(
                type=kind,
                severity=severity,
                database=u.database,
                collection=u.username,
                message=message,
            ))
        return findings

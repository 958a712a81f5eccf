"""
Server security configuration rules.

All findings are reported against the admin database.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mongospectre.analyzers.base import Analyzer
from mongospectre.models import (
    SEVERITY_HIGH,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    Finding,
    FindingType,
    sort_findings,
)

if TYPE_CHECKING:
    from mongospectre.models import Inventory, ScanResult, SecurityInfo

logger = logging.getLogger(__name__)

ALL_INTERFACES = frozenset({"0.0.0.0", "::", "*"})


class SecurityAnalyzer(Analyzer):
    """Authentication, network exposure, TLS and auditing."""

    name = "security"

    def analyze(self, scan: ScanResult | None, inventory: Inventory) -> list[Finding]:
        info = inventory.security
        if info is None:
            return []
        findings = [
            self._finding(finding_type, severity, message)
            for finding_type, severity, message in self._checks(info)
        ]
        return sort_findings(findings)

    @staticmethod
    def _checks(info: SecurityInfo):
        if not info.auth_enabled:
            yield (
                FindingType.AUTH_DISABLED, SEVERITY_HIGH,
                "authentication is disabled; anyone can connect without credentials",
            )
        exposed = [a.strip() for a in info.bind_ip.split(",") if a.strip() in ALL_INTERFACES]
        if exposed:
            yield (
                FindingType.BIND_ALL_INTERFACES, SEVERITY_HIGH,
                f"server is bound to all network interfaces ({exposed[0]}); restrict with net.bindIp",
            )
        if info.tls_mode.strip().lower() in ("", "disabled"):
            yield (
                FindingType.TLS_DISABLED, SEVERITY_HIGH,
                "TLS is not configured; network traffic is unencrypted",
            )
        if info.tls_allow_invalid_certs:
            yield (
                FindingType.TLS_ALLOW_INVALID_CERTS, SEVERITY_MEDIUM,
                "tlsAllowInvalidCertificates is enabled; connections accept untrusted certificates",
            )
        if not info.audit_log_enabled:
            yield (
                FindingType.AUDIT_LOG_DISABLED, SEVERITY_MEDIUM,
                "audit logging is not configured",
            )
        if info.localhost_auth_bypass:
            yield (
                FindingType.LOCALHOST_EXCEPTION_ACTIVE, SEVERITY_LOW,
                "localhost authentication bypass is active; the first user can be created without credentials",
            )

    @staticmethod
    def _finding(finding_type: str, severity: str, message: str) -> Finding:
        return Finding(type=finding_type, severity=severity, database="admin", message=message)

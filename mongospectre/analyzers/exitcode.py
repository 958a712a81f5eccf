"""
Process exit code from findings.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from mongospectre.models import (
    SEVERITY_HIGH,
    SEVERITY_MEDIUM,
    FindingType,
    max_severity,
)

if TYPE_CHECKING:
    from mongospectre.models import Finding

EXIT_OK = 0
EXIT_WARN = 1
EXIT_CRITICAL = 2


def exit_code(findings: list[Finding], fail_on_missing: bool = False) -> int:
    """
    Map findings to an exit code.

    info and low -> 0, medium -> 1, high -> 2. With fail_on_missing any
    MISSING_COLLECTION forces 2.
    """
    if fail_on_missing and any(f.type == FindingType.MISSING_COLLECTION for f in findings):
        return EXIT_CRITICAL
    severity = max_severity(findings)
    if severity == SEVERITY_HIGH:
        return EXIT_CRITICAL
    if severity == SEVERITY_MEDIUM:
        return EXIT_WARN
    return EXIT_OK

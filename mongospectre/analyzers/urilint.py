"""
Connection string lint.

Static checks on the MongoDB URI itself; nothing here talks to the
server. Option names are matched case-insensitively, as drivers do.
URI findings have no database or collection; the two timeout checks put
the option name in the index slot so both can be reported.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, NamedTuple
from urllib.parse import parse_qs, unquote, urlsplit

from mongospectre.analyzers.base import Analyzer
from mongospectre.models import (
    SEVERITY_INFO,
    SEVERITY_LOW,
    Finding,
    FindingType,
    sort_findings,
)

if TYPE_CHECKING:
    from mongospectre.models import Inventory, ScanResult

logger = logging.getLogger(__name__)

SRV_SCHEME = "mongodb+srv"
LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})

# option (lowercased) -> (display name, minimum milliseconds, consequence)
TIMEOUT_MINIMUMS = {
    "connecttimeoutms": ("connectTimeoutMS", 5000, "may cause spurious timeouts in cloud environments"),
    "serverselectiontimeoutms": (
        "serverSelectionTimeoutMS", 10000, "may cause connection failures during failover",
    ),
}


class ParsedURI(NamedTuple):
    srv: bool
    hosts: list[str]
    username: str
    has_password: bool
    options: dict[str, str]

    def option(self, name: str) -> str:
        return self.options.get(name.lower(), "")

    def enabled(self, name: str) -> bool:
        return self.option(name).lower() == "true"

    @property
    def local(self) -> bool:
        return bool(self.hosts) and all(h.lower() in LOCAL_HOSTS for h in self.hosts)


def _host_name(host: str) -> str:
    """Host without port; IPv6 literals lose their brackets."""
    if host.startswith("["):
        return host[1:].split("]", 1)[0]
    return host.rsplit(":", 1)[0] if host.count(":") == 1 else host


def parse_uri(uri: str) -> ParsedURI:
    """
    Split a connection string into the parts the lint rules look at.

    Raises:
        ValueError: If the string is not a mongodb:// or mongodb+srv:// URI.
    """
    parts = urlsplit(uri.strip())
    scheme = parts.scheme.lower()
    if scheme not in ("mongodb", SRV_SCHEME):
        raise ValueError(f"unsupported scheme {parts.scheme!r}")
    # Userinfo ends at the last "@" before the query, even with an unencoded "/" in the password
    userinfo, _, location = (parts.netloc + parts.path).rpartition("@")
    host_list = location.split("/", 1)[0]
    if not host_list:
        raise ValueError("no host")
    username, colon, _ = userinfo.partition(":")
    options = {
        key.lower(): values[-1]
        for key, values in parse_qs(parts.query, keep_blank_values=True).items()
    }
    return ParsedURI(
        srv=scheme == SRV_SCHEME,
        hosts=[_host_name(h) for h in host_list.split(",") if h],
        username=unquote(username),
        has_password=bool(colon),
        options=options,
    )


def _finding(kind: str, severity: str, message: str, index: str = "") -> Finding:
    return Finding(type=kind, severity=severity, index=index, message=message)


def lint_uri(uri: str) -> list[Finding]:
    """
    Check a connection string for risky or missing settings.

    Args:
        uri: MongoDB connection string.

    Returns:
        Sorted findings; empty for an empty URI.
    """
    if not uri.strip():
        return []
    try:
        parsed = parse_uri(uri)
    except ValueError as e:
        return [_finding(FindingType.URI_NO_AUTH, SEVERITY_LOW, f"URI could not be parsed: {e}")]

    findings = []
    if not parsed.local and not parsed.username and not parsed.option("authMechanism"):
        findings.append(_finding(
            FindingType.URI_NO_AUTH, SEVERITY_LOW,
            "URI has no credentials and no authMechanism; the connection may be unauthenticated",
        ))
    if not parsed.local and not parsed.srv and not (parsed.enabled("tls") or parsed.enabled("ssl")):
        findings.append(_finding(
            FindingType.URI_NO_TLS, SEVERITY_LOW,
            "URI does not enable TLS; add tls=true for encrypted connections",
        ))
    if not parsed.enabled("retryWrites"):
        findings.append(_finding(
            FindingType.URI_NO_RETRY_WRITES, SEVERITY_INFO,
            "URI does not set retryWrites=true; older drivers default to false",
        ))
    if parsed.has_password:
        findings.append(_finding(
            FindingType.URI_PLAINTEXT_PASSWORD, SEVERITY_INFO,
            "URI embeds a password; prefer environment variables or a secrets manager",
        ))
    if parsed.username and not parsed.option("authSource"):
        findings.append(_finding(
            FindingType.URI_DEFAULT_AUTH_SOURCE, SEVERITY_INFO,
            "URI does not set authSource; it defaults to the URI database or admin",
        ))
    for key, (name, minimum, consequence) in TIMEOUT_MINIMUMS.items():
        try:
            value = int(parsed.options.get(key, ""))
        except ValueError:
            continue
        if value < minimum:
            findings.append(_finding(
                FindingType.URI_SHORT_TIMEOUT, SEVERITY_LOW,
                f"{name}={value} is below {minimum}ms and {consequence}",
                index=name,
            ))
    if not parsed.option("readPreference"):
        findings.append(_finding(
            FindingType.URI_NO_READ_PREFERENCE, SEVERITY_INFO,
            "URI does not set readPreference; it defaults to primary",
        ))
    if parsed.enabled("directConnection"):
        if parsed.srv:
            findings.append(_finding(
                FindingType.URI_DIRECT_CONNECTION, SEVERITY_LOW,
                "directConnection=true cannot be combined with an SRV URI",
            ))
        elif len(parsed.hosts) > 1:
            findings.append(_finding(
                FindingType.URI_DIRECT_CONNECTION, SEVERITY_LOW,
                "directConnection=true with several hosts bypasses replica set failover",
            ))
    return sort_findings(findings)


class UriAnalyzer(Analyzer):
    """Lint the connection string the audit was run with."""

    name = "uri"

    def __init__(self, uri: str):
        self.uri = uri

    def analyze(self, scan: ScanResult | None, inventory: Inventory) -> list[Finding]:
        return lint_uri(self.uri)

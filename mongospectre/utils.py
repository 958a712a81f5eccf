"""
Utility functions for mongospectre.
"""

from __future__ import annotations

import fnmatch
import hashlib
import logging
from typing import TYPE_CHECKING
from urllib.parse import urlsplit, urlunsplit

if TYPE_CHECKING:
    from typing import Iterable

logger = logging.getLogger(__name__)


def strip_credentials(uri: str) -> str:
    """
    Remove the userinfo part of a connection URI.

    Args:
        uri: Connection string, e.g. mongodb://user:pw@host:27017/db.

    Returns:
        The URI without "user:password@". Everything up to the last "@"
        before the query string is userinfo, so passwords holding an
        unencoded "/" or "@" are removed too.
    """
    uri = uri.strip()
    try:
        parts = urlsplit(uri)
    except ValueError:
        # Unbalanced IPv6 brackets
        scheme, sep, rest = uri.partition("://")
        head, mark, query = rest.partition("?")
        return scheme + sep + head.rpartition("@")[2] + mark + query
    location = parts.netloc + parts.path
    if not parts.scheme or "@" not in location:
        return uri
    netloc, slash, path = location.rpartition("@")[2].partition("/")
    return urlunsplit((parts.scheme, netloc, slash + path, parts.query, parts.fragment))


def hash_uri(uri: str) -> str:
    """
    Hash a connection URI for report metadata.

    Credentials are stripped first so the hash identifies the target, not
    the account.

    Args:
        uri: Connection string.

    Returns:
        "sha256:<hex digest>", or "" for an empty URI.
    """
    if not uri:
        return ""
    digest = hashlib.sha256(strip_credentials(uri).encode("utf-8")).hexdigest()
    return f"sha256:{digest}"


def host_from_uri(uri: str) -> str:
    """Return the host list of a connection URI without credentials or options."""
    rest = strip_credentials(uri)
    if "://" in rest:
        rest = rest.split("://", 1)[1]
    return rest.split("/", 1)[0].split("?", 1)[0]


def matches_any(name: str, patterns: Iterable[str]) -> bool:
    """
    Check a name against fnmatch-style patterns, case-insensitively.

    Args:
        name: Collection or database name.
        patterns: Glob patterns such as "tmp_*".

    Returns:
        True if any pattern matches.
    """
    lowered = name.lower()
    for pattern in patterns:
        if pattern and fnmatch.fnmatchcase(lowered, pattern.lower()):
            return True
    return False


def sorted_unique(values: Iterable[str]) -> list[str]:
    """Deduplicate and sort strings."""
    return sorted(set(values))


def split_namespace(namespace: str) -> tuple[str, str]:
    """
    Split "db.collection" into its parts.

    Collection names may themselves contain dots, so only the first dot
    separates. A namespace without a dot is treated as a bare collection.
    """
    namespace = namespace.strip()
    if "." not in namespace:
        return "", namespace
    db, coll = namespace.split(".", 1)
    return db, coll

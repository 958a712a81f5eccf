"""
Baseline comparison.

Labels each finding of the current run as new, unchanged or resolved
relative to a previous report. The collection stats a report carries are
read back as well so growth can be measured between two runs.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from mongospectre.models import CollectionInfo, Finding

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)

STATUS_NEW = "new"
STATUS_RESOLVED = "resolved"
STATUS_UNCHANGED = "unchanged"

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


@dataclass
class BaselineDiff:
    new: list[Finding] = field(default_factory=list)
    resolved: list[Finding] = field(default_factory=list)
    unchanged: list[Finding] = field(default_factory=list)

    def labeled(self) -> list[tuple[str, Finding]]:
        """All findings with their status: new, then resolved, then unchanged."""
        return (
            [(STATUS_NEW, f) for f in self.new]
            + [(STATUS_RESOLVED, f) for f in self.resolved]
            + [(STATUS_UNCHANGED, f) for f in self.unchanged]
        )

    def summary(self) -> dict[str, int]:
        return {
            STATUS_NEW: len(self.new),
            STATUS_RESOLVED: len(self.resolved),
            STATUS_UNCHANGED: len(self.unchanged),
        }

    def to_dict(self) -> list[dict[str, Any]]:
        out = []
        for status, f in self.labeled():
            data = f.to_dict()
            data["status"] = status
            out.append(data)
        return out


def parse_baseline(data: Any) -> list[Finding]:
    """
    Extract findings from a decoded report.

    Only the "findings" array is read; a missing or null array is empty.

    Raises:
        ValueError: If the document is not a report object.
    """
    if not isinstance(data, dict):
        raise ValueError("baseline is not a JSON object")
    raw = data.get("findings") or []
    if not isinstance(raw, list):
        raise ValueError('baseline "findings" is not an array')
    return [Finding.from_dict(item) for item in raw if isinstance(item, dict)]


def load_baseline(path: Path) -> list[Finding]:
    """
    Read the findings of a previously emitted JSON report.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If it is not a JSON report.
    """
    return load_snapshot(path).findings


def diff_baseline(current: list[Finding], previous: list[Finding]) -> BaselineDiff:
    """
    Compare two finding lists by canonical key.

    Args:
        current: Findings of this run.
        previous: Findings of the baseline.

    Returns:
        BaselineDiff whose three lists are each sorted by canonical key.
    """
    previous_by_key = {f.canonical_key(): f for f in previous}
    current_by_key = {f.canonical_key(): f for f in current}

    diff = BaselineDiff()
    for key in sorted(current_by_key):
        if key in previous_by_key:
            diff.unchanged.append(current_by_key[key])
        else:
            diff.new.append(current_by_key[key])
    for key in sorted(previous_by_key):
        if key not in current_by_key:
            diff.resolved.append(previous_by_key[key])
    return diff


@dataclass
class Snapshot:
    """A previous JSON report: its findings, collection stats and run time."""

    findings: list[Finding] = field(default_factory=list)
    collections: list[CollectionInfo] = field(default_factory=list)
    timestamp: datetime | None = None


def parse_snapshot(data: Any) -> Snapshot:
    """
    Read findings, collections and the metadata timestamp of a decoded report.

    Reports written without collections (scan-only or older runs) give an
    empty collection list; an unreadable timestamp gives None.

    Raises:
        ValueError: If the document is not a report object.
    """
    snapshot = Snapshot(findings=parse_baseline(data))
    raw = data.get("collections") or []
    if isinstance(raw, list):
        snapshot.collections = [CollectionInfo.from_dict(c) for c in raw if isinstance(c, dict)]
    meta = data.get("metadata")
    stamp = meta.get("timestamp") if isinstance(meta, dict) else None
    if isinstance(stamp, str) and stamp:
        try:
            snapshot.timestamp = datetime.strptime(stamp, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
        except ValueError:
            logger.debug("Baseline timestamp %r not understood", stamp)
    return snapshot


def load_snapshot(path: Path) -> Snapshot:
    """
    Read a previously emitted JSON report.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If it is not a JSON report.
    """
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"invalid baseline {path}: {e}") from e
    return parse_snapshot(data)

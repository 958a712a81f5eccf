"""
Watch mode: repeat an audit and report only what changed.

The first run emits the full finding list; every later run is diffed
against the previous one and emits new and resolved findings. Between
runs the watcher sleeps up to the configured interval; it wakes early
when a scanned source file changes (via watchdog) or when stop() is
called. Each run's deadline is tied to the stop signal, so stopping
mid-audit interrupts in-flight adapter calls and the partial run is
discarded.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from mongospectre.adapters.base import AdapterError, Deadline
from mongospectre.analyzers.baseline import diff_baseline
from mongospectre.config import DEFAULT_SKIP_DIRS, SUPPORTED_EXTENSIONS
from mongospectre.inventory import InventoryError
from mongospectre.models import SEVERITY_HIGH
from mongospectre.reporter import FORMAT_JSON, build_report, render_baseline_diff, render_text

if TYPE_CHECKING:
    from typing import Any

    from mongospectre.analyzers.baseline import BaselineDiff
    from mongospectre.models import Finding

logger = logging.getLogger(__name__)

EVENT_FULL = "full"
EVENT_DIFF = "diff"
EVENT_SHUTDOWN = "shutdown"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class WatchEvent:
    """One emitted watch event. Diff entries carry the finding's canonical key string."""

    type: str
    timestamp: str
    total: int = 0
    new: int = 0
    resolved: int = 0
    runs: int = 0
    findings: list[Finding] = field(default_factory=list)
    diff: BaselineDiff | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"timestamp": self.timestamp, "type": self.type}
        if self.findings:
            data["findings"] = [f.to_dict() for f in self.findings]
        if self.diff is not None:
            entries = []
            for status, f in self.diff.labeled():
                entry = f.to_dict()
                entry["status"] = status
                entry["key"] = f.key_string()
                entries.append(entry)
            data["diff"] = entries
        data["summary"] = {"total": self.total, "new": self.new, "resolved": self.resolved}
        if self.type == EVENT_SHUTDOWN:
            data["summary"]["runs"] = self.runs
        return data


def format_event(event: WatchEvent, fmt: str) -> str:
    """NDJSON line for json output, human-readable text otherwise."""
    if fmt == FORMAT_JSON:
        return json.dumps(event.to_dict(), default=str)
    if event.type == EVENT_FULL:
        report = build_report("watch", event.findings)
        return f"[{event.timestamp}] Initial audit: {event.total} findings\n{render_text(report)}"
    if event.type == EVENT_DIFF and event.diff is not None:
        return f"[{event.timestamp}]\n{render_baseline_diff(event.diff)}"
    return f"Watch summary: {event.runs} runs, {event.new} new findings, {event.resolved} resolved"


@dataclass
class WatchSummary:
    runs: int = 0
    new: int = 0
    resolved: int = 0
    last_total: int = 0
    stopped_on_new_high: bool = False


class SourceChangeHandler(FileSystemEventHandler):
    """Wake the watcher when a scanned source file changes."""

    def __init__(self, wake: threading.Event):
        self.wake = wake

    def on_any_event(self, event: Any) -> None:
        if event.is_directory:
            return
        path = Path(str(event.src_path))
        if path.suffix.lower() not in SUPPORTED_EXTENSIONS:
            return
        if any(part in DEFAULT_SKIP_DIRS for part in path.parts):
            return
        logger.debug("Source changed: %s", path)
        self.wake.set()


class Watcher:
    """Run an audit callable repeatedly until stopped."""

    def __init__(
        self,
        audit: Callable[[Deadline], list[Finding]],
        interval: float,
        timeout: float | None = None,
        watch_path: Path | None = None,
        emit: Callable[[WatchEvent], None] | None = None,
        exit_on_new: bool = False,
    ):
        """
        Args:
            audit: Runs one audit under the given deadline and returns its findings.
            interval: Seconds between runs.
            timeout: Per-run deadline in seconds (None = unbounded).
            watch_path: Source tree whose changes trigger an early run.
            emit: Receives every event, including the shutdown summary.
            exit_on_new: Stop after a run that produced a new high-severity finding.
        """
        self.audit = audit
        self.interval = interval
        self.timeout = timeout
        self.watch_path = watch_path
        self.emit = emit or (lambda event: None)
        self.exit_on_new = exit_on_new
        self._stop = threading.Event()
        self._wake = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Request shutdown. Safe to call from signal handlers and other threads."""
        self._stop.set()
        self._wake.set()

    def run(self, max_runs: int | None = None) -> WatchSummary:
        """
        Loop until stop() or max_runs completed runs.

        Returns:
            Counts of completed runs and cumulative new/resolved findings.
        """
        observer = None
        if self.watch_path is not None:
            observer = Observer()
            observer.schedule(SourceChangeHandler(self._wake), str(self.watch_path), recursive=True)
            observer.start()
            logger.debug("Watching %s for changes", self.watch_path)

        summary = WatchSummary()
        try:
            self._loop(summary, max_runs)
        finally:
            if observer is not None:
                observer.stop()
                observer.join()

        self.emit(WatchEvent(
            type=EVENT_SHUTDOWN,
            timestamp=utc_timestamp(),
            total=summary.last_total,
            runs=summary.runs,
            new=summary.new,
            resolved=summary.resolved,
        ))
        return summary

    def _loop(self, summary: WatchSummary, max_runs: int | None) -> None:
        previous: list[Finding] | None = None
        while not self._stop.is_set():
            self._wake.clear()
            deadline = Deadline.after(self.timeout, cancel=self._stop)
            try:
                findings = self.audit(deadline)
            except (InventoryError, AdapterError) as e:
                if self._stop.is_set():
                    break
                logger.warning("audit failed: %s", e)
            else:
                if self._stop.is_set():
                    break
                summary.runs += 1
                summary.last_total = len(findings)
                if previous is None:
                    self.emit(WatchEvent(
                        type=EVENT_FULL,
                        timestamp=utc_timestamp(),
                        total=len(findings),
                        findings=findings,
                    ))
                else:
                    diff = diff_baseline(findings, previous)
                    summary.new += len(diff.new)
                    summary.resolved += len(diff.resolved)
                    if diff.new or diff.resolved:
                        self.emit(WatchEvent(
                            type=EVENT_DIFF,
                            timestamp=utc_timestamp(),
                            total=len(findings),
                            new=len(diff.new),
                            resolved=len(diff.resolved),
                            diff=diff,
                        ))
                    else:
                        logger.debug("No changes (%d findings)", len(findings))
                    if self.exit_on_new and any(f.severity == SEVERITY_HIGH for f in diff.new):
                        summary.stopped_on_new_high = True
                        break
                previous = findings

            if max_runs is not None and summary.runs >= max_runs:
                break
            self._wake.wait(self.interval)

"""Tests for watch mode."""

import json
import threading
from types import SimpleNamespace

import pytest

from mongospectre.adapters.base import AdapterError
from mongospectre.inventory import InventoryError
from mongospectre.models import SEVERITY_HIGH, SEVERITY_LOW, SEVERITY_MEDIUM, Finding
from mongospectre.watch import (
    EVENT_DIFF,
    EVENT_FULL,
    EVENT_SHUTDOWN,
    SourceChangeHandler,
    WatchEvent,
    Watcher,
    format_event,
)
from mongospectre.analyzers.baseline import diff_baseline


UNUSED = Finding("UNUSED_COLLECTION", SEVERITY_MEDIUM, "app", "legacy", message="not referenced")
MISSING = Finding("MISSING_COLLECTION", SEVERITY_HIGH, "app", "orders", message="does not exist")
STALE = Finding("UNUSED_INDEX", SEVERITY_LOW, "app", "users", "email_1", message="0 ops")


class ScriptedAudit:
    """Audit callable returning the next scripted result on each run."""

    def __init__(self, *results):
        self.results = list(results)
        self.deadlines = []

    def __call__(self, deadline):
        self.deadlines.append(deadline)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return list(result)


def run_watcher(audit, max_runs, **kwargs):
    events = []
    watcher = Watcher(audit, interval=0, emit=events.append, **kwargs)
    summary = watcher.run(max_runs=max_runs)
    return watcher, summary, events


def test_first_run_full_then_diffs_on_change():
    audit = ScriptedAudit([UNUSED], [UNUSED], [UNUSED, MISSING], [MISSING])
    _, summary, events = run_watcher(audit, max_runs=4)

    assert [e.type for e in events] == [EVENT_FULL, EVENT_DIFF, EVENT_DIFF, EVENT_SHUTDOWN]
    assert events[0].findings == [UNUSED]
    assert events[1].new == 1 and events[1].resolved == 0
    assert events[2].new == 0 and events[2].resolved == 1
    assert summary.runs == 4
    assert summary.new == 1
    assert summary.resolved == 1
    assert summary.last_total == 1
    assert events[-1].runs == 4


def test_unchanged_runs_emit_nothing():
    audit = ScriptedAudit([STALE], [STALE], [STALE])
    _, summary, events = run_watcher(audit, max_runs=3)
    assert [e.type for e in events] == [EVENT_FULL, EVENT_SHUTDOWN]
    assert summary.runs == 3


def test_exit_on_new_high():
    audit = ScriptedAudit([STALE], [STALE, MISSING], [STALE])
    _, summary, events = run_watcher(audit, max_runs=None, exit_on_new=True)

    assert summary.stopped_on_new_high is True
    assert summary.runs == 2
    assert len(audit.results) == 1
    assert events[-1].type == EVENT_SHUTDOWN


def test_new_medium_does_not_stop():
    audit = ScriptedAudit([], [UNUSED], [UNUSED])
    _, summary, _ = run_watcher(audit, max_runs=3, exit_on_new=True)
    assert summary.stopped_on_new_high is False
    assert summary.runs == 3


def test_failed_audit_is_skipped():
    audit = ScriptedAudit(
        [UNUSED],
        InventoryError("required call failed: list_databases: timeout"),
        AdapterError("list_collections", "connection reset"),
        [UNUSED],
    )
    _, summary, events = run_watcher(audit, max_runs=2)

    assert audit.results == []
    assert summary.runs == 2
    assert [e.type for e in events] == [EVENT_FULL, EVENT_SHUTDOWN]


def test_stop_during_audit_discards_run():
    """Findings of an interrupted run are never reported."""
    watcher = None
    events = []

    def audit(deadline):
        watcher.stop()
        assert deadline.cancelled
        return [MISSING]

    watcher = Watcher(audit, interval=0, emit=events.append)
    summary = watcher.run()

    assert watcher.stopped
    assert summary.runs == 0
    assert [e.type for e in events] == [EVENT_SHUTDOWN]


def test_stop_from_another_thread():
    audit_started = threading.Event()

    def audit(deadline):
        audit_started.set()
        return []

    watcher = Watcher(audit, interval=60)
    thread = threading.Thread(target=watcher.run)
    thread.start()
    assert audit_started.wait(5)
    watcher.stop()
    thread.join(5)
    assert not thread.is_alive()


def test_run_deadline_uses_timeout():
    audit = ScriptedAudit([])
    run_watcher(audit, max_runs=1, timeout=30)
    remaining = audit.deadlines[0].remaining()
    assert remaining is not None and remaining <= 30


def test_format_event_json():
    diff = diff_baseline([MISSING], [UNUSED])
    event = WatchEvent(type=EVENT_DIFF, timestamp="2026-06-01T00:00:00Z", total=1, new=1, resolved=1, diff=diff)
    data = json.loads(format_event(event, "json"))

    assert data["type"] == "diff"
    assert data["summary"] == {"total": 1, "new": 1, "resolved": 1}
    assert [d["status"] for d in data["diff"]] == ["new", "resolved"]
    assert data["diff"][0]["key"] == "MISSING_COLLECTION|app|orders|"


def test_format_event_text():
    full = WatchEvent(type=EVENT_FULL, timestamp="T", total=1, findings=[MISSING])
    text = format_event(full, "text")
    assert text.startswith("[T] Initial audit: 1 findings\n")
    assert "[HIGH] MISSING_COLLECTION: does not exist (app.orders)" in text

    diff = WatchEvent(type=EVENT_DIFF, timestamp="T", diff=diff_baseline([MISSING], []))
    assert "+ [new] MISSING_COLLECTION: does not exist" in format_event(diff, "text")

    shutdown = WatchEvent(type=EVENT_SHUTDOWN, timestamp="T", runs=3, new=2, resolved=1)
    assert format_event(shutdown, "text") == "Watch summary: 3 runs, 2 new findings, 1 resolved"
    assert json.loads(format_event(shutdown, "json"))["summary"]["runs"] == 3


@pytest.mark.parametrize(
    ("path", "is_directory", "wakes"),
    [
        ("/repo/app/models.py", False, True),
        ("/repo/cmd/main.GO", False, True),
        ("/repo/README.md", False, False),
        ("/repo/node_modules/lib/index.js", False, False),
        ("/repo/src", True, False),
    ],
)
def test_source_change_handler(path, is_directory, wakes):
    wake = threading.Event()
    SourceChangeHandler(wake).on_any_event(SimpleNamespace(src_path=path, is_directory=is_directory))
    assert wake.is_set() is wakes

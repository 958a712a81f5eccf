"""Tests for report rendering."""

import json

import pytest

from mongospectre import __version__
from mongospectre.analyzers.baseline import diff_baseline
from mongospectre.models import Finding, FindingType
from mongospectre.reporter import build_report, render, render_sarif, render_spectre, render_text

from conftest import NOW, make_collection


@pytest.fixture
def findings():
    return [
        Finding(FindingType.MISSING_COLLECTION, "high", collection="ghost",
                message='collection "ghost" referenced in code but does not exist in database',
                location={"file": "app.go", "line": 12}),
        Finding(FindingType.UNUSED_INDEX, "medium", "app", "users", "idx_email",
                message='index "idx_email" has 0 operations in the last 30 days'),
    ]


def test_json_report_shape(findings):
    report = build_report("audit", findings, now=NOW, database="app", server_version="7.0.4")
    data = json.loads(render(report, "json"))

    assert data["metadata"] == {
        "version": __version__,
        "command": "audit",
        "timestamp": "2026-06-01T00:00:00Z",
        "database": "app",
        "mongodbVersion": "7.0.4",
    }
    assert data["maxSeverity"] == "high"
    assert data["summary"] == {"total": 2, "high": 1, "medium": 1, "low": 0, "info": 0}
    assert data["findings"][1]["index"] == "idx_email"
    assert "scan" not in data
    assert "suppressed" not in data


def test_json_report_optional_sections(findings):
    report = build_report("check", findings, now=NOW)
    report.suppressed = 3
    report.collections = [make_collection("users", docs=5)]
    report.baseline = diff_baseline(findings, findings[:1])
    data = json.loads(render(report, "json"))

    assert data["suppressed"] == 3
    assert data["collections"][0]["docCount"] == 5
    assert data["baseline"]["summary"] == {"new": 1, "resolved": 0, "unchanged": 1}


def test_empty_report_is_info():
    data = json.loads(render(build_report("audit", [], now=NOW), "json"))
    assert data["findings"] == []
    assert data["maxSeverity"] == "info"


def test_text_report(findings):
    report = build_report("audit", findings, now=NOW, host="db1:27017", server_version="7.0.4")
    report.suppressed = 2
    lines = render_text(report).splitlines()

    assert lines[0] == f"mongospectre {__version__} | audit | MongoDB 7.0.4 | db1:27017"
    assert lines[2].startswith("[HIGH] MISSING_COLLECTION: ")
    assert lines[2].endswith("(ghost)")
    assert lines[3].endswith("(app.users.idx_email)")
    assert lines[-2] == "Summary: 2 findings (high=1 medium=1 low=0 info=0)"
    assert lines[-1] == "Suppressed by ignore file: 2"


def test_text_finding_without_target():
    finding = Finding(FindingType.URI_NO_TLS, "low", message="URI does not enable TLS")
    lines = render_text(build_report("audit", [finding], now=NOW)).splitlines()
    assert "[LOW] URI_NO_TLS: URI does not enable TLS" in lines


def test_text_no_findings():
    assert render_text(build_report("scan", [], now=NOW)).endswith("No findings.")


def test_text_baseline_diff(findings):
    report = build_report("audit", findings[:1], now=NOW)
    report.baseline = diff_baseline(findings[:1], findings[1:])
    text = render_text(report)

    assert "+ [new] MISSING_COLLECTION: " in text
    assert "- [resolved] UNUSED_INDEX: " in text
    assert "Baseline diff: 1 new, 1 resolved, 0 unchanged" in text


def test_sarif(findings):
    log = json.loads(render_sarif(build_report("check", findings, now=NOW)))
    run = log["runs"][0]

    assert log["version"] == "2.1.0"
    assert [r["id"] for r in run["tool"]["driver"]["rules"]] == ["MISSING_COLLECTION", "UNUSED_INDEX"]
    first, second = run["results"]
    assert first["level"] == "error"
    assert first["locations"][0]["physicalLocation"] == {
        "artifactLocation": {"uri": "app.go"},
        "region": {"startLine": 12},
    }
    assert second["level"] == "warning"
    assert second["locations"][0]["logicalLocations"][0]["fullyQualifiedName"] == "app.users.idx_email"
    assert "physicalLocation" not in second["locations"][0]


def test_spectre_envelope(findings):
    report = build_report("audit", findings, now=NOW, uri_hash="sha256:abc")
    data = json.loads(render_spectre(report))

    assert data["schema"] == "spectre/v1"
    assert data["target"] == {"type": "mongodb", "uri_hash": "sha256:abc"}
    assert data["timestamp"] == "2026-06-01T00:00:00Z"
    assert len(data["findings"]) == 2


def test_spectre_empty_findings_is_list():
    data = json.loads(render_spectre(build_report("audit", [], now=NOW)))
    assert data["findings"] == []


def test_unknown_format():
    with pytest.raises(ValueError):
        render(build_report("audit", []), "xml")

"""Tests for schema drift and data modeling rules on sampled documents."""

from mongospectre.analyzers.antipatterns import AntiPatternAnalyzer, path_depth
from mongospectre.analyzers.schema import SchemaAnalyzer, is_documented
from mongospectre.models import FindingType, Inventory
from mongospectre.sampling import summarize_documents

from conftest import make_collection, make_scan


def sampled(name, docs, **kwargs):
    c = make_collection(name, docs=len(docs), **kwargs)
    c.sample = summarize_documents(docs)
    return c


def keyed(findings, kind):
    return {f.index: f for f in findings if f.type == kind}


# =============================================================================
# Schema drift
# =============================================================================

def test_type_inconsistency_ignores_null():
    c = sampled("users", [{"age": 30}, {"age": "thirty"}, {"age": None}, {"nick": None}, {"nick": "x"}])
    findings = SchemaAnalyzer().analyze(None, Inventory(collections=[c]))

    mixed = keyed(findings, FindingType.TYPE_INCONSISTENCY)
    assert list(mixed) == ["age"]
    assert mixed["age"].severity == "medium"
    assert mixed["age"].message.endswith("int32(1), null(1), string(1)")


def test_int32_and_int64_are_inconsistent():
    c = sampled("counters", [{"n": 1}, {"n": 2 ** 40}])
    findings = SchemaAnalyzer().analyze(None, Inventory(collections=[c]))
    assert list(keyed(findings, FindingType.TYPE_INCONSISTENCY)) == ["n"]


def test_missing_and_rare_code_fields():
    docs = [{"_id": i, "email": "a@b", "status": "on"} for i in range(20)]
    docs[0]["nickname"] = "z"
    c = sampled("users", docs)
    scan = make_scan(["users"], fields=[("users", "email"), ("users", "nickname"), ("users", "_id")],
                     writes=[("users", "phone", "string")])
    findings = SchemaAnalyzer().analyze(scan, Inventory(collections=[c]))

    missing = keyed(findings, FindingType.MISSING_FIELD)
    assert list(missing) == ["phone"]
    assert missing["phone"].message == 'field "phone" is used in code but absent from 20 sampled documents'
    rare = keyed(findings, FindingType.RARE_FIELD)
    assert list(rare) == ["nickname"]
    assert rare["nickname"].severity == "low"


def test_nested_code_field_matches_array_path():
    c = sampled("orders", [{"items": [{"sku": "a"}]} for _ in range(5)])
    scan = make_scan(["orders"], fields=[("orders", "items.sku")])
    findings = SchemaAnalyzer().analyze(scan, Inventory(collections=[c]))
    assert not keyed(findings, FindingType.MISSING_FIELD)


def test_undocumented_field_only_on_referenced_collections():
    docs = [{"_id": i, "email": "a@b", "legacy_flag": True, "profile": {"bio": "x"}} for i in range(10)]
    users = sampled("users", docs)
    other = sampled("audit", docs)
    scan = make_scan(["users"], fields=[("users", "email"), ("users", "profile.bio")])
    findings = SchemaAnalyzer().analyze(scan, Inventory(collections=[users, other]))

    undocumented = [(f.collection, f.index) for f in findings if f.type == FindingType.UNDOCUMENTED_FIELD]
    assert undocumented == [("users", "legacy_flag")]


def test_is_documented_parent_and_child():
    assert is_documented("address", {"address.city"})
    assert is_documented("address.city", {"address"})
    assert is_documented("items[].sku", {"items.sku"})
    assert not is_documented("addresses", {"address"})


def test_unsampled_collections_skipped():
    c = make_collection("users", docs=10)
    scan = make_scan(["users"], fields=[("users", "email")])
    assert SchemaAnalyzer().analyze(scan, Inventory(collections=[c])) == []


# =============================================================================
# Anti-patterns
# =============================================================================

def test_unbounded_array_and_large_document():
    c = sampled("posts", [{"tags": list(range(150)), "body": "x" * 1_100_000}])
    findings = AntiPatternAnalyzer().analyze(None, Inventory(collections=[c]))

    arrays = keyed(findings, FindingType.UNBOUNDED_ARRAY)
    assert list(arrays) == ["tags"]
    assert "150 elements" in arrays["tags"].message
    large = [f for f in findings if f.type == FindingType.LARGE_DOCUMENT]
    assert len(large) == 1
    assert "1.0 MB" in large[0].message


def test_deep_nesting():
    doc = {"a": {"b": {"c": {"d": {"e": {"f": 1}}}}}}
    c = sampled("deep", [doc])
    findings = AntiPatternAnalyzer().analyze(None, Inventory(collections=[c]))
    assert list(keyed(findings, FindingType.DEEP_NESTING)) == ["a.b.c.d.e.f"]
    assert path_depth("a[].b.c") == 3


def test_field_name_collision():
    c = sampled("users", [{"address": {"city": "Oslo"}}, {"address": "Oslo"}, {"meta": {"x": 1}}, {"meta": None}])
    findings = AntiPatternAnalyzer().analyze(None, Inventory(collections=[c]))

    collisions = keyed(findings, FindingType.FIELD_NAME_COLLISION)
    assert list(collisions) == ["address"]
    assert collisions["address"].message.endswith("string in others")


def test_excessive_field_count_and_numeric_names():
    wide = {f"f{i}": i for i in range(210)}
    wide["scores"] = {"0": 1, "1": 2}
    c = sampled("wide", [wide])
    findings = AntiPatternAnalyzer().analyze(None, Inventory(collections=[c]))

    excessive = [f for f in findings if f.type == FindingType.EXCESSIVE_FIELD_COUNT]
    assert [f.severity for f in excessive] == ["info"]
    assert "211 top-level fields" in excessive[0].message
    assert sorted(keyed(findings, FindingType.NUMERIC_FIELD_NAMES)) == ["scores.0", "scores.1"]


def test_views_skipped():
    c = sampled("recent", [{"tags": list(range(500))}], type="view")
    assert AntiPatternAnalyzer().analyze(None, Inventory(collections=[c])) == []

"""Tests for intra-file variable resolution."""

from mongospectre.models import PATTERN_DRIVER_CALL
from mongospectre.scanners.collections import CollectionMatch
from mongospectre.scanners.lines import LogicalLine
from mongospectre.scanners.variables import (
    binding_target,
    bound_receiver,
    collect_string_vars,
    resolve_var_collections,
)


def lines(*texts):
    return [LogicalLine(i, t) for i, t in enumerate(texts, 1)]


def test_collect_string_vars_languages():
    """Go, JavaScript and Python string constants are harvested."""
    variables = collect_string_vars(lines(
        'const usersColl = "users"',
        'var ordersColl string = "orders"',
        "let itemsColl = 'items'",
        'EVENTS = "events"',
    ))
    assert variables == {
        "usersColl": "users",
        "ordersColl": "orders",
        "itemsColl": "items",
        "EVENTS": "events",
    }


def test_later_definition_wins():
    variables = collect_string_vars(lines('const c = "a"', 'const c = "b"'))
    assert variables["c"] == "b"


def test_resolve_known_and_dynamic():
    """Known identifiers resolve; unknown ones are reported as dynamic."""
    resolved, dynamic = resolve_var_collections(
        "a := db.Collection(usersColl); b := db.Collection(name)",
        {"usersColl": "users"},
    )
    assert resolved == [CollectionMatch("users", PATTERN_DRIVER_CALL)]
    assert dynamic == ["name"]


def test_resolve_invalid_value_dropped():
    resolved, dynamic = resolve_var_collections("db.collection(tpl)", {"tpl": "${x}"})
    assert resolved == []
    assert dynamic == []


def test_binding_targets():
    """Assignment targets are found across declaration styles."""
    assert binding_target('coll := db.Collection("users")') == "coll"
    assert binding_target('const users = db.collection("users");') == "users"
    assert binding_target('IMongoCollection<User> users = db.GetCollection<User>("users");') == "users"
    assert binding_target('self.users = db["users"]') == "users"
    assert binding_target("if a == b {") is None


def test_bound_receiver():
    bindings = {"coll": "users"}
    assert bound_receiver("coll.InsertOne(ctx, doc)", bindings) == "users"
    assert bound_receiver("other.InsertOne(ctx, doc)", bindings) is None
    assert bound_receiver("coll.InsertOne(ctx, doc)", {}) is None

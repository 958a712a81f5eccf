"""Tests for sampled document summaries."""

from datetime import datetime, timezone

import pytest
from bson.int64 import Int64
from bson.objectid import ObjectId

from mongospectre.sampling import bson_type_name, document_size, summarize_documents


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, "null"),
        (True, "bool"),
        (7, "int32"),
        (2 ** 40, "int64"),
        (Int64(3), "int64"),
        (1.5, "double"),
        ("x", "string"),
        (ObjectId(), "objectId"),
        (datetime(2026, 1, 1, tzinfo=timezone.utc), "date"),
        ({"a": 1}, "object"),
        ([1, 2], "array"),
        (b"\x00", "binData"),
        (object(), "unknown"),
    ],
)
def test_bson_type_name(value, expected):
    assert bson_type_name(value) == expected


def test_summarize_paths_counts_and_types():
    docs = [
        {"_id": 1, "name": "a", "address": {"city": "Oslo"}, "items": [{"sku": "x"}, {"sku": "y"}]},
        {"_id": 2, "name": 5, "items": []},
        {"_id": 3, "name": "c"},
    ]
    stats = summarize_documents(docs)

    assert stats.sample_size == 3
    assert [f.path for f in stats.fields] == ["_id", "address", "address.city", "items", "items[].sku", "name"]
    name = stats.field_at("name")
    assert name.count == 3
    assert name.types == {"int32": 1, "string": 2}
    sku = stats.field_at("items[].sku")
    assert (sku.count, sku.types) == (1, {"string": 2})
    assert stats.array_lengths == {"items": 2}
    assert stats.max_field_count == 4
    assert stats.max_doc_size == document_size(docs[0])


def test_summarize_skips_non_documents():
    stats = summarize_documents([{"a": 1}, "junk", None])
    assert stats.sample_size == 1
    assert stats.field_at("missing") is None


def test_document_size_unencodable():
    assert document_size({"a": object()}) == 0

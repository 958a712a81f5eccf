"""
Sampled document summaries.

summarize_documents() flattens documents read with $sample into dotted
field paths and records the BSON type found at every path. Embedded
documents inside arrays are walked under "<path>[]", so
{"items": [{"sku": "a"}]} produces the paths "items" and "items[].sku".
"""

from __future__ import annotations

import datetime
import logging
import re
from collections.abc import Mapping
from typing import TYPE_CHECKING

import bson
from bson.binary import Binary
from bson.decimal128 import Decimal128
from bson.errors import InvalidDocument
from bson.int64 import Int64
from bson.objectid import ObjectId
from bson.regex import Regex
from bson.timestamp import Timestamp

from mongospectre.models import FieldSample, SampleStats

if TYPE_CHECKING:
    from typing import Any, Iterable

logger = logging.getLogger(__name__)

INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1


def bson_type_name(value: Any) -> str:
    """BSON type name of a decoded value, "unknown" for anything unexpected."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        if isinstance(value, Int64) or not INT32_MIN <= value <= INT32_MAX:
            return "int64"
        return "int32"
    if isinstance(value, float):
        return "double"
    if isinstance(value, str):
        return "string"
    if isinstance(value, ObjectId):
        return "objectId"
    if isinstance(value, datetime.datetime):
        return "date"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, (Binary, bytes)):
        return "binData"
    if isinstance(value, (Regex, re.Pattern)):
        return "regex"
    if isinstance(value, Decimal128):
        return "decimal"
    if isinstance(value, Timestamp):
        return "timestamp"
    return "unknown"


def document_size(doc: Mapping[str, Any]) -> int:
    """Encoded BSON size in bytes, 0 when the document cannot be encoded."""
    try:
        return len(bson.encode(doc))
    except (InvalidDocument, OverflowError, TypeError) as e:
        logger.debug("Cannot encode sampled document: %s", e)
        return 0


def _flatten(
    doc: Mapping[str, Any],
    prefix: str,
    types: dict[str, dict[str, int]],
    seen: set[str],
    array_lengths: dict[str, int],
) -> None:
    for key, value in doc.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        bucket = types.setdefault(path, {})
        type_name = bson_type_name(value)
        bucket[type_name] = bucket.get(type_name, 0) + 1
        seen.add(path)

        if isinstance(value, Mapping):
            _flatten(value, path, types, seen, array_lengths)
        elif isinstance(value, (list, tuple)):
            array_lengths[path] = max(array_lengths.get(path, 0), len(value))
            for element in value:
                if isinstance(element, Mapping):
                    _flatten(element, path + "[]", types, seen, array_lengths)


def summarize_documents(docs: Iterable[Mapping[str, Any]]) -> SampleStats:
    """
    Build field statistics from sampled documents.

    Args:
        docs: Decoded documents, typically the output of a $sample stage.

    Returns:
        SampleStats whose fields are sorted by path. A field's count is the
        number of documents it appeared in; its types count every occurrence,
        including each array element that carried it.
    """
    stats = SampleStats()
    types: dict[str, dict[str, int]] = {}
    counts: dict[str, int] = {}

    for doc in docs:
        if not isinstance(doc, Mapping):
            continue
        stats.sample_size += 1
        stats.max_field_count = max(stats.max_field_count, len(doc))
        stats.max_doc_size = max(stats.max_doc_size, document_size(doc))

        seen: set[str] = set()
        _flatten(doc, "", types, seen, stats.array_lengths)
        for path in seen:
            counts[path] = counts.get(path, 0) + 1

    stats.fields = [
        FieldSample(path=path, count=counts.get(path, 0), types=dict(sorted(types[path].items())))
        for path in sorted(types)
    ]
    return stats

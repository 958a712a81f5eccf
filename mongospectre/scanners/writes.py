"""
Written-field extraction.

For a line that calls a write method, split the call's arguments, pick the
sub-expressions that carry the document being written and enumerate their
top-level keys with a value type inferred from the literal.

The splitting helpers here understand nesting and string quoting only;
they are not a parser and give up quietly on anything unbalanced.
"""

from __future__ import annotations

import logging
import re
from typing import NamedTuple

from mongospectre.models import (
    USAGE_EQUALITY,
    USAGE_RANGE,
    VALUE_ARRAY,
    VALUE_BOOL,
    VALUE_DATE,
    VALUE_NULL,
    VALUE_NUMBER,
    VALUE_OBJECT,
    VALUE_OBJECT_ID,
    VALUE_STRING,
    VALUE_UNKNOWN,
)
from mongospectre.scanners.queries import FieldMatch, is_valid_field_name

logger = logging.getLogger(__name__)

WRITE_OPERATION_RE = re.compile(
    r"\.(insertone|insertmany|insert_one|insert_many|replaceone|replace_one|"
    r"findoneandreplace|find_one_and_replace|updateone|updatemany|update_one|"
    r"update_many|findoneandupdate|find_one_and_update|bulkwrite|bulk_write)\(",
    re.IGNORECASE,
)

_NUMBER_RE = re.compile(r"^[-+]?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?$")
_CONTEXT_ARG_RE = re.compile(r"^(?:ctx|\w*Ctx|sessionContext|context\.\w+\(.*\))$")
_BULK_CALL_RE = re.compile(r"^(?:\w+\.)*(\w+)\s*\(")
_GO_MODEL_SETTER_RE = re.compile(r"\.Set(Document|Update|Replacement)\(")

INSERT_OPS = frozenset({"insertone", "insert_one", "insertmany", "insert_many"})
INSERT_MANY_OPS = frozenset({"insertmany", "insert_many"})
REPLACE_OPS = frozenset({"replaceone", "replace_one", "findoneandreplace", "find_one_and_replace"})
UPDATE_OPS = frozenset({
    "updateone", "updatemany", "update_one", "update_many",
    "findoneandupdate", "find_one_and_update",
})
BULK_OPS = frozenset({"bulkwrite", "bulk_write"})

# Update operators whose argument names fields being written
UPDATE_WRITE_OPERATORS = frozenset({
    "$set", "$setoninsert", "$inc", "$mul", "$min", "$max",
    "$unset", "$push", "$addtoset", "$rename",
})

_RANGE_OPERATORS = ("$gt", "$gte", "$lt", "$lte", "$ne", "$nin", "$in", "$regex", "$not")

_QUOTES = "\"'`"


class WriteFieldMatch(NamedTuple):
    field: str
    value_type: str


def is_write_operation(line: str) -> bool:
    """True when the line calls one of the known write methods."""
    return WRITE_OPERATION_RE.search(line) is not None


def _locate_call(line: str) -> tuple[str, list[str]] | None:
    """Find the first write call and return (lowercased op, arguments)."""
    m = WRITE_OPERATION_RE.search(line)
    if not m:
        return None
    args = split_call_args(line, m.end() - 1)
    return m.group(1).lower(), drop_context_arg(args)


def scan_write_fields(line: str) -> list[WriteFieldMatch]:
    """
    Extract written fields and inferred value types from one logical line.

    Args:
        line: Logical source line containing a write call.

    Returns:
        One match per field, sorted by field name. Where a field appears
        more than once a known type wins over "unknown".
    """
    located = _locate_call(line)
    if located is None:
        return []
    op, args = located

    seen: dict[str, str] = {}
    for scope in write_scopes_for_operation(op, args):
        for key, value in parse_assignments(scope):
            name = key.strip()
            if not is_valid_field_name(name):
                continue
            value_type = infer_value_type(value)
            previous = seen.get(name)
            if previous is None or (previous == VALUE_UNKNOWN and value_type != VALUE_UNKNOWN):
                seen[name] = value_type

    return [WriteFieldMatch(name, seen[name]) for name in sorted(seen)]


def scan_write_filter_fields(line: str) -> list[FieldMatch]:
    """
    Queried fields of a write call: the top-level keys of its filter.

    Only update, replace and find-and-modify calls carry a filter; inserts
    and bulk writes return nothing.
    """
    located = _locate_call(line)
    if located is None:
        return []
    op, args = located
    if op not in UPDATE_OPS and op not in REPLACE_OPS:
        return []
    if not args or not looks_like_document(args[0]):
        return []

    out: list[FieldMatch] = []
    names: set[str] = set()
    for key, value in parse_assignments(args[0]):
        name = key.strip()
        if not is_valid_field_name(name) or name in names:
            continue
        names.add(name)
        usage = USAGE_RANGE if _is_range_document(value) else USAGE_EQUALITY
        out.append(FieldMatch(name, usage, 0, op))
    return out


def _is_range_document(value: str) -> bool:
    if not value.lstrip().startswith("{"):
        return False
    return any(trim_quotes(k).lower() in _RANGE_OPERATORS for k, _ in parse_assignments(value))


def drop_context_arg(args: list[str]) -> list[str]:
    """Remove a leading Go context argument (ctx, sessCtx, context.TODO())."""
    if args and _CONTEXT_ARG_RE.match(args[0]):
        return args[1:]
    return args


def write_scopes_for_operation(op: str, args: list[str]) -> list[str]:
    """
    Pick the argument expressions that hold written documents.

    Args:
        op: Lowercased write method name.
        args: Top-level call arguments, context argument already dropped.

    Returns:
        Document expressions whose keys are written fields.
    """
    if op in INSERT_OPS:
        scopes = []
        for arg in args:
            if not looks_like_document(arg):
                continue
            scopes.append(arg)
            if op not in INSERT_MANY_OPS:
                break
        return scopes
    if op in REPLACE_OPS:
        if len(args) < 2 or not looks_like_document(args[1]):
            return []
        return [args[1]]
    if op in UPDATE_OPS:
        if len(args) < 2:
            return []
        return update_scopes(args[1])
    if op in BULK_OPS:
        if not args:
            return []
        return bulk_write_scopes(args[0])
    return []


def update_scopes(expr: str) -> list[str]:
    """
    Scopes of an update document.

    An operator document contributes the values of the write-class
    operators; a plain document is a full replacement.
    """
    pairs = parse_assignments(expr)
    if not pairs:
        return [expr] if looks_like_document(expr) else []

    has_operator = False
    scopes = []
    for key, value in pairs:
        key = key.strip().lower()
        if not key.startswith("$"):
            continue
        has_operator = True
        if key in UPDATE_WRITE_OPERATORS and looks_like_document(value):
            scopes.append(value)

    if has_operator:
        return scopes
    return [expr] if looks_like_document(expr) else []


def bulk_write_scopes(expr: str) -> list[str]:
    """Written documents inside a bulkWrite([...]) operations array."""
    expr = expr.strip()
    if not expr.startswith("["):
        return []
    if expr.startswith("[]"):
        # Go slice literal: []mongo.WriteModel{...}
        body = enclosed_body(expr, "{", "}")
    else:
        body = enclosed_body(expr, "[", "]")
    if body is None:
        return []

    scopes: list[str] = []
    for element in split_top_level(body):
        setter = _GO_MODEL_SETTER_RE.search(element)
        if setter:
            kind = setter.group(1).lower()
            setter_args = split_call_args(element, setter.end() - 1)
            if not setter_args:
                continue
            if kind == "update":
                scopes.extend(update_scopes(setter_args[0]))
            elif looks_like_document(setter_args[0]):
                scopes.append(setter_args[0])
            continue

        call = _BULK_CALL_RE.match(element)
        if call:
            # PyMongo request objects: InsertOne({...}), UpdateOne(filter, update)
            op = call.group(1).lower()
            scopes.extend(write_scopes_for_operation(op, split_call_args(element, call.end() - 1)))
            continue

        # Node driver: {insertOne: {document: {...}}}
        for op_key, op_body in parse_assignments(element):
            op = op_key.lower()
            inner = {k.lower(): v for k, v in parse_assignments(op_body)}
            if op in INSERT_OPS and "document" in inner:
                scopes.append(inner["document"])
            elif op in UPDATE_OPS and "update" in inner:
                scopes.extend(update_scopes(inner["update"]))
            elif op in REPLACE_OPS and "replacement" in inner:
                scopes.append(inner["replacement"])
    return scopes


def _scan_delimited(text: str, start: int, handle) -> None:
    """
    Walk text from start, skipping string literals, calling handle(i, c, depths).

    handle returns True to stop. Double and single quotes honor backslash
    escapes; backtick strings are verbatim.
    """
    quote = ""
    escaped = False
    for i in range(start, len(text)):
        c = text[i]
        if quote:
            if quote != "`" and escaped:
                escaped = False
            elif quote != "`" and c == "\\":
                escaped = True
            elif c == quote:
                quote = ""
            continue
        if c in _QUOTES:
            quote = c
            continue
        if handle(i, c):
            return


def split_call_args(line: str, open_paren: int) -> list[str]:
    """
    Split the top-level arguments of the call whose "(" is at open_paren.

    Args:
        line: Logical line.
        open_paren: Index of the opening parenthesis.

    Returns:
        Stripped, non-empty argument expressions. Unterminated calls yield
        whatever arguments were complete.
    """
    if open_paren < 0 or open_paren >= len(line) or line[open_paren] != "(":
        return []

    args: list[str] = []
    depth = {"paren": 1, "brace": 0, "bracket": 0}
    arg_start = [open_paren + 1]

    def handle(i: int, c: str) -> bool:
        if c == "(":
            depth["paren"] += 1
        elif c == ")":
            depth["paren"] -= 1
            if depth["paren"] == 0:
                arg = line[arg_start[0]:i].strip()
                if arg:
                    args.append(arg)
                return True
        elif c == "{":
            depth["brace"] += 1
        elif c == "}":
            depth["brace"] = max(0, depth["brace"] - 1)
        elif c == "[":
            depth["bracket"] += 1
        elif c == "]":
            depth["bracket"] = max(0, depth["bracket"] - 1)
        elif c == "," and depth["paren"] == 1 and depth["brace"] == 0 and depth["bracket"] == 0:
            arg = line[arg_start[0]:i].strip()
            if arg:
                args.append(arg)
            arg_start[0] = i + 1
        return False

    _scan_delimited(line, open_paren + 1, handle)
    return args


def looks_like_document(expr: str) -> bool:
    """True for object, array and document-constructor expressions."""
    expr = expr.strip()
    if not expr:
        return False
    if expr.startswith(("{", "[")):
        return True
    lower = expr.lower()
    if lower.startswith(("bson.m{", "bson.d{", "bson.a{", "map[", "new document(", "new bsondocument")):
        return True
    return "{" in expr and ":" in expr


def parse_assignments(expr: str) -> list[tuple[str, str]]:
    """
    Top-level (key, value) pairs of an object literal or array of objects.

    Keys are returned without surrounding quotes. Pairs whose key is not a
    plain identifier are skipped.
    """
    expr = expr.strip()
    if not expr:
        return []
    if expr.startswith("["):
        body = enclosed_body(expr, "[", "]")
        if body is None:
            return []
        pairs: list[tuple[str, str]] = []
        for element in split_top_level(body):
            pairs.extend(_parse_object_assignments(element))
        return pairs
    return _parse_object_assignments(expr)


def _parse_object_assignments(expr: str) -> list[tuple[str, str]]:
    body = enclosed_body(expr, "{", "}")
    if body is None:
        return []
    pairs = []
    for part in split_top_level(body):
        pair = split_pair(part)
        if pair is not None:
            pairs.append(pair)
    return pairs


def enclosed_body(expr: str, open_char: str, close_char: str) -> str | None:
    """Text between the first open_char and its matching close_char."""
    start = expr.find(open_char)
    if start == -1:
        return None
    end = find_matching(expr, start, open_char, close_char)
    if end <= start:
        return None
    return expr[start + 1:end]


def find_matching(text: str, start: int, open_char: str, close_char: str) -> int:
    """Index of the delimiter closing the one at start, or -1."""
    depth = [0]
    found = [-1]

    def handle(i: int, c: str) -> bool:
        if c == open_char:
            depth[0] += 1
        elif c == close_char:
            depth[0] -= 1
            if depth[0] == 0:
                found[0] = i
                return True
        return False

    _scan_delimited(text, start, handle)
    return found[0]


def split_top_level(body: str) -> list[str]:
    """Split on commas outside nested delimiters and strings."""
    parts: list[str] = []
    depth = [0]
    start = [0]

    def handle(i: int, c: str) -> bool:
        if c in "{[(":
            depth[0] += 1
        elif c in "}])":
            depth[0] = max(0, depth[0] - 1)
        elif c == "," and depth[0] == 0:
            part = body[start[0]:i].strip()
            if part:
                parts.append(part)
            start[0] = i + 1
        return False

    _scan_delimited(body, 0, handle)
    tail = body[start[0]:].strip()
    if tail:
        parts.append(tail)
    return parts


def split_pair(part: str) -> tuple[str, str] | None:
    """Split "key: value" at the first top-level colon."""
    depth = [0]
    colon = [-1]

    def handle(i: int, c: str) -> bool:
        if c in "{[(":
            depth[0] += 1
        elif c in "}])":
            depth[0] = max(0, depth[0] - 1)
        elif c == ":" and depth[0] == 0:
            colon[0] = i
            return True
        return False

    _scan_delimited(part, 0, handle)
    if colon[0] == -1:
        return None
    key = part[:colon[0]].strip()
    value = part[colon[0] + 1:].strip()
    if not key or not value:
        return None
    key = trim_quotes(key)
    if not key or not is_identifier_token(key):
        return None
    return key, value


def trim_quotes(text: str) -> str:
    """Strip one pair of matching surrounding quotes."""
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in _QUOTES:
        return text[1:-1]
    return text


def is_identifier_token(text: str) -> bool:
    """Letter, "_" or "$" first; then letters, digits, "_", "." or "$"."""
    if not text:
        return False
    first = text[0]
    if not (first.isalpha() or first in "_$"):
        return False
    return all(c.isalnum() or c in "_.$" for c in text[1:])


def infer_value_type(value: str) -> str:
    """
    Guess the value type of a written literal from its leading tokens.

    Args:
        value: Source text of the value expression.

    Returns:
        One of the VALUE_* type names, "unknown" when nothing matches.
    """
    v = value.strip()
    if not v:
        return VALUE_UNKNOWN
    lower = v.lower()

    if v.startswith("{") or lower.startswith(
        ("bson.m{", "bson.d{", "map[", "new document(", "new bsondocument", "dict(")
    ):
        return VALUE_OBJECT
    if v.startswith("[") or lower.startswith("bson.a{"):
        return VALUE_ARRAY
    if v[0] in _QUOTES:
        return VALUE_STRING
    if _starts_with_token(lower, "true") or _starts_with_token(lower, "false"):
        return VALUE_BOOL
    if _starts_with_token(lower, "null") or _starts_with_token(lower, "nil") or _starts_with_token(lower, "none"):
        return VALUE_NULL
    if lower.startswith(("primitive.newobjectid", "objectid(", "new objectid(", "bson.newobjectid")):
        return VALUE_OBJECT_ID
    if lower.startswith(("time.", "new date(", "isodate(", "datetime.")):
        return VALUE_DATE
    if _NUMBER_RE.match(v):
        return VALUE_NUMBER
    return VALUE_UNKNOWN


def _starts_with_token(text: str, token: str) -> bool:
    if not text.startswith(token):
        return False
    if len(text) == len(token):
        return True
    nxt = text[len(token)]
    return not (nxt.isalnum() or nxt == "_")

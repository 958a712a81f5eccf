"""
Line-level extractors used by the source scanner.
"""

from mongospectre.scanners.collections import CollectionScanner, is_valid_collection_name, pluralize
from mongospectre.scanners.lines import LogicalLine, join_continuation_lines, paren_balance
from mongospectre.scanners.queries import QueryFieldScanner, is_valid_field_name
from mongospectre.scanners.variables import collect_string_vars, resolve_var_collections
from mongospectre.scanners.writes import is_write_operation, scan_write_fields

__all__ = [
    "CollectionScanner",
    "QueryFieldScanner",
    "LogicalLine",
    "collect_string_vars",
    "is_valid_collection_name",
    "is_valid_field_name",
    "is_write_operation",
    "join_continuation_lines",
    "paren_balance",
    "pluralize",
    "resolve_var_collections",
    "scan_write_fields",
]

"""
Source scanner orchestrator for mongospectre.

Walks a repository, rebuilds logical lines per file and runs the
collection, query, write and variable extractors over them to produce
a ScanResult.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from mongospectre.config import DEFAULT_CONFIG, DEFAULT_SKIP_DIRS, SUPPORTED_EXTENSIONS
from mongospectre.languages import LanguageRegistry
from mongospectre.models import (
    CollectionRef,
    DynamicRef,
    FieldRef,
    ScanResult,
    WriteRef,
)
from mongospectre.scanners.collections import CollectionScanner, dedup_matches
from mongospectre.scanners.lines import join_continuation_lines
from mongospectre.scanners.queries import (
    OBJECT_KEY_CONTEXT_RE,
    PIPELINE_STAGE_CONTEXT_RE,
    QueryFieldScanner,
)
from mongospectre.scanners.variables import (
    binding_target,
    bound_receiver,
    collect_string_vars,
    resolve_var_collections,
)
from mongospectre.scanners.writes import (
    is_write_operation,
    scan_write_fields,
    scan_write_filter_fields,
)
from mongospectre.utils import sorted_unique

if TYPE_CHECKING:
    from typing import Any, Iterator

logger = logging.getLogger(__name__)


class SourceScanner:
    """Scan a source tree for collection, query and write references."""

    def __init__(
        self,
        root: Path,
        skip_dirs: list[str] | None = None,
        config: dict[str, Any] | None = None,
    ):
        """
        Initialize the source scanner.

        Args:
            root: Repository root to scan.
            skip_dirs: Extra directory names to skip, on top of the built-in list.
            config: Configuration dictionary (merged with defaults).
        """
        self.root = Path(root)
        self.config = config or DEFAULT_CONFIG
        scan_config = self.config.get("scan", {})
        self.skip_dirs = set(DEFAULT_SKIP_DIRS)
        self.skip_dirs.update(scan_config.get("skip_dirs") or [])
        self.skip_dirs.update(skip_dirs or [])
        self.max_join_lines = scan_config.get("max_join_lines", 10)

        self.collection_scanner = CollectionScanner()
        self.query_scanner = QueryFieldScanner()

    def scan(self) -> ScanResult:
        """
        Scan the whole tree.

        Unreadable files and directories are counted in files_skipped and
        never abort the scan.

        Returns:
            ScanResult with references in walk order x line order.
        """
        result = ScanResult(repo_path=str(self.root))

        for filepath in self._walk(result):
            try:
                self._scan_file(filepath, result)
            except (OSError, UnicodeError) as e:
                logger.debug("Could not scan %s: %s", filepath, e)
                result.files_skipped += 1
                continue
            result.files_scanned += 1

        result.collections = sorted_unique(ref.collection for ref in result.refs)
        logger.debug(
            "Scanned %d files (%d skipped), %d collections",
            result.files_scanned, result.files_skipped, len(result.collections),
        )
        return result

    def _walk(self, result: ScanResult) -> Iterator[Path]:
        """Yield supported files in sorted walk order."""

        def on_error(error: OSError) -> None:
            logger.debug("Could not read directory %s: %s", error.filename, error)
            result.files_skipped += 1

        for dirpath, dirnames, filenames in os.walk(self.root, onerror=on_error):
            dirnames[:] = sorted(d for d in dirnames if d not in self.skip_dirs)
            for filename in sorted(filenames):
                if os.path.splitext(filename)[1].lower() in SUPPORTED_EXTENSIONS:
                    yield Path(dirpath) / filename

    def _relative(self, filepath: Path) -> str:
        try:
            return str(filepath.relative_to(self.root))
        except ValueError:
            return str(filepath)

    def _scan_file(self, filepath: Path, result: ScanResult) -> None:
        """Scan one file and append its references to result."""
        with open(filepath, "r", encoding="utf-8", errors="ignore") as f:
            physical = f.read().splitlines()

        rel_path = self._relative(filepath)
        language = LanguageRegistry.for_path(filepath)
        logical_lines = join_continuation_lines(physical, language, self.max_join_lines)
        variables = collect_string_vars(logical_lines)
        bindings: dict[str, str] = {}

        refs: list[CollectionRef] = []
        field_refs: list[FieldRef] = []
        write_refs: list[WriteRef] = []
        dynamic_refs: list[DynamicRef] = []

        for logical in logical_lines:
            text = logical.text
            matches = self.collection_scanner.scan_line(text)
            resolved, dynamic = resolve_var_collections(text, variables)
            matches = dedup_matches(matches + resolved)

            for m in matches:
                refs.append(CollectionRef(m.collection, rel_path, logical.line, m.pattern))
            for name in dynamic:
                dynamic_refs.append(DynamicRef(name, rel_path, logical.line))

            if matches:
                scope = matches[0].collection
                target = binding_target(text)
                if target is not None:
                    bindings[target] = scope
            else:
                scope = self._receiver_scope(text, bindings)
            if scope is None:
                continue

            if is_write_operation(text):
                field_matches = scan_write_filter_fields(text)
                for w in scan_write_fields(text):
                    write_refs.append(WriteRef(scope, w.field, w.value_type, rel_path, logical.line))
            else:
                field_matches = self.query_scanner.scan_line(text)

            for fm in field_matches:
                field_refs.append(FieldRef(
                    collection=scope,
                    field=fm.field,
                    file=rel_path,
                    line=logical.line,
                    usage=fm.usage,
                    direction=fm.direction,
                    context=fm.context,
                ))

        result.refs.extend(refs)
        result.field_refs.extend(field_refs)
        result.write_refs.extend(write_refs)
        result.dynamic_refs.extend(dynamic_refs)

    @staticmethod
    def _receiver_scope(text: str, bindings: dict[str, str]) -> str | None:
        """Collection of a bound handle used as a query or write receiver."""
        if not bindings:
            return None
        if not (
            is_write_operation(text)
            or OBJECT_KEY_CONTEXT_RE.search(text)
            or PIPELINE_STAGE_CONTEXT_RE.search(text)
        ):
            return None
        return bound_receiver(text, bindings)

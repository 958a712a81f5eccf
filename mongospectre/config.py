"""
Configuration constants and loading utilities for mongospectre.
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".mongospectre.yml"


# File extensions the source scanner opens
SUPPORTED_EXTENSIONS = frozenset({
    ".go", ".py", ".js", ".ts", ".jsx", ".tsx", ".java", ".cs", ".rb",
})

# Directory names never descended into
DEFAULT_SKIP_DIRS = frozenset({
    "node_modules",
    "vendor",
    ".git",
    "__pycache__",
    ".venv",
    "venv",
    "dist",
    "build",
    "bin",
})


class ConfigError(ValueError):
    """Invalid configuration file contents or flag combination."""


DEFAULT_CONFIG: dict[str, Any] = {
    # Connection (the URI may also come from MONGODB_URI)
    "uri": "",
    "database": "",
    "lint_uri": False,

    # Rule thresholds
    "thresholds": {
        "oversized_docs": 1_000_000,
        "index_usage_days": 30,
        "missing_index_docs": 10_000,
        "small_collection_docs": 1_000,
        "large_storage_bytes": 10 * 1024 ** 3,
        "large_index_bytes": 1024 ** 3,
        "max_indexes": 10,
        "frequent_query_count": 3,
        "unbalanced_ratio": 0.75,
        "profiler_limit": 1000,
        "sample_size": 100,
    },

    # Names removed from the comparison (fnmatch globs)
    "exclude": {
        "collections": [],
        "databases": [],
    },

    # Source scanning
    "scan": {
        "skip_dirs": [],
        "max_join_lines": 10,
    },

    # CLI defaults
    "defaults": {
        "format": "json",
        "timeout": 30,
        "verbose": False,
    },

    # Managed-service (Atlas Admin API) enrichment
    "atlas": {
        "public_key": "",
        "private_key": "",
        "project_id": "",
        "cluster": "",
        "base_url": "https://cloud.mongodb.com",
        "rate_limit_ms": 250,
    },

    # Watch mode
    "watch": {
        "interval": 300,
    },
}


def find_config_file(cwd: Path | None = None, home: Path | None = None) -> Path | None:
    """
    Locate the configuration file.

    Looks in the working directory first, then the home directory.

    Args:
        cwd: Directory to search first (defaults to the process cwd).
        home: Fallback directory (defaults to the user's home).

    Returns:
        Path to the first config file found, or None.
    """
    for base in (cwd or Path.cwd(), home or Path.home()):
        candidate = base / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def merge_config(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge override into a copy of base. Nested dicts merge, everything else replaces."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Path | None = None) -> dict[str, Any]:
    """
    Load configuration from a YAML file, merged with defaults.

    When no path is given the file is discovered with find_config_file().
    Environment variables MONGODB_URI, ATLAS_PUBLIC_KEY and ATLAS_PRIVATE_KEY
    fill in their settings when the file leaves them empty.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Configuration dictionary with user values merged over defaults.

    Raises:
        FileNotFoundError: If an explicit config file doesn't exist.
        ConfigError: If the file is not valid YAML or not a mapping.
    """
    if config_path is None:
        config_path = find_config_file()

    user_config: Any = {}
    if config_path is not None:
        with open(config_path, "r", encoding="utf-8") as f:
            try:
                user_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"invalid YAML in {config_path}: {e}") from e
        if not isinstance(user_config, dict):
            raise ConfigError(f"{config_path}: top level must be a mapping")
        logger.debug("Loaded config from %s", config_path)

    config = merge_config(DEFAULT_CONFIG, user_config)

    if not config.get("uri"):
        config["uri"] = os.environ.get("MONGODB_URI", "")
    atlas = config["atlas"]
    if not atlas.get("public_key"):
        atlas["public_key"] = os.environ.get("ATLAS_PUBLIC_KEY", "")
    if not atlas.get("private_key"):
        atlas["private_key"] = os.environ.get("ATLAS_PRIVATE_KEY", "")

    _validate(config)
    return config


def _validate(config: dict[str, Any]) -> None:
    """Reject settings the rules cannot work with."""
    thresholds = config.get("thresholds")
    if not isinstance(thresholds, dict):
        raise ConfigError("thresholds must be a mapping")
    for key, value in thresholds.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ConfigError(f"thresholds.{key} must be a non-negative number")

    max_join = config.get("scan", {}).get("max_join_lines")
    if not isinstance(max_join, int) or max_join < 1:
        raise ConfigError("scan.max_join_lines must be a positive integer")

    fmt = config.get("defaults", {}).get("format")
    if fmt not in ("json", "text", "sarif", "spectre"):
        raise ConfigError(f"defaults.format: unknown format {fmt!r}")


def get_config_template() -> str:
    """Generate a documented YAML config template."""
    return '''# =============================================================================
# mongospectre configuration
# =============================================================================
# Looked up as ./.mongospectre.yml, then ~/.mongospectre.yml.
# Every key is optional; missing keys fall back to built-in defaults.
# =============================================================================

# Connection string. MONGODB_URI is used when this is empty.
uri: ""

# Restrict the audit to one database (empty = all non-system databases)
database: ""

# Add URI_* findings about the connection string itself
lint_uri: false

# =============================================================================
# RULE THRESHOLDS
# =============================================================================
thresholds:
  oversized_docs: 1000000        # OVERSIZED_COLLECTION above this many documents
  index_usage_days: 30           # UNUSED_INDEX needs this many days of usage stats
  missing_index_docs: 10000      # MISSING_INDEX when only _id is indexed
  small_collection_docs: 1000    # UNINDEXED_QUERY becomes SUGGEST_INDEX below this
  large_storage_bytes: 10737418240
  large_index_bytes: 1073741824
  max_indexes: 10
  frequent_query_count: 3        # FREQUENT_SLOW_QUERY at this many repeats
  unbalanced_ratio: 0.75         # UNBALANCED_CHUNKS when one shard holds more
  profiler_limit: 1000
  sample_size: 100               # documents read with $sample per collection (0 = off)

# =============================================================================
# EXCLUSIONS (fnmatch globs)
# =============================================================================
exclude:
  collections:
    # - "tmp_*"
  databases:
    # - "scratch"

# =============================================================================
# SOURCE SCANNING
# =============================================================================
scan:
  skip_dirs:
    # - generated
  max_join_lines: 10

# =============================================================================
# DEFAULTS
# =============================================================================
defaults:
  format: json      # json | text | sarif | spectre
  timeout: 30       # seconds, one deadline per audit run
  verbose: false

# =============================================================================
# ATLAS ENRICHMENT
# =============================================================================
# Keys may also come from ATLAS_PUBLIC_KEY / ATLAS_PRIVATE_KEY.
atlas:
  public_key: ""
  private_key: ""
  project_id: ""
  cluster: ""
  rate_limit_ms: 250

# =============================================================================
# WATCH MODE
# =============================================================================
watch:
  interval: 300     # seconds between audits
'''

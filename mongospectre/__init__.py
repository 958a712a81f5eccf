"""
mongospectre - Audit a MongoDB cluster against the code that uses it.

Scans a source tree for collection, query and write references, compares
them with a live inventory of the cluster and reports drift, risk and waste
as typed findings.
"""

__version__ = "0.4.0"

from mongospectre.scanner import SourceScanner
from mongospectre.analyzers.engine import RuleEngine
from mongospectre.config import DEFAULT_CONFIG, load_config

__all__ = [
    "SourceScanner",
    "RuleEngine",
    "DEFAULT_CONFIG",
    "load_config",
    "__version__",
]

"""
Rule modules for mongospectre.

Each analyzer reads a ScanResult and an Inventory and returns findings;
the engine runs the whole catalog, and the ignore, baseline and exit-code
helpers post-process its output.
"""

from mongospectre.analyzers.advice import IndexAdviceAnalyzer
from mongospectre.analyzers.antipatterns import AntiPatternAnalyzer
from mongospectre.analyzers.atlas import AtlasAnalyzer
from mongospectre.analyzers.baseline import (
    BaselineDiff,
    Snapshot,
    diff_baseline,
    load_baseline,
    load_snapshot,
)
from mongospectre.analyzers.collections import CollectionAnalyzer
from mongospectre.analyzers.engine import RuleEngine, dedup_findings
from mongospectre.analyzers.exitcode import exit_code
from mongospectre.analyzers.growth import GrowthAnalyzer
from mongospectre.analyzers.ignore import IgnoreFilter, IgnoreRule
from mongospectre.analyzers.indexes import IndexAnalyzer
from mongospectre.analyzers.profiler import ProfilerAnalyzer
from mongospectre.analyzers.replset import ReplicaSetAnalyzer
from mongospectre.analyzers.schema import SchemaAnalyzer
from mongospectre.analyzers.security import SecurityAnalyzer
from mongospectre.analyzers.sharding import ShardingAnalyzer
from mongospectre.analyzers.urilint import UriAnalyzer, lint_uri
from mongospectre.analyzers.users import UserAnalyzer
from mongospectre.analyzers.validators import ValidatorAnalyzer

__all__ = [
    "AntiPatternAnalyzer",
    "AtlasAnalyzer",
    "BaselineDiff",
    "CollectionAnalyzer",
    "GrowthAnalyzer",
    "IgnoreFilter",
    "IgnoreRule",
    "IndexAdviceAnalyzer",
    "IndexAnalyzer",
    "ProfilerAnalyzer",
    "ReplicaSetAnalyzer",
    "RuleEngine",
    "SchemaAnalyzer",
    "SecurityAnalyzer",
    "ShardingAnalyzer",
    "Snapshot",
    "UriAnalyzer",
    "UserAnalyzer",
    "ValidatorAnalyzer",
    "dedup_findings",
    "diff_baseline",
    "exit_code",
    "lint_uri",
    "load_baseline",
    "load_snapshot",
]

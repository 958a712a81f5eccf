"""
Adapters between mongospectre and the systems it inspects.
"""

from mongospectre.adapters.atlas import AtlasAPIError, AtlasClient
from mongospectre.adapters.base import (
    AdapterError,
    AtlasAPI,
    DatabaseInspector,
    Deadline,
    DeadlineExceeded,
)
from mongospectre.adapters.mongo import PyMongoInspector

__all__ = [
    "AdapterError",
    "AtlasAPI",
    "AtlasAPIError",
    "AtlasClient",
    "DatabaseInspector",
    "Deadline",
    "DeadlineExceeded",
    "PyMongoInspector",
]

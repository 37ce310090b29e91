"""Persistence for the reference-image library (SQLite).

Modules:
- db: DB location, schema and connection helper
- registry: product families and readiness status
- catalog: stored, deduplicated images
- queue: durable ingest queue
- categories: per-category search phrasing and fill queries
"""

from .db import LibraryDatabase
from .registry import FamilyRegistry
from .catalog import ImageCatalog
from .queue import IngestQueue
from .categories import CategoryConfig, CategoryStatus, build_categories

__all__ = [
    "LibraryDatabase",
    "FamilyRegistry",
    "ImageCatalog",
    "IngestQueue",
    "CategoryConfig",
    "CategoryStatus",
    "build_categories",
]

"""Per-category capabilities used by the search-driven seeder.

Each category knows how to phrase image-search queries for a family and how
to find families that still need reference images.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..domain.constants import CATEGORY_BUILDING, CATEGORY_COMPLETE
from ..domain.models import Family
from .catalog import ImageCatalog
from .db import LibraryDatabase
from .registry import row_to_family


@dataclass
class CategoryStatus:
    key: str
    name: str
    image_count: int
    embedded_count: int
    threshold: int
    status: str
    percent_complete: float
    can_seed_category: bool


class CategoryConfig(ABC):
    key: str
    name: str
    # Embedded images needed before the category counts as complete.
    completion_threshold: int = 200

    def __init__(self, db: LibraryDatabase) -> None:
        self.db = db
        self.catalog = ImageCatalog(db)

    @abstractmethod
    def build_search_queries(self, brand: str, family: str) -> List[str]:
        """Return 2-3 search phrasings for a family."""

    def list_underfilled_families(self, target: int, limit: int) -> List[Family]:
        """Families of this category with fewer than `target` stored images."""
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT f.* FROM families f
                WHERE f.category = ?
                  AND (SELECT COUNT(*) FROM images i WHERE i.family_id = f.family_id) < ?
                ORDER BY f.family_id
                LIMIT ?;
                """,
                (self.key, int(target), int(limit)),
            )
            return [row_to_family(r) for r in cur.fetchall()]

    def count_families(self) -> int:
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM families WHERE category = ?;", (self.key,))
            return int(cur.fetchone()[0])

    def count_images(self, family_id: Optional[int] = None) -> int:
        if family_id is not None:
            return self.catalog.count_for_family(family_id)
        return self.catalog.count_for_category(self.key)

    def status(self) -> CategoryStatus:
        images = self.catalog.count_for_category(self.key)
        embedded = self.catalog.count_for_category(self.key, embedded_only=True)
        complete = embedded >= self.completion_threshold
        pct = min(100.0, round(100.0 * embedded / self.completion_threshold, 1)) if self.completion_threshold else 100.0
        return CategoryStatus(
            key=self.key,
            name=self.name,
            image_count=images,
            embedded_count=embedded,
            threshold=self.completion_threshold,
            status=CATEGORY_COMPLETE if complete else CATEGORY_BUILDING,
            percent_complete=pct,
            can_seed_category=not complete,
        )


class WatchCategory(CategoryConfig):
    key = "watches"
    name = "Watches"
    completion_threshold = 100

    def build_search_queries(self, brand: str, family: str) -> List[str]:
        return [f"{brand} {family} watch", f"{brand} {family} wristwatch", f"{brand} {family} timepiece"]


class ShoeCategory(CategoryConfig):
    key = "shoes"
    name = "Shoes"
    completion_threshold = 100

    def build_search_queries(self, brand: str, family: str) -> List[str]:
        return [f"{brand} {family} sneakers", f"{brand} {family} shoes", f"{brand} {family} footwear"]


class ElectronicsCategory(CategoryConfig):
    key = "electronics"
    name = "Electronics"
    completion_threshold = 300

    def build_search_queries(self, brand: str, family: str) -> List[str]:
        return [f"{brand} {family}", f"{brand} {family} product", f"{brand} {family} electronics"]


class ToyCategory(CategoryConfig):
    key = "toys"
    name = "Collectibles"
    completion_threshold = 200

    def build_search_queries(self, brand: str, family: str) -> List[str]:
        return [f"{brand} {family}", f"{brand} {family} collectible", f"{brand} {family} toy"]


class CardCategory(CategoryConfig):
    key = "cards"
    name = "Trading Cards"
    completion_threshold = 300

    def build_search_queries(self, brand: str, family: str) -> List[str]:
        return [f"{brand} {family} trading card", f"{brand} {family} card", f"{family} {brand} sports card"]


CATEGORY_CLASSES = (WatchCategory, ShoeCategory, ElectronicsCategory, ToyCategory, CardCategory)


def build_categories(db: LibraryDatabase) -> Dict[str, CategoryConfig]:
    """One bound CategoryConfig per configured category, in seeding order."""
    return {cls.key: cls(db) for cls in CATEGORY_CLASSES}

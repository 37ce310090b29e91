from __future__ import annotations

from pathlib import Path

import pytest

from refimage_seeder.domain.constants import CATEGORY_COMPLETE, FAMILY_BUILDING, FAMILY_LOCKED, FAMILY_READY
from refimage_seeder.domain.models import StoredImage
from refimage_seeder.library.catalog import ImageCatalog
from refimage_seeder.library.categories import build_categories
from refimage_seeder.library.registry import FamilyRegistry

from _factories import make_db


def _add_images(catalog: ImageCatalog, family_id: int, n: int, *, category: str = "watches", prefix: str = "h", embedded: bool = False) -> None:
    for i in range(n):
        catalog.insert(
            StoredImage(
                image_id=None,
                family_id=family_id,
                category=category,
                sha256=f"{prefix}{family_id:04d}{i:060d}",
                storage_path=f"{category}/x/{family_id}/{i}.jpg",
                original_url=f"https://img.test/{family_id}/{i}.jpg",
                file_size=20_000,
                width=640,
                height=480,
                content_type="image/jpeg",
                embedding=[0.1, 0.2] if embedded else None,
            )
        )


def test_find_or_create_matches_on_category_brand_family(tmp_path: Path) -> None:
    registry = FamilyRegistry(make_db(tmp_path))
    fam, created = registry.find_or_create("watches", "Seiko", "5 Sports", attributes={"movement": "automatic"})
    again, created_again = registry.find_or_create("watches", "Seiko", "5 Sports")
    other, created_other = registry.find_or_create("shoes", "Seiko", "5 Sports")

    assert created and not created_again and created_other
    assert again.family_id == fam.family_id
    assert other.family_id != fam.family_id
    assert fam.status == FAMILY_BUILDING
    assert fam.display_name == "Seiko 5 Sports"
    assert fam.attributes == {"movement": "automatic"}
    assert fam.min_images_required == 15


def test_reconcile_promotes_at_threshold_and_skips_locked(tmp_path: Path) -> None:
    db = make_db(tmp_path)
    registry = FamilyRegistry(db)
    catalog = ImageCatalog(db)
    short, _ = registry.find_or_create("watches", "Seiko", "SKX")
    full, _ = registry.find_or_create("watches", "Omega", "Speedmaster")
    pinned, _ = registry.find_or_create("watches", "Casio", "G-Shock")
    _add_images(catalog, short.family_id, 14)
    _add_images(catalog, full.family_id, 15)
    registry.set_status(pinned.family_id, FAMILY_LOCKED)

    summary = registry.reconcile_statuses()

    assert summary == {"promoted": 1, "demoted": 0}
    assert registry.get(short.family_id).status == FAMILY_BUILDING
    assert registry.get(full.family_id).status == FAMILY_READY
    assert registry.get(pinned.family_id).status == FAMILY_LOCKED


def test_reconcile_demotes_when_threshold_raised(tmp_path: Path) -> None:
    db = make_db(tmp_path)
    registry = FamilyRegistry(db)
    fam, _ = registry.find_or_create("watches", "Tudor", "Black Bay", min_images_required=2)
    _add_images(ImageCatalog(db), fam.family_id, 2)
    registry.reconcile_statuses()
    assert registry.get(fam.family_id).status == FAMILY_READY

    with db.connect() as conn:
        conn.execute("UPDATE families SET min_images_required = 5 WHERE family_id = ?;", (fam.family_id,))
        conn.commit()
    assert registry.reconcile_statuses("watches") == {"promoted": 0, "demoted": 1}
    assert registry.get(fam.family_id).status == FAMILY_BUILDING


def test_set_status_validates_input(tmp_path: Path) -> None:
    registry = FamilyRegistry(make_db(tmp_path))
    fam, _ = registry.find_or_create("watches", "Seiko", "SKX")
    with pytest.raises(ValueError):
        registry.set_status(fam.family_id, "archived")
    assert registry.set_status(9999, FAMILY_LOCKED) is False


def test_catalog_unique_hash_per_category(tmp_path: Path) -> None:
    db = make_db(tmp_path)
    registry = FamilyRegistry(db)
    catalog = ImageCatalog(db)
    a, _ = registry.find_or_create("watches", "Seiko", "SKX")
    b, _ = registry.find_or_create("watches", "Seiko", "Turtle")
    _add_images(catalog, a.family_id, 1, prefix="same")

    dup = StoredImage(
        image_id=None,
        family_id=b.family_id,
        category="watches",
        sha256=f"same{a.family_id:04d}{0:060d}",
        storage_path="watches/seiko/2/x.jpg",
        original_url=None,
        file_size=20_000,
        width=640,
        height=480,
        content_type="image/jpeg",
    )
    assert catalog.exists("watches", dup.sha256)
    assert catalog.insert(dup) is None
    assert catalog.count_for_family(b.family_id) == 0


def test_underfilled_families_and_category_status(tmp_path: Path) -> None:
    db = make_db(tmp_path)
    registry = FamilyRegistry(db)
    catalog = ImageCatalog(db)
    categories = build_categories(db)
    assert list(categories) == ["watches", "shoes", "electronics", "toys", "cards"]

    jordan, _ = registry.find_or_create("shoes", "Nike", "Air Jordan 1")
    dunk, _ = registry.find_or_create("shoes", "Nike", "Dunk Low")
    _add_images(catalog, jordan.family_id, 25, category="shoes", embedded=True)
    _add_images(catalog, dunk.family_id, 3, category="shoes")

    shoes = categories["shoes"]
    under = shoes.list_underfilled_families(target=25, limit=10)
    assert [f.family_id for f in under] == [dunk.family_id]
    assert shoes.count_images() == 28
    assert shoes.count_images(jordan.family_id) == 25

    status = shoes.status()
    assert status.embedded_count == 25
    assert status.percent_complete == 25.0
    assert status.can_seed_category

    _add_images(catalog, dunk.family_id, 75, category="shoes", prefix="more", embedded=True)
    done = shoes.status()
    assert done.status == CATEGORY_COMPLETE
    assert done.percent_complete == 100.0
    assert not done.can_seed_category


def test_search_queries_include_brand_and_family(tmp_path: Path) -> None:
    categories = build_categories(make_db(tmp_path))
    for config in categories.values():
        queries = config.build_search_queries("Acme", "Model X")
        assert 2 <= len(queries) <= 3
        assert all("Acme" in q and "Model X" in q for q in queries)

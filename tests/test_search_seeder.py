from __future__ import annotations

import asyncio
from pathlib import Path

from refimage_seeder.domain.constants import FAMILY_READY
from refimage_seeder.service import LibrarySeedingService

from _factories import FakeWeb, fast_settings, no_sleep, png_bytes


def _service(tmp_path: Path, http, **overrides) -> LibrarySeedingService:
    (tmp_path / "README.md").write_text("marker", encoding="utf-8")
    params = {"jina_key": "k", "serpapi_key": "serp", **overrides}
    settings = fast_settings(**params)
    return LibrarySeedingService(settings, root_dir=str(tmp_path), http_client=http, sleep=no_sleep)


def test_seed_category_fills_family_up_to_target(tmp_path: Path) -> None:
    hits = [{"original": f"https://img.test/dunk/{i}.png"} for i in range(6)]
    hits.insert(2, {"thumbnail": "https://img.test/dunk/thumb.png"})
    hits.insert(3, {"title": "no url"})
    images = {h.get("original") or h.get("thumbnail"): png_bytes(salt=i) for i, h in enumerate(hits) if h.get("original") or h.get("thumbnail")}
    web = FakeWeb(images, search_results={"Nike Dunk Low sneakers": hits})

    async def run():
        async with web.client() as http:
            svc = _service(tmp_path, http, target_per_family=4, min_images_per_family=4)
            fam, _ = svc.registry.find_or_create("shoes", "Nike", "Dunk Low", min_images_required=4)
            result = await svc.search_seeder().seed_category("shoes")
            await asyncio.to_thread(svc.registry.reconcile_statuses)
            return svc, fam, result

    svc, fam, result = asyncio.run(run())
    assert result.success
    assert result.families_processed == 1
    assert result.images_added == 4
    assert svc.catalog.count_for_family(fam.family_id) == 4
    # Target reached on the first phrasing, so no further searches were made.
    assert web.count("serpapi.com") == 1
    urls = {img.original_url for img in svc.catalog.list_for_family(fam.family_id)}
    assert "https://img.test/dunk/thumb.png" in urls
    assert all(img.source == "serpapi" for img in svc.catalog.list_for_family(fam.family_id))
    assert svc.registry.get(fam.family_id).status == FAMILY_READY


def test_seed_category_records_per_image_errors_and_skips(tmp_path: Path) -> None:
    same = png_bytes(salt=9)
    hits = [
        {"original": "https://img.test/a.png"},
        {"original": "https://img.test/b.png"},
        {"original": "https://img.test/tiny.png"},
        {"original": "https://img.test/gone.png"},
    ]
    web = FakeWeb(
        {"https://img.test/a.png": same, "https://img.test/b.png": same, "https://img.test/tiny.png": png_bytes(50, 50)},
        search_results={"Lego Millennium Falcon": hits},
    )

    async def run():
        async with web.client() as http:
            svc = _service(tmp_path, http)
            svc.registry.find_or_create("toys", "Lego", "Millennium Falcon")
            return await svc.search_seeder().seed_category("toys")

    result = asyncio.run(run())
    assert result.images_added == 1
    assert result.skipped_duplicate == 1
    assert result.skipped_invalid == 1
    assert len(result.errors) == 1
    assert "gone.png" in result.errors[0]
    # All three phrasings were tried because the target was never reached.
    assert web.count("serpapi.com") == 3


def test_missing_search_key_is_a_structured_failure(tmp_path: Path) -> None:
    web = FakeWeb()

    async def run():
        async with web.client() as http:
            svc = _service(tmp_path, http, serpapi_key=None)
            svc.registry.find_or_create("watches", "Seiko", "SKX")
            seeder = svc.search_seeder()
            return await seeder.seed_category("watches"), await seeder.seed_category("boats")

    missing_key, unknown = asyncio.run(run())
    assert not missing_key.success and missing_key.errors == ["SERPAPI_KEY not configured"]
    assert not unknown.success and "Unknown category" in unknown.errors[0]
    assert web.requests == []


def test_seed_all_skips_complete_categories_and_respects_family_cap(tmp_path: Path) -> None:
    web = FakeWeb()

    async def run():
        async with web.client() as http:
            svc = _service(tmp_path, http)
            for i in range(4):
                svc.registry.find_or_create("cards", "Topps", f"Chrome {i}")
            svc.categories["watches"].completion_threshold = 0
            summary = await svc.search_seeder().seed_all(max_families=2, skip_complete=True)
            return svc, summary

    svc, summary = asyncio.run(run())
    categories = [r.category for r in summary.results]
    assert "watches" not in categories
    assert categories == ["shoes", "electronics", "toys", "cards"]
    cards = summary.results[-1]
    assert cards.families_processed == 2
    assert summary.total_images == 0
    assert summary.to_dict()["total_families"] == 2


def test_category_image_stats(tmp_path: Path) -> None:
    web = FakeWeb(
        {f"https://img.test/pods/{i}.png": png_bytes(salt=i) for i in range(2)},
        search_results={"Apple AirPods Pro": [{"original": f"https://img.test/pods/{i}.png"} for i in range(2)]},
    )

    async def run():
        async with web.client() as http:
            svc = _service(tmp_path, http, target_per_family=10)
            for i in range(3):
                svc.registry.find_or_create("watches", "Seiko", f"Line {i}")
            svc.registry.find_or_create("electronics", "Apple", "AirPods Pro")
            seeder = svc.search_seeder()
            await seeder.seed_category("electronics")
            return seeder.category_image_stats()

    stats = asyncio.run(run())
    assert set(stats) == {"watches", "shoes", "electronics", "toys", "cards"}
    # target is family count x images per family, not the completion threshold
    assert (stats["watches"]["target"], stats["watches"]["needed"], stats["watches"]["threshold"]) == (30, 30, 100)
    assert stats["electronics"]["current"] == 2
    assert (stats["electronics"]["target"], stats["electronics"]["needed"]) == (10, 8)
    assert stats["shoes"]["target"] == 0 and stats["shoes"]["needed"] == 0
    assert stats["toys"]["status"] == "building"

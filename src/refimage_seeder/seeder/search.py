"""Search-driven seeding for categories without a static seed file."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import httpx

from ..config import SeederSettings
from ..domain.constants import SOURCE_SERPAPI
from ..library.categories import CategoryConfig
from ..logging import get_logger
from .pipeline import OUTCOME_ADDED, OUTCOME_DUPLICATE, ImageIngestor, Sleep

LOG = get_logger("search-seeder")

SERPAPI_URL = "https://serpapi.com/search.json"
DEFAULT_SEED_ALL_FAMILIES = 10


class SearchError(RuntimeError):
    """Image search request failed."""


class SerpApiClient:
    """Thin async wrapper around SerpAPI's google_images engine."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: Optional[str],
        *,
        num: int = 30,
        url: str = SERPAPI_URL,
        timeout: float = 30.0,
    ) -> None:
        self.client = client
        self.api_key = api_key
        self.num = int(num)
        self.url = url
        self.timeout = float(timeout)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def search(self, query: str) -> List[Dict[str, Any]]:
        if not self.api_key:
            raise SearchError("SERPAPI_KEY not configured")
        params = {
            "engine": "google_images",
            "q": query,
            "api_key": self.api_key,
            "num": str(self.num),
            "safe": "active",
        }
        try:
            r = await self.client.get(self.url, params=params, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise SearchError(f"Search request failed: {e}") from e
        if r.status_code != 200:
            raise SearchError(f"SerpAPI error: {r.status_code}")
        try:
            body = r.json()
        except ValueError as e:
            raise SearchError("SerpAPI returned non-JSON body") from e
        results = body.get("images_results") if isinstance(body, dict) else None
        return [x for x in (results or []) if isinstance(x, dict)]


@dataclass
class CategorySeedResult:
    category: str
    families_processed: int = 0
    images_added: int = 0
    skipped_invalid: int = 0
    skipped_duplicate: int = 0
    errors: List[str] = field(default_factory=list)
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SearchSeedSummary:
    results: List[CategorySeedResult] = field(default_factory=list)

    @property
    def total_families(self) -> int:
        return sum(r.families_processed for r in self.results)

    @property
    def total_images(self) -> int:
        return sum(r.images_added for r in self.results)

    @property
    def total_errors(self) -> int:
        return sum(len(r.errors) for r in self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "total_families": self.total_families,
            "total_images": self.total_images,
            "total_errors": self.total_errors,
        }


def _candidate_url(result: Mapping[str, Any]) -> Optional[str]:
    url = result.get("original") or result.get("thumbnail")
    return url if isinstance(url, str) and url else None


class SearchSeeder:
    """Fill under-stocked families of each category from image-search results.

    Per family the category's query phrasings are tried in order; results are
    pushed through the shared ingestion step until the family reaches the
    per-family target. Every per-query and per-image failure lands in the
    category's error list.
    """

    def __init__(
        self,
        categories: Mapping[str, CategoryConfig],
        ingestor: ImageIngestor,
        search_client: SerpApiClient,
        settings: Optional[SeederSettings] = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.categories = categories
        self.ingestor = ingestor
        self.search_client = search_client
        self.settings = settings or SeederSettings()
        self.sleep = sleep

    async def seed_category(self, key: str, max_families: Optional[int] = None) -> CategorySeedResult:
        result = CategorySeedResult(category=key)
        config = self.categories.get(key)
        if config is None:
            result.success = False
            result.errors.append(f"Unknown category: {key}")
            return result
        if not self.search_client.configured:
            result.success = False
            result.errors.append("SERPAPI_KEY not configured")
            return result

        target = self.settings.target_per_family
        limit = max_families if max_families is not None else self.settings.max_families_per_run
        families = await asyncio.to_thread(config.list_underfilled_families, target, limit)
        LOG.info(f"[{key}] Seeding {len(families)} underfilled families (target {target} images each)")

        for family in families:
            current = await asyncio.to_thread(config.count_images, family.family_id)
            needed = target - current
            if needed <= 0:
                continue
            added = 0
            for query in config.build_search_queries(family.brand, family.family):
                if added >= needed:
                    break
                try:
                    hits = await self.search_client.search(query)
                except SearchError as e:
                    result.errors.append(f"{family.label}: {query}: {e}")
                    continue
                for hit in hits:
                    if added >= needed:
                        break
                    url = _candidate_url(hit)
                    if url is None:
                        continue
                    try:
                        outcome = await self.ingestor.ingest(family, url, source=SOURCE_SERPAPI)
                    except Exception as e:  # per-image failures are recorded, never raised
                        result.errors.append(f"{family.label}: {url}: {e}")
                        continue
                    if outcome.status == OUTCOME_ADDED:
                        added += 1
                    elif outcome.status == OUTCOME_DUPLICATE:
                        result.skipped_duplicate += 1
                    else:
                        result.skipped_invalid += 1
                await self.sleep(self.settings.search_delay)

            result.families_processed += 1
            result.images_added += added
            LOG.info(f"[{key}] {family.label}: +{added} images ({current + added}/{target})")

        LOG.info(
            f"[{key}] Done: {result.families_processed} families, {result.images_added} images added, "
            f"{result.skipped_invalid} invalid, {result.skipped_duplicate} duplicates, {len(result.errors)} errors"
        )
        return result

    async def seed_all(self, max_families: int = DEFAULT_SEED_ALL_FAMILIES, *, skip_complete: bool = False) -> SearchSeedSummary:
        summary = SearchSeedSummary()
        for key, config in self.categories.items():
            if skip_complete:
                status = await asyncio.to_thread(config.status)
                if not status.can_seed_category:
                    LOG.info(f"[{key}] Category complete ({status.embedded_count}/{status.threshold}); skipping")
                    continue
            LOG.info("=" * 60)
            LOG.info(f"SEEDING CATEGORY: {config.name}")
            summary.results.append(await self.seed_category(key, max_families))
        LOG.info(
            f"SEARCH SEEDING COMPLETE: families={summary.total_families} "
            f"images={summary.total_images} errors={summary.total_errors}"
        )
        return summary

    def category_image_stats(self) -> Dict[str, Dict[str, Any]]:
        """Per-category current/target/needed counts for before/after reporting.

        `target` is families x images-per-family; `threshold` is the embedded
        count at which the category stops being seeded.
        """
        stats: Dict[str, Dict[str, Any]] = {}
        for key, config in self.categories.items():
            status = config.status()
            target = config.count_families() * self.settings.target_per_family
            stats[key] = {
                "name": config.name,
                "current": status.image_count,
                "embedded": status.embedded_count,
                "target": target,
                "needed": max(0, target - status.image_count),
                "threshold": status.threshold,
                "status": status.status,
                "percent_complete": status.percent_complete,
            }
        return stats

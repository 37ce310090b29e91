from __future__ import annotations

import asyncio
import os
from typing import Any, Dict, List, Optional

import httpx

from .config import SeederSettings, load_settings
from .embedding.client import EmbeddingClient
from .embedding.similarity import rank_by_similarity
from .imaging.download import ImageDownloader
from .imaging.store import BlobStore, ContentAddressedStore, LocalBlobStore
from .library.catalog import ImageCatalog
from .library.categories import build_categories
from .library.db import LibraryDatabase
from .library.queue import IngestQueue
from .library.registry import FamilyRegistry
from .logging import get_logger
from .paths import find_project_root, library_dir
from .seeder.backfill import BackfillStats, EmbeddingBackfill
from .seeder.loader import LoadResult, SeedFileLoader, default_seed_path
from .seeder.pipeline import ImageIngestor, Sleep
from .seeder.report import ReportGenerator
from .seeder.search import SearchSeeder, SearchSeedSummary, SerpApiClient
from .seeder.worker import SeederWorker, WorkerStats
from .domain.models import SeedReport

LOG = get_logger("seeding-service")


class LibrarySeedingService:
    """Wires the reference-library components from SeederSettings.

    Use as an async context manager so the shared HTTP client is closed:

        async with LibrarySeedingService() as svc:
            await svc.run_seed_file()
    """

    def __init__(
        self,
        settings: Optional[SeederSettings] = None,
        *,
        root_dir: Optional[str] = None,
        db: Optional[LibraryDatabase] = None,
        blobs: Optional[BlobStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.root_dir = find_project_root(root_dir)
        self.settings = settings or load_settings(self.root_dir)
        s = self.settings
        self.db = db or LibraryDatabase(self.root_dir, db_path=s.db_path)
        self.blobs = blobs or LocalBlobStore(s.blob_dir or os.path.join(library_dir(self.root_dir), "blobs"))
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient()
        self.sleep = sleep

        self.registry = FamilyRegistry(self.db)
        self.catalog = ImageCatalog(self.db)
        self.queue = IngestQueue(self.db, stale_after=s.stale_after)
        self.categories = build_categories(self.db)
        self.embedder = EmbeddingClient(self.http, s.jina_key)
        self.ingestor = ImageIngestor(
            ImageDownloader(self.http, timeout=s.download_timeout, max_bytes=s.limits.max_bytes),
            ContentAddressedStore(self.blobs, s.limits),
            self.catalog,
            self.embedder,
            limits=s.limits,
            rate_limit_cooldown=s.rate_limit_cooldown,
            sleep=sleep,
        )
        self.search_client = SerpApiClient(self.http, s.serpapi_key, num=s.search_results)
        self.reports = ReportGenerator(self.registry, self.catalog, self.queue)

    async def __aenter__(self) -> "LibrarySeedingService":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    def load_seed_file(self, path: Optional[str] = None, category: str = "watches") -> LoadResult:
        loader = SeedFileLoader(
            self.registry,
            self.queue,
            min_candidates=self.settings.min_seed_candidates,
            min_images_required=self.settings.min_images_per_family,
        )
        return loader.load(path or default_seed_path(self.root_dir, category), category)

    async def run_worker(self, max_items: Optional[int] = None) -> WorkerStats:
        worker = SeederWorker(self.queue, self.registry, self.ingestor, self.settings, sleep=self.sleep)
        return await worker.run(max_items)

    async def run_seed_file(
        self,
        path: Optional[str] = None,
        category: str = "watches",
        *,
        max_items: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Load the manifest, drain the queue, then report on the category."""
        loaded = await asyncio.to_thread(self.load_seed_file, path, category)
        stats = await self.run_worker(max_items)
        report = await asyncio.to_thread(self.reports.generate, category)
        return {"loaded": loaded, "worker": stats, "report": report}

    def search_seeder(self) -> SearchSeeder:
        return SearchSeeder(self.categories, self.ingestor, self.search_client, self.settings, sleep=self.sleep)

    async def run_search(
        self,
        category: Optional[str] = None,
        *,
        max_families: Optional[int] = None,
        skip_complete: bool = False,
    ) -> SearchSeedSummary:
        seeder = self.search_seeder()
        if category:
            summary = SearchSeedSummary()
            summary.results.append(await seeder.seed_category(category, max_families))
        else:
            kwargs: Dict[str, Any] = {"skip_complete": skip_complete}
            if max_families is not None:
                kwargs["max_families"] = max_families
            summary = await seeder.seed_all(**kwargs)
        await asyncio.to_thread(self.registry.reconcile_statuses, category)
        return summary

    def report(self, category: Optional[str] = None) -> SeedReport:
        return self.reports.generate(category)

    async def backfill(self, category: Optional[str] = None, batch_size: int = 50) -> BackfillStats:
        runner = EmbeddingBackfill(
            self.catalog,
            self.blobs,
            self.embedder,
            cooldown=self.settings.rate_limit_cooldown,
            sleep=self.sleep,
        )
        return await runner.run(category, batch_size)

    async def match(self, data: bytes, category: str, *, top_k: int = 5) -> List[Dict[str, Any]]:
        """Rank the category's embedded images by visual similarity to `data`."""
        query = (await self.embedder.embed(data)).embedding
        candidates = await asyncio.to_thread(self.catalog.embeddings_for_category, category)
        ranked = rank_by_similarity(query, candidates, top_k=top_k)
        out: List[Dict[str, Any]] = []
        for image, score in ranked:
            family = self.registry.get(image.family_id)
            out.append(
                {
                    "image_id": image.image_id,
                    "family_id": image.family_id,
                    "family": family.display_name if family else None,
                    "similarity": round(score, 4),
                    "storage_path": image.storage_path,
                }
            )
        return out

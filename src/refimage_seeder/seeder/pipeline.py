"""Single-image ingestion shared by the queue worker and the search seeder.

download -> validate -> hash dedup -> store -> embed (best effort) -> catalog row
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from ..config import ValidatorLimits
from ..domain.models import Family, StoredImage
from ..embedding.client import EmbeddingClient, EmbeddingFailed, RateLimited
from ..imaging.download import ImageDownloader, ImageTooLarge
from ..imaging.quality import assess_quality
from ..imaging.store import ContentAddressedStore, content_digest
from ..imaging.validator import validate_image
from ..library.catalog import ImageCatalog
from ..logging import get_logger

LOG = get_logger("ingest-pipeline")

OUTCOME_ADDED = "added"
OUTCOME_INVALID = "invalid"
OUTCOME_DUPLICATE = "duplicate"

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class IngestOutcome:
    status: str
    image_id: Optional[int] = None
    sha256: Optional[str] = None
    reason: Optional[str] = None
    embedded: bool = False


class ImageIngestor:
    """Turns one candidate URL into (at most) one catalogued reference image.

    Invalid bytes and already-known hashes come back as outcomes; download
    and storage errors propagate so the caller can apply its retry policy.
    """

    def __init__(
        self,
        downloader: ImageDownloader,
        store: ContentAddressedStore,
        catalog: ImageCatalog,
        embedder: EmbeddingClient,
        *,
        limits: Optional[ValidatorLimits] = None,
        rate_limit_cooldown: float = 65.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.downloader = downloader
        self.store = store
        self.catalog = catalog
        self.embedder = embedder
        self.limits = limits or ValidatorLimits()
        self.rate_limit_cooldown = float(rate_limit_cooldown)
        self.sleep = sleep

    async def embed(self, data: bytes, label: str) -> Optional[List[float]]:
        """Best-effort embedding: one cooldown-and-retry on rate limit, None on failure."""
        try:
            return (await self.embedder.embed(data)).embedding
        except RateLimited as e:
            LOG.warning(f"Embedding rate limited for {label} ({e}); cooling down {self.rate_limit_cooldown:.0f}s")
            await self.sleep(self.rate_limit_cooldown)
            try:
                return (await self.embedder.embed(data)).embedding
            except EmbeddingFailed as e2:
                LOG.warning(f"Embedding retry failed for {label}: {e2}; storing without embedding")
                return None
        except EmbeddingFailed as e:
            LOG.warning(f"Embedding failed for {label}: {e}; storing without embedding")
            return None

    async def ingest(self, family: Family, url: str, *, source: str) -> IngestOutcome:
        try:
            data = await self.downloader.fetch(url)
        except ImageTooLarge as e:
            return IngestOutcome(OUTCOME_INVALID, reason=str(e))

        validation = validate_image(data, self.limits)
        if not validation.valid:
            return IngestOutcome(OUTCOME_INVALID, reason=validation.error or "Validation failed")

        sha256 = content_digest(data)
        if await asyncio.to_thread(self.catalog.exists, family.category, sha256):
            return IngestOutcome(OUTCOME_DUPLICATE, sha256=sha256, reason="Duplicate sha256")

        stored = await asyncio.to_thread(
            self.store.store,
            data,
            family.category,
            family.brand,
            family.family,
            family.family_id,
            validation=validation,
        )
        embedding = await self.embed(data, f"{family.label} <{url}>")

        image = StoredImage(
            image_id=None,
            family_id=int(family.family_id),
            category=family.category,
            sha256=stored.sha256,
            storage_path=stored.storage_path,
            original_url=url,
            file_size=stored.file_size,
            width=stored.width,
            height=stored.height,
            content_type=stored.content_type,
            embedding=embedding,
            source=source,
            quality_score=assess_quality(stored.width, stored.height),
        )
        try:
            image_id = await asyncio.to_thread(self.catalog.insert, image)
        except Exception:
            await asyncio.to_thread(self._discard_orphan, stored.storage_path)
            raise
        if image_id is None:
            # Another pipeline stored the same bytes between the pre-check and the insert.
            await asyncio.to_thread(self._discard_orphan, stored.storage_path)
            return IngestOutcome(OUTCOME_DUPLICATE, sha256=sha256, reason="Duplicate sha256")
        return IngestOutcome(OUTCOME_ADDED, image_id=image_id, sha256=sha256, embedded=embedding is not None)

    def _discard_orphan(self, storage_path: str) -> None:
        # Same family and bytes share one path, which may belong to the winning row.
        if not self.catalog.references_path(storage_path):
            self.store.discard(storage_path)

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from ..embedding.client import EmbeddingClient, EmbeddingFailed, RateLimited
from ..imaging.store import BlobStore
from ..library.catalog import ImageCatalog
from ..logging import get_logger
from .pipeline import Sleep

LOG = get_logger("embedding-backfill")

DEFAULT_BATCH_SIZE = 50


@dataclass
class BackfillStats:
    processed: int = 0
    embedded: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class EmbeddingBackfill:
    """Embed stored images that were catalogued without a vector.

    Rows are walked in image_id order; a failed row is left without an
    embedding and the walk moves past it, so one run visits each row once.
    """

    def __init__(
        self,
        catalog: ImageCatalog,
        blobs: BlobStore,
        embedder: EmbeddingClient,
        *,
        cooldown: float = 65.0,
        delay: float = 0.2,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.catalog = catalog
        self.blobs = blobs
        self.embedder = embedder
        self.cooldown = float(cooldown)
        self.delay = float(delay)
        self.sleep = sleep

    async def _embed_with_cooldown(self, data: bytes):
        try:
            return await self.embedder.embed(data)
        except RateLimited:
            LOG.warning(f"Rate limited; waiting {self.cooldown:.0f}s before retrying")
            await self.sleep(self.cooldown)
            return await self.embedder.embed(data)

    async def run(self, category: Optional[str] = None, batch_size: int = DEFAULT_BATCH_SIZE) -> BackfillStats:
        stats = BackfillStats()
        after_id = 0
        scope = category or "all categories"
        LOG.info(f"Backfilling embeddings for {scope} (batch size {batch_size})")
        while True:
            batch = await asyncio.to_thread(
                self.catalog.missing_embeddings, category, limit=batch_size, after_id=after_id
            )
            if not batch:
                break
            for image in batch:
                after_id = int(image.image_id)
                stats.processed += 1
                try:
                    data = await asyncio.to_thread(self.blobs.get, image.storage_path)
                    result = await self._embed_with_cooldown(data)
                except (OSError, EmbeddingFailed) as e:
                    stats.failed += 1
                    LOG.warning(f"Image {image.image_id} ({image.storage_path}): {e}")
                    continue
                await asyncio.to_thread(self.catalog.set_embedding, int(image.image_id), result.embedding)
                stats.embedded += 1
                await self.sleep(self.delay)
            LOG.info(f"Progress: {stats.embedded} embedded, {stats.failed} failed")
        LOG.info(f"Backfill complete for {scope}: {stats.to_dict()}")
        return stats

"""Queue-draining seeder worker."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from ..config import SeederSettings
from ..domain.constants import QUEUE_COMPLETED, QUEUE_FAILED, QUEUE_SKIPPED, SOURCE_SEED
from ..domain.models import QueueItem
from ..embedding.client import RateLimited
from ..imaging.download import DownloadError
from ..library.queue import IngestQueue
from ..library.registry import FamilyRegistry
from ..logging import get_logger
from .pipeline import OUTCOME_DUPLICATE, OUTCOME_INVALID, ImageIngestor, Sleep

LOG = get_logger("seeder-worker")

RESULT_COMPLETED = "completed"
RESULT_FAILED = "failed"
RESULT_DUPLICATE = "duplicate"
RESULT_REQUEUED = "requeued"


@dataclass
class WorkerStats:
    processed: int = 0
    completed: int = 0
    failed: int = 0
    duplicates: int = 0
    requeued: int = 0

    def record(self, result: str) -> None:
        self.processed += 1
        if result == RESULT_COMPLETED:
            self.completed += 1
        elif result == RESULT_FAILED:
            self.failed += 1
        elif result == RESULT_DUPLICATE:
            self.duplicates += 1
        else:
            self.requeued += 1

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, DownloadError):
        return exc.retryable
    return isinstance(exc, RateLimited)


class SeederWorker:
    """Drains the ingest queue in bounded parallel batches.

    Per item: pending -> processing -> completed | failed | skipped, with a
    processing -> pending edge for rate-limited items bounded by
    settings.max_retries. Family readiness is reconciled once the queue has
    no claimable work left.
    """

    def __init__(
        self,
        queue: IngestQueue,
        registry: FamilyRegistry,
        ingestor: ImageIngestor,
        settings: Optional[SeederSettings] = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.queue = queue
        self.registry = registry
        self.ingestor = ingestor
        self.settings = settings or SeederSettings()
        self.sleep = sleep

    async def run(self, max_items: Optional[int] = None) -> WorkerStats:
        stats = WorkerStats()
        s = self.settings
        LOG.info("=" * 60)
        LOG.info("REFERENCE IMAGE SEEDER WORKER")
        LOG.info(f"Concurrency: {s.concurrency} | max retries: {s.max_retries} | stale after: {s.stale_after:.0f}s")

        while True:
            limit = s.concurrency
            if max_items is not None:
                remaining = max_items - stats.processed
                if remaining <= 0:
                    LOG.info(f"Reached max items limit: {max_items}")
                    break
                limit = min(limit, remaining)

            batch = await asyncio.to_thread(self.queue.claim_batch, limit)
            if not batch:
                LOG.info("No more claimable items in queue.")
                break

            results = await asyncio.gather(*(self._process(item) for item in batch))
            for result in results:
                stats.record(result)
            LOG.info(
                f"Processed batch: {', '.join(results)} | Total: {stats.processed} "
                f"({stats.completed} OK, {stats.failed} failed, {stats.duplicates} dupe, {stats.requeued} requeued)"
            )
            await self.sleep(s.batch_delay)

        await asyncio.to_thread(self.registry.reconcile_statuses)

        LOG.info("=" * 60)
        LOG.info(
            f"SEEDER COMPLETE: processed={stats.processed} completed={stats.completed} "
            f"failed={stats.failed} duplicates={stats.duplicates} requeued={stats.requeued}"
        )
        return stats

    async def _process(self, item: QueueItem) -> str:
        try:
            return await self._process_item(item)
        except Exception as e:  # any per-item error stays on the queue row
            try:
                return await self._handle_error(item, e)
            except Exception as e2:
                # The row stays in processing and is reclaimed once stale.
                LOG.error(f"Item {item.item_id}: could not record failure ({e2}); left for stale reclaim")
                return RESULT_FAILED

    async def _process_item(self, item: QueueItem) -> str:
        family = await asyncio.to_thread(self.registry.get, item.family_id)
        if family is None:
            await asyncio.to_thread(self.queue.resolve, item.item_id, QUEUE_FAILED, "Family not found")
            return RESULT_FAILED

        outcome = await self.ingestor.ingest(family, item.source_url, source=SOURCE_SEED)

        if outcome.status == OUTCOME_INVALID:
            await asyncio.to_thread(self.queue.resolve, item.item_id, QUEUE_FAILED, outcome.reason)
            return RESULT_FAILED
        if outcome.status == OUTCOME_DUPLICATE:
            await asyncio.to_thread(self.queue.resolve, item.item_id, QUEUE_SKIPPED, outcome.reason)
            return RESULT_DUPLICATE
        await asyncio.to_thread(self.queue.resolve, item.item_id, QUEUE_COMPLETED)
        return RESULT_COMPLETED

    async def _handle_error(self, item: QueueItem, exc: Exception) -> str:
        message = str(exc) or exc.__class__.__name__
        if _is_retryable(exc) and item.retry_count < self.settings.max_retries:
            attempt = item.retry_count + 1
            requeued = await asyncio.to_thread(
                self.queue.requeue,
                item.item_id,
                f"Rate limited, retry {attempt}: {message}",
                self.settings.max_retries,
            )
            if requeued:
                LOG.warning(f"Item {item.item_id} rate limited (attempt {attempt}); requeued after cooldown")
                await self.sleep(self.settings.rate_limit_cooldown)
                return RESULT_REQUEUED
            return RESULT_FAILED

        LOG.error(f"Item {item.item_id} failed: {message[:200]}")
        await asyncio.to_thread(self.queue.resolve, item.item_id, QUEUE_FAILED, message)
        return RESULT_FAILED

"""Ingestion drivers: queue worker, search seeder, seed-file loader, reports."""

from .pipeline import ImageIngestor, IngestOutcome
from .worker import SeederWorker, WorkerStats
from .search import CategorySeedResult, SearchError, SearchSeeder, SearchSeedSummary, SerpApiClient
from .loader import LoadResult, SeedFileError, SeedFileLoader, default_seed_path
from .report import ReportGenerator, format_report
from .backfill import BackfillStats, EmbeddingBackfill

__all__ = [
    "ImageIngestor",
    "IngestOutcome",
    "SeederWorker",
    "WorkerStats",
    "CategorySeedResult",
    "SearchError",
    "SearchSeeder",
    "SearchSeedSummary",
    "SerpApiClient",
    "LoadResult",
    "SeedFileError",
    "SeedFileLoader",
    "default_seed_path",
    "ReportGenerator",
    "format_report",
    "BackfillStats",
    "EmbeddingBackfill",
]

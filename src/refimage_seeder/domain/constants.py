from __future__ import annotations

from typing import Tuple

# Family readiness
FAMILY_BUILDING = "building"
FAMILY_READY = "ready"
FAMILY_LOCKED = "locked"

FAMILY_STATUS_CHOICES: Tuple[str, ...] = (FAMILY_BUILDING, FAMILY_READY, FAMILY_LOCKED)

# Ingest queue
QUEUE_PENDING = "pending"
QUEUE_PROCESSING = "processing"
QUEUE_COMPLETED = "completed"
QUEUE_FAILED = "failed"
QUEUE_SKIPPED = "skipped"

QUEUE_STATUS_CHOICES: Tuple[str, ...] = (
    QUEUE_PENDING,
    QUEUE_PROCESSING,
    QUEUE_COMPLETED,
    QUEUE_FAILED,
    QUEUE_SKIPPED,
)

# Where a stored image came from
SOURCE_SEED = "seed"
SOURCE_SERPAPI = "serpapi"

SOURCE_CHOICES: Tuple[str, ...] = (SOURCE_SEED, SOURCE_SERPAPI)

# Category completion
CATEGORY_BUILDING = "building"
CATEGORY_COMPLETE = "category_complete"

ERROR_MESSAGE_LIMIT = 500

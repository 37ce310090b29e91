"""Durable ingest queue: one row per (family, candidate URL)."""

from __future__ import annotations

import sqlite3
from typing import Dict, List, Optional

from ..domain.constants import (
    ERROR_MESSAGE_LIMIT,
    QUEUE_COMPLETED,
    QUEUE_FAILED,
    QUEUE_PENDING,
    QUEUE_PROCESSING,
    QUEUE_SKIPPED,
    QUEUE_STATUS_CHOICES,
)
from ..domain.models import QueueItem
from ..logging import get_logger
from .db import NOW_SQL, LibraryDatabase

LOG = get_logger("ingest-queue")

DEFAULT_STALE_AFTER = 600.0

_RESOLVABLE = {QUEUE_COMPLETED, QUEUE_FAILED, QUEUE_SKIPPED}


def _row_to_item(row: sqlite3.Row) -> QueueItem:
    return QueueItem(
        item_id=int(row["item_id"]),
        family_id=int(row["family_id"]),
        source_url=row["source_url"],
        status=row["status"],
        retry_count=int(row["retry_count"]),
        error_message=row["error_message"],
        created_at=row["created_at"],
        claimed_at=row["claimed_at"],
        processed_at=row["processed_at"],
    )


def _truncate(message: Optional[str]) -> Optional[str]:
    if message is None:
        return None
    return str(message)[:ERROR_MESSAGE_LIMIT]


class IngestQueue:
    """Work items for the seeder worker.

    Status flow: pending -> processing -> completed | failed | skipped, plus a
    bounded processing -> pending edge for rate-limited retries. A
    `processing` row whose claim is older than `stale_after` seconds counts as
    abandoned and can be claimed again.
    """

    def __init__(self, db: LibraryDatabase, *, stale_after: float = DEFAULT_STALE_AFTER) -> None:
        self.db = db
        self.stale_after = float(stale_after)

    def enqueue(self, family_id: int, source_url: str) -> bool:
        """Insert (family_id, source_url) unless that pair exists in any status."""
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO image_ingest_queue (family_id, source_url, status)
                VALUES (?, ?, ?)
                ON CONFLICT(family_id, source_url) DO NOTHING
                RETURNING item_id;
                """,
                (int(family_id), source_url, QUEUE_PENDING),
            )
            row = cur.fetchone()
            conn.commit()
            return row is not None

    def claim_batch(self, n: int) -> List[QueueItem]:
        """Atomically move up to n actionable items to `processing`, oldest first.

        The select and the status flip happen in one UPDATE under an immediate
        write lock, so concurrent callers never receive the same row.
        """
        if n <= 0:
            return []
        modifier = f"-{self.stale_after} seconds"
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE;")
            try:
                cur.execute(
                    f"""
                    UPDATE image_ingest_queue
                    SET status = ?, claimed_at = {NOW_SQL}
                    WHERE item_id IN (
                        SELECT item_id FROM image_ingest_queue
                        WHERE status = ?
                           OR (status = ? AND COALESCE(claimed_at, created_at)
                                < strftime('%Y-%m-%d %H:%M:%f', 'now', ?))
                        ORDER BY created_at, item_id
                        LIMIT ?
                    )
                    RETURNING *;
                    """,
                    (QUEUE_PROCESSING, QUEUE_PENDING, QUEUE_PROCESSING, modifier, int(n)),
                )
                rows = cur.fetchall()
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
        items = sorted((_row_to_item(r) for r in rows), key=lambda i: (i.created_at or "", i.item_id))
        if items:
            LOG.debug(f"Claimed {len(items)} queue item(s): {[i.item_id for i in items]}")
        return items

    def resolve(self, item_id: int, status: str, error_message: Optional[str] = None) -> bool:
        """Move a processing item to a terminal status. Returns False if it was not processing."""
        if status not in _RESOLVABLE:
            raise ValueError(f"Cannot resolve queue item to {status!r}")
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                UPDATE image_ingest_queue
                SET status = ?, error_message = ?, processed_at = {NOW_SQL}
                WHERE item_id = ? AND status = ?;
                """,
                (status, _truncate(error_message), int(item_id), QUEUE_PROCESSING),
            )
            conn.commit()
            changed = cur.rowcount == 1
        if not changed:
            LOG.warning(f"Queue item {item_id} was not processing; resolve to {status} ignored")
        return changed

    def requeue(self, item_id: int, error_message: str, max_retries: int) -> bool:
        """Send a processing item back to pending after a retryable failure.

        The retry counter is incremented either way; once it reaches
        max_retries the item is resolved `failed` instead and False is returned.
        """
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                UPDATE image_ingest_queue
                SET retry_count = retry_count + 1,
                    error_message = ?,
                    status = CASE WHEN retry_count + 1 >= ? THEN ? ELSE ? END,
                    claimed_at = NULL,
                    processed_at = CASE WHEN retry_count + 1 >= ? THEN {NOW_SQL} ELSE NULL END
                WHERE item_id = ? AND status = ?
                RETURNING status, retry_count;
                """,
                (
                    _truncate(error_message),
                    int(max_retries),
                    QUEUE_FAILED,
                    QUEUE_PENDING,
                    int(max_retries),
                    int(item_id),
                    QUEUE_PROCESSING,
                ),
            )
            row = cur.fetchone()
            conn.commit()
        if row is None:
            LOG.warning(f"Queue item {item_id} was not processing; requeue ignored")
            return False
        if row["status"] == QUEUE_FAILED:
            LOG.info(f"Queue item {item_id} exhausted {row['retry_count']} retries; marked failed")
            return False
        return True

    def get(self, item_id: int) -> Optional[QueueItem]:
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM image_ingest_queue WHERE item_id = ?;", (int(item_id),))
            row = cur.fetchone()
            return _row_to_item(row) if row else None

    def list_for_family(self, family_id: int) -> List[QueueItem]:
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM image_ingest_queue WHERE family_id = ? ORDER BY created_at, item_id;",
                (int(family_id),),
            )
            return [_row_to_item(r) for r in cur.fetchall()]

    def status_counts(self, category: Optional[str] = None) -> Dict[str, int]:
        counts = {status: 0 for status in QUEUE_STATUS_CHOICES}
        with self.db.connect() as conn:
            cur = conn.cursor()
            if category:
                cur.execute(
                    """
                    SELECT q.status, COUNT(*) AS n
                    FROM image_ingest_queue q JOIN families f ON f.family_id = q.family_id
                    WHERE f.category = ?
                    GROUP BY q.status;
                    """,
                    (category,),
                )
            else:
                cur.execute("SELECT status, COUNT(*) AS n FROM image_ingest_queue GROUP BY status;")
            for row in cur.fetchall():
                counts[row["status"]] = int(row["n"])
        return counts

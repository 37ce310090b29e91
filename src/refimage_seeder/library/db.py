from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from ..domain.constants import (
    FAMILY_BUILDING,
    FAMILY_STATUS_CHOICES,
    QUEUE_PENDING,
    QUEUE_STATUS_CHOICES,
    SOURCE_CHOICES,
    SOURCE_SEED,
)
from ..logging import get_logger
from ..paths import find_project_root, library_dir


LOG = get_logger("library-db")

DEFAULT_DB_FILENAME = "library.sqlite3"

# Millisecond timestamps keep FIFO ordering stable inside one second.
NOW_SQL = "strftime('%Y-%m-%d %H:%M:%f', 'now')"


def _enum(values) -> str:
    return ", ".join(f"'{v}'" for v in values)


SCHEMA_SQL = f"""
PRAGMA foreign_keys = ON;

-- 1) Product families (brand + model grouping inside a category)
CREATE TABLE IF NOT EXISTS families (
  family_id            INTEGER PRIMARY KEY,
  category             TEXT NOT NULL,
  brand                TEXT NOT NULL,
  family               TEXT NOT NULL,
  display_name         TEXT NOT NULL,
  attributes           TEXT NOT NULL DEFAULT '{{}}',   -- JSON object
  min_images_required  INTEGER NOT NULL DEFAULT 15 CHECK(min_images_required >= 0),
  status               TEXT NOT NULL DEFAULT '{FAMILY_BUILDING}'
                       CHECK(status IN ({_enum(FAMILY_STATUS_CHOICES)})),
  created_at           TEXT DEFAULT ({NOW_SQL}),
  updated_at           TEXT DEFAULT ({NOW_SQL}),
  UNIQUE(category, brand, family)
);

-- 2) Candidate URLs waiting to be ingested
CREATE TABLE IF NOT EXISTS image_ingest_queue (
  item_id        INTEGER PRIMARY KEY,
  family_id      INTEGER NOT NULL REFERENCES families(family_id) ON DELETE CASCADE,
  source_url     TEXT NOT NULL,
  status         TEXT NOT NULL DEFAULT '{QUEUE_PENDING}'
                 CHECK(status IN ({_enum(QUEUE_STATUS_CHOICES)})),
  error_message  TEXT,
  retry_count    INTEGER NOT NULL DEFAULT 0,
  created_at     TEXT DEFAULT ({NOW_SQL}),
  claimed_at     TEXT,
  processed_at   TEXT,
  UNIQUE(family_id, source_url)
);

-- 3) Accepted, deduplicated reference images
CREATE TABLE IF NOT EXISTS images (
  image_id       INTEGER PRIMARY KEY,
  family_id      INTEGER NOT NULL REFERENCES families(family_id) ON DELETE CASCADE,
  category       TEXT NOT NULL,
  sha256         TEXT NOT NULL,
  storage_path   TEXT NOT NULL,
  original_url   TEXT,
  file_size      INTEGER NOT NULL,
  width          INTEGER NOT NULL,
  height         INTEGER NOT NULL,
  content_type   TEXT NOT NULL,
  quality_score  REAL,
  embedding      TEXT,                -- JSON array of floats, NULL until embedded
  source         TEXT NOT NULL DEFAULT '{SOURCE_SEED}'
                 CHECK(source IN ({_enum(SOURCE_CHOICES)})),
  created_at     TEXT DEFAULT ({NOW_SQL}),
  UNIQUE(category, sha256)
);

CREATE INDEX IF NOT EXISTS idx_families_category_status ON families(category, status);
CREATE INDEX IF NOT EXISTS idx_queue_status_created     ON image_ingest_queue(status, created_at);
CREATE INDEX IF NOT EXISTS idx_queue_family             ON image_ingest_queue(family_id);
CREATE INDEX IF NOT EXISTS idx_images_family            ON images(family_id);
"""


class LibraryDatabase:
    """SQLite-backed reference-image library.

    - Places the DB under `<repo-root>/var/library/library.sqlite3` unless an
      explicit `db_path` is given.
    - Ensures schema on first use.
    - Hands out one short-lived connection per operation, so worker coroutines
      can run queries on threads without sharing a connection.
    """

    def __init__(self, root_dir: Optional[str] = None, *, db_path: Optional[str] = None) -> None:
        if db_path:
            self.db_path = os.path.abspath(db_path)
            os.makedirs(os.path.dirname(self.db_path), exist_ok=True)
        else:
            folder = library_dir(find_project_root(root_dir))
            os.makedirs(folder, exist_ok=True)
            self.db_path = os.path.join(folder, DEFAULT_DB_FILENAME)
        LOG.info(f"Library DB path: {self.db_path}")
        self._ensure_schema()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self.connect() as conn:
            cur = conn.cursor()
            try:
                cur.execute("PRAGMA journal_mode=WAL;")
                cur.execute("PRAGMA synchronous=NORMAL;")
            except sqlite3.OperationalError:
                LOG.debug("WAL journal mode unavailable; continuing with default journal")
            cur.executescript(SCHEMA_SQL)
            conn.commit()
            LOG.debug("Library DB schema ensured.")

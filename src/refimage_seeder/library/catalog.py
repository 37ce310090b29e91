from __future__ import annotations

import json
import sqlite3
from typing import Dict, List, Optional, Tuple

from ..domain.models import StoredImage
from ..logging import get_logger
from .db import LibraryDatabase

LOG = get_logger("image-catalog")


def _row_to_image(row: sqlite3.Row) -> StoredImage:
    raw = row["embedding"]
    return StoredImage(
        image_id=int(row["image_id"]),
        family_id=int(row["family_id"]),
        category=row["category"],
        sha256=row["sha256"],
        storage_path=row["storage_path"],
        original_url=row["original_url"],
        file_size=int(row["file_size"]),
        width=int(row["width"]),
        height=int(row["height"]),
        content_type=row["content_type"],
        embedding=json.loads(raw) if raw else None,
        source=row["source"],
        quality_score=row["quality_score"],
        created_at=row["created_at"],
    )


class ImageCatalog:
    """Stored reference images. (category, sha256) is the dedup key."""

    def __init__(self, db: LibraryDatabase) -> None:
        self.db = db

    def exists(self, category: str, sha256: str) -> bool:
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT 1 FROM images WHERE category = ? AND sha256 = ? LIMIT 1;", (category, sha256))
            return cur.fetchone() is not None

    def references_path(self, storage_path: str) -> bool:
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT 1 FROM images WHERE storage_path = ? LIMIT 1;", (storage_path,))
            return cur.fetchone() is not None

    def insert(self, image: StoredImage) -> Optional[int]:
        """Insert a row; returns None when the hash is already catalogued."""
        with self.db.connect() as conn:
            cur = conn.cursor()
            try:
                cur.execute(
                    """
                    INSERT INTO images (
                        family_id, category, sha256, storage_path, original_url, file_size,
                        width, height, content_type, quality_score, embedding, source
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    RETURNING image_id;
                    """,
                    (
                        image.family_id,
                        image.category,
                        image.sha256,
                        image.storage_path,
                        image.original_url,
                        image.file_size,
                        image.width,
                        image.height,
                        image.content_type,
                        image.quality_score,
                        json.dumps(image.embedding) if image.embedding is not None else None,
                        image.source,
                    ),
                )
                row = cur.fetchone()
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                if "sha256" not in str(e):
                    raise
                LOG.info(f"Hash {image.sha256[:12]} already catalogued for {image.category}; insert skipped")
                return None
        return int(row[0])

    def get(self, image_id: int) -> Optional[StoredImage]:
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM images WHERE image_id = ?;", (int(image_id),))
            row = cur.fetchone()
            return _row_to_image(row) if row else None

    def list_for_family(self, family_id: int) -> List[StoredImage]:
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM images WHERE family_id = ? ORDER BY image_id;", (int(family_id),))
            return [_row_to_image(r) for r in cur.fetchall()]

    def count_for_family(self, family_id: int) -> int:
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM images WHERE family_id = ?;", (int(family_id),))
            return int(cur.fetchone()[0])

    def counts_by_family(self, category: Optional[str] = None) -> Dict[int, int]:
        with self.db.connect() as conn:
            cur = conn.cursor()
            if category:
                cur.execute(
                    "SELECT family_id, COUNT(*) AS n FROM images WHERE category = ? GROUP BY family_id;",
                    (category,),
                )
            else:
                cur.execute("SELECT family_id, COUNT(*) AS n FROM images GROUP BY family_id;")
            return {int(r["family_id"]): int(r["n"]) for r in cur.fetchall()}

    def count_for_category(self, category: str, *, embedded_only: bool = False) -> int:
        sql = "SELECT COUNT(*) FROM images WHERE category = ?"
        if embedded_only:
            sql += " AND embedding IS NOT NULL"
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute(sql + ";", (category,))
            return int(cur.fetchone()[0])

    def missing_embeddings(self, category: Optional[str] = None, *, limit: int = 50, after_id: int = 0) -> List[StoredImage]:
        with self.db.connect() as conn:
            cur = conn.cursor()
            if category:
                cur.execute(
                    """
                    SELECT * FROM images
                    WHERE embedding IS NULL AND category = ? AND image_id > ?
                    ORDER BY image_id LIMIT ?;
                    """,
                    (category, int(after_id), int(limit)),
                )
            else:
                cur.execute(
                    "SELECT * FROM images WHERE embedding IS NULL AND image_id > ? ORDER BY image_id LIMIT ?;",
                    (int(after_id), int(limit)),
                )
            return [_row_to_image(r) for r in cur.fetchall()]

    def set_embedding(self, image_id: int, embedding: List[float]) -> None:
        with self.db.connect() as conn:
            conn.execute("UPDATE images SET embedding = ? WHERE image_id = ?;", (json.dumps(embedding), int(image_id)))
            conn.commit()

    def embeddings_for_category(self, category: str) -> List[Tuple[StoredImage, List[float]]]:
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM images WHERE category = ? AND embedding IS NOT NULL ORDER BY image_id;",
                (category,),
            )
            out = []
            for row in cur.fetchall():
                image = _row_to_image(row)
                out.append((image, image.embedding or []))
            return out

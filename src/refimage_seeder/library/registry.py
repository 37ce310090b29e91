from __future__ import annotations

import json
import sqlite3
from typing import Any, Dict, List, Optional

from ..domain.constants import FAMILY_BUILDING, FAMILY_LOCKED, FAMILY_READY, FAMILY_STATUS_CHOICES
from ..domain.models import Family
from ..logging import get_logger
from .db import NOW_SQL, LibraryDatabase

LOG = get_logger("family-registry")

DEFAULT_MIN_IMAGES = 15


def row_to_family(row: sqlite3.Row) -> Family:
    try:
        attributes = json.loads(row["attributes"] or "{}")
    except ValueError:
        attributes = {}
    return Family(
        family_id=int(row["family_id"]),
        category=row["category"],
        brand=row["brand"],
        family=row["family"],
        display_name=row["display_name"],
        min_images_required=int(row["min_images_required"]),
        status=row["status"],
        attributes=attributes if isinstance(attributes, dict) else {},
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class FamilyRegistry:
    """Catalog of product families and their readiness status."""

    def __init__(self, db: LibraryDatabase) -> None:
        self.db = db

    def find(self, category: str, brand: str, family: str) -> Optional[Family]:
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM families WHERE category = ? AND brand = ? AND family = ? LIMIT 1;",
                (category, brand, family),
            )
            row = cur.fetchone()
            return row_to_family(row) if row else None

    def find_or_create(
        self,
        category: str,
        brand: str,
        family: str,
        *,
        attributes: Optional[Dict[str, Any]] = None,
        min_images_required: int = DEFAULT_MIN_IMAGES,
        display_name: Optional[str] = None,
    ) -> tuple[Family, bool]:
        """Return (family, created). Matches on category + brand + family name."""
        existing = self.find(category, brand, family)
        if existing:
            return existing, False
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO families (category, brand, family, display_name, attributes, min_images_required, status)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(category, brand, family) DO NOTHING
                RETURNING family_id;
                """,
                (
                    category,
                    brand,
                    family,
                    display_name or f"{brand} {family}",
                    json.dumps(attributes or {}, ensure_ascii=False),
                    int(min_images_required),
                    FAMILY_BUILDING,
                ),
            )
            row = cur.fetchone()
            conn.commit()
        created = row is not None
        found = self.find(category, brand, family)
        if found is None:
            raise RuntimeError(f"Family {brand} {family} vanished right after insert")
        if created:
            LOG.info(f"Registered family [{category}] {found.display_name} (id={found.family_id})")
        return found, created

    def get(self, family_id: int) -> Optional[Family]:
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM families WHERE family_id = ?;", (int(family_id),))
            row = cur.fetchone()
            return row_to_family(row) if row else None

    def list(self, category: Optional[str] = None, status: Optional[str] = None) -> List[Family]:
        clauses: List[str] = []
        params: List[Any] = []
        if category:
            clauses.append("category = ?")
            params.append(category)
        if status:
            clauses.append("status = ?")
            params.append(status)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute(f"SELECT * FROM families {where} ORDER BY family_id;", params)
            return [row_to_family(r) for r in cur.fetchall()]

    def set_status(self, family_id: int, status: str) -> bool:
        """Manual override (e.g. pin a family as `locked`, or release it)."""
        if status not in FAMILY_STATUS_CHOICES:
            raise ValueError(f"Unknown family status {status!r}")
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"UPDATE families SET status = ?, updated_at = {NOW_SQL} WHERE family_id = ?;",
                (status, int(family_id)),
            )
            conn.commit()
            return cur.rowcount == 1

    def reconcile_statuses(self, category: Optional[str] = None) -> Dict[str, int]:
        """Recompute ready/building from stored image counts; locked rows are left alone."""
        params: List[Any] = [FAMILY_READY, FAMILY_BUILDING, FAMILY_LOCKED]
        scope = ""
        if category:
            scope = "AND f.category = ?"
            params.append(category)
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                SELECT f.family_id, f.status,
                       CASE WHEN (SELECT COUNT(*) FROM images i WHERE i.family_id = f.family_id)
                                 >= f.min_images_required
                            THEN ? ELSE ? END AS wanted
                FROM families f
                WHERE f.status != ? {scope};
                """,
                params,
            )
            changes = [(r["wanted"], r["family_id"]) for r in cur.fetchall() if r["wanted"] != r["status"]]
            for wanted, family_id in changes:
                cur.execute(
                    f"UPDATE families SET status = ?, updated_at = {NOW_SQL} WHERE family_id = ? AND status != ?;",
                    (wanted, family_id, FAMILY_LOCKED),
                )
            conn.commit()
        summary = {
            "promoted": sum(1 for wanted, _ in changes if wanted == FAMILY_READY),
            "demoted": sum(1 for wanted, _ in changes if wanted == FAMILY_BUILDING),
        }
        LOG.info(f"Family status reconciliation: {summary['promoted']} ready, {summary['demoted']} back to building")
        return summary

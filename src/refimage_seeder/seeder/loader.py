"""Populate the ingest queue from a static JSON seed manifest.

Manifest shape::

    {"families": [{"brand": "Seiko", "modelFamily": "5 Sports",
                   "attributes": {...}, "images": ["https://...", ...]}]}
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, List

from ..library.queue import IngestQueue
from ..library.registry import DEFAULT_MIN_IMAGES, FamilyRegistry
from ..logging import get_logger
from ..paths import find_project_root

LOG = get_logger("seed-loader")

DEFAULT_MIN_CANDIDATES = 6


class SeedFileError(RuntimeError):
    """Seed manifest missing or malformed."""


@dataclass
class LoadResult:
    queued: int = 0
    families_created: int = 0
    families_skipped: int = 0


def default_seed_path(root_dir: str | None = None, category: str = "watches") -> str:
    return os.path.join(find_project_root(root_dir), "seed", f"{category}.seed.json")


def _read_manifest(path: str) -> List[Dict[str, Any]]:
    if not os.path.isfile(path):
        raise SeedFileError(f"Seed file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise SeedFileError(f"Could not read seed file {path}: {e}") from e
    families = data.get("families") if isinstance(data, dict) else None
    if not isinstance(families, list):
        raise SeedFileError(f"Seed file {path} has no 'families' list")
    return families


class SeedFileLoader:
    def __init__(
        self,
        registry: FamilyRegistry,
        queue: IngestQueue,
        *,
        min_candidates: int = DEFAULT_MIN_CANDIDATES,
        min_images_required: int = DEFAULT_MIN_IMAGES,
    ) -> None:
        self.registry = registry
        self.queue = queue
        self.min_candidates = int(min_candidates)
        self.min_images_required = int(min_images_required)

    def load(self, path: str, category: str = "watches") -> LoadResult:
        """Find-or-create each family and enqueue its URLs; safe to re-run."""
        result = LoadResult()
        for entry in _read_manifest(path):
            if not isinstance(entry, dict):
                result.families_skipped += 1
                continue
            brand = str(entry.get("brand") or "").strip()
            family_name = str(entry.get("modelFamily") or "").strip()
            images = [u for u in (entry.get("images") or []) if isinstance(u, str) and u.strip()]
            if not brand or not family_name:
                LOG.warning(f"Skipping seed entry without brand/modelFamily: {entry!r:.120}")
                result.families_skipped += 1
                continue
            if len(images) < self.min_candidates:
                LOG.info(f"Skipping {brand} {family_name}: only {len(images)} candidate image(s)")
                result.families_skipped += 1
                continue

            attributes = entry.get("attributes")
            family, created = self.registry.find_or_create(
                category,
                brand,
                family_name,
                attributes=attributes if isinstance(attributes, dict) else None,
                min_images_required=self.min_images_required,
            )
            if created:
                result.families_created += 1
            for url in images:
                if self.queue.enqueue(int(family.family_id), url.strip()):
                    result.queued += 1

        LOG.info(
            f"Populated queue with {result.queued} new URLs "
            f"({result.families_created} new families, {result.families_skipped} skipped)"
        )
        return result

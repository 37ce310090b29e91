from __future__ import annotations

from typing import List, Optional

from ..domain.constants import FAMILY_LOCKED, FAMILY_READY
from ..domain.models import SeedReport, UnderfilledFamily
from ..library.catalog import ImageCatalog
from ..library.queue import IngestQueue
from ..library.registry import FamilyRegistry


class ReportGenerator:
    """Library-wide (or per-category) fill statistics."""

    def __init__(self, registry: FamilyRegistry, catalog: ImageCatalog, queue: IngestQueue) -> None:
        self.registry = registry
        self.catalog = catalog
        self.queue = queue

    def generate(self, category: Optional[str] = None) -> SeedReport:
        families = self.registry.list(category=category)
        counts = self.catalog.counts_by_family(category)
        per_family = [counts.get(int(f.family_id), 0) for f in families]

        underfilled: List[UnderfilledFamily] = [
            UnderfilledFamily(
                family_id=int(f.family_id),
                brand=f.brand,
                family=f.family,
                image_count=n,
                required=f.min_images_required,
            )
            for f, n in zip(families, per_family)
            if n < f.min_images_required
        ]
        avg = sum(per_family) / len(per_family) if per_family else 0.0

        return SeedReport(
            category=category,
            total_families=len(families),
            total_stored_images=sum(counts.values()),
            min_images_per_family=min(per_family) if per_family else 0,
            max_images_per_family=max(per_family) if per_family else 0,
            avg_images_per_family=round(avg, 1),
            underfilled_families=underfilled,
            ready_families=sum(1 for f in families if f.status in (FAMILY_READY, FAMILY_LOCKED)),
            queue_health=self.queue.status_counts(category),
            library_ready=not underfilled and len(families) > 0,
        )


def format_report(report: SeedReport) -> str:
    scope = report.category or "all categories"
    lines = [
        "=" * 60,
        f"REFERENCE LIBRARY REPORT ({scope})",
        "=" * 60,
        f"Total families      : {report.total_families}",
        f"Total stored images : {report.total_stored_images}",
        f"Images per family   : min {report.min_images_per_family}, "
        f"max {report.max_images_per_family}, avg {report.avg_images_per_family}",
        f"Ready families      : {report.ready_families}",
        "Queue health        : "
        + ", ".join(f"{status}={n}" for status, n in report.queue_health.items()),
        f"Library ready       : {'YES' if report.library_ready else 'NO'}",
    ]
    if report.underfilled_families:
        lines.append(f"Underfilled families ({len(report.underfilled_families)}):")
        for u in report.underfilled_families:
            lines.append(f"  - {u.brand} {u.family}: {u.image_count}/{u.required}")
    return "\n".join(lines)

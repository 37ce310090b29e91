from __future__ import annotations

from dataclasses import asdict
from typing import List, Optional

from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..domain.constants import FAMILY_STATUS_CHOICES
from ..library.catalog import ImageCatalog
from ..library.categories import build_categories
from ..library.db import LibraryDatabase
from ..library.queue import IngestQueue
from ..library.registry import FamilyRegistry
from ..logging import get_logger
from ..paths import find_project_root
from ..seeder.report import ReportGenerator


LOG = get_logger("library-api")


def create_app(
    root_dir: Optional[str] = None,
    *,
    db: Optional[LibraryDatabase] = None,
    allow_origins: Optional[List[str]] = None,
) -> Starlette:
    """Create a read-only Starlette app over the reference-image library."""

    if db is None:
        db = LibraryDatabase(root_dir=find_project_root(root_dir))
    registry = FamilyRegistry(db)
    catalog = ImageCatalog(db)
    queue = IngestQueue(db)
    categories = build_categories(db)
    reports = ReportGenerator(registry, catalog, queue)

    def _category_param(request: Request) -> Optional[str]:
        category = request.query_params.get("category") or None
        if category and category not in categories:
            raise HTTPException(status_code=400, detail=f"Unknown category: {category}")
        return category

    async def health(_: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "db_path": db.db_path})

    async def report(request: Request) -> JSONResponse:
        return JSONResponse(reports.generate(_category_param(request)).to_dict())

    async def category_list(_: Request) -> JSONResponse:
        return JSONResponse({"categories": [asdict(c.status()) for c in categories.values()]})

    async def queue_health(request: Request) -> JSONResponse:
        return JSONResponse({"queue": queue.status_counts(_category_param(request))})

    async def families(request: Request) -> JSONResponse:
        category = _category_param(request)
        status = request.query_params.get("status") or None
        if status and status not in FAMILY_STATUS_CHOICES:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
        counts = catalog.counts_by_family(category)
        rows = []
        for f in registry.list(category=category, status=status):
            row = asdict(f)
            row["image_count"] = counts.get(int(f.family_id), 0)
            rows.append(row)
        return JSONResponse({"families": rows, "count": len(rows)})

    routes = [
        Route("/api/health", health, methods=["GET"]),
        Route("/api/report", report, methods=["GET"]),
        Route("/api/categories", category_list, methods=["GET"]),
        Route("/api/queue", queue_health, methods=["GET"]),
        Route("/api/families", families, methods=["GET"]),
    ]

    app = Starlette(debug=False, routes=routes)
    if allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_methods=["GET"],
            allow_headers=["*"],
        )
    LOG.info(f"Library API ready (db={db.db_path})")
    return app

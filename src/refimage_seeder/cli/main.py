from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from dataclasses import asdict
from typing import Sequence

from ..config import SeederSettings, load_settings
from ..domain.constants import FAMILY_BUILDING, FAMILY_LOCKED
from ..library.catalog import ImageCatalog
from ..library.categories import CATEGORY_CLASSES
from ..library.db import LibraryDatabase
from ..library.queue import IngestQueue
from ..library.registry import FamilyRegistry
from ..logging import get_logger
from ..paths import expand_abs
from ..seeder.loader import SeedFileError
from ..seeder.report import ReportGenerator, format_report
from ..service import LibrarySeedingService

LOG = get_logger("cli-main")

CATEGORY_KEYS = [cls.key for cls in CATEGORY_CLASSES]


def _settings(ns: argparse.Namespace) -> SeederSettings:
    settings = load_settings(os.getcwd())
    if getattr(ns, "db", None):
        settings.db_path = expand_abs(ns.db)
    return settings


def _database(ns: argparse.Namespace) -> LibraryDatabase:
    return LibraryDatabase(os.getcwd(), db_path=_settings(ns).db_path)


def _service(ns: argparse.Namespace) -> LibrarySeedingService:
    return LibrarySeedingService(_settings(ns), root_dir=os.getcwd())


def _print_stats(title: str, stats: dict) -> None:
    LOG.info(title)
    for s in stats.values():
        LOG.info(
            f"  {s['name']:<14} {s['current']:>5}/{s['target']:<5} images ({s['needed']} needed) "
            f"| {s['embedded']}/{s['threshold']} embedded [{s['status']}]"
        )


def _seed_file(ns: argparse.Namespace) -> int:
    async def run() -> int:
        async with _service(ns) as svc:
            try:
                result = await svc.run_seed_file(ns.seed, ns.category, max_items=ns.max_items)
            except SeedFileError as e:
                LOG.error(str(e))
                return 1
            print(format_report(result["report"]))
            return 0

    return asyncio.run(run())


def _search(ns: argparse.Namespace) -> int:
    async def run() -> int:
        async with _service(ns) as svc:
            if not svc.settings.serpapi_key:
                LOG.error("SERPAPI_KEY not configured; set it in the environment or .env")
                return 1
            seeder = svc.search_seeder()
            _print_stats("Category image stats (before):", await asyncio.to_thread(seeder.category_image_stats))
            summary = await svc.run_search(
                ns.category, max_families=ns.max_families, skip_complete=ns.skip_complete
            )
            _print_stats("Category image stats (after):", await asyncio.to_thread(seeder.category_image_stats))
            for r in summary.results:
                for err in r.errors[:10]:
                    LOG.warning(f"[{r.category}] {err}")
            print(json.dumps(summary.to_dict(), ensure_ascii=False, indent=2))
            return 0 if all(r.success for r in summary.results) else 1

    return asyncio.run(run())


def _report(ns: argparse.Namespace) -> int:
    db = _database(ns)
    report = ReportGenerator(FamilyRegistry(db), ImageCatalog(db), IngestQueue(db)).generate(ns.category)
    if ns.json:
        print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    else:
        print(format_report(report))
    return 0


def _backfill(ns: argparse.Namespace) -> int:
    async def run() -> int:
        async with _service(ns) as svc:
            if not svc.settings.jina_key:
                LOG.error("JINA_API_KEY not configured; set it in the environment or .env")
                return 1
            stats = await svc.backfill(ns.category, ns.batch_size)
            print(json.dumps(stats.to_dict()))
            return 0

    return asyncio.run(run())


def _set_family_status(status: str):
    def handler(ns: argparse.Namespace) -> int:
        registry = FamilyRegistry(_database(ns))
        if not registry.set_status(ns.family_id, status):
            LOG.error(f"Family {ns.family_id} not found")
            return 1
        if status != FAMILY_LOCKED:
            registry.reconcile_statuses()
        family = registry.get(ns.family_id)
        print(json.dumps(asdict(family), ensure_ascii=False))
        return 0

    return handler


def _match(ns: argparse.Namespace) -> int:
    path = expand_abs(ns.image)
    if not os.path.isfile(path):
        LOG.error(f"Image not found: {path}")
        return 1
    with open(path, "rb") as f:
        data = f.read()

    async def run() -> int:
        async with _service(ns) as svc:
            matches = await svc.match(data, ns.category, top_k=ns.top)
            print(json.dumps(matches, ensure_ascii=False, indent=2))
            return 0

    return asyncio.run(run())


def _serve(ns: argparse.Namespace) -> int:
    from ..api import create_app
    import uvicorn

    app = create_app(os.getcwd(), db=_database(ns), allow_origins=ns.allow_origins)
    uvicorn.run(app, host=ns.host, port=ns.port, log_level=ns.log_level)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="refimage-seeder",
        description="Populate and inspect the per-family reference-image library.",
    )
    parser.add_argument("--db", help="SQLite database path (default: var/library/library.sqlite3)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    seed = subparsers.add_parser("seed-file", help="Queue a seed manifest, drain the queue, print a report.")
    seed.add_argument("--seed", help="Manifest path (default: seed/<category>.seed.json)")
    seed.add_argument("--category", default="watches", choices=CATEGORY_KEYS)
    seed.add_argument("--max-items", type=int, help="Stop the worker after this many items")
    seed.set_defaults(handler=_seed_file)

    search = subparsers.add_parser("search", help="Fill underfilled families from image search.")
    search.add_argument("--category", choices=CATEGORY_KEYS, help="Only seed this category")
    search.add_argument("--max-families", type=int, help="Families per category for this run")
    search.add_argument("--skip-complete", action="store_true", help="Skip categories past their threshold")
    search.set_defaults(handler=_search)

    report = subparsers.add_parser("report", help="Print library fill statistics.")
    report.add_argument("--category", choices=CATEGORY_KEYS)
    report.add_argument("--json", action="store_true", help="Emit JSON instead of text")
    report.set_defaults(handler=_report)

    backfill = subparsers.add_parser("backfill", help="Embed stored images that have no embedding yet.")
    backfill.add_argument("--category", choices=CATEGORY_KEYS)
    backfill.add_argument("--batch-size", type=int, default=50)
    backfill.set_defaults(handler=_backfill)

    lock = subparsers.add_parser("lock", help="Pin a family as locked (never re-evaluated).")
    lock.add_argument("family_id", type=int)
    lock.set_defaults(handler=_set_family_status(FAMILY_LOCKED))

    unlock = subparsers.add_parser("unlock", help="Release a locked family and re-evaluate it.")
    unlock.add_argument("family_id", type=int)
    unlock.set_defaults(handler=_set_family_status(FAMILY_BUILDING))

    match = subparsers.add_parser("match", help="Rank stored images by visual similarity to a local image.")
    match.add_argument("image")
    match.add_argument("--category", required=True, choices=CATEGORY_KEYS)
    match.add_argument("--top", type=int, default=5)
    match.set_defaults(handler=_match)

    serve = subparsers.add_parser("serve", help="Run the read-only library API.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8002)
    serve.add_argument("--log-level", default="info")
    serve.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times).",
    )
    serve.set_defaults(handler=_serve)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.info(f"refimage-seeder invoked with arguments: {provided}")

    args = build_parser().parse_args(provided)
    try:
        code = args.handler(args)
    except Exception:
        LOG.exception(f"Subcommand '{args.command}' failed")
        code = 1
    LOG.info(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())

"""Command-line entry point.

Usage:
    python -m catalog_crawler crawl [--category NAME ...] [--reset] [--max-pages N]
    python -m catalog_crawler status
    python -m catalog_crawler reset
    python -m catalog_crawler skip NAME
    python -m catalog_crawler preview NAME [--page N]
    python -m catalog_crawler init-db
    python -m catalog_crawler migrate [--revision REV]
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from alembic import command as alembic_command
from alembic.config import Config as AlembicConfig
from prometheus_client import start_http_server

from catalog_crawler import __version__, metrics
from catalog_crawler.classify.taxonomy import Taxonomy
from catalog_crawler.config import CategoryTarget, Settings, load_categories
from catalog_crawler.db.session import (
    count_products,
    count_products_by_category,
    create_engine,
    create_session_factory,
    ensure_sqlite_directory,
    init_models,
)
from catalog_crawler.ingest.extractor import ListingExtractor, SiteProfile
from catalog_crawler.ingest.registry import FETCH_MODES, build_fetcher, build_page_url
from catalog_crawler.logging_config import setup_logging
from catalog_crawler.persist.persister import ProductPersister
from catalog_crawler.storage.images import ImageMirror, build_image_storage
from catalog_crawler.worker.checkpoint import CheckpointStore
from catalog_crawler.worker.crawl_loop import CrawlConfig
from catalog_crawler.worker.runner import CrawlRunner

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_CANCELLED = 130


def select_categories(
    categories: list[CategoryTarget], names: Optional[Sequence[str]]
) -> list[CategoryTarget]:
    """
    Filter categories by name (case-insensitive), keeping the given order.

    Raises:
        ValueError: If a name matches no configured category
    """
    if not names:
        return categories
    by_name = {c.name.casefold(): c for c in categories}
    selected = []
    for name in names:
        category = by_name.get(name.casefold())
        if category is None:
            known = ", ".join(c.name for c in categories)
            raise ValueError(f"Unknown category '{name}'. Known categories: {known}")
        selected.append(category)
    return selected


async def run_crawl(settings: Settings, args: argparse.Namespace) -> int:
    categories = select_categories(load_categories(settings), args.category)

    engine = create_engine(settings)
    await init_models(engine)
    session_factory = create_session_factory(engine)

    checkpoint = CheckpointStore(settings.checkpoint_file).load()
    if args.reset:
        checkpoint.reset(backup=True)

    mirror = None
    if settings.mirror_images:
        mirror = ImageMirror(
            build_image_storage(settings),
            session_factory,
            extension=settings.image_extension,
            timeout=settings.image_download_timeout_seconds,
        )
    persister = ProductPersister(
        session_factory,
        base_url=settings.site_base_url,
        skip_existing=settings.skip_existing,
        max_name_length=settings.max_name_length,
        image_mirror=mirror,
    )
    fetcher = build_fetcher(settings)

    runner = CrawlRunner(
        fetcher=fetcher,
        extractor=ListingExtractor(SiteProfile.from_settings(settings)),
        taxonomy=Taxonomy.from_settings(settings),
        persister=persister,
        checkpoint=checkpoint,
        config=CrawlConfig.from_settings(settings),
        max_parallel=settings.max_parallel_categories,
        category_delay=settings.category_delay_seconds,
    )

    try:
        summary = await runner.run(categories, handle_signals=True)
    finally:
        await fetcher.close()
        await persister.close()
        await engine.dispose()

    if summary.cancelled:
        return EXIT_CANCELLED
    if summary.failed_categories:
        logger.error(f"Categories with errors: {', '.join(summary.failed_categories)}")
        return EXIT_FAILURES
    return EXIT_OK


async def show_status(settings: Settings) -> int:
    checkpoint = CheckpointStore(settings.checkpoint_file).load()
    categories = load_categories(settings)

    engine = create_engine(settings)
    try:
        await init_models(engine)
        counts = await count_products_by_category(create_session_factory(engine))
    finally:
        await engine.dispose()

    print(f"Checkpoint: {checkpoint.path}")
    if checkpoint.started_at:
        print(f"  Started:      {checkpoint.started_at}")
        print(f"  Last update:  {checkpoint.last_update}")
    else:
        print("  No checkpoint found")
    print()

    print(f"{'Category':<32}{'Status':<14}{'Page':>6}{'Found':>10}{'Stored':>10}")
    for category in categories:
        progress = checkpoint.get(category.name)
        if progress.completed:
            status = "complete"
        elif progress.last_page:
            status = "in progress"
        else:
            status = "pending"
        print(
            f"{category.name[:31]:<32}{status:<14}{progress.last_page:>6}"
            f"{progress.total_products:>10}{counts.get(category.name, 0):>10}"
        )
    print()
    print(f"Total stored products: {sum(counts.values())}")
    return EXIT_OK


def reset_checkpoint(settings: Settings) -> int:
    backup = CheckpointStore(settings.checkpoint_file).reset(backup=True)
    if backup is None:
        print("No checkpoint to reset")
    else:
        print(f"Checkpoint reset, backup at {backup}")
    return EXIT_OK


async def skip_category(settings: Settings, name: str) -> int:
    category = select_categories(load_categories(settings), [name])[0]

    engine = create_engine(settings)
    try:
        await init_models(engine)
        total = await count_products(create_session_factory(engine), category.name)
    finally:
        await engine.dispose()

    checkpoint = CheckpointStore(settings.checkpoint_file).load()
    await checkpoint.skip(category.name, total)
    print(f"{category.name} marked complete ({total} products)")
    return EXIT_OK


async def preview_page(settings: Settings, name: str, page: int) -> int:
    """Fetch and extract one page without writing anything."""
    category = select_categories(load_categories(settings), [name])[0]
    extractor = ListingExtractor(SiteProfile.from_settings(settings))
    taxonomy = Taxonomy.from_settings(settings)

    url = build_page_url(category.absolute_url(settings.site_base_url), page, settings.page_param)
    async with build_fetcher(settings) as fetcher:
        fetched = await fetcher.fetch(url)

    if not fetched.ok:
        print(f"Fetch failed for {url}: {fetched.error}")
        return EXIT_FAILURES

    records = extractor.extract(fetched.html, category.name)
    print(f"{url}: {len(records)} products")
    for record in records:
        subcategory = taxonomy.classify(record.name, category.name)
        print(f"  [{subcategory}] {record.name}")
        print(f"      link:  {record.link or '-'}")
        print(f"      image: {record.image_url or '-'}")
    return EXIT_OK


async def create_tables(settings: Settings) -> int:
    engine = create_engine(settings)
    try:
        await init_models(engine)
    finally:
        await engine.dispose()
    return EXIT_OK


def run_migrations(settings: Settings, revision: str = "head", config_path: str = "alembic.ini") -> int:
    """Apply Alembic migrations up to `revision`."""
    ensure_sqlite_directory(settings.database_url)
    cfg = AlembicConfig(config_path)
    # ConfigParser interpolation treats % specially
    cfg.set_main_option("sqlalchemy.url", settings.database_url.replace("%", "%%"))
    cfg.attributes["configure_logger"] = False
    alembic_command.upgrade(cfg, revision)
    logger.info(f"Database migrated to {revision}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="catalog-crawler",
        description="Crawl catalog category pages into a products table",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    crawl = sub.add_parser("crawl", help="Crawl categories, resuming from the checkpoint")
    crawl.add_argument(
        "--category",
        action="append",
        metavar="NAME",
        help="Only crawl this category (repeatable)",
    )
    crawl.add_argument("--reset", action="store_true", help="Back up and clear the checkpoint first")
    crawl.add_argument("--max-pages", type=int, help="Page cap per category")
    crawl.add_argument("--fetch-mode", choices=FETCH_MODES, help="Override FETCH_MODE")
    crawl.add_argument("--parallel", type=int, help="Categories crawled in parallel")
    crawl.add_argument("--no-images", action="store_true", help="Do not mirror product images")
    crawl.add_argument("--metrics-port", type=int, help="Expose Prometheus metrics on this port")

    sub.add_parser("status", help="Show checkpoint progress and stored row counts")
    sub.add_parser("reset", help="Back up and delete the checkpoint")

    skip = sub.add_parser("skip", help="Mark a category as complete")
    skip.add_argument("name", help="Category name")

    preview = sub.add_parser("preview", help="Fetch one page and print the extracted products")
    preview.add_argument("name", help="Category name")
    preview.add_argument("--page", type=int, default=1)

    sub.add_parser("init-db", help="Create database tables")

    migrate = sub.add_parser("migrate", help="Apply Alembic migrations")
    migrate.add_argument("--revision", default="head")
    migrate.add_argument("--config", default="alembic.ini", help="Path to alembic.ini")
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Settings from the environment, with command-line overrides applied."""
    overrides = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.command == "crawl":
        if args.max_pages is not None:
            overrides["max_pages_per_category"] = args.max_pages
        if args.fetch_mode:
            overrides["fetch_mode"] = args.fetch_mode
        if args.parallel is not None:
            overrides["max_parallel_categories"] = args.parallel
        if args.no_images:
            overrides["mirror_images"] = False
    return Settings(**overrides)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = settings_from_args(args)

    setup_logging(settings.log_level, settings.log_dir, settings.json_logs)
    metrics.app_info.info({"version": __version__, "fetch_mode": settings.fetch_mode})

    try:
        if args.command == "crawl":
            if args.metrics_port:
                start_http_server(args.metrics_port)
                logger.info(f"Metrics available on :{args.metrics_port}/metrics")
            return asyncio.run(run_crawl(settings, args))
        if args.command == "status":
            return asyncio.run(show_status(settings))
        if args.command == "reset":
            return reset_checkpoint(settings)
        if args.command == "skip":
            return asyncio.run(skip_category(settings, args.name))
        if args.command == "preview":
            return asyncio.run(preview_page(settings, args.name, args.page))
        if args.command == "init-db":
            return asyncio.run(create_tables(settings))
        if args.command == "migrate":
            return run_migrations(settings, args.revision, args.config)
    except (ValueError, FileNotFoundError) as e:
        parser.error(str(e))

    parser.error(f"Unknown command {args.command}")
    return EXIT_FAILURES


if __name__ == "__main__":
    sys.exit(main())

"""Runs category crawls concurrently under a shared rate limit."""

import asyncio
import logging
import signal
import time
from dataclasses import dataclass, field
from typing import Optional

from catalog_crawler.classify.taxonomy import Taxonomy
from catalog_crawler.config import CategoryTarget
from catalog_crawler.ingest.base import BaseFetcher
from catalog_crawler.ingest.extractor import ListingExtractor
from catalog_crawler.persist.persister import ProductPersister
from catalog_crawler.worker.checkpoint import CheckpointStore
from catalog_crawler.worker.crawl_loop import (
    CANCELLED,
    FAILED,
    CategoryCrawler,
    CategoryCrawlResult,
    CrawlConfig,
)

logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    """Results of every category crawled in one run."""

    results: list[CategoryCrawlResult] = field(default_factory=list)
    cancelled: bool = False
    elapsed_seconds: float = 0.0

    @property
    def pages_processed(self) -> int:
        return sum(r.pages_processed for r in self.results)

    @property
    def pages_failed(self) -> int:
        return sum(r.pages_failed for r in self.results)

    @property
    def records_found(self) -> int:
        return sum(r.records_found for r in self.results)

    @property
    def saved(self) -> int:
        return sum(r.saved for r in self.results)

    @property
    def inserted(self) -> int:
        return sum(r.inserted for r in self.results)

    @property
    def errors(self) -> int:
        return sum(r.errors for r in self.results)

    @property
    def failed_categories(self) -> list[str]:
        return [r.category for r in self.results if r.error]

    def log_table(self) -> None:
        """Log the per-category tally."""
        logger.info("=" * 72)
        logger.info(f"{'Category':<32}{'Pages':>8}{'Found':>10}{'Saved':>10}{'Errors':>8}  Stop")
        for r in self.results:
            logger.info(
                f"{r.category[:31]:<32}{r.pages_processed:>8}{r.records_found:>10}"
                f"{r.saved:>10}{r.errors:>8}  {r.terminated_by}"
            )
        logger.info("-" * 72)
        logger.info(
            f"{'TOTAL':<32}{self.pages_processed:>8}{self.records_found:>10}"
            f"{self.saved:>10}{self.errors:>8}  {self.elapsed_seconds:.0f}s"
        )
        logger.info("=" * 72)


class CrawlRunner:
    """
    Crawls several categories with bounded parallelism.

    Pages within a category are strictly sequential; categories share the
    fetcher (and so its per-domain rate limiter), the persister and the
    checkpoint store.
    """

    def __init__(
        self,
        fetcher: BaseFetcher,
        extractor: ListingExtractor,
        taxonomy: Taxonomy,
        persister: ProductPersister,
        checkpoint: CheckpointStore,
        config: Optional[CrawlConfig] = None,
        max_parallel: int = 2,
        category_delay: float = 3.0,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.fetcher = fetcher
        self.extractor = extractor
        self.taxonomy = taxonomy
        self.persister = persister
        self.checkpoint = checkpoint
        self.config = config or CrawlConfig()
        self.max_parallel = max(1, max_parallel)
        self.category_delay = category_delay
        self.cancel_event = cancel_event or asyncio.Event()
        self._installed_signals: list[int] = []

    def cancel(self) -> None:
        """Ask all category crawls to stop after their current page."""
        if not self.cancel_event.is_set():
            logger.warning("Cancellation requested, stopping after current pages")
            self.cancel_event.set()

    def install_signal_handlers(self) -> None:
        """Route SIGINT/SIGTERM to `cancel()`."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.cancel)
                self._installed_signals.append(sig)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform/loop (e.g. Windows)
                logger.debug(f"Cannot install handler for {sig!r}")

    def remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._installed_signals:
            loop.remove_signal_handler(sig)
        self._installed_signals.clear()

    def build_crawler(self, category: CategoryTarget) -> CategoryCrawler:
        return CategoryCrawler(
            category=category,
            fetcher=self.fetcher,
            extractor=self.extractor,
            taxonomy=self.taxonomy,
            persister=self.persister,
            checkpoint=self.checkpoint,
            config=self.config,
            cancel_event=self.cancel_event,
        )

    async def _pause_between_categories(self) -> None:
        if self.category_delay <= 0 or self.cancel_event.is_set():
            return
        try:
            await asyncio.wait_for(self.cancel_event.wait(), timeout=self.category_delay)
        except asyncio.TimeoutError:
            pass

    async def _crawl_one(self, category: CategoryTarget) -> CategoryCrawlResult:
        try:
            return await self.build_crawler(category).run()
        except Exception as e:
            logger.exception(f"{category.name}: crawl failed: {type(e).__name__}: {e}")
            return CategoryCrawlResult(
                category=category.name,
                terminated_by=FAILED,
                error=f"{type(e).__name__}: {e}",
            )

    async def run(
        self,
        categories: list[CategoryTarget],
        handle_signals: bool = False,
    ) -> RunSummary:
        """
        Crawl all categories and wait for outstanding image uploads.

        Args:
            categories: Categories to crawl, in start order
            handle_signals: Install SIGINT/SIGTERM handlers for the duration
        """
        start = time.monotonic()
        semaphore = asyncio.Semaphore(self.max_parallel)
        logger.info(
            f"Crawling {len(categories)} categories, up to {self.max_parallel} in parallel"
        )

        async def crawl_with_semaphore(category: CategoryTarget) -> CategoryCrawlResult:
            async with semaphore:
                if self.cancel_event.is_set():
                    return CategoryCrawlResult(category=category.name, terminated_by=CANCELLED)
                result = await self._crawl_one(category)
                await self._pause_between_categories()
                return result

        if handle_signals:
            self.install_signal_handlers()
        try:
            results = await asyncio.gather(*(crawl_with_semaphore(c) for c in categories))
        finally:
            if handle_signals:
                self.remove_signal_handlers()
            await self.persister.drain()
            await self.checkpoint.flush()

        summary = RunSummary(
            results=list(results),
            cancelled=self.cancel_event.is_set(),
            elapsed_seconds=time.monotonic() - start,
        )
        summary.log_table()
        return summary

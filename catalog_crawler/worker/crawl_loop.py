"""Per-category pagination loop: fetch, extract, classify, persist, checkpoint."""

import asyncio
import logging
import random
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from catalog_crawler import metrics
from catalog_crawler.classify.taxonomy import Taxonomy
from catalog_crawler.config import CategoryTarget, Settings
from catalog_crawler.ingest.base import BaseFetcher
from catalog_crawler.ingest.extractor import ListingExtractor, detect_block_reason
from catalog_crawler.ingest.registry import build_page_url
from catalog_crawler.logging_config import get_logger
from catalog_crawler.persist.persister import PersistSummary, ProductPersister
from catalog_crawler.worker.checkpoint import CheckpointStore

logger = logging.getLogger(__name__)


class CrawlState(str, Enum):
    IDLE = "idle"
    FETCHING_PAGE = "fetching_page"
    EXTRACTING = "extracting"
    CLASSIFYING = "classifying"
    PERSISTING = "persisting"
    ADVANCE_PAGE = "advance_page"
    TERMINATED = "terminated"


# Termination reasons
EMPTY_PAGES = "empty_pages"
FETCH_FAILURES = "fetch_failures"
PAGE_CAP = "page_cap"
CANCELLED = "cancelled"
ALREADY_COMPLETE = "already_complete"
FAILED = "error"

# Reasons after which a category is considered fully crawled
COMPLETING_REASONS = (EMPTY_PAGES, PAGE_CAP)


@dataclass
class CrawlConfig:
    """Knobs of the pagination loop."""

    base_url: str = "https://casoca.com.br"
    page_param: str = "p"
    max_pages: int = 500
    empty_page_threshold: int = 3
    fetch_failure_threshold: int = 3
    checkpoint_every: int = 1
    min_page_delay: float = 1.0
    max_page_delay: float = 3.0
    skip_completed: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "CrawlConfig":
        return cls(
            base_url=settings.site_base_url,
            page_param=settings.page_param,
            max_pages=settings.max_pages_per_category,
            empty_page_threshold=settings.empty_page_threshold,
            fetch_failure_threshold=settings.fetch_failure_threshold,
            checkpoint_every=max(1, settings.checkpoint_every),
            min_page_delay=settings.min_page_delay_seconds,
            max_page_delay=settings.max_page_delay_seconds,
            skip_completed=settings.skip_completed_categories,
        )


@dataclass
class CategoryCrawlResult:
    """Statistics of one category crawl."""

    category: str
    start_page: int = 1
    last_page: int = 0
    pages_processed: int = 0
    pages_failed: int = 0
    pages_repeated: int = 0
    failed_pages: list[int] = field(default_factory=list)
    records_found: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    conflicts: int = 0
    errors: int = 0
    subcategories: Counter = field(default_factory=Counter)
    terminated_by: Optional[str] = None
    completed: bool = False
    elapsed_seconds: float = 0.0
    error: Optional[str] = None

    @property
    def saved(self) -> int:
        return self.inserted + self.updated + self.skipped + self.conflicts

    def add_persist_summary(self, summary: PersistSummary) -> None:
        self.inserted += summary.inserted
        self.updated += summary.updated
        self.skipped += summary.skipped
        self.conflicts += summary.conflicts
        self.errors += summary.errors


class CategoryCrawler:
    """
    Crawls the listing pages of one category, strictly one page at a time.

    Termination rules:
    - `empty_page_threshold` consecutive pages without stored products
      ends the category and marks it completed; a page listing only links
      already seen in this crawl counts as empty
    - `fetch_failure_threshold` consecutive unavailable pages ends the run
      for this category, leaving it incomplete for the next run
    - the page cap ends the category and marks it completed
    """

    def __init__(
        self,
        category: CategoryTarget,
        fetcher: BaseFetcher,
        extractor: ListingExtractor,
        taxonomy: Taxonomy,
        persister: ProductPersister,
        checkpoint: CheckpointStore,
        config: Optional[CrawlConfig] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.category = category
        self.fetcher = fetcher
        self.extractor = extractor
        self.taxonomy = taxonomy
        self.persister = persister
        self.checkpoint = checkpoint
        self.config = config or CrawlConfig()
        self.cancel_event = cancel_event or asyncio.Event()
        self.state = CrawlState.IDLE
        self.log = get_logger(__name__, category=category.name)

    @property
    def name(self) -> str:
        return self.category.name

    def _set_state(self, state: CrawlState) -> None:
        self.state = state

    async def _throttle(self) -> None:
        """Random pause between pages, cut short by cancellation."""
        low = max(0.0, self.config.min_page_delay)
        high = max(low, self.config.max_page_delay)
        delay = random.uniform(low, high)
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self.cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def run(self) -> CategoryCrawlResult:
        """Crawl the category from its checkpoint until a termination rule fires."""
        start = time.monotonic()
        progress = self.checkpoint.get(self.name)
        result = CategoryCrawlResult(
            category=self.name,
            start_page=progress.next_page,
            last_page=progress.last_page,
        )

        if progress.completed and self.config.skip_completed:
            self.log.info(f"{self.name}: already completed, skipping")
            result.terminated_by = ALREADY_COMPLETE
            result.completed = True
            return result

        category_url = self.category.absolute_url(self.config.base_url)
        page = progress.next_page
        total_products = progress.total_products
        empty_streak = 0
        failure_streak = 0
        pages_since_checkpoint = 0
        seen_links: set[str] = set()

        self.log.info(f"{self.name}: starting at page {page} ({category_url})")

        while True:
            if self.cancel_event.is_set():
                result.terminated_by = CANCELLED
                break
            if page > self.config.max_pages:
                self.log.info(f"{self.name}: reached page cap {self.config.max_pages}")
                result.terminated_by = PAGE_CAP
                break

            self._set_state(CrawlState.FETCHING_PAGE)
            url = build_page_url(category_url, page, self.config.page_param)
            fetched = await self.fetcher.fetch(url)

            if not fetched.ok:
                failure_streak += 1
                result.pages_failed += 1
                result.failed_pages.append(page)
                metrics.record_page(self.name, "failed")
                self.log.warning(
                    f"{self.name}: page {page} unavailable ({fetched.error}), "
                    f"failure streak {failure_streak}/{self.config.fetch_failure_threshold}",
                    extra={"page": page},
                )
                if failure_streak >= self.config.fetch_failure_threshold:
                    result.terminated_by = FETCH_FAILURES
                    break
                self._set_state(CrawlState.ADVANCE_PAGE)
                page += 1
                await self._throttle()
                continue

            failure_streak = 0

            self._set_state(CrawlState.EXTRACTING)
            records = self.extractor.extract(fetched.html, self.name)
            result.records_found += len(records)

            # Listings past the end often re-serve the last page
            page_links = {record.link or record.name for record in records}
            repeated = bool(page_links) and page_links <= seen_links
            seen_links |= page_links

            if repeated:
                empty_streak += 1
                result.pages_repeated += 1
                metrics.record_page(self.name, "empty", records=len(records))
                self.log.info(
                    f"{self.name}: page {page} only repeats products already seen, "
                    f"empty streak {empty_streak}/{self.config.empty_page_threshold}",
                    extra={"page": page},
                )
            elif not records:
                empty_streak += 1
                metrics.record_page(self.name, "empty")
                reason = detect_block_reason(fetched.html)
                self.log.info(
                    f"{self.name}: page {page} has no products"
                    f"{f' ({reason})' if reason else ''}, "
                    f"empty streak {empty_streak}/{self.config.empty_page_threshold}",
                    extra={"page": page},
                )
            else:
                self._set_state(CrawlState.CLASSIFYING)
                for record in records:
                    record.subcategory = self.taxonomy.classify(record.name, self.name)
                    result.subcategories[record.subcategory] += 1

                self._set_state(CrawlState.PERSISTING)
                summary = await self.persister.upsert_many(records)
                result.add_persist_summary(summary)
                total_products += summary.saved

                if summary.saved == 0:
                    # Nothing stored from this page: treat it as empty
                    empty_streak += 1
                    metrics.record_page(self.name, "empty", records=len(records))
                else:
                    empty_streak = 0
                    metrics.record_page(self.name, "ok", records=len(records))

                self.log.info(
                    f"{self.name}: page {page} - {len(records)} found, "
                    f"{summary.inserted} new, {summary.updated} updated, "
                    f"{summary.skipped} skipped, {summary.errors} errors",
                    extra={"page": page},
                )

            result.pages_processed += 1
            result.last_page = page
            pages_since_checkpoint += 1
            if pages_since_checkpoint >= self.config.checkpoint_every:
                await self.checkpoint.update(self.name, page, total_products)
                pages_since_checkpoint = 0

            if empty_streak >= self.config.empty_page_threshold:
                result.terminated_by = EMPTY_PAGES
                break

            self._set_state(CrawlState.ADVANCE_PAGE)
            page += 1
            await self._throttle()

        await self._finish(result, total_products)
        result.elapsed_seconds = time.monotonic() - start
        return result

    async def _finish(self, result: CategoryCrawlResult, total_products: int) -> None:
        self._set_state(CrawlState.TERMINATED)
        metrics.record_termination(result.terminated_by or FAILED)

        if result.terminated_by == CANCELLED:
            self.log.info(f"{self.name}: cancelled, waiting for image uploads")
            await self.persister.drain()

        passed_over = [p for p in result.failed_pages if p < result.last_page]
        if passed_over:
            self.log.warning(
                f"{self.name}: unavailable page(s) {passed_over} lie behind the checkpoint "
                f"and will not be retried without a reset"
            )

        await self.checkpoint.update(self.name, result.last_page, total_products)
        if result.terminated_by in COMPLETING_REASONS:
            result.completed = True
            await self.checkpoint.mark_complete(self.name, total_products)

        self.log.info(
            f"{self.name}: finished ({result.terminated_by}) after {result.pages_processed} "
            f"page(s), {result.records_found} found, {result.saved} saved, "
            f"{result.errors} errors"
        )

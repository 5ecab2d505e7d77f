"""Tests for the per-category pagination loop and the runner."""

import asyncio
from urllib.parse import parse_qs, urlsplit

import pytest

from catalog_crawler.classify.taxonomy import Taxonomy
from catalog_crawler.config import CategoryTarget
from catalog_crawler.ingest.base import FetchResult
from catalog_crawler.ingest.extractor import ListingExtractor
from catalog_crawler.persist.persister import PersistSummary
from catalog_crawler.worker.checkpoint import CheckpointStore
from catalog_crawler.worker.crawl_loop import (
    ALREADY_COMPLETE,
    CANCELLED,
    EMPTY_PAGES,
    FETCH_FAILURES,
    PAGE_CAP,
    CategoryCrawler,
    CrawlConfig,
    CrawlState,
)
from catalog_crawler.worker.runner import CrawlRunner

MOVEIS = CategoryTarget(name="Móveis", url="moveis.html")
FAIL = object()


def listing(page, names=("Poltrona", "Mesa")):
    cards = "".join(
        f'<div class="col-md-4 detail-product">'
        f'<a class="product-item-photo" href="/p/{page}-{i}.html"><img src="/i/{page}-{i}.jpg"></a>'
        f'<div class="info"><h2>{name} {page}-{i}</h2></div></div>'
        for i, name in enumerate(names)
    )
    return f"<html><body>{cards}</body></html>"


EMPTY = "<html><body><p>Nenhum produto encontrado</p></body></html>"


def page_number(url):
    return int(parse_qs(urlsplit(url).query).get("p", ["1"])[0])


class FakeFetcher:
    """Serves scripted pages; FAIL marks an unavailable page, missing pages are empty."""

    name = "fake"

    def __init__(self, pages=None, on_fetch=None):
        self.pages = pages or {}
        self.on_fetch = on_fetch
        self.fetched = []

    async def fetch(self, url):
        page = page_number(url)
        self.fetched.append(page)
        if self.on_fetch:
            self.on_fetch(page, url)
        html = self.pages.get(page, EMPTY)
        if html is FAIL:
            return FetchResult.failed(url, "503 after retries", status_code=503, attempts=5)
        return FetchResult(url=url, ok=True, html=html, status_code=200)

    async def close(self):
        pass


class FakePersister:
    def __init__(self, fail=False):
        self.fail = fail
        self.records = []
        self.drained = 0

    async def upsert_many(self, records):
        records = list(records)
        self.records.extend(records)
        if self.fail:
            return PersistSummary(errors=len(records))
        return PersistSummary(inserted=len(records))

    async def drain(self):
        self.drained += 1


def fast_config(**overrides):
    values = dict(min_page_delay=0, max_page_delay=0)
    values.update(overrides)
    return CrawlConfig(**values)


@pytest.fixture
def checkpoint(tmp_path):
    return CheckpointStore(tmp_path / "checkpoint.json").load()


def make_crawler(fetcher, checkpoint, persister=None, config=None, cancel_event=None):
    return CategoryCrawler(
        category=MOVEIS,
        fetcher=fetcher,
        extractor=ListingExtractor(),
        taxonomy=Taxonomy.default(),
        persister=persister or FakePersister(),
        checkpoint=checkpoint,
        config=config or fast_config(),
        cancel_event=cancel_event,
    )


@pytest.mark.asyncio
async def test_stops_after_exactly_threshold_empty_pages(checkpoint):
    fetcher = FakeFetcher({n: listing(n) for n in range(1, 5)})
    crawler = make_crawler(fetcher, checkpoint)

    result = await crawler.run()

    assert fetcher.fetched == [1, 2, 3, 4, 5, 6, 7]
    assert result.terminated_by == EMPTY_PAGES
    assert result.completed
    assert result.records_found == 8
    assert result.inserted == 8
    assert crawler.state == CrawlState.TERMINATED
    assert checkpoint.get("Móveis").completed


@pytest.mark.asyncio
async def test_records_are_classified_before_persisting(checkpoint):
    persister = FakePersister()
    fetcher = FakeFetcher({1: listing(1, names=("Poltrona Eames", "Mesa Industrial"))})
    result = await make_crawler(fetcher, checkpoint, persister=persister).run()

    assert [r.subcategory for r in persister.records] == ["Poltronas", "Mesas"]
    assert all(r.category == "Móveis" for r in persister.records)
    assert result.subcategories == {"Poltronas": 1, "Mesas": 1}


@pytest.mark.asyncio
async def test_resumes_after_checkpointed_page(checkpoint):
    await checkpoint.update("Móveis", last_page=7, total_products=168)
    fetcher = FakeFetcher({8: listing(8)})

    result = await make_crawler(fetcher, checkpoint).run()

    assert fetcher.fetched[0] == 8
    assert result.start_page == 8
    assert checkpoint.get("Móveis").last_page == 11
    assert checkpoint.get("Móveis").total_products == 170


@pytest.mark.asyncio
async def test_completed_category_is_skipped(checkpoint):
    await checkpoint.mark_complete("Móveis", 500)
    fetcher = FakeFetcher()

    result = await make_crawler(fetcher, checkpoint).run()

    assert fetcher.fetched == []
    assert result.terminated_by == ALREADY_COMPLETE


@pytest.mark.asyncio
async def test_completed_category_recrawled_when_not_skipping(checkpoint):
    await checkpoint.update("Móveis", last_page=2, total_products=10)
    await checkpoint.mark_complete("Móveis", 10)
    fetcher = FakeFetcher()

    await make_crawler(fetcher, checkpoint, config=fast_config(skip_completed=False)).run()

    assert fetcher.fetched == [3, 4, 5]


@pytest.mark.asyncio
async def test_page_cap(checkpoint):
    fetcher = FakeFetcher({n: listing(n) for n in range(1, 10)})

    result = await make_crawler(fetcher, checkpoint, config=fast_config(max_pages=3)).run()

    assert fetcher.fetched == [1, 2, 3]
    assert result.terminated_by == PAGE_CAP
    assert result.completed


@pytest.mark.asyncio
async def test_fetch_failures_leave_category_incomplete(checkpoint):
    fetcher = FakeFetcher({1: listing(1), 2: listing(2), 3: FAIL, 4: FAIL, 5: FAIL})

    result = await make_crawler(fetcher, checkpoint).run()

    assert fetcher.fetched == [1, 2, 3, 4, 5]
    assert result.terminated_by == FETCH_FAILURES
    assert result.pages_failed == 3
    assert not result.completed
    progress = checkpoint.get("Móveis")
    assert not progress.completed
    assert progress.next_page == 3


@pytest.mark.asyncio
async def test_failed_page_does_not_count_as_empty(checkpoint):
    fetcher = FakeFetcher({1: listing(1), 3: FAIL})

    result = await make_crawler(fetcher, checkpoint).run()

    # Pages 2, 4 and 5 are empty; page 3 is unavailable
    assert fetcher.fetched == [1, 2, 3, 4, 5]
    assert result.terminated_by == EMPTY_PAGES


@pytest.mark.asyncio
async def test_failed_page_behind_checkpoint_is_reported(checkpoint):
    fetcher = FakeFetcher({1: listing(1), 2: FAIL, 3: listing(3)})

    result = await make_crawler(fetcher, checkpoint).run()

    assert result.failed_pages == [2]
    assert checkpoint.get("Móveis").last_page == 6


@pytest.mark.asyncio
async def test_repeated_last_page_counts_as_empty(checkpoint):
    class RepeatingFetcher(FakeFetcher):
        async def fetch(self, url):
            self.fetched.append(page_number(url))
            return FetchResult(url=url, ok=True, html=listing(1), status_code=200)

    fetcher = RepeatingFetcher()
    persister = FakePersister()

    result = await make_crawler(fetcher, checkpoint, persister=persister, config=fast_config(max_pages=50)).run()

    assert fetcher.fetched == [1, 2, 3, 4]
    assert result.terminated_by == EMPTY_PAGES
    assert result.pages_repeated == 3
    assert len(persister.records) == 2
    assert checkpoint.get("Móveis").completed


@pytest.mark.asyncio
async def test_page_with_some_new_products_is_not_repeated(checkpoint):
    def mixed(page):
        return listing(1).replace("</body>", listing(page).split("<body>")[1].split("</body>")[0] + "</body>")

    fetcher = FakeFetcher({1: listing(1), 2: mixed(2), 3: mixed(3)})

    result = await make_crawler(fetcher, checkpoint).run()

    assert fetcher.fetched == [1, 2, 3, 4, 5, 6]
    assert result.pages_repeated == 0


@pytest.mark.asyncio
async def test_products_reset_empty_streak(checkpoint):
    fetcher = FakeFetcher({1: listing(1), 4: listing(4)})

    await make_crawler(fetcher, checkpoint).run()

    assert fetcher.fetched == [1, 2, 3, 4, 5, 6, 7]


@pytest.mark.asyncio
async def test_page_with_only_failed_writes_counts_as_empty(checkpoint):
    fetcher = FakeFetcher({n: listing(n) for n in range(1, 10)})
    persister = FakePersister(fail=True)

    result = await make_crawler(fetcher, checkpoint, persister=persister).run()

    assert fetcher.fetched == [1, 2, 3]
    assert result.terminated_by == EMPTY_PAGES
    assert result.errors == 6


@pytest.mark.asyncio
async def test_cancellation_stops_between_pages(checkpoint):
    cancel = asyncio.Event()

    def cancel_after_second(page, url):
        if page == 2:
            cancel.set()

    fetcher = FakeFetcher({n: listing(n) for n in range(1, 10)}, on_fetch=cancel_after_second)
    persister = FakePersister()

    result = await make_crawler(fetcher, checkpoint, persister=persister, cancel_event=cancel).run()

    assert fetcher.fetched == [1, 2]
    assert result.terminated_by == CANCELLED
    assert not result.completed
    assert persister.drained == 1
    assert checkpoint.get("Móveis").last_page == 2


@pytest.mark.asyncio
async def test_checkpoint_every_n_pages(checkpoint, tmp_path):
    saved_pages = []
    original_update = checkpoint.update

    async def tracking_update(category, last_page, total_products, save=True):
        saved_pages.append(last_page)
        return await original_update(category, last_page, total_products, save=save)

    checkpoint.update = tracking_update
    fetcher = FakeFetcher({n: listing(n) for n in range(1, 5)})

    await make_crawler(fetcher, checkpoint, config=fast_config(checkpoint_every=2)).run()

    # Every second page, plus the final flush
    assert saved_pages == [2, 4, 6, 7]


class TestCrawlRunner:
    @pytest.mark.asyncio
    async def test_one_failing_category_does_not_stop_others(self, checkpoint):
        class SplitFetcher(FakeFetcher):
            async def fetch(self, url):
                if "eletros" in url:
                    raise RuntimeError("parser exploded")
                return await super().fetch(url)

        fetcher = SplitFetcher({1: listing(1)})
        runner = CrawlRunner(
            fetcher=fetcher,
            extractor=ListingExtractor(),
            taxonomy=Taxonomy.default(),
            persister=FakePersister(),
            checkpoint=checkpoint,
            config=fast_config(),
            max_parallel=2,
            category_delay=0,
        )

        summary = await runner.run([MOVEIS, CategoryTarget(name="Eletros", url="eletros.html")])

        by_name = {r.category: r for r in summary.results}
        assert by_name["Móveis"].terminated_by == EMPTY_PAGES
        assert by_name["Eletros"].error == "RuntimeError: parser exploded"
        assert summary.failed_categories == ["Eletros"]
        assert summary.records_found == 2

    @pytest.mark.asyncio
    async def test_cancelled_run_skips_pending_categories(self, checkpoint):
        cancel = asyncio.Event()
        cancel.set()
        runner = CrawlRunner(
            fetcher=FakeFetcher(),
            extractor=ListingExtractor(),
            taxonomy=Taxonomy.default(),
            persister=FakePersister(),
            checkpoint=checkpoint,
            config=fast_config(),
            max_parallel=1,
            category_delay=0,
            cancel_event=cancel,
        )

        summary = await runner.run([MOVEIS])

        assert summary.cancelled
        assert summary.results[0].terminated_by == CANCELLED
        assert summary.pages_processed == 0

"""Tests for fetcher selection and page URLs."""

import pytest

from catalog_crawler.ingest.fetchers.api import RenderingProxyFetcher
from catalog_crawler.ingest.fetchers.headless import HeadlessBrowserFetcher
from catalog_crawler.ingest.fetchers.static import DirectHTMLFetcher
from catalog_crawler.ingest.registry import build_fetcher, build_page_url


class TestBuildPageUrl:
    def test_first_page_is_bare_url(self):
        assert build_page_url("https://casoca.com.br/moveis.html", 1) == (
            "https://casoca.com.br/moveis.html"
        )

    def test_later_pages_add_page_param(self):
        assert build_page_url("https://casoca.com.br/moveis.html", 3) == (
            "https://casoca.com.br/moveis.html?p=3"
        )

    def test_existing_query_is_kept_and_page_replaced(self):
        url = build_page_url("https://casoca.com.br/moveis.html?dir=asc&p=2", 5)
        assert url == "https://casoca.com.br/moveis.html?dir=asc&p=5"

    def test_custom_page_param(self):
        assert build_page_url("https://shop.example/c", 2, "page") == "https://shop.example/c?page=2"

    def test_page_zero_is_rejected(self):
        with pytest.raises(ValueError):
            build_page_url("https://casoca.com.br/moveis.html", 0)


class TestBuildFetcher:
    def test_direct_is_default(self, settings):
        assert isinstance(build_fetcher(settings), DirectHTMLFetcher)

    def test_proxy_mode(self, settings):
        settings.scraper_api_key = "key"
        fetcher = build_fetcher(settings, fetch_mode="proxy")
        assert isinstance(fetcher, RenderingProxyFetcher)
        assert fetcher.policy.max_attempts == settings.fetch_max_attempts

    def test_proxy_mode_without_key_fails(self, settings):
        with pytest.raises(ValueError):
            build_fetcher(settings, fetch_mode="proxy")

    def test_headless_mode(self, settings):
        fetcher = build_fetcher(settings, fetch_mode="headless")
        assert isinstance(fetcher, HeadlessBrowserFetcher)
        assert fetcher.wait_until == settings.headless_wait_until

    def test_unknown_mode(self, settings):
        with pytest.raises(ValueError):
            build_fetcher(settings, fetch_mode="carrier-pigeon")

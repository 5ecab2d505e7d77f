"""Fetcher selection and page URL building."""

import logging
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from catalog_crawler.config import Settings
from catalog_crawler.ingest.base import BaseFetcher
from catalog_crawler.ingest.fetchers.api import RenderingProxyFetcher
from catalog_crawler.ingest.fetchers.headless import HeadlessBrowserFetcher
from catalog_crawler.ingest.fetchers.static import DirectHTMLFetcher
from catalog_crawler.ingest.http_client import RetryPolicy
from catalog_crawler.ingest.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

FETCH_MODES = ("direct", "proxy", "headless")


def build_fetcher(
    settings: Settings,
    rate_limiter: Optional[RateLimiter] = None,
    fetch_mode: Optional[str] = None,
) -> BaseFetcher:
    """
    Build the fetcher selected by `settings.fetch_mode`.

    Args:
        settings: Application settings
        rate_limiter: Shared rate limiter (one is built from settings if omitted)
        fetch_mode: Override for `settings.fetch_mode`

    Raises:
        ValueError: On an unknown fetch mode or a proxy mode without API key
    """
    mode = (fetch_mode or settings.fetch_mode).lower()
    limiter = rate_limiter or RateLimiter.from_settings(settings)
    policy = RetryPolicy.from_settings(settings, name=mode)

    if mode == "direct":
        fetcher: BaseFetcher = DirectHTMLFetcher(
            policy=policy,
            rate_limiter=limiter,
            timeout=settings.fetch_timeout_seconds,
        )
    elif mode == "proxy":
        fetcher = RenderingProxyFetcher(
            api_key=settings.scraper_api_key,
            endpoint=settings.scraper_api_endpoint,
            render=settings.scraper_api_render,
            country_code=settings.scraper_api_country_code,
            premium=settings.scraper_api_premium,
            policy=policy,
            rate_limiter=limiter,
            timeout=settings.fetch_timeout_seconds,
        )
    elif mode == "headless":
        fetcher = HeadlessBrowserFetcher(
            policy=policy,
            rate_limiter=limiter,
            timeout=settings.fetch_timeout_seconds,
            wait_until=settings.headless_wait_until,
            settle_seconds=settings.headless_settle_seconds,
            challenge_wait_seconds=settings.headless_challenge_wait_seconds,
        )
    else:
        raise ValueError(f"Unknown fetch mode '{mode}', expected one of {FETCH_MODES}")

    logger.info(f"Using {fetcher.name} fetcher")
    return fetcher


def build_page_url(category_url: str, page: int, page_param: str = "p") -> str:
    """
    URL of page `page` of a category listing.

    Page 1 is the bare category URL. Later pages set `page_param` in the
    query string, keeping any other parameters.
    """
    if page < 1:
        raise ValueError(f"Page numbers start at 1, got {page}")

    parts = urlsplit(category_url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != page_param]
    if page > 1:
        query.append((page_param, str(page)))
    return urlunsplit(
        (parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment)
    )

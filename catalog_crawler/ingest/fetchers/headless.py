"""Headless browser fetcher for JavaScript-rendered category pages."""

import asyncio
import logging
from typing import Optional

import httpx
from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from catalog_crawler.ingest.base import BaseFetcher
from catalog_crawler.ingest.fetchers.static import USER_AGENTS
from catalog_crawler.ingest.http_client import RetryPolicy, SleepFunc, TransientFetchError
from catalog_crawler.ingest.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

# Cloudflare interstitial titles
CHALLENGE_TITLES = ("just a moment", "um momento", "attention required")

BROWSER_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-infobars",
    "--disable-extensions",
]


class HeadlessBrowserFetcher(BaseFetcher):
    """Fetcher rendering pages in headless Chromium.

    The rendered DOM is wrapped in an `httpx.Response` carrying the navigation
    status, so the retry policy treats it like any other fetch.
    """

    name = "headless"

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        rate_limiter: Optional[RateLimiter] = None,
        timeout: float = 60.0,
        wait_until: str = "networkidle",
        settle_seconds: float = 2.0,
        challenge_wait_seconds: float = 10.0,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """
        Args:
            timeout: Navigation timeout in seconds
            wait_until: Playwright load state to wait for
            settle_seconds: Extra wait after navigation for lazy content
            challenge_wait_seconds: Wait before re-reading a bot-check interstitial
        """
        super().__init__(policy=policy, rate_limiter=rate_limiter, sleep=sleep)
        self.timeout = timeout
        self.wait_until = wait_until
        self.settle_seconds = settle_seconds
        self.challenge_wait_seconds = challenge_wait_seconds

        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._init_lock = asyncio.Lock()

    async def _ensure_browser(self) -> BrowserContext:
        """Start Playwright and the shared browser context on first use."""
        async with self._init_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()

            if self._browser is None:
                self._browser = await self._playwright.chromium.launch(
                    headless=True,
                    args=BROWSER_ARGS,
                )

            if self._context is None:
                self._context = await self._browser.new_context(
                    user_agent=USER_AGENTS[0],
                    locale="pt-BR",
                    viewport={"width": 1366, "height": 768},
                )

            return self._context

    async def _send(self, url: str) -> httpx.Response:
        context = await self._ensure_browser()
        page = await context.new_page()
        try:
            try:
                response = await page.goto(
                    url,
                    wait_until=self.wait_until,
                    timeout=self.timeout * 1000,
                )
            except PlaywrightTimeoutError as e:
                raise TransientFetchError(f"{self.name}: navigation timeout for {url}") from e
            except PlaywrightError as e:
                raise TransientFetchError(f"{self.name}: navigation failed for {url}: {e}") from e

            await asyncio.sleep(self.settle_seconds)

            title = (await page.title()).lower()
            if any(marker in title for marker in CHALLENGE_TITLES):
                logger.info(
                    f"Challenge page on {url}, waiting {self.challenge_wait_seconds:.0f}s"
                )
                await asyncio.sleep(self.challenge_wait_seconds)

            html = await page.content()
            status = response.status if response is not None else 200
            return httpx.Response(
                status,
                text=html,
                request=httpx.Request("GET", url),
            )
        finally:
            await page.close()

    async def close(self):
        """Close browser and cleanup."""
        if self._context:
            await self._context.close()
            self._context = None

        if self._browser:
            await self._browser.close()
            self._browser = None

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

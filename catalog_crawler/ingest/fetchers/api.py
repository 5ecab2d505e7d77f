"""Rendering proxy fetcher.

Routes page requests through a ScraperAPI-compatible endpoint that renders
JavaScript and rotates residential IPs. The proxy answers with the target's
HTML; its own 429/5xx responses carry the usual rate-limit and server-error
semantics.
"""

import asyncio
import logging
import random
from typing import Optional

import httpx

from catalog_crawler.ingest.base import BaseFetcher
from catalog_crawler.ingest.fetchers.static import build_timeout
from catalog_crawler.ingest.http_client import RetryPolicy, SleepFunc
from catalog_crawler.ingest.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class RenderingProxyFetcher(BaseFetcher):
    """
    Fetches category pages through a third-party rendering proxy.

    Features:
    - JS rendering flag and country targeting
    - Sticky session number per fetcher instance
    - Optional premium proxy pool
    """

    name = "proxy"

    def __init__(
        self,
        api_key: str,
        endpoint: str = "https://api.scraperapi.com",
        render: bool = True,
        country_code: Optional[str] = "br",
        premium: bool = False,
        policy: Optional[RetryPolicy] = None,
        rate_limiter: Optional[RateLimiter] = None,
        timeout: float = 90.0,
        client: Optional[httpx.AsyncClient] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """
        Args:
            api_key: Proxy API key
            endpoint: Proxy endpoint URL
            render: Ask the proxy to execute JavaScript
            country_code: Exit-node country hint
            premium: Use the premium proxy pool
        """
        if not api_key:
            raise ValueError("Rendering proxy requires an API key (SCRAPER_API_KEY)")
        super().__init__(policy=policy, rate_limiter=rate_limiter, sleep=sleep)
        self.api_key = api_key
        self.endpoint = endpoint
        self.render = render
        self.country_code = country_code
        self.premium = premium
        self.session_number = random.randint(1, 10000)
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def build_params(self, url: str) -> dict[str, str]:
        """Query parameters selecting the target URL and rendering options."""
        params = {
            "api_key": self.api_key,
            "url": url,
            "render": "true" if self.render else "false",
            "session_number": str(self.session_number),
        }
        if self.country_code:
            params["country_code"] = self.country_code
        if self.premium:
            params["premium"] = "true"
        return params

    def _rate_limit_key(self, url: str) -> str:
        # All requests share the proxy's quota
        return "rendering-proxy"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=build_timeout(self.timeout))
        return self._client

    async def _send(self, url: str) -> httpx.Response:
        client = self._get_client()
        resp = await client.get(self.endpoint, params=self.build_params(url))
        if resp.status_code == 401:
            logger.error("Rendering proxy rejected the API key (401)")
        return resp

    async def close(self):
        """Close HTTP client."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

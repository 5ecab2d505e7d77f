"""Base fetcher interface and the product record produced by extraction."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import httpx

from catalog_crawler import metrics
from catalog_crawler.ingest.http_client import (
    FetchError,
    RateLimitedError,
    RetryPolicy,
    SleepFunc,
    fetch_with_policy,
)
from catalog_crawler.ingest.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

OTHER_SUBCATEGORY = "Outros"


@dataclass
class ProductRecord:
    """A product listing extracted from a category page."""

    name: str
    link: str = ""
    image_url: str = ""
    category: str = ""
    subcategory: Optional[str] = None
    image_path: Optional[str] = None


@dataclass
class FetchResult:
    """Outcome of fetching one page.

    `ok=False` means the page was unavailable, which is not the same thing
    as a page that was fetched and lists zero products.
    """

    url: str
    ok: bool
    html: str = ""
    status_code: Optional[int] = None
    error: Optional[str] = None
    attempts: int = 0

    @classmethod
    def failed(
        cls,
        url: str,
        error: str,
        status_code: Optional[int] = None,
        attempts: int = 0,
    ) -> "FetchResult":
        return cls(url=url, ok=False, status_code=status_code, error=error, attempts=attempts)


class BaseFetcher(ABC):
    """Abstract base class for page fetchers.

    Subclasses implement a single request in `_send`; retries, rate limiting
    and failure reporting are handled here.
    """

    name: str = "base"

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        rate_limiter: Optional[RateLimiter] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.policy = policy or RetryPolicy(name=self.name)
        self.rate_limiter = rate_limiter
        self._sleep = sleep

    @abstractmethod
    async def _send(self, url: str) -> httpx.Response:
        """
        Perform one request for `url`.

        Returns:
            Response carrying the status code and HTML body

        Raises:
            httpx.TransportError or TransientFetchError for retryable failures
        """
        pass

    def _rate_limit_key(self, url: str) -> str:
        return urlparse(url).netloc

    async def _send_limited(self, url: str) -> httpx.Response:
        domain = self._rate_limit_key(url)
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire(domain)
        return await self._send(url)

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch the HTML of a page.

        Never raises for HTTP or transport failures: exhausting the retry
        policy yields a failed FetchResult with empty HTML.
        """
        start = time.monotonic()
        try:
            resp = await fetch_with_policy(self._send_limited, url, self.policy, sleep=self._sleep)
            return FetchResult(
                url=url,
                ok=True,
                html=resp.text,
                status_code=resp.status_code,
            )
        except FetchError as e:
            if isinstance(e, RateLimitedError) and self.rate_limiter is not None:
                self.rate_limiter.set_cooldown(
                    self._rate_limit_key(url), self.policy.rate_limit_base_delay
                )
            logger.error(f"{self.name}: giving up on {url} after {e.attempts} attempt(s): {e}")
            return FetchResult.failed(url, str(e), status_code=e.status_code, attempts=e.attempts)
        except httpx.HTTPError as e:
            # Non-retryable client-side errors (invalid URL, unsupported protocol)
            logger.error(f"{self.name}: request error for {url}: {type(e).__name__} - {e}")
            return FetchResult.failed(url, f"{type(e).__name__}: {e}", attempts=1)
        finally:
            metrics.record_fetch_duration(self.name, time.monotonic() - start)

    async def close(self):
        """Release network resources."""
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

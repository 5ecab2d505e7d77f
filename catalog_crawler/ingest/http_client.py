"""Retry policy and status-aware fetch combinator shared by all fetchers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

from catalog_crawler import metrics

logger = logging.getLogger(__name__)

# Retryable exceptions (transport errors)
RETRYABLE_EXC = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
)

SendFunc = Callable[[str], Awaitable[httpx.Response]]
SleepFunc = Callable[[float], Awaitable[None]]


class FetchError(RuntimeError):
    """Base class for fetch failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
        self.attempts = 0


class PermanentFetchError(FetchError):
    """Raised for non-retryable responses (4xx other than 429)."""
    pass


class TransientFetchError(FetchError):
    """Raised for 5xx responses, timeouts and transport failures."""
    pass


class RateLimitedError(TransientFetchError):
    """Raised when rate limited (429)."""

    def __init__(self, message: str = "Rate limited", retry_after: Optional[float] = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with per-error-class backoff.

    - 429: long delay multiplied by the attempt number (or Retry-After if larger)
    - 5xx: medium fixed delay
    - timeouts/transport errors: delay multiplied by the attempt number
    - any other non-2xx: no retry
    """

    name: str = "default"
    max_attempts: int = 5
    rate_limit_base_delay: float = 60.0
    server_error_delay: float = 30.0
    transport_error_delay: float = 20.0
    max_delay: float = 600.0

    @classmethod
    def from_settings(cls, settings, name: str = "default") -> "RetryPolicy":
        return cls(
            name=name,
            max_attempts=settings.fetch_max_attempts,
            rate_limit_base_delay=settings.rate_limit_base_delay_seconds,
            server_error_delay=settings.server_error_delay_seconds,
            transport_error_delay=settings.transport_error_delay_seconds,
            max_delay=settings.max_backoff_seconds,
        )

    def is_retryable(self, exc: BaseException) -> bool:
        """Whether an error raised by a request should be retried."""
        if isinstance(exc, PermanentFetchError):
            return False
        return isinstance(exc, (TransientFetchError,) + RETRYABLE_EXC)

    def delay_for(self, exc: BaseException, attempt: int) -> float:
        """Seconds to wait after `attempt` failed with `exc`."""
        if isinstance(exc, RateLimitedError):
            delay = self.rate_limit_base_delay * attempt
            if exc.retry_after is not None:
                delay = max(delay, exc.retry_after)
        elif isinstance(exc, TransientFetchError) and exc.status_code is not None:
            delay = self.server_error_delay
        else:
            delay = self.transport_error_delay * attempt
        return min(delay, self.max_delay)


def default_headers() -> dict[str, str]:
    """Get default browser-like headers."""
    return {
        "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": "pt-BR,pt;q=0.9,en-US;q=0.8,en;q=0.7",
        "Accept-Encoding": "gzip, deflate, br",
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
    }


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a numeric Retry-After header; HTTP-date values are ignored."""
    if not value:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def classify_response(resp: httpx.Response, policy: RetryPolicy, url: str) -> None:
    """
    Raise the error matching a non-2xx response.

    Raises:
        RateLimitedError: On 429
        TransientFetchError: On 5xx
        PermanentFetchError: On any other non-2xx status
    """
    sc = resp.status_code
    if 200 <= sc < 300:
        return
    if sc == 429:
        raise RateLimitedError(
            f"{policy.name}: 429 for {url}",
            retry_after=parse_retry_after(resp.headers.get("Retry-After")),
        )
    if 500 <= sc < 600:
        raise TransientFetchError(f"{policy.name}: {sc} for {url}", status_code=sc)
    raise PermanentFetchError(f"{policy.name}: {sc} for {url}", status_code=sc)


async def fetch_with_policy(
    send: SendFunc,
    url: str,
    policy: RetryPolicy,
    sleep: SleepFunc = asyncio.sleep,
) -> httpx.Response:
    """
    Fetch URL with the retry policy and status-aware error handling.

    Args:
        send: Coroutine function performing one request for a URL
        url: URL to fetch
        policy: RetryPolicy configuration
        sleep: Sleep coroutine (injectable for tests)

    Returns:
        httpx.Response on success

    Raises:
        PermanentFetchError: On non-retryable statuses, without retrying
        RateLimitedError: If still rate limited after all attempts
        TransientFetchError: If fetch fails after all attempts
    """
    last_exc: FetchError | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            resp = await send(url)
            metrics.record_fetch_attempt(resp.status_code)
            classify_response(resp, policy, url)
            return resp

        except PermanentFetchError as e:
            e.attempts = attempt
            raise

        except Exception as e:
            if not policy.is_retryable(e):
                raise

            if isinstance(e, FetchError):
                err = e
            else:
                # Transport errors never produced a response
                metrics.record_fetch_attempt(None)
                err = TransientFetchError(
                    f"{policy.name}: {type(e).__name__} for {url}: {e}"
                )
                err.__cause__ = e
            err.attempts = attempt
            last_exc = err

            if attempt >= policy.max_attempts:
                break

            sleep_s = policy.delay_for(err, attempt)
            reason = "429" if isinstance(err, RateLimitedError) else (
                "5xx" if err.status_code else "transport"
            )
            metrics.record_retry(reason)
            logger.warning(
                f"{policy.name}: {err} - retrying in {sleep_s:.1f}s "
                f"(attempt {attempt}/{policy.max_attempts})"
            )
            await sleep(sleep_s)

    if last_exc is None:
        raise TransientFetchError(f"{policy.name}: no attempts made for {url}")
    raise last_exc

"""
Retrying HTTP fetcher for provider calls.

- Overall deadline per attempt (in-flight call is cancelled past it)
- Exponential backoff with jitter on transport errors, 429 and 5xx
- 429 Retry-After header respected over the computed backoff
- Other 4xx returned immediately
- The last response or error is always surfaced to the caller
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from catalogsync.providers.rate_limiter import TokenBucket

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 5
    base_delay: float = 0.5  # seconds
    max_delay: float = 30.0  # cap for computed backoff
    jitter: float = 0.5  # fraction of the delay added at random


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """
    Parse a Retry-After header value into seconds.

    Accepts delta-seconds or an HTTP date. Returns None when absent or unparseable.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    now = now or datetime.now(UTC)
    return max(0.0, (when - now).total_seconds())


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class RetryingFetcher:
    """
    Wraps an httpx.AsyncClient with rate limiting, deadlines and retries.

    Usage:
        async with httpx.AsyncClient() as client:
            fetcher = RetryingFetcher(client, limiter)
            response = await fetcher.request("GET", url, params={...})
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        limiter: TokenBucket | None = None,
        retry_config: RetryConfig | None = None,
        timeout: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.limiter = limiter
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self._sleep = sleep
        self.request_count = 0

    def backoff_delay(self, attempt: int) -> float:
        """base * 2^attempt plus random fractional jitter, capped at max_delay."""
        cfg = self.retry_config
        delay = cfg.base_delay * (2**attempt)
        delay += random.uniform(0, cfg.jitter * delay)
        return min(delay, cfg.max_delay)

    async def request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """
        Execute one logical request.

        Returns:
            The first non-retryable response, or the last response once
            retries are exhausted.

        Raises:
            httpx.TransportError / TimeoutError: If every attempt failed
            without a response.
        """
        max_retries = self.retry_config.max_retries
        last_response: httpx.Response | None = None
        last_error: Exception | None = None

        for attempt in range(max_retries + 1):
            if self.limiter is not None:
                await self.limiter.acquire()

            self.request_count += 1
            try:
                async with asyncio.timeout(self.timeout):
                    response = await self.client.request(
                        method, url, params=params, json=json, headers=headers
                    )
            except (httpx.TransportError, TimeoutError) as e:
                last_error = e
                last_response = None
                reason = f"{type(e).__name__}: {e}"
                delay = self.backoff_delay(attempt)
            else:
                if not is_retryable_status(response.status_code):
                    return response

                last_response = response
                last_error = None
                reason = f"HTTP {response.status_code}"
                delay = self.backoff_delay(attempt)
                if response.status_code == 429:
                    retry_after = parse_retry_after(response.headers.get("Retry-After"))
                    if retry_after is not None:
                        delay = retry_after

            if attempt == max_retries:
                break

            logger.warning(
                "Retrying %s %s in %.2fs (attempt %d/%d): %s",
                method,
                url,
                delay,
                attempt + 1,
                max_retries,
                reason,
            )
            await self._sleep(delay)

        if last_response is not None:
            logger.error(
                "Giving up on %s %s after %d attempts: HTTP %d",
                method,
                url,
                max_retries + 1,
                last_response.status_code,
            )
            return last_response

        logger.error(
            "Giving up on %s %s after %d attempts: %s", method, url, max_retries + 1, last_error
        )
        raise last_error  # type: ignore[misc]

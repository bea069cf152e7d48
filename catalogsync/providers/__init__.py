"""
Catalog provider access.

Rate limiting, retrying HTTP, pagination and record mapping for the
upstream card-pricing API.
"""

from catalogsync.providers.fetcher import RetryConfig, RetryingFetcher
from catalogsync.providers.justtcg import JustTCGProvider, open_provider
from catalogsync.providers.rate_limiter import TokenBucket, get_rate_limiter

__all__ = [
    "JustTCGProvider",
    "RetryConfig",
    "RetryingFetcher",
    "TokenBucket",
    "get_rate_limiter",
    "open_provider",
]

"""Tests for the token bucket rate limiter."""

import pytest

from catalogsync.providers.rate_limiter import TokenBucket, get_rate_limiter


class FakeClock:
    """Manually advanced monotonic clock; sleeping advances it."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class TestTokenBucket:
    async def test_starts_full(self, clock: FakeClock) -> None:
        """A new bucket holds its full capacity."""
        bucket = TokenBucket(capacity=5, refill_rate=1.0, clock=clock, sleep=clock.sleep)

        assert bucket.available() == 5

    async def test_acquire_debits_one_token(self, clock: FakeClock) -> None:
        """Each acquire takes exactly one token without waiting while tokens remain."""
        bucket = TokenBucket(capacity=3, refill_rate=1.0, clock=clock, sleep=clock.sleep)

        await bucket.acquire()
        await bucket.acquire()

        assert bucket.available() == 1
        assert clock.sleeps == []

    async def test_waits_for_refill_when_empty(self, clock: FakeClock) -> None:
        """An empty bucket suspends the caller until a token has refilled."""
        bucket = TokenBucket(capacity=1, refill_rate=2.0, clock=clock, sleep=clock.sleep)

        await bucket.acquire()
        await bucket.acquire()

        assert clock.sleeps == [pytest.approx(0.5)]
        assert bucket.available() == 0

    async def test_refill_never_exceeds_capacity(self, clock: FakeClock) -> None:
        """Idle time refills the bucket only up to capacity."""
        bucket = TokenBucket(capacity=4, refill_rate=10.0, clock=clock, sleep=clock.sleep)
        for _ in range(4):
            await bucket.acquire()

        clock.now += 3600

        assert bucket.available() == 4

    async def test_available_never_negative(self, clock: FakeClock) -> None:
        """Draining the bucket leaves zero whole tokens, not a negative count."""
        bucket = TokenBucket(capacity=2, refill_rate=0.1, clock=clock, sleep=clock.sleep)
        for _ in range(5):
            await bucket.acquire()

        assert bucket.available() >= 0

    async def test_wait_is_capped(self, clock: FakeClock) -> None:
        """A single suspension never exceeds max_wait; the loop waits again."""
        bucket = TokenBucket(
            capacity=1, refill_rate=0.1, clock=clock, sleep=clock.sleep, max_wait=2.0
        )
        await bucket.acquire()

        await bucket.acquire()

        assert all(s <= 2.0 for s in clock.sleeps)
        assert sum(clock.sleeps) == pytest.approx(10.0)

    def test_rejects_invalid_configuration(self) -> None:
        """Capacity below one or a non-positive refill rate is rejected."""
        with pytest.raises(ValueError):
            TokenBucket(capacity=0, refill_rate=1.0)
        with pytest.raises(ValueError):
            TokenBucket(capacity=1, refill_rate=0)


class TestGetRateLimiter:
    def test_one_bucket_per_provider(self) -> None:
        """Callers in the same process share one bucket per provider."""
        assert get_rate_limiter("justtcg") is get_rate_limiter("justtcg")
        assert get_rate_limiter("justtcg") is not get_rate_limiter("other")

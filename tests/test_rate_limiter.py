"""
Tests for the admin OTP rate limiters.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from studyabroad.services.rate_limiter import DatabaseRateLimiter, InMemoryRateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


# ============================================================================
# In-memory sliding window
# ============================================================================


class TestInMemoryRateLimiter:
    @pytest.mark.asyncio
    async def test_allows_up_to_max_requests(self):
        limiter = InMemoryRateLimiter(max_requests=3, window_seconds=900, clock=FakeClock())

        decisions = [await limiter.acquire("admin@example.com") for _ in range(3)]

        assert [d.allowed for d in decisions] == [True, True, True]
        assert [d.remaining for d in decisions] == [2, 1, 0]

    @pytest.mark.asyncio
    async def test_fourth_request_denied_with_retry_after(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(max_requests=3, window_seconds=900, clock=clock)
        for _ in range(3):
            await limiter.acquire("admin@example.com")

        clock.now += 100.4
        decision = await limiter.acquire("admin@example.com")

        assert decision.allowed is False
        assert decision.remaining == 0
        assert decision.retry_after_seconds == 800

    @pytest.mark.asyncio
    async def test_window_slides(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(max_requests=2, window_seconds=60, clock=clock)
        await limiter.acquire("k")
        clock.now += 30
        await limiter.acquire("k")

        clock.now += 30
        assert (await limiter.acquire("k")).allowed is True

        assert (await limiter.acquire("k")).allowed is False

    @pytest.mark.asyncio
    async def test_denied_requests_do_not_consume_slots(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(max_requests=1, window_seconds=60, clock=clock)
        await limiter.acquire("k")
        for _ in range(5):
            await limiter.acquire("k")

        clock.now += 60
        assert (await limiter.acquire("k")).allowed is True

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        limiter = InMemoryRateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())

        assert (await limiter.acquire("a@example.com")).allowed is True
        assert (await limiter.acquire("b@example.com")).allowed is True
        assert (await limiter.acquire("a@example.com")).allowed is False

    @pytest.mark.asyncio
    async def test_retry_after_is_at_least_one_second(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(max_requests=1, window_seconds=60, clock=clock)
        await limiter.acquire("k")

        clock.now += 59.999
        assert (await limiter.acquire("k")).retry_after_seconds == 1

    @pytest.mark.asyncio
    async def test_reset(self):
        limiter = InMemoryRateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())
        await limiter.acquire("a")
        await limiter.acquire("b")

        limiter.reset("a")
        assert (await limiter.acquire("a")).allowed is True
        assert (await limiter.acquire("b")).allowed is False

        limiter.reset()
        assert (await limiter.acquire("b")).allowed is True


# ============================================================================
# Database-backed window
# ============================================================================


class TestDatabaseRateLimiter:
    @pytest.mark.asyncio
    async def test_allows_under_limit(self, db_session: AsyncMock):
        limiter = DatabaseRateLimiter(db_session, max_requests=3, window_seconds=900)

        with patch(
            "studyabroad.db.repositories.admin_otps.count_since",
            AsyncMock(return_value=(1, datetime.now(UTC))),
        ) as count_since:
            decision = await limiter.acquire("admin@example.com")

        assert decision.allowed is True
        assert decision.remaining == 1
        args = count_since.await_args.args
        assert args[1] == "admin@example.com"
        assert datetime.now(UTC) - args[2] >= timedelta(seconds=899)

    @pytest.mark.asyncio
    async def test_denies_at_limit_until_oldest_leaves_window(self, db_session: AsyncMock):
        limiter = DatabaseRateLimiter(db_session, max_requests=3, window_seconds=900)
        oldest = datetime.now(UTC) - timedelta(seconds=300)

        with patch(
            "studyabroad.db.repositories.admin_otps.count_since",
            AsyncMock(return_value=(3, oldest)),
        ):
            decision = await limiter.acquire("admin@example.com")

        assert decision.allowed is False
        assert 595 <= decision.retry_after_seconds <= 600

    @pytest.mark.asyncio
    async def test_denied_without_oldest_retries_after_one_second(self, db_session: AsyncMock):
        limiter = DatabaseRateLimiter(db_session, max_requests=1, window_seconds=900)

        with patch(
            "studyabroad.db.repositories.admin_otps.count_since",
            AsyncMock(return_value=(1, None)),
        ):
            decision = await limiter.acquire("admin@example.com")

        assert decision.allowed is False
        assert decision.retry_after_seconds == 1

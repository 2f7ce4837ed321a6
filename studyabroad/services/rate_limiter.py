"""
Rate limiting for admin OTP requests.

Two backends behind one protocol:
- InMemoryRateLimiter: sliding window per process. Approximate; resets on
  restart and is not shared between instances.
- DatabaseRateLimiter: counts OTP rows issued inside the window, so every
  instance sees the same count.
"""

import math
import time
from collections import defaultdict, deque
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from studyabroad.db.repositories import admin_otps
from studyabroad.models.domain import RateLimitDecision

logger = get_logger(__name__)


class RateLimiter(Protocol):
    """Decides whether one more request for `key` fits in the window."""

    async def acquire(self, key: str) -> RateLimitDecision:
        """Consume one slot for `key` if available."""
        ...


class InMemoryRateLimiter:
    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = defaultdict(deque)

    async def acquire(self, key: str) -> RateLimitDecision:
        now = self._clock()
        hits = self._hits[key]
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()

        if len(hits) >= self.max_requests:
            retry_after = math.ceil(self.window_seconds - (now - hits[0]))
            return RateLimitDecision(allowed=False, remaining=0, retry_after_seconds=max(retry_after, 1))

        hits.append(now)
        return RateLimitDecision(allowed=True, remaining=self.max_requests - len(hits))

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._hits.clear()
        else:
            self._hits.pop(key, None)


class DatabaseRateLimiter:
    """
    Window count taken from admin_otps.

    `acquire` does not write anything: the OTP row created after an allowed
    request is what occupies the slot.
    """

    def __init__(self, session: AsyncSession, max_requests: int, window_seconds: float) -> None:
        self.session = session
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    async def acquire(self, key: str) -> RateLimitDecision:
        now = datetime.now(UTC)
        window = timedelta(seconds=self.window_seconds)
        count, oldest = await admin_otps.count_since(self.session, key, now - window)

        if count >= self.max_requests:
            retry_after = 1
            if oldest is not None:
                retry_after = max(math.ceil((oldest + window - now).total_seconds()), 1)
            return RateLimitDecision(allowed=False, remaining=0, retry_after_seconds=retry_after)

        return RateLimitDecision(allowed=True, remaining=self.max_requests - count - 1)

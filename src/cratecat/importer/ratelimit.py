"""Request throttling and per-source mutable state."""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional

from loguru import logger
from pydantic import BaseModel, Field

WINDOW_SECONDS = 60.0


class RateLimitConfig(BaseModel):
    """Quota and retry policy for one external source."""

    requests_per_second: float = Field(default=10, gt=0)
    requests_per_minute: int = Field(default=180, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_seconds: float = Field(default=1.0, ge=0)  # Doubles on each retry
    max_retry_delay_seconds: float = Field(default=10.0, ge=0)
    request_timeout_seconds: float = Field(default=10.0, gt=0)

    def backoff(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        return min(self.retry_delay_seconds * (2 ** (attempt - 1)), self.max_retry_delay_seconds)


@dataclass
class SourceState:
    """Mutable state for one configured source. Owned by its importer."""

    request_count: int = 0
    last_request_at: Optional[float] = None  # Clock time of the last granted slot
    window: deque = field(default_factory=deque)  # Granted slot times in the last minute
    access_token: Optional[str] = None
    token_expires_at: Optional[float] = None  # Wall-clock epoch seconds
    lock: threading.Lock = field(default_factory=threading.Lock)
    token_lock: threading.Lock = field(default_factory=threading.Lock)


class RateLimiter:
    """Grants request slots no faster than the configured ceilings.

    A caller that arrives too early is delayed until its slot, never refused.
    Slots are reserved under the lock and slept on outside it, so concurrent
    callers queue up in arrival order.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        state: Optional[SourceState] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.state = state or SourceState()
        self._clock = clock
        self._sleep = sleep

    def acquire(self) -> float:
        """Block until a request may be sent.

        Returns:
            Seconds spent waiting.
        """
        interval = 1.0 / self.config.requests_per_second
        limit = self.config.requests_per_minute
        state = self.state

        with state.lock:
            now = self._clock()
            slot = now
            if state.last_request_at is not None:
                slot = max(slot, state.last_request_at + interval)

            while state.window and state.window[0] <= slot - WINDOW_SECONDS:
                state.window.popleft()
            if len(state.window) >= limit:
                slot = max(slot, state.window[-limit] + WINDOW_SECONDS)

            state.window.append(slot)
            state.last_request_at = slot
            state.request_count += 1

        wait = slot - now
        if wait > 0:
            logger.debug(f"Rate limit: delaying request by {wait:.3f}s")
            self._sleep(wait)
        return max(wait, 0.0)

    @property
    def request_count(self) -> int:
        with self.state.lock:
            return self.state.request_count

    def reset_request_count(self) -> None:
        with self.state.lock:
            self.state.request_count = 0

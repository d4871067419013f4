"""Tests for request throttling."""

import threading

import pytest

from cratecat.importer.ratelimit import RateLimitConfig, RateLimiter, SourceState


class FakeClock:
    """Clock that only moves when slept on."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestRateLimitConfig:
    def test_backoff_doubles_and_caps(self):
        config = RateLimitConfig(retry_delay_seconds=1, max_retry_delay_seconds=5)
        assert [config.backoff(n) for n in (1, 2, 3, 4)] == [1, 2, 4, 5]

    def test_rejects_nonpositive_rate(self):
        with pytest.raises(ValueError):
            RateLimitConfig(requests_per_second=0)


class TestRateLimiter:
    def test_first_request_is_immediate(self, clock):
        limiter = RateLimiter(RateLimitConfig(), clock=clock, sleep=clock.sleep)
        assert limiter.acquire() == 0
        assert clock.sleeps == []

    def test_per_second_spacing(self, clock):
        limiter = RateLimiter(RateLimitConfig(requests_per_second=2), clock=clock, sleep=clock.sleep)
        waits = [limiter.acquire() for _ in range(3)]
        assert waits == pytest.approx([0, 0.5, 0.5])
        assert limiter.request_count == 3

    def test_per_minute_window(self, clock):
        config = RateLimitConfig(requests_per_second=1000, requests_per_minute=3)
        limiter = RateLimiter(config, clock=clock, sleep=clock.sleep)
        for _ in range(3):
            limiter.acquire()

        start = clock.now
        limiter.acquire()
        # The fourth request waits until the first leaves the window
        assert clock.now == pytest.approx(start - 0.002 + 60)

    def test_no_wait_after_idle(self, clock):
        limiter = RateLimiter(RateLimitConfig(requests_per_second=1), clock=clock, sleep=clock.sleep)
        limiter.acquire()
        clock.now += 5
        assert limiter.acquire() == 0

    def test_reset_request_count(self, clock):
        limiter = RateLimiter(RateLimitConfig(), clock=clock, sleep=clock.sleep)
        limiter.acquire()
        limiter.reset_request_count()
        assert limiter.request_count == 0

    def test_shared_state_counts(self, clock):
        state = SourceState()
        first = RateLimiter(RateLimitConfig(), state, clock=clock, sleep=clock.sleep)
        second = RateLimiter(RateLimitConfig(), state, clock=clock, sleep=clock.sleep)
        first.acquire()
        second.acquire()
        assert state.request_count == 2

    def test_concurrent_callers_get_distinct_slots(self):
        config = RateLimitConfig(requests_per_second=100, requests_per_minute=1000)
        limiter = RateLimiter(config)
        threads = [threading.Thread(target=limiter.acquire) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        slots = list(limiter.state.window)
        assert len(slots) == 10
        gaps = [b - a for a, b in zip(slots, slots[1:])]
        assert all(gap >= 0.01 - 1e-9 for gap in gaps)

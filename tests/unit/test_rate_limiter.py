"""Unit tests for the download rate limiter."""

import pytest

from src.core.rate_limiter import RateLimitConfig, SlidingWindowLimiter, get_rate_limiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock: FakeClock) -> SlidingWindowLimiter:
    return SlidingWindowLimiter(RateLimitConfig(max_requests=5, window_seconds=60), clock=clock)


class TestSlidingWindowLimiter:
    """Tests for SlidingWindowLimiter.hit."""

    def test_sixth_hit_in_window_rejected(self, limiter: SlidingWindowLimiter) -> None:
        decisions = [limiter.hit("download:1.2.3.4") for _ in range(6)]

        assert [d.allowed for d in decisions] == [True] * 5 + [False]
        assert decisions[4].remaining == 0
        assert decisions[5].retry_after == 60

    def test_allowance_returns_as_window_slides(self, limiter: SlidingWindowLimiter, clock: FakeClock) -> None:
        for _ in range(5):
            limiter.hit("download:1.2.3.4")
            clock.now += 10

        # First hit was 50s ago; it leaves the window 10s from now.
        assert limiter.hit("download:1.2.3.4").retry_after == 10
        clock.now += 10
        assert limiter.hit("download:1.2.3.4").allowed

    def test_keys_are_independent(self, limiter: SlidingWindowLimiter) -> None:
        for _ in range(5):
            limiter.hit("download:1.1.1.1")

        assert limiter.hit("download:2.2.2.2").allowed
        assert not limiter.hit("download:1.1.1.1").allowed

    def test_sweep_forgets_idle_keys(self, limiter: SlidingWindowLimiter, clock: FakeClock) -> None:
        limiter.hit("download:1.1.1.1")
        clock.now += 30
        limiter.hit("download:2.2.2.2")
        clock.now += 31

        assert limiter.sweep() == 1
        assert limiter.tracked_keys == 1


class TestGetRateLimiter:
    """Tests for settings-driven configuration."""

    def test_defaults_from_settings(self) -> None:
        limiter = get_rate_limiter()

        assert limiter.config.max_requests == 5
        assert limiter.config.window_seconds == 60
        assert get_rate_limiter() is limiter

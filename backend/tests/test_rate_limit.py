"""
Tests for the in-memory rate limiter.

Tests: RateLimiter sliding window, remaining(), reset(), rate_limit dependency.
"""
from types import SimpleNamespace

import pytest

from domain.errors import RateLimitError
from middleware import rate_limit as rate_limit_module
from middleware.rate_limit import RateLimiter, rate_limit


class _Clock:
    """Stand-in for time.monotonic that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock(monkeypatch):
    fake = _Clock()
    monkeypatch.setattr(rate_limit_module, "time", SimpleNamespace(monotonic=fake))
    return fake


def _request(ip: str = "10.0.0.1", route_path: str = "/orders"):
    return SimpleNamespace(
        client=SimpleNamespace(host=ip),
        scope={"route": SimpleNamespace(path=route_path)},
        url=SimpleNamespace(path=route_path),
    )


class TestRateLimiter:

    @pytest.mark.unit
    def test_allows_up_to_limit_then_blocks(self, clock):
        limiter = RateLimiter()
        assert [limiter.check("k", 3, 60) for _ in range(4)] == [True, True, True, False]

    @pytest.mark.unit
    def test_blocked_request_not_recorded(self, clock):
        limiter = RateLimiter()
        limiter.check("k", 1, 60)
        limiter.check("k", 1, 60)
        assert len(limiter._requests["k"]) == 1

    @pytest.mark.unit
    def test_keys_are_independent(self, clock):
        limiter = RateLimiter()
        limiter.check("a", 1, 60)
        assert limiter.check("a", 1, 60) is False
        assert limiter.check("b", 1, 60) is True

    @pytest.mark.unit
    def test_window_slides(self, clock):
        limiter = RateLimiter()
        limiter.check("k", 2, 10)
        clock.now += 6
        limiter.check("k", 2, 10)
        assert limiter.check("k", 2, 10) is False

        clock.now += 5  # first request is now outside the window
        assert limiter.check("k", 2, 10) is True
        assert limiter.check("k", 2, 10) is False

    @pytest.mark.unit
    def test_remaining(self, clock):
        limiter = RateLimiter()
        assert limiter.remaining("k", 5, 60) == 5
        limiter.check("k", 5, 60)
        limiter.check("k", 5, 60)
        assert limiter.remaining("k", 5, 60) == 3
        for _ in range(10):
            limiter.check("k", 5, 60)
        assert limiter.remaining("k", 5, 60) == 0

    @pytest.mark.unit
    def test_reset_clears_all_windows(self, clock):
        limiter = RateLimiter()
        limiter.check("a", 1, 60)
        limiter.check("b", 1, 60)
        limiter.reset()
        assert limiter.check("a", 1, 60) is True
        assert limiter.check("b", 1, 60) is True


class TestRateLimitDependency:

    @pytest.mark.unit
    async def test_raises_429_over_limit(self, clock):
        check = rate_limit(max_requests=2, window_seconds=30)
        await check(_request())
        await check(_request())
        with pytest.raises(RateLimitError) as exc:
            await check(_request())
        assert exc.value.status_code == 429
        assert exc.value.details == {"retryAfter": 30, "limit": 2}

    @pytest.mark.unit
    async def test_keyed_by_client_and_route(self, clock):
        check = rate_limit(max_requests=1, window_seconds=30)
        await check(_request(ip="10.0.0.1", route_path="/orders"))
        await check(_request(ip="10.0.0.2", route_path="/orders"))
        await check(_request(ip="10.0.0.1", route_path="/orders/{order_id}/verify"))
        with pytest.raises(RateLimitError):
            await check(_request(ip="10.0.0.1", route_path="/orders"))

"""
Tests for the fixed-window rate limiter.
"""

import pytest
from starlette.requests import Request

from discubot.exceptions import RateLimitExceededError
from discubot.utils.rate_limit import (
    RateLimitPreset,
    RateLimiter,
    get_client_identifier,
    rate_limit,
    rate_limit_headers,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_request(headers=None, client=("10.0.0.1", 1234), path="/api/webhooks/slack") -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": path,
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
        "query_string": b"",
        "server": ("testserver", 80),
        "scheme": "http",
    }
    return Request(scope)


class TestRateLimiter:
    """Tests for RateLimiter windows."""

    def test_counts_within_window(self):
        limiter = RateLimiter(clock=FakeClock())
        results = [limiter.check_rate_limit("ip", "/x", 3, 60) for _ in range(4)]
        assert [r.allowed for r in results] == [True, True, True, False]
        assert results[2].remaining == 0
        assert results[3].current == 4

    def test_window_resets(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        for _ in range(3):
            limiter.check_rate_limit("ip", "/x", 2, 60)
        clock.now += 61
        result = limiter.check_rate_limit("ip", "/x", 2, 60)
        assert result.allowed
        assert result.current == 1

    def test_keys_are_independent(self):
        limiter = RateLimiter(clock=FakeClock())
        limiter.check_rate_limit("a", "/x", 1, 60)
        assert limiter.check_rate_limit("b", "/x", 1, 60).allowed
        assert limiter.check_rate_limit("a", "/y", 1, 60).allowed
        assert not limiter.check_rate_limit("a", "/x", 1, 60).allowed

    def test_expired_windows_are_swept(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock, sweep_interval=10)
        limiter.check_rate_limit("a", "/x", 5, 5)
        limiter.check_rate_limit("b", "/x", 5, 5)
        clock.now += 30
        limiter.check_rate_limit("c", "/x", 5, 5)
        assert len(limiter) == 1

    def test_reset(self):
        limiter = RateLimiter(clock=FakeClock())
        limiter.check_rate_limit("a", "/x", 1, 60)
        limiter.reset("a", "/x")
        assert limiter.check_rate_limit("a", "/x", 1, 60).allowed


class TestRateLimitHelpers:
    """Tests for request identification and enforcement."""

    def test_identifier_precedence(self):
        assert get_client_identifier(make_request({"cf-connecting-ip": "1.1.1.1", "x-forwarded-for": "2.2.2.2"})) == "1.1.1.1"
        assert get_client_identifier(make_request({"x-forwarded-for": "2.2.2.2, 3.3.3.3"})) == "2.2.2.2"
        assert get_client_identifier(make_request({"x-real-ip": "4.4.4.4"})) == "4.4.4.4"
        assert get_client_identifier(make_request()) == "10.0.0.1"

    def test_rate_limit_raises_with_details(self):
        limiter = RateLimiter(clock=FakeClock())
        preset = RateLimitPreset(1, 60, "Slow down")
        request = make_request()
        rate_limit(request, None, preset, limiter=limiter)

        with pytest.raises(RateLimitExceededError) as exc_info:
            rate_limit(request, None, preset, limiter=limiter)

        error = exc_info.value
        assert error.status_code == 429
        assert error.limit == 1
        assert error.remaining == 0
        assert error.to_dict()["message"] == "Slow down"

    def test_headers_round_reset_up(self):
        limiter = RateLimiter(clock=FakeClock())
        result = limiter.check_rate_limit("a", "/x", 10, 59.5)
        headers = rate_limit_headers(result)
        assert headers == {"RateLimit-Limit": "10", "RateLimit-Remaining": "9", "RateLimit-Reset": "60"}

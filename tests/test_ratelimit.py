"""Test per-requester rate limiting"""

import pytest

from jukebox.errors import RateLimited
from jukebox.ratelimit import RateLimiter


class TestRateLimiter:
    def test_second_action_inside_interval_rejected(self):
        limiter = RateLimiter(2.0)
        limiter.check("u1", now=100.0)
        with pytest.raises(RateLimited):
            limiter.check("u1", now=101.5)

    def test_action_after_interval_accepted(self):
        limiter = RateLimiter(2.0)
        limiter.check("u1", now=100.0)
        limiter.check("u1", now=102.5)

    def test_rejection_does_not_refresh_window(self):
        limiter = RateLimiter(2.0)
        limiter.check("u1", now=100.0)
        with pytest.raises(RateLimited):
            limiter.check("u1", now=101.9)
        # measured from the accepted action at 100.0, not the rejected one
        limiter.check("u1", now=102.0)

    def test_requesters_are_independent(self):
        limiter = RateLimiter(2.0)
        limiter.check("u1", now=100.0)
        limiter.check("u2", now=100.1)
        with pytest.raises(RateLimited):
            limiter.check("u2", now=100.2)

    def test_zero_interval_disables(self):
        limiter = RateLimiter(0)
        for _ in range(3):
            limiter.check("u1", now=100.0)
        assert len(limiter) == 0

    def test_message_is_human_readable(self):
        limiter = RateLimiter(2.0, message="Slow down.")
        limiter.check("u1", now=0.0)
        with pytest.raises(RateLimited, match="Slow down."):
            limiter.check("u1", now=1.0)

    def test_bounded_map_evicts_oldest(self):
        limiter = RateLimiter(10.0, max_entries=2)
        limiter.check("u1", now=0.0)
        limiter.check("u2", now=1.0)
        limiter.check("u3", now=2.0)

        assert len(limiter) == 2
        # u1 was evicted, so it is accepted again
        limiter.check("u1", now=3.0)
        with pytest.raises(RateLimited):
            limiter.check("u3", now=3.0)

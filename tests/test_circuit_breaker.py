"""Tests for the per-feed circuit breaker."""

import pytest

from core.domain.exceptions import CircuitOpenError
from core.services.circuit_breaker import CircuitBreaker


class TestCircuitBreaker:
    """Trip, auto-reset, ensure_closed."""

    def test_closed_by_default(self, clock):
        breaker = CircuitBreaker(feed_key="price", reset_after_s=60, clock=clock)
        assert not breaker.is_open()
        breaker.ensure_closed()

    def test_trip_opens(self, clock):
        breaker = CircuitBreaker(feed_key="price", reset_after_s=60, clock=clock)
        breaker.trip("append timed out")
        assert breaker.is_open()
        with pytest.raises(CircuitOpenError):
            breaker.ensure_closed()
        assert breaker.status()["reason"] == "append timed out"

    def test_auto_reset(self, clock):
        breaker = CircuitBreaker(feed_key="price", reset_after_s=60, clock=clock)
        breaker.trip("x")
        clock.advance(59)
        assert breaker.is_open()
        clock.advance(1)
        assert not breaker.is_open()
        assert breaker.status() == {"open": False, "reason": None, "resets_in_s": 0.0}

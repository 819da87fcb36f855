"""Tests for agentvault.circuit_breaker — fail fast against a dead bridge."""

import time

import pytest

from agentvault.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
)


async def _ok():
    return "ok"


async def _boom():
    raise ConnectionError("bridge down")


class TestCircuitBreakerInit:
    def test_defaults(self):
        cb = CircuitBreaker()
        assert cb.state("bridge") == CircuitState.CLOSED

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            CircuitBreaker(failure_threshold=0)

    def test_invalid_timeout(self):
        with pytest.raises(ValueError):
            CircuitBreaker(recovery_timeout=0)

    def test_invalid_half_open(self):
        with pytest.raises(ValueError):
            CircuitBreaker(half_open_max_calls=0)


class TestTransitions:
    @pytest.mark.asyncio
    async def test_success_passes_through(self):
        cb = CircuitBreaker()
        assert await cb.call("bridge", _ok) == "ok"
        assert cb.stats("bridge").total_successes == 1

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        cb = CircuitBreaker(failure_threshold=2)
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await cb.call("bridge", _boom)
        assert cb.is_open("bridge")

        called = []

        async def tracked():
            called.append(1)
            return "ok"

        with pytest.raises(CircuitOpenError) as exc:
            await cb.call("bridge", tracked)
        assert exc.value.service == "bridge"
        assert called == []

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self):
        cb = CircuitBreaker(failure_threshold=2)
        with pytest.raises(ConnectionError):
            await cb.call("bridge", _boom)
        await cb.call("bridge", _ok)
        with pytest.raises(ConnectionError):
            await cb.call("bridge", _boom)
        assert cb.state("bridge") == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_then_closed(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0.05)
        with pytest.raises(ConnectionError):
            await cb.call("bridge", _boom)
        assert cb.is_open("bridge")
        time.sleep(0.06)
        assert cb.state("bridge") == CircuitState.HALF_OPEN
        await cb.call("bridge", _ok)
        assert cb.state("bridge") == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0.05)
        with pytest.raises(ConnectionError):
            await cb.call("bridge", _boom)
        time.sleep(0.06)
        with pytest.raises(ConnectionError):
            await cb.call("bridge", _boom)
        assert cb.is_open("bridge")

    @pytest.mark.asyncio
    async def test_unlisted_errors_do_not_count(self):
        cb = CircuitBreaker(failure_threshold=1, failure_types=(ConnectionError,))

        async def rejected():
            raise ValueError("circuit said no")

        with pytest.raises(ValueError):
            await cb.call("bridge", rejected)
        assert cb.state("bridge") == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_state_change_callback(self):
        changes = []
        cb = CircuitBreaker(failure_threshold=1,
                            on_state_change=lambda s, old, new: changes.append((s, old, new)))
        with pytest.raises(ConnectionError):
            await cb.call("bridge", _boom)
        assert changes == [("bridge", CircuitState.CLOSED, CircuitState.OPEN)]

    @pytest.mark.asyncio
    async def test_reset(self):
        cb = CircuitBreaker(failure_threshold=1)
        with pytest.raises(ConnectionError):
            await cb.call("bridge", _boom)
        cb.reset("bridge")
        assert cb.state("bridge") == CircuitState.CLOSED

    def test_stats_to_dict(self):
        cb = CircuitBreaker()
        cb.record_failure("bridge")
        d = cb.stats("bridge").to_dict()
        assert d["state"] == "closed"
        assert d["total_failures"] == 1

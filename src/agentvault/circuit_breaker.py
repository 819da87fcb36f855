"""agentvault.circuit_breaker — Stop probing a contract bridge that is down.

A dead bridge costs a full timeout on every call. After ``failure_threshold``
consecutive failures the circuit opens and calls fail fast with
CircuitOpenError until ``recovery_timeout`` has passed; then a limited number
of trial calls decide whether it closes again.

States:
    CLOSED   : bridge calls pass through
    OPEN     : bridge calls are rejected immediately
    HALF_OPEN: trial calls allowed to test recovery

Usage:
    breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=30.0)
    try:
        state = await breaker.call("bridge", lambda: client.get("/state"))
    except CircuitOpenError:
        serve_from_simulated_ledger()
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised when a call is rejected because the circuit is open."""

    def __init__(self, service: str, retry_after: float):
        self.service = service
        self.retry_after = retry_after
        super().__init__(f"Circuit open for '{service}'; retry after {retry_after:.1f}s")


@dataclass
class CircuitStats:
    service: str
    state: CircuitState
    failure_count: int
    total_calls: int
    total_failures: int
    total_successes: int
    last_failure_time: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "total_calls": self.total_calls,
            "total_failures": self.total_failures,
            "total_successes": self.total_successes,
        }


@dataclass
class _Circuit:
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure_time: float = 0.0
    last_state_change: float = 0.0
    total_calls: int = 0
    total_failures: int = 0
    total_successes: int = 0
    half_open_successes: int = 0


class CircuitBreaker:
    """Per-service circuit breaker for awaitable calls.

    Args:
        failure_threshold: Consecutive failures before opening the circuit.
        recovery_timeout: Seconds to wait before allowing trial calls.
        half_open_max_calls: Trial successes needed to close the circuit.
        on_state_change: Optional callback(service, old_state, new_state).
        failure_types: Exception types that count as failures; anything else
            propagates without touching the circuit.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        half_open_max_calls: int = 1,
        on_state_change: Optional[Callable[[str, CircuitState, CircuitState], None]] = None,
        failure_types: tuple[type[BaseException], ...] = (Exception,),
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if recovery_timeout <= 0:
            raise ValueError("recovery_timeout must be positive")
        if half_open_max_calls < 1:
            raise ValueError("half_open_max_calls must be >= 1")

        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._half_open_max = half_open_max_calls
        self._on_state_change = on_state_change
        self._failure_types = failure_types
        self._circuits: dict[str, _Circuit] = {}
        self._lock = threading.Lock()

    def _get(self, service: str) -> _Circuit:
        if service not in self._circuits:
            self._circuits[service] = _Circuit(last_state_change=time.monotonic())
        return self._circuits[service]

    def _set_state(self, service: str, c: _Circuit, new_state: CircuitState) -> None:
        old = c.state
        if old == new_state:
            return
        c.state = new_state
        c.last_state_change = time.monotonic()
        if new_state == CircuitState.HALF_OPEN:
            c.half_open_successes = 0
        if self._on_state_change:
            self._on_state_change(service, old, new_state)

    def _maybe_half_open(self, service: str, c: _Circuit) -> None:
        if c.state == CircuitState.OPEN:
            if time.monotonic() - c.last_state_change >= self._recovery_timeout:
                self._set_state(service, c, CircuitState.HALF_OPEN)

    def state(self, service: str) -> CircuitState:
        with self._lock:
            c = self._get(service)
            self._maybe_half_open(service, c)
            return c.state

    def is_open(self, service: str) -> bool:
        return self.state(service) == CircuitState.OPEN

    def _before_call(self, service: str) -> None:
        with self._lock:
            c = self._get(service)
            self._maybe_half_open(service, c)
            if c.state == CircuitState.OPEN:
                elapsed = time.monotonic() - c.last_state_change
                raise CircuitOpenError(service, self._recovery_timeout - elapsed)
            c.total_calls += 1

    async def call(self, service: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Await ``fn()`` through the breaker.

        Raises CircuitOpenError without calling ``fn`` while the circuit is open.
        """
        self._before_call(service)
        try:
            result = await fn()
        except self._failure_types:
            self.record_failure(service)
            raise
        self.record_success(service)
        return result

    def record_failure(self, service: str) -> None:
        with self._lock:
            c = self._get(service)
            c.failure_count += 1
            c.total_failures += 1
            c.last_failure_time = time.monotonic()
            if c.state == CircuitState.HALF_OPEN:
                self._set_state(service, c, CircuitState.OPEN)
            elif c.state == CircuitState.CLOSED and c.failure_count >= self._failure_threshold:
                self._set_state(service, c, CircuitState.OPEN)

    def record_success(self, service: str) -> None:
        with self._lock:
            c = self._get(service)
            c.total_successes += 1
            if c.state == CircuitState.HALF_OPEN:
                c.half_open_successes += 1
                if c.half_open_successes >= self._half_open_max:
                    c.failure_count = 0
                    self._set_state(service, c, CircuitState.CLOSED)
            elif c.state == CircuitState.CLOSED:
                c.failure_count = 0

    def reset(self, service: Optional[str] = None) -> None:
        """Reset one or all circuits to CLOSED."""
        with self._lock:
            if service:
                self._circuits.pop(service, None)
            else:
                self._circuits.clear()

    def stats(self, service: str) -> CircuitStats:
        with self._lock:
            c = self._get(service)
            self._maybe_half_open(service, c)
            return CircuitStats(
                service=service,
                state=c.state,
                failure_count=c.failure_count,
                total_calls=c.total_calls,
                total_failures=c.total_failures,
                total_successes=c.total_successes,
                last_failure_time=c.last_failure_time or None,
            )

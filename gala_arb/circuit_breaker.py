"""Per-route circuit breakers for illiquid DEX pools.

A breaker counts consecutive liquidity failures for one DEX route
(``source->intermediate``, shared by both trade directions) and moves
CLOSED → OPEN once ``max_failures`` is reached. While OPEN the route is
skipped without quoting. Once ``retry_interval_seconds`` have passed since
the last failure the breaker is HALF_OPEN and lets a single provisional
attempt through: any successful quote closes it, failure re-opens it. State
lives for the lifetime of the owning object only.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

LOGGER = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    max_failures: int = 3
    retry_interval_seconds: float = 300.0


@dataclass(frozen=True)
class CircuitBreakerSnapshot:
    """Read-only snapshot of circuit breaker state."""

    name: str
    state: CircuitState
    consecutive_failures: int
    last_failure_ts: float | None
    total_trips: int


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._name = name
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._tripped = False
        self._consecutive_failures = 0
        self._last_failure_ts: float | None = None
        self._total_trips = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def last_failure_ts(self) -> float | None:
        return self._last_failure_ts

    @property
    def state(self) -> CircuitState:
        if not self._tripped:
            return CircuitState.CLOSED
        if self._last_failure_ts is None:
            return CircuitState.HALF_OPEN
        elapsed = self._clock() - self._last_failure_ts
        if elapsed >= self._config.retry_interval_seconds:
            return CircuitState.HALF_OPEN
        return CircuitState.OPEN

    @property
    def is_open(self) -> bool:
        return self.state is CircuitState.OPEN

    def allows_request(self) -> bool:
        """False only while OPEN; HALF_OPEN lets the provisional attempt through."""
        return self.state is not CircuitState.OPEN

    def record_success(self) -> None:
        if self._tripped:
            LOGGER.info(
                "circuit breaker '%s' CLOSED after successful quote (was %d consecutive failures)",
                self._name,
                self._consecutive_failures,
            )
        self._tripped = False
        self._consecutive_failures = 0

    def record_failure(self) -> None:
        previous = self.state
        self._consecutive_failures += 1
        self._last_failure_ts = self._clock()

        if previous is CircuitState.HALF_OPEN:
            LOGGER.info(
                "circuit breaker '%s' re-OPENED: provisional attempt failed (failures=%d)",
                self._name,
                self._consecutive_failures,
            )
            return
        if previous is CircuitState.CLOSED and self._consecutive_failures >= self._config.max_failures:
            self._tripped = True
            self._total_trips += 1
            LOGGER.info(
                "circuit breaker '%s' OPENED after %d consecutive liquidity failures; retry in %.0fs (trip #%d)",
                self._name,
                self._consecutive_failures,
                self._config.retry_interval_seconds,
                self._total_trips,
            )

    def snapshot(self) -> CircuitBreakerSnapshot:
        return CircuitBreakerSnapshot(
            name=self._name,
            state=self.state,
            consecutive_failures=self._consecutive_failures,
            last_failure_ts=self._last_failure_ts,
            total_trips=self._total_trips,
        )


class CircuitBreakerRegistry:
    """Breakers keyed by DEX route, created on first use."""

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, pair_key: str) -> CircuitBreaker:
        breaker = self._breakers.get(pair_key)
        if breaker is None:
            breaker = CircuitBreaker(pair_key, self._config, clock=self._clock)
            self._breakers[pair_key] = breaker
        return breaker

    def snapshots(self) -> list[CircuitBreakerSnapshot]:
        return [b.snapshot() for b in self._breakers.values()]

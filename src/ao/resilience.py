"""Retry helper and circuit breakers for calls to external collaborators."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, TypeVar

from .errors import CircuitOpenError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def with_retry(
    fn: Callable[[], T],
    *,
    retries: int = 3,
    delay: float = 0.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> T:
    """Call ``fn`` up to ``retries + 1`` times and re-raise the last error."""
    for attempt in range(retries + 1):
        try:
            return fn()
        except retry_on as error:
            if attempt >= retries:
                raise
            LOGGER.debug("Attempt %d/%d failed: %s", attempt + 1, retries + 1, error)
            if delay > 0:
                time.sleep(delay)
    raise AssertionError("unreachable")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(slots=True, frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 2
    recovery_timeout: float = 180.0


class CircuitBreaker:
    """Fail fast after repeated failures of one collaborator.

    After ``failure_threshold`` consecutive failures the breaker opens and
    rejects calls.  Once ``recovery_timeout`` seconds have passed a single
    trial call is let through; success closes the breaker, failure reopens it.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at: Optional[float] = None

    def _admit(self) -> None:
        with self._lock:
            if self.state is CircuitState.CLOSED:
                return
            if self.state is CircuitState.HALF_OPEN:
                raise CircuitOpenError(f"Circuit '{self.name}' is probing recovery")
            elapsed = self._clock() - (self.opened_at or 0.0)
            if elapsed < self.config.recovery_timeout:
                raise CircuitOpenError(
                    f"Circuit '{self.name}' is open after {self.failure_count} failure(s); "
                    f"retry in {self.config.recovery_timeout - elapsed:.0f}s"
                )
            self.state = CircuitState.HALF_OPEN
            LOGGER.info("Circuit '%s' half-open; allowing a trial call", self.name)

    def record_success(self) -> None:
        with self._lock:
            if self.state is not CircuitState.CLOSED:
                LOGGER.info("Circuit '%s' closed", self.name)
            self.state = CircuitState.CLOSED
            self.failure_count = 0
            self.opened_at = None

    def record_failure(self, error: BaseException | None = None) -> None:
        with self._lock:
            self.failure_count += 1
            if self.state is CircuitState.HALF_OPEN or self.failure_count >= self.config.failure_threshold:
                self.state = CircuitState.OPEN
                self.opened_at = self._clock()
                LOGGER.warning(
                    "Circuit '%s' opened after %d failure(s): %s",
                    self.name,
                    self.failure_count,
                    error,
                )

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        self._admit()
        try:
            result = fn(*args, **kwargs)
        except Exception as error:
            self.record_failure(error)
            raise
        self.record_success()
        return result

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.config.failure_threshold,
            "recovery_timeout": self.config.recovery_timeout,
        }


class CircuitBreakerRegistry:
    """Breakers keyed by collaborator name, owned by whoever constructs it."""

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name, self._config, clock=self._clock)
                self._breakers[name] = breaker
            return breaker

    def call(self, name: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return self.get(name).call(fn, *args, **kwargs)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            breakers = dict(self._breakers)
        return {name: breaker.status() for name, breaker in breakers.items()}


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "with_retry",
]

"""
Circuit breaker and bounded retry.

A ``RetryPolicy`` bounds how often one request is repeated; a ``CircuitBreaker``
tracks an endpoint across all requests. Call sites compose them as
``breaker.call(lambda: retry_call(fn, label=..., policy=...))``.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import CircuitOpenError, MonitorConflictError, MonitorNotFoundError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class BreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2
    reset_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    initial_delay_seconds: float = 0.1
    max_delay_seconds: float = 5.0
    multiplier: float = 2.0


# Reads recover quickly; writes trip sooner and stay open longer.
READ_BREAKER = BreakerConfig(failure_threshold=5, success_threshold=2, reset_timeout_seconds=30.0)
WRITE_BREAKER = BreakerConfig(failure_threshold=4, success_threshold=2, reset_timeout_seconds=45.0)
READ_RETRY = RetryPolicy(max_retries=3, initial_delay_seconds=0.1, max_delay_seconds=2.0)
WRITE_RETRY = RetryPolicy(max_retries=2, initial_delay_seconds=0.2, max_delay_seconds=3.0)
NO_RETRY = RetryPolicy(max_retries=0)

# Outbound HTTP: one breaker per retailer host, one for the inference endpoint.
RETAILER_BREAKER = BreakerConfig(failure_threshold=5, success_threshold=1, reset_timeout_seconds=60.0)
INFERENCE_BREAKER = BreakerConfig(failure_threshold=3, success_threshold=1, reset_timeout_seconds=60.0)


@dataclass(frozen=True)
class BreakerStatus:
    name: str
    state: CircuitState
    failures: int
    successes: int
    opened_at: float | None
    next_retry_at: float | None


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        config: BreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self._cfg = config or BreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._opened_at: float | None = None
        self._next_retry_at: float | None = None

    @property
    def config(self) -> BreakerConfig:
        return self._cfg

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def _set_state(self, new_state: CircuitState) -> None:
        if new_state != self._state:
            logger.info("[breaker] name=%s transition=%s->%s", self.name, self._state.value, new_state.value)
            self._state = new_state

    def allow_request(self) -> bool:
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.OPEN:
                if self._next_retry_at is not None and self._clock() >= self._next_retry_at:
                    self._set_state(CircuitState.HALF_OPEN)
                    self._successes = 0
                    return True
                return False
            return True

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            if self._state == CircuitState.HALF_OPEN:
                self._successes += 1
                if self._successes >= self._cfg.success_threshold:
                    self._reset_locked()

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            logger.warning("[breaker] name=%s failure=%d/%d", self.name, self._failures, self._cfg.failure_threshold)
            if self._state == CircuitState.HALF_OPEN or self._failures >= self._cfg.failure_threshold:
                self._open_locked()

    def _open_locked(self) -> None:
        now = self._clock()
        if self._state != CircuitState.OPEN:
            logger.error(
                "[breaker] name=%s opened failures=%d retry_after=%.1fs",
                self.name,
                self._failures,
                self._cfg.reset_timeout_seconds,
            )
        self._set_state(CircuitState.OPEN)
        self._successes = 0
        self._opened_at = now
        self._next_retry_at = now + self._cfg.reset_timeout_seconds

    def _reset_locked(self) -> None:
        self._set_state(CircuitState.CLOSED)
        self._failures = 0
        self._successes = 0
        self._opened_at = None
        self._next_retry_at = None

    def close(self) -> None:
        with self._lock:
            self._reset_locked()

    def status(self) -> BreakerStatus:
        with self._lock:
            return BreakerStatus(
                name=self.name,
                state=self._state,
                failures=self._failures,
                successes=self._successes,
                opened_at=self._opened_at,
                next_retry_at=self._next_retry_at,
            )

    def open_error(self) -> CircuitOpenError:
        with self._lock:
            retry_in = (self._next_retry_at or 0.0) - self._clock()
        return CircuitOpenError(self.name, retry_in)

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        if not self.allow_request():
            raise self.open_error()
        try:
            result = fn(*args, **kwargs)
        except (MonitorConflictError, MonitorNotFoundError):
            # The endpoint answered; a logical rejection is not an outage.
            self.record_success()
            raise
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result


class CircuitBreakerRegistry:
    """Named breakers, one per protected operation."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str, config: BreakerConfig | None = None) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name, config, clock=self._clock)
                self._breakers[name] = breaker
            return breaker

    def statuses(self) -> dict[str, BreakerStatus]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.name: b.status() for b in breakers}

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for b in breakers:
            b.close()


# Logical outcomes are not transient; repeating them cannot help.
_NON_RETRYABLE = (MonitorConflictError, MonitorNotFoundError, CircuitOpenError)


def _wait_for(policy: RetryPolicy) -> Callable[[RetryCallState], float]:
    backoff = wait_exponential(
        multiplier=policy.initial_delay_seconds,
        exp_base=policy.multiplier,
        max=policy.max_delay_seconds,
    )

    def wait(retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        hinted = getattr(exc, "retry_after_seconds", None)
        if hinted is not None:
            return min(policy.max_delay_seconds, max(0.0, float(hinted)))
        return backoff(retry_state)

    return wait


def retry_call(
    fn: Callable[[], T],
    *,
    label: str,
    policy: RetryPolicy = READ_RETRY,
    sleep: Callable[[float], None] = time.sleep,
    retry_on: tuple[type[BaseException], ...] | None = None,
) -> T:
    """Run ``fn`` with exponential backoff.

    ``retry_on`` narrows retries to those exception types. An exception carrying
    ``retry_after_seconds`` sets the next delay, capped at the policy maximum.
    """

    def _before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "[retry] label=%s attempt=%d/%d next_in=%.2fs error=%s: %s",
            label,
            retry_state.attempt_number,
            policy.max_retries + 1,
            delay,
            type(exc).__name__,
            exc,
        )

    retry = retry_if_not_exception_type(_NON_RETRYABLE)
    if retry_on:
        retry = retry & retry_if_exception_type(retry_on)

    retrying = Retrying(
        stop=stop_after_attempt(policy.max_retries + 1),
        wait=_wait_for(policy),
        retry=retry,
        before_sleep=_before_sleep,
        sleep=sleep,
        reraise=True,
    )
    return retrying(fn)

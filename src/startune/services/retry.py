"""Retry-with-backoff executor used by every network-facing operation.

The executor does not impose a deadline across attempts: each attempt inherits
whatever timeout the wrapped operation defines, and the total wait is bounded
only by `max_attempts` and `max_delay`.
"""

from __future__ import annotations

import asyncio
import logging
import random
import threading
import time
from collections import Counter
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Callable, Protocol, TypeVar

from startune.errors import ClassifiedError, classify
from startune.services.error_analytics import (
    ErrorAnalytics,
    ErrorContext,
    ResolutionMethod,
)
from startune.utils.async_utils import run_blocking

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_if_retryable(error: ClassifiedError) -> bool:
    return error.is_retryable


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff configuration; safe to share between concurrent invocations."""

    max_attempts: int
    base_delay: float
    max_delay: float
    multiplier: float = 2.0
    jitter_fraction: float = 0.0
    should_retry: Callable[[ClassifiedError], bool] = retry_if_retryable

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        if not 0 <= self.jitter_fraction <= 1:
            raise ValueError("jitter_fraction must be within [0, 1]")

    def nominal_delay(self, attempt: int) -> float:
        """Return the un-jittered delay after failed attempt number `attempt`."""
        exponent = max(0, attempt - 1)
        return min(self.base_delay * (self.multiplier**exponent), self.max_delay)


NETWORK_POLICY = RetryPolicy(
    max_attempts=3, base_delay=1.0, max_delay=30.0, multiplier=2.0, jitter_fraction=0.1
)
CRITICAL_POLICY = RetryPolicy(
    max_attempts=5, base_delay=0.5, max_delay=60.0, multiplier=2.0, jitter_fraction=0.15
)
QUICK_POLICY = RetryPolicy(
    max_attempts=2, base_delay=0.5, max_delay=5.0, multiplier=2.0, jitter_fraction=0.05
)


class JitterSource(Protocol):
    def uniform(self, a: float, b: float) -> float: ...


@dataclass
class RetryStats:
    """Aggregated outcome counters for one operation label."""

    operation_name: str
    success_count: int = 0
    failure_count: int = 0
    total_attempts: int = 0
    retried_attempts: int = 0
    total_duration: float = 0.0
    error_types: Counter[str] = field(default_factory=Counter)

    def record_success(self, attempt_count: int, duration: float) -> None:
        self.success_count += 1
        self.total_attempts += attempt_count
        self.retried_attempts += max(0, attempt_count - 1)
        self.total_duration += duration

    def record_failure(self, error: ClassifiedError, attempt_count: int) -> None:
        self.failure_count += 1
        self.total_attempts += attempt_count
        self.retried_attempts += max(0, attempt_count - 1)
        self.error_types[error.error_type] += 1

    @property
    def success_rate(self) -> float:
        total = self.success_count + self.failure_count
        return self.success_count / total if total else 0.0

    @property
    def average_attempts(self) -> float:
        total = self.success_count + self.failure_count
        return self.total_attempts / total if total else 0.0

    @property
    def average_duration(self) -> float:
        return self.total_duration / self.success_count if self.success_count else 0.0


class ResilientExecutor:
    """Runs fallible async operations under a `RetryPolicy`."""

    def __init__(
        self,
        *,
        analytics: ErrorAnalytics | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        jitter: JitterSource | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._analytics = analytics
        self._sleep = sleep
        self._jitter = jitter or random.Random()
        self._clock = clock
        self._stats_lock = threading.Lock()
        self._stats: dict[str, RetryStats] = {}

    def compute_delay(self, policy: RetryPolicy, attempt: int) -> float:
        """Return the jittered backoff delay after failed attempt `attempt`."""
        delay = policy.nominal_delay(attempt)
        spread = delay * policy.jitter_fraction
        if spread > 0:
            delay += self._jitter.uniform(-spread, spread)
        return max(0.0, delay)

    async def execute(
        self,
        policy: RetryPolicy,
        operation: Callable[[], Awaitable[T]],
        label: str | None = None,
    ) -> T:
        """Await `operation` until it succeeds or the policy gives up.

        The exception that ends the loop is re-raised unchanged.
        """
        started = self._clock()
        last_error: ClassifiedError | None = None
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await operation()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                classified = classify(exc)
                last_error = classified
                if not policy.should_retry(classified):
                    self._record_failure(label, classified, attempt, retryable=False)
                    raise
                if attempt >= policy.max_attempts:
                    self._record_failure(label, classified, attempt, retryable=True)
                    raise
                delay = self.compute_delay(policy, attempt)
                logger.debug(
                    "Retry attempt %d/%d for %s after %.2fs: %s",
                    attempt,
                    policy.max_attempts,
                    label or "operation",
                    delay,
                    classified.error_type,
                )
                await self._sleep(delay)
                continue
            self._record_success(label, attempt, self._clock() - started, last_error)
            return result

    async def execute_blocking(
        self,
        policy: RetryPolicy,
        func: Callable[[], T],
        label: str | None = None,
    ) -> T:
        """Like `execute`, running each attempt of a blocking call off-loop."""
        return await self.execute(policy, lambda: run_blocking(func), label)

    def statistics(self) -> dict[str, RetryStats]:
        with self._stats_lock:
            return dict(self._stats)

    def clear_statistics(self) -> None:
        with self._stats_lock:
            self._stats.clear()

    def _stats_for(self, label: str) -> RetryStats:
        stats = self._stats.get(label)
        if stats is None:
            stats = RetryStats(operation_name=label)
            self._stats[label] = stats
        return stats

    def _record_success(
        self,
        label: str | None,
        attempt: int,
        duration: float,
        last_error: ClassifiedError | None,
    ) -> None:
        if label is None:
            return
        with self._stats_lock:
            self._stats_for(label).record_success(attempt, duration)
        if last_error is not None and self._analytics is not None:
            self._analytics.record_resolution(last_error, ResolutionMethod.RETRY)

    def _record_failure(
        self,
        label: str | None,
        error: ClassifiedError,
        attempt: int,
        *,
        retryable: bool,
    ) -> None:
        logger.warning(
            "%s failed after %d attempt(s): %s (%s)",
            label or "operation",
            attempt,
            error.error_type,
            "retries exhausted" if retryable else "not retryable",
        )
        if label is not None:
            with self._stats_lock:
                self._stats_for(label).record_failure(error, attempt)
        if self._analytics is not None:
            self._analytics.record_error(error, ErrorContext(operation=label))

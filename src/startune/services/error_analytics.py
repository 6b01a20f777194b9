"""Privacy-preserving error analytics.

Only classified error labels, retryability and operation names are kept; no
track names, artist names or catalog ids ever reach the buffer. Events live in
a bounded FIFO ring buffer and are aggregated on demand.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

from startune.errors import classify

logger = logging.getLogger(__name__)

DEFAULT_MAX_EVENTS = 100
TOP_ERROR_TYPES = 10
TOP_OPERATIONS = 5


class ResolutionMethod(str, Enum):
    """How a previously observed error stopped being a problem."""

    RETRY = "retry"
    USER_ACTION = "user_action"
    AUTOMATIC = "automatic"
    MANUAL = "manual"
    IGNORED = "ignored"


@dataclass(frozen=True)
class ErrorContext:
    """Call-site context attached to an error event. Must not carry PII."""

    operation: str | None = None
    location: str | None = None
    user_action: str | None = None


@dataclass(frozen=True)
class ErrorEvent:
    timestamp: datetime
    error_type: str
    is_retryable: bool
    operation: str | None = None
    location: str | None = None
    user_action: str | None = None


@dataclass(frozen=True)
class ErrorTypeSummary:
    type: str
    count: int


@dataclass(frozen=True)
class OperationSummary:
    operation: str
    error_count: int


@dataclass(frozen=True)
class AnalyticsSummary:
    total_errors: int
    errors_last_24_hours: int
    errors_last_7_days: int
    retryable_errors_fraction: float
    top_error_types: list[ErrorTypeSummary] = field(default_factory=list)
    top_error_operations: list[OperationSummary] = field(default_factory=list)
    errors_by_hour: dict[int, int] = field(default_factory=dict)
    resolution_stats: dict[str, dict[str, int]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["errors_by_hour"] = {
            str(hour): count for hour, count in sorted(self.errors_by_hour.items())
        }
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ErrorAnalytics:
    """Thread-safe bounded recorder of classified failures."""

    def __init__(
        self,
        *,
        max_events: int = DEFAULT_MAX_EVENTS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_events < 1:
            raise ValueError("max_events must be >= 1")
        self._max_events = max_events
        self._clock = clock or _utc_now
        self._lock = threading.Lock()
        self._events: deque[ErrorEvent] = deque(maxlen=max_events)
        self._resolutions: dict[str, Counter[str]] = {}

    @property
    def max_events(self) -> int:
        return self._max_events

    def record_error(
        self, error: BaseException, context: ErrorContext | None = None
    ) -> ErrorEvent:
        """Classify and append one failure, evicting the oldest when full."""
        classified = classify(error)
        ctx = context or ErrorContext()
        event = ErrorEvent(
            timestamp=self._clock(),
            error_type=classified.error_type,
            is_retryable=classified.is_retryable,
            operation=ctx.operation,
            location=ctx.location,
            user_action=ctx.user_action,
        )
        with self._lock:
            self._events.append(event)
        logger.debug(
            "Error recorded: %s in %s",
            event.error_type,
            event.operation or "unknown",
        )
        return event

    def record_resolution(self, error: BaseException, method: ResolutionMethod) -> None:
        error_type = classify(error).error_type
        with self._lock:
            self._resolutions.setdefault(error_type, Counter())[method.value] += 1
        logger.debug("Error resolved: %s via %s", error_type, method.value)

    def events(self) -> list[ErrorEvent]:
        """Return a copy of buffered events, oldest first."""
        with self._lock:
            return list(self._events)

    def summary(self, now: datetime | None = None) -> AnalyticsSummary:
        with self._lock:
            events = list(self._events)
            resolutions = {
                error_type: dict(counts)
                for error_type, counts in self._resolutions.items()
            }
        reference = now or self._clock()
        total = len(events)
        last_day = sum(
            1 for event in events if reference - event.timestamp < timedelta(days=1)
        )
        last_week = sum(
            1 for event in events if reference - event.timestamp < timedelta(days=7)
        )
        retryable = sum(1 for event in events if event.is_retryable)
        type_counts = Counter(event.error_type for event in events)
        operation_counts = Counter(event.operation or "unknown" for event in events)
        by_hour = Counter(event.timestamp.astimezone().hour for event in events)
        return AnalyticsSummary(
            total_errors=total,
            errors_last_24_hours=last_day,
            errors_last_7_days=last_week,
            retryable_errors_fraction=(retryable / total) if total else 0.0,
            top_error_types=[
                ErrorTypeSummary(type=name, count=count)
                for name, count in type_counts.most_common(TOP_ERROR_TYPES)
            ],
            top_error_operations=[
                OperationSummary(operation=name, error_count=count)
                for name, count in operation_counts.most_common(TOP_OPERATIONS)
            ],
            errors_by_hour=dict(by_hour),
            resolution_stats=resolutions,
        )

    def export_json(self) -> str:
        return self.summary().to_json()

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            self._resolutions.clear()

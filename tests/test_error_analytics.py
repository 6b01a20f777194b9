"""Tests for the bounded error analytics recorder."""

from __future__ import annotations

import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from startune.errors import (
    AuthorizationReason,
    ClassifiedError,
    NetworkReason,
    ResourceReason,
)
from startune.services.error_analytics import (
    ErrorAnalytics,
    ErrorContext,
    ResolutionMethod,
)

BASE = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class SteppingClock:
    def __init__(self, start: datetime = BASE) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now


def test_ring_buffer_evicts_oldest_first() -> None:
    analytics = ErrorAnalytics(max_events=3)
    for name in ("a", "b", "c", "d", "e"):
        analytics.record_error(
            ClassifiedError(NetworkReason.TIMEOUT), ErrorContext(operation=name)
        )

    events = analytics.events()
    assert [event.operation for event in events] == ["c", "d", "e"]
    assert analytics.summary().total_errors == 3


def test_summary_counts_windows_and_ranks_types() -> None:
    clock = SteppingClock(BASE - timedelta(days=3))
    analytics = ErrorAnalytics(clock=clock)
    analytics.record_error(ClassifiedError(AuthorizationReason.DENIED))
    clock.now = BASE - timedelta(hours=2)
    analytics.record_error(
        ClassifiedError(NetworkReason.TIMEOUT), ErrorContext(operation="catalog.search")
    )
    analytics.record_error(
        ClassifiedError(NetworkReason.TIMEOUT), ErrorContext(operation="catalog.search")
    )
    analytics.record_error(
        ClassifiedError(ResourceReason.NOT_FOUND, "song"),
        ErrorContext(operation="favorites.add"),
    )

    summary = analytics.summary(now=BASE)

    assert summary.total_errors == 4
    assert summary.errors_last_24_hours == 3
    assert summary.errors_last_7_days == 4
    assert summary.retryable_errors_fraction == pytest.approx(0.5)
    assert summary.top_error_types[0].type == "Network.timeout"
    assert summary.top_error_types[0].count == 2
    assert summary.top_error_operations[0].operation == "catalog.search"
    assert summary.top_error_operations[0].error_count == 2
    assert sum(summary.errors_by_hour.values()) == 4


def test_empty_summary() -> None:
    summary = ErrorAnalytics().summary()
    assert summary.total_errors == 0
    assert summary.retryable_errors_fraction == 0.0
    assert summary.top_error_types == []
    assert summary.resolution_stats == {}


def test_raw_exceptions_are_classified_before_recording() -> None:
    analytics = ErrorAnalytics()
    event = analytics.record_error(ValueError("Secret Song by Private Artist"))
    assert event.error_type == "Unknown"
    assert "Secret" not in analytics.export_json()


def test_resolutions_are_tallied_per_error_type() -> None:
    analytics = ErrorAnalytics()
    timeout = ClassifiedError(NetworkReason.TIMEOUT)
    analytics.record_resolution(timeout, ResolutionMethod.RETRY)
    analytics.record_resolution(timeout, ResolutionMethod.RETRY)
    analytics.record_resolution(timeout, ResolutionMethod.USER_ACTION)

    assert analytics.summary().resolution_stats == {
        "Network.timeout": {"retry": 2, "user_action": 1}
    }


def test_export_json_is_parseable() -> None:
    analytics = ErrorAnalytics(clock=SteppingClock())
    analytics.record_error(
        ClassifiedError(NetworkReason.RATE_LIMITED), ErrorContext(operation="search")
    )

    payload = json.loads(analytics.export_json())

    assert payload["total_errors"] == 1
    assert payload["top_error_types"] == [{"type": "Network.rate_limited", "count": 1}]
    assert payload["top_error_operations"] == [
        {"operation": "search", "error_count": 1}
    ]
    assert all(isinstance(hour, str) for hour in payload["errors_by_hour"])


def test_concurrent_appends_keep_buffer_bounded() -> None:
    analytics = ErrorAnalytics(max_events=50)

    def record_many() -> None:
        for _ in range(200):
            analytics.record_error(ClassifiedError(NetworkReason.TIMEOUT))

    threads = [threading.Thread(target=record_many) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(analytics.events()) == 50
    assert analytics.summary().total_errors == 50


def test_clear_drops_events_and_resolutions() -> None:
    analytics = ErrorAnalytics()
    error = ClassifiedError(NetworkReason.TIMEOUT)
    analytics.record_error(error)
    analytics.record_resolution(error, ResolutionMethod.AUTOMATIC)

    analytics.clear()

    assert analytics.events() == []
    assert analytics.summary().resolution_stats == {}


def test_max_events_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ErrorAnalytics(max_events=0)

"""Runtime configuration normalization helpers.

Injectable constants for the composition root plus the deterministic CLI flag
interpretation shared by entrypoints.
"""

from __future__ import annotations

from dataclasses import dataclass

from startune.services.error_analytics import DEFAULT_MAX_EVENTS
from startune.services.resolver import DEFAULT_DEBOUNCE_S
from startune.services.retry import (
    CRITICAL_POLICY,
    NETWORK_POLICY,
    QUICK_POLICY,
    RetryPolicy,
)

DEBOUNCE_MS_MIN = 0
DEBOUNCE_MS_MAX = 5_000
ANALYTICS_EVENTS_MIN = 1
ANALYTICS_EVENTS_MAX = 10_000


@dataclass(frozen=True)
class RuntimeConfig:
    """Constants injected into the monitor; none of these are owned by it."""

    debounce_seconds: float = DEFAULT_DEBOUNCE_S
    analytics_max_events: int = DEFAULT_MAX_EVENTS
    network_policy: RetryPolicy = NETWORK_POLICY
    critical_policy: RetryPolicy = CRITICAL_POLICY
    quick_policy: RetryPolicy = QUICK_POLICY


def resolve_log_level(*, verbose: bool, quiet: bool, default: str = "INFO") -> str:
    """Resolve effective log level from CLI flags.

    Precedence is deterministic: --quiet overrides --verbose, and either flag
    overrides the persisted `default`.
    """
    if quiet:
        return "WARNING"
    if verbose:
        return "DEBUG"
    return default


def clamp_debounce_ms(value: int) -> int:
    return max(DEBOUNCE_MS_MIN, min(int(value), DEBOUNCE_MS_MAX))


def clamp_analytics_max_events(value: int) -> int:
    return max(ANALYTICS_EVENTS_MIN, min(int(value), ANALYTICS_EVENTS_MAX))


def build_runtime_config(
    *, debounce_ms: int | None = None, analytics_max_events: int | None = None
) -> RuntimeConfig:
    """Build a `RuntimeConfig`, clamping user-provided overrides into range."""
    defaults = RuntimeConfig()
    return RuntimeConfig(
        debounce_seconds=clamp_debounce_ms(debounce_ms) / 1000.0
        if debounce_ms is not None
        else defaults.debounce_seconds,
        analytics_max_events=clamp_analytics_max_events(analytics_max_events)
        if analytics_max_events is not None
        else defaults.analytics_max_events,
    )

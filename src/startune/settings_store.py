"""JSON persistence for user preferences.

Loading is tolerant: a missing, unreadable or corrupt file degrades to
defaults with a user-facing notice instead of aborting startup.
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import suppress
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any
from uuid import uuid4

from startune.runtime_config import (
    RuntimeConfig,
    build_runtime_config,
)
from startune.services.error_analytics import DEFAULT_MAX_EVENTS

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}


@dataclass(frozen=True)
class AppSettings:
    """User preferences persisted between launches."""

    launch_at_login: bool = False
    show_notifications: bool = False
    keyboard_shortcut_enabled: bool = False
    debounce_ms: int = 300
    analytics_max_events: int = DEFAULT_MAX_EVENTS
    log_level: str = "INFO"

    def runtime_config(self) -> RuntimeConfig:
        return build_runtime_config(
            debounce_ms=self.debounce_ms,
            analytics_max_events=self.analytics_max_events,
        )


def _coerce_settings(data: dict[str, Any]) -> AppSettings:
    defaults = AppSettings()

    def _bool(key: str, default: bool) -> bool:
        value = data.get(key)
        return value if isinstance(value, bool) else default

    def _int(key: str, default: int) -> int:
        value = data.get(key)
        if isinstance(value, bool) or not isinstance(value, int):
            return default
        return value

    log_level = data.get("log_level")
    if not isinstance(log_level, str) or log_level.upper() not in _LOG_LEVELS:
        log_level = defaults.log_level

    return AppSettings(
        launch_at_login=_bool("launch_at_login", defaults.launch_at_login),
        show_notifications=_bool("show_notifications", defaults.show_notifications),
        keyboard_shortcut_enabled=_bool(
            "keyboard_shortcut_enabled", defaults.keyboard_shortcut_enabled
        ),
        debounce_ms=_int("debounce_ms", defaults.debounce_ms),
        analytics_max_events=_int(
            "analytics_max_events", defaults.analytics_max_events
        ),
        log_level=log_level.upper(),
    )


def load_settings_with_notice(path: Path) -> tuple[AppSettings, str | None]:
    """Load settings and return an optional user-facing notice."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.info("Settings file missing at %s; using defaults.", path)
        return AppSettings(), None
    except OSError as exc:
        logger.warning("Failed to read settings file %s: %s; using defaults.", path, exc)
        return (
            AppSettings(),
            "Settings were reset to defaults.\n"
            "Likely cause: settings file is unreadable due to permissions or IO issues.\n"
            f"Next step: verify access to '{path}' and restart.",
        )

    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Settings file at %s is invalid JSON; using defaults.", path)
        return (
            AppSettings(),
            "Settings were reset to defaults.\n"
            "Likely cause: settings file is corrupt or partially written.\n"
            f"Next step: remove or repair '{path}' and restart.",
        )

    if not isinstance(data, dict):
        logger.warning("Settings file at %s is not a JSON object; using defaults.", path)
        return (
            AppSettings(),
            "Settings were reset to defaults.\n"
            "Likely cause: settings file format is invalid for this app version.\n"
            f"Next step: remove '{path}' and restart.",
        )

    return _coerce_settings(data), None


def load_settings(path: Path) -> AppSettings:
    settings, _notice = load_settings_with_notice(path)
    return settings


def save_settings(path: Path, settings: AppSettings) -> None:
    """Persist settings atomically via write-then-replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.{uuid4().hex}.tmp")
    payload = json.dumps(asdict(settings), indent=2, sort_keys=True)
    attempts = 4
    delay_s = 0.02
    try:
        tmp_path.write_text(payload, encoding="utf-8")
        for attempt in range(1, attempts + 1):
            try:
                tmp_path.replace(path)
                return
            except OSError as exc:
                if not _is_transient_replace_error(exc) or attempt >= attempts:
                    raise
                logger.debug("Settings replace busy (attempt %d); retrying.", attempt)
                time.sleep(delay_s)
                delay_s = min(0.25, delay_s * 2.0)
    finally:
        with suppress(OSError):
            tmp_path.unlink()


def _is_transient_replace_error(exc: OSError) -> bool:
    """Return whether a replace failure is likely a short-lived file lock."""
    if getattr(exc, "winerror", None) in {5, 32}:
        return True
    if exc.errno in {13, 16}:
        return True
    text = str(exc).lower()
    return "used by another process" in text or "resource busy" in text

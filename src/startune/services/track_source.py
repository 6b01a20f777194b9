"""Player notification contract and a scripted source for replay and tests.

A `TrackEventSource` pushes one `PlayerInfo` per player notification. Sources
make no ordering or deduplication promises; the monitor tolerates repeated and
bursty notifications.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass
from typing import Any, Protocol

from startune.services.playback_state import TrackInfo


@dataclass(frozen=True)
class PlayerInfo:
    """One player notification."""

    name: str
    artist: str
    album: str | None = None
    is_playing: bool = False
    position_seconds: float = 0.0
    external_id: str | None = None
    duration_seconds: float | None = None

    def track(self) -> TrackInfo:
        return TrackInfo(
            name=self.name,
            artist=self.artist,
            album=self.album,
            external_id=self.external_id,
            duration_seconds=self.duration_seconds,
        )


class TrackEventSource(Protocol):
    """Asynchronous push source of player notifications."""

    def events(self) -> AsyncIterator[PlayerInfo]: ...


@dataclass(frozen=True)
class ScriptStep:
    """Wait `delay_s`, then deliver `info`."""

    delay_s: float
    info: PlayerInfo


class ScriptedTrackSource:
    """Replays a fixed list of timed notifications."""

    def __init__(self, steps: Iterable[ScriptStep]) -> None:
        self._steps = list(steps)

    @property
    def steps(self) -> list[ScriptStep]:
        return list(self._steps)

    async def events(self) -> AsyncIterator[PlayerInfo]:
        for step in self._steps:
            if step.delay_s > 0:
                await asyncio.sleep(step.delay_s)
            yield step.info


def player_info_from_mapping(data: dict[str, Any]) -> PlayerInfo:
    """Build `PlayerInfo` from a loosely typed mapping, tolerating bad fields."""

    def _str_or_default(value: Any, default: str) -> str:
        return value if isinstance(value, str) else default

    def _str_or_none(value: Any) -> str | None:
        return value if isinstance(value, str) else None

    def _float_or_none(value: Any) -> float | None:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value)

    return PlayerInfo(
        name=_str_or_default(data.get("name"), ""),
        artist=_str_or_default(data.get("artist"), ""),
        album=_str_or_none(data.get("album")),
        is_playing=data.get("playing") is True,
        position_seconds=max(0.0, _float_or_none(data.get("position")) or 0.0),
        external_id=_str_or_none(data.get("external_id")),
        duration_seconds=_float_or_none(data.get("duration")),
    )


def load_script(lines: Iterable[str]) -> ScriptedTrackSource:
    """Parse JSON-lines replay input; blank lines are skipped.

    Raises `ValueError` naming the offending line for malformed input.
    """
    steps: list[ScriptStep] = []
    for number, line in enumerate(lines, start=1):
        text = line.strip()
        if not text:
            continue
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"line {number}: invalid JSON ({exc.msg})") from exc
        if not isinstance(data, dict):
            raise ValueError(f"line {number}: expected a JSON object")
        delay = _float_or_zero(data.get("delay"))
        steps.append(ScriptStep(delay_s=delay, info=player_info_from_mapping(data)))
    return ScriptedTrackSource(steps)


def _float_or_zero(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return max(0.0, float(value))

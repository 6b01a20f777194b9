"""Presentation-facing events and the channel that delivers them.

These three event types are the only outputs the UI layer may depend on.
`EventChannel` delivers them to a single consumer in emission order (FIFO).
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from startune.errors import ClassifiedError
    from startune.services.playback_state import PlaybackSnapshot


@dataclass(frozen=True)
class PlaybackChanged:
    """Emitted whenever the effective playback snapshot changes."""

    snapshot: PlaybackSnapshot


@dataclass(frozen=True)
class FavoriteSucceeded:
    """Emitted once per completed favorite update."""

    song_id: str
    liked: bool


@dataclass(frozen=True)
class FavoriteFailed:
    """Emitted once per failed favorite update, after retries."""

    error: ClassifiedError
    song_id: str | None = None


PresentationEvent = Union[PlaybackChanged, FavoriteSucceeded, FavoriteFailed]


class EventChannel:
    """Unbounded FIFO queue of presentation events with one reader."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[PresentationEvent] = asyncio.Queue()

    async def emit(self, event: object) -> None:
        await self._queue.put(event)  # type: ignore[arg-type]

    async def get(self) -> PresentationEvent:
        return await self._queue.get()

    def drain(self) -> list[PresentationEvent]:
        """Return and remove every queued event without waiting."""
        drained: list[PresentationEvent] = []
        while not self._queue.empty():
            drained.append(self._queue.get_nowait())
        return drained

    def __aiter__(self) -> EventChannel:
        return self

    async def __anext__(self) -> PresentationEvent:
        return await self.get()


def event_payload(event: PresentationEvent) -> dict[str, object]:
    """Return a JSON-serializable description of a presentation event."""
    if isinstance(event, PlaybackChanged):
        return {"event": "playback_changed", **asdict(event.snapshot)}
    if isinstance(event, FavoriteSucceeded):
        return {"event": "favorite_succeeded", "song_id": event.song_id, "liked": event.liked}
    return {
        "event": "favorite_failed",
        "song_id": event.song_id,
        "error_type": event.error.error_type,
        "title": event.error.title,
        "message": event.error.message,
        "recovery_suggestion": event.error.recovery_suggestion,
    }

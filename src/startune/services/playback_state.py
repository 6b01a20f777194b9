"""Single-writer owner of the live playback snapshot.

`PlaybackStateMachine` merges the instantaneous playing flag reported by the
player with catalog songs produced by the resolver. All transitions run under
one `asyncio.Lock`, so playing-flag updates and resolved-song updates are
linearized and every emitted `PlaybackChanged` reflects that order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass, replace
from typing import Callable

from startune.events import PlaybackChanged
from startune.services.catalog import CatalogSong

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackInfo:
    """Raw track identity as reported by the player; compared structurally."""

    name: str
    artist: str
    album: str | None = None
    external_id: str | None = None
    duration_seconds: float | None = None


@dataclass(frozen=True)
class PlaybackSnapshot:
    """What the presentation layer renders.

    `resolved_song` is only ever set while `raw_track` is the track it was
    resolved for; both are cleared whenever playback stops.
    """

    is_playing: bool = False
    raw_track: TrackInfo | None = None
    resolved_song: CatalogSong | None = None
    position_seconds: float = 0.0


class PlaybackStateMachine:
    """Owns `PlaybackSnapshot` and emits a `PlaybackChanged` per transition."""

    def __init__(
        self,
        *,
        emit_event: Callable[[object], Awaitable[None]],
        initial: PlaybackSnapshot | None = None,
    ) -> None:
        self._emit_event = emit_event
        self._snapshot = initial or PlaybackSnapshot()
        self._lock = asyncio.Lock()

    @property
    def snapshot(self) -> PlaybackSnapshot:
        return self._snapshot

    async def on_playing_changed(self, is_playing: bool) -> None:
        """Flip the playing flag; stopping clears any displayed track."""
        async with self._lock:
            if is_playing:
                updated = replace(self._snapshot, is_playing=True)
            else:
                updated = replace(
                    self._snapshot,
                    is_playing=False,
                    raw_track=None,
                    resolved_song=None,
                )
            if self._snapshot.is_playing != is_playing:
                logger.info(
                    "Playback state changed: %s", "playing" if is_playing else "stopped"
                )
            await self._commit(updated)

    async def on_track_changed(self, track: TrackInfo) -> None:
        """Record the player-reported track ahead of catalog resolution."""
        async with self._lock:
            if not self._snapshot.is_playing or self._snapshot.raw_track == track:
                return
            await self._commit(replace(self._snapshot, raw_track=track, resolved_song=None))

    async def on_position_changed(self, position_seconds: float) -> None:
        async with self._lock:
            position = max(0.0, float(position_seconds))
            await self._commit(replace(self._snapshot, position_seconds=position))

    async def on_resolved_song(
        self, song: CatalogSong | None, for_track: TrackInfo
    ) -> None:
        """Attach a resolution result if it still belongs to the current track."""
        async with self._lock:
            if not self._snapshot.is_playing:
                logger.debug("Dropping resolution result; playback is stopped.")
                return
            current = self._snapshot.raw_track
            if current is not None and current != for_track:
                logger.debug("Dropping resolution result for a superseded track.")
                return
            await self._commit(
                replace(self._snapshot, raw_track=for_track, resolved_song=song)
            )

    async def _commit(self, updated: PlaybackSnapshot) -> None:
        if updated == self._snapshot:
            return
        self._snapshot = updated
        # Emitting under the lock keeps event order identical to transition order.
        await self._emit_event(PlaybackChanged(updated))

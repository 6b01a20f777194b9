"""Composition root wiring player notifications to the playback snapshot.

`PlaybackMonitor` builds the analytics recorder, the retry executor, the state
machine, the resolver and the favorite operation exactly once and hands each
of them to its collaborators explicitly. Player notifications are consumed by
a single task, in arrival order.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress

from startune.errors import ClassifiedError, OperationReason
from startune.events import EventChannel, FavoriteFailed
from startune.runtime_config import RuntimeConfig
from startune.services.catalog import CatalogSearch, FavoritesAPI
from startune.services.error_analytics import ErrorAnalytics, ErrorContext
from startune.services.favorites import FavoriteOperation
from startune.services.playback_state import PlaybackSnapshot, PlaybackStateMachine
from startune.services.resolver import DebouncedResolver
from startune.services.retry import ResilientExecutor
from startune.services.track_source import PlayerInfo, TrackEventSource

logger = logging.getLogger(__name__)


class PlaybackMonitor:
    """Owns the core services and feeds them from a `TrackEventSource`."""

    def __init__(
        self,
        *,
        catalog: CatalogSearch,
        favorites_api: FavoritesAPI,
        config: RuntimeConfig | None = None,
        channel: EventChannel | None = None,
        analytics: ErrorAnalytics | None = None,
        executor: ResilientExecutor | None = None,
    ) -> None:
        self.config = config or RuntimeConfig()
        self.channel = channel or EventChannel()
        self.analytics = analytics or ErrorAnalytics(
            max_events=self.config.analytics_max_events
        )
        self.executor = executor or ResilientExecutor(analytics=self.analytics)
        self.state = PlaybackStateMachine(emit_event=self.channel.emit)
        self.resolver = DebouncedResolver(
            catalog=catalog,
            executor=self.executor,
            on_resolved=self.state.on_resolved_song,
            policy=self.config.network_policy,
            debounce_s=self.config.debounce_seconds,
        )
        self.favorites = FavoriteOperation(
            api=favorites_api,
            executor=self.executor,
            emit_event=self.channel.emit,
            add_policy=self.config.critical_policy,
            remove_policy=self.config.network_policy,
        )
        self._consumer: asyncio.Task[None] | None = None

    @property
    def snapshot(self) -> PlaybackSnapshot:
        return self.state.snapshot

    async def handle(self, info: PlayerInfo) -> None:
        """Apply one player notification."""
        await self.state.on_playing_changed(info.is_playing)
        await self.state.on_position_changed(info.position_seconds)
        if not info.is_playing:
            self.resolver.reset()
            return
        track = info.track()
        await self.state.on_track_changed(track)
        self.resolver.submit(track)

    async def run(self, source: TrackEventSource) -> None:
        """Consume `source` until it is exhausted."""
        async for info in source.events():
            await self.handle(info)

    def start(self, source: TrackEventSource) -> None:
        """Consume `source` in a background task."""
        if self._consumer is not None:
            return
        self._consumer = asyncio.create_task(self.run(source))
        logger.info("Playback monitoring started.")

    async def wait_idle(self) -> None:
        """Wait for the consumer (if finite) and any pending resolution."""
        if self._consumer is not None and not self._consumer.done():
            await asyncio.shield(self._consumer)
        await self.resolver.wait_idle()

    async def shutdown(self) -> None:
        if self._consumer is not None:
            self._consumer.cancel()
            with suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None
        await self.resolver.shutdown()
        logger.info("Playback monitoring stopped.")

    async def favorite_current(self) -> bool:
        """Toggle the favorite state of the resolved song being played."""
        song = self.snapshot.resolved_song
        if song is None:
            error = ClassifiedError(
                OperationReason.INVALID_STATE, "no catalog song is playing"
            )
            self.analytics.record_error(
                error, ErrorContext(operation="favorites.toggle", user_action="favorite")
            )
            await self.channel.emit(FavoriteFailed(error=error))
            raise error
        return await self.favorites.toggle_favorite(song)

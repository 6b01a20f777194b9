"""User-initiated favorite updates with per-song request coalescing."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Callable

from startune.errors import classify
from startune.events import FavoriteFailed, FavoriteSucceeded
from startune.services.catalog import CatalogSong, FavoritesAPI
from startune.services.retry import (
    CRITICAL_POLICY,
    NETWORK_POLICY,
    ResilientExecutor,
    RetryPolicy,
)

logger = logging.getLogger(__name__)


class FavoriteOperation:
    """Sets liked state through `FavoritesAPI`, at most one request per song.

    A call for a song that already has a request outstanding awaits that
    request and receives its result (or its `ClassifiedError`) instead of
    issuing a second network call. The remote API cannot be queried, so the
    liked state is tracked locally and defaults to not liked.
    """

    def __init__(
        self,
        *,
        api: FavoritesAPI,
        executor: ResilientExecutor,
        emit_event: Callable[[object], Awaitable[None]],
        add_policy: RetryPolicy = CRITICAL_POLICY,
        remove_policy: RetryPolicy = NETWORK_POLICY,
    ) -> None:
        self._api = api
        self._executor = executor
        self._emit_event = emit_event
        self._add_policy = add_policy
        self._remove_policy = remove_policy
        self._liked: dict[str, bool] = {}
        self._in_flight: dict[str, asyncio.Task[bool]] = {}

    def is_favorite(self, song_id: str) -> bool:
        return self._liked.get(song_id, False)

    def is_pending(self, song_id: str) -> bool:
        return song_id in self._in_flight

    async def toggle_favorite(self, song: CatalogSong) -> bool:
        """Flip the liked state of `song`; return the new state."""
        pending = self._in_flight.get(song.id)
        if pending is not None:
            return await asyncio.shield(pending)
        return await self._submit(song, not self.is_favorite(song.id), self._add_policy)

    async def add_to_favorites(self, song: CatalogSong) -> bool:
        return await self._submit(song, True, self._add_policy)

    async def remove_from_favorites(self, song: CatalogSong) -> bool:
        return await self._submit(song, False, self._remove_policy)

    async def _submit(self, song: CatalogSong, liked: bool, policy: RetryPolicy) -> bool:
        task = self._in_flight.get(song.id)
        if task is None:
            task = asyncio.create_task(self._update(song.id, liked, policy))
            self._in_flight[song.id] = task
            task.add_done_callback(lambda done: self._forget(song.id, done))
        return await asyncio.shield(task)

    def _forget(self, song_id: str, task: asyncio.Task[bool]) -> None:
        if self._in_flight.get(song_id) is task:
            del self._in_flight[song_id]

    async def _update(self, song_id: str, liked: bool, policy: RetryPolicy) -> bool:
        label = "favorites.add" if liked else "favorites.remove"
        try:
            await self._executor.execute(
                policy,
                lambda: self._api.set_favorite(song_id, liked),
                label=label,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = classify(exc)
            logger.warning("Favorite update failed: %s", error.error_type)
            await self._emit_event(FavoriteFailed(error=error, song_id=song_id))
            if error is exc:
                raise
            raise error from exc
        self._liked[song_id] = liked
        logger.info("Favorite state for %s set to %s.", song_id, liked)
        await self._emit_event(FavoriteSucceeded(song_id=song_id, liked=liked))
        return liked

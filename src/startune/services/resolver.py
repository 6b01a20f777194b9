"""Debounced resolution of player tracks into catalog songs.

Phases: IDLE -> PENDING (debounce timer armed) -> RESOLVING -> RESOLVED, or
RESOLVING -> IDLE on failure. Every distinct track bumps a generation counter;
timers for older generations are cancelled and results from older generations
are discarded on arrival. In-flight searches are never aborted, only ignored.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from contextlib import suppress
from enum import Enum
from typing import Callable

from startune.errors import ClassifiedError, classify
from startune.services.catalog import CatalogSearch, CatalogSong, build_search_query
from startune.services.playback_state import TrackInfo
from startune.services.retry import NETWORK_POLICY, ResilientExecutor, RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_S = 0.3
SEARCH_LABEL = "catalog.search"


class ResolverPhase(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    RESOLVING = "resolving"
    RESOLVED = "resolved"


class DebouncedResolver:
    """Turns a noisy stream of `TrackInfo` into at most one search per stable track."""

    def __init__(
        self,
        *,
        catalog: CatalogSearch,
        executor: ResilientExecutor,
        on_resolved: Callable[[CatalogSong | None, TrackInfo], Awaitable[None]],
        policy: RetryPolicy = NETWORK_POLICY,
        debounce_s: float = DEFAULT_DEBOUNCE_S,
    ) -> None:
        if debounce_s < 0:
            raise ValueError("debounce_s must be >= 0")
        self._catalog = catalog
        self._executor = executor
        self._on_resolved = on_resolved
        self._policy = policy
        self._debounce_s = debounce_s
        self._phase = ResolverPhase.IDLE
        self._tracked: TrackInfo | None = None
        self._generation = 0
        self._timer: asyncio.Task[None] | None = None
        self._in_flight: set[asyncio.Task[None]] = set()
        self._last_error: ClassifiedError | None = None

    @property
    def phase(self) -> ResolverPhase:
        return self._phase

    @property
    def tracked(self) -> TrackInfo | None:
        return self._tracked

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def last_error(self) -> ClassifiedError | None:
        return self._last_error

    def submit(self, track: TrackInfo) -> bool:
        """Accept a player-reported track; return False when it is a repeat."""
        if track == self._tracked:
            return False
        self._tracked = track
        self._generation += 1
        self._cancel_timer()
        self._phase = ResolverPhase.PENDING
        self._last_error = None
        self._timer = asyncio.create_task(self._debounce(self._generation, track))
        logger.debug("Track changed; resolution pending (generation %d).", self._generation)
        return True

    def reset(self) -> None:
        """Forget the tracked track so its next appearance resolves again."""
        self._tracked = None
        self._generation += 1
        self._cancel_timer()
        self._phase = ResolverPhase.IDLE

    async def wait_idle(self) -> None:
        """Wait until no debounce timer or search task is outstanding."""
        while True:
            pending = [task for task in (self._timer, *self._in_flight) if task is not None]
            pending = [task for task in pending if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        self.reset()
        tasks = list(self._in_flight)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _debounce(self, generation: int, track: TrackInfo) -> None:
        await asyncio.sleep(self._debounce_s)
        if generation != self._generation:
            return
        self._timer = None
        self._phase = ResolverPhase.RESOLVING
        task = asyncio.create_task(self._resolve(generation, track))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _resolve(self, generation: int, track: TrackInfo) -> None:
        query = build_search_query(track)
        try:
            song = await self._executor.execute(
                self._policy,
                lambda: self._catalog.search(query),
                label=SEARCH_LABEL,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = classify(exc)
            if not self._is_current(generation, track):
                logger.debug("Discarding stale resolution failure (generation %d).", generation)
                return
            self._phase = ResolverPhase.IDLE
            self._last_error = error
            logger.warning("Catalog resolution failed: %s", error.error_type)
            await self._on_resolved(None, track)
            return
        if not self._is_current(generation, track):
            logger.debug("Discarding stale resolution result (generation %d).", generation)
            return
        self._phase = ResolverPhase.RESOLVED
        if song is None:
            logger.info("No catalog match for current track.")
        else:
            logger.info("Resolved current track to catalog song %s.", song.id)
        await self._on_resolved(song, track)

    def _is_current(self, generation: int, track: TrackInfo) -> bool:
        return generation == self._generation and track == self._tracked

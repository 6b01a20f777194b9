"""Catalog search and favorites contracts plus an in-memory implementation.

`CatalogSearch` and `FavoritesAPI` are the remote collaborators the core
depends on. `InMemoryCatalog` implements both deterministically and backs the
replay CLI and the test suite.
"""

from __future__ import annotations

import asyncio
import re
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from startune.services.playback_state import TrackInfo

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class CatalogSong:
    """Canonical song record returned by catalog search."""

    id: str
    title: str
    artist_name: str
    album_title: str | None = None


class CatalogSearch(Protocol):
    """Remote search resolving a free-text query to at most one song."""

    async def search(self, query: str) -> CatalogSong | None: ...


class FavoritesAPI(Protocol):
    """Remote endpoint storing the user's liked state for a song."""

    async def set_favorite(self, song_id: str, liked: bool) -> None: ...


def build_search_query(track: TrackInfo) -> str:
    """Return the catalog query for a player-reported track."""
    return _WHITESPACE.sub(" ", f"{track.name} {track.artist}").strip()


def _normalize(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip().casefold()


class InMemoryCatalog:
    """Dict-backed catalog implementing `CatalogSearch` and `FavoritesAPI`."""

    def __init__(
        self,
        songs: list[CatalogSong] | None = None,
        *,
        latency_s: float = 0.0,
    ) -> None:
        self._songs = list(songs or [])
        self._latency_s = max(0.0, latency_s)
        self._failures: deque[BaseException] = deque()
        self.search_queries: list[str] = []
        self.favorite_calls: list[tuple[str, bool]] = []
        self.favorites: dict[str, bool] = {}

    def add_song(self, song: CatalogSong) -> None:
        self._songs.append(song)

    def fail_next(self, error: BaseException, times: int = 1) -> None:
        """Queue `error` to be raised by the next `times` remote calls."""
        self._failures.extend([error] * times)

    async def search(self, query: str) -> CatalogSong | None:
        self.search_queries.append(query)
        await self._simulate_remote()
        wanted = _normalize(query)
        for song in self._songs:
            if _normalize(f"{song.title} {song.artist_name}") == wanted:
                return song
        for song in self._songs:
            if _normalize(song.title) in wanted and _normalize(song.artist_name) in wanted:
                return song
        return None

    async def set_favorite(self, song_id: str, liked: bool) -> None:
        self.favorite_calls.append((song_id, liked))
        await self._simulate_remote()
        self.favorites[song_id] = liked

    async def _simulate_remote(self) -> None:
        if self._latency_s > 0:
            await asyncio.sleep(self._latency_s)
        else:
            await asyncio.sleep(0)
        if self._failures:
            raise self._failures.popleft()

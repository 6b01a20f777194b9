"""Tests for debounced catalog resolution."""

from __future__ import annotations

import asyncio

import pytest

from startune.errors import AuthorizationReason, ClassifiedError
from startune.services.catalog import CatalogSong, InMemoryCatalog
from startune.services.playback_state import TrackInfo
from startune.services.resolver import DebouncedResolver, ResolverPhase
from startune.services.retry import QUICK_POLICY, ResilientExecutor

TRACK_A = TrackInfo(name="A", artist="X")
TRACK_B = TrackInfo(name="B", artist="Y")
SONG_A = CatalogSong(id="1", title="A", artist_name="X")
SONG_B = CatalogSong(id="2", title="B", artist_name="Y")


def _run(coro):
    return asyncio.run(coro)


async def _no_sleep(_delay: float) -> None:
    return None


class Collector:
    def __init__(self) -> None:
        self.results: list[tuple[CatalogSong | None, TrackInfo]] = []

    async def __call__(self, song: CatalogSong | None, track: TrackInfo) -> None:
        self.results.append((song, track))


class GatedCatalog(InMemoryCatalog):
    """Catalog whose searches block until released, per query."""

    def __init__(self, songs: list[CatalogSong]) -> None:
        super().__init__(songs)
        self.gates: dict[str, asyncio.Event] = {}
        self.errors: dict[str, BaseException] = {}

    async def search(self, query: str) -> CatalogSong | None:
        gate = self.gates.setdefault(query, asyncio.Event())
        self.search_queries.append(query)
        await gate.wait()
        if query in self.errors:
            raise self.errors[query]
        for song in self._songs:
            if f"{song.title} {song.artist_name}" == query:
                return song
        return None

    def release(self, query: str) -> None:
        self.gates.setdefault(query, asyncio.Event()).set()


def _resolver(catalog, collector: Collector, debounce_s: float = 0.02) -> DebouncedResolver:
    return DebouncedResolver(
        catalog=catalog,
        executor=ResilientExecutor(sleep=_no_sleep),
        on_resolved=collector,
        policy=QUICK_POLICY,
        debounce_s=debounce_s,
    )


def test_burst_of_changes_issues_one_search_for_the_last_track() -> None:
    catalog = InMemoryCatalog([SONG_A, SONG_B])
    collector = Collector()

    async def scenario() -> DebouncedResolver:
        resolver = _resolver(catalog, collector)
        for name in ("one", "two", "three", "four"):
            resolver.submit(TrackInfo(name=name, artist="Z"))
            await asyncio.sleep(0.001)
        resolver.submit(TRACK_B)
        await resolver.wait_idle()
        return resolver

    resolver = _run(scenario())
    assert catalog.search_queries == ["B Y"]
    assert collector.results == [(SONG_B, TRACK_B)]
    assert resolver.phase is ResolverPhase.RESOLVED


def test_repeated_track_is_not_resolved_again() -> None:
    catalog = InMemoryCatalog([SONG_A])
    collector = Collector()

    async def scenario() -> list[bool]:
        resolver = _resolver(catalog, collector)
        accepted = [resolver.submit(TRACK_A)]
        await resolver.wait_idle()
        for _ in range(5):
            accepted.append(resolver.submit(TrackInfo(name="A", artist="X")))
        await resolver.wait_idle()
        return accepted

    accepted = _run(scenario())
    assert accepted == [True, False, False, False, False, False]
    assert catalog.search_queries == ["A X"]
    assert len(collector.results) == 1


def test_stale_result_is_discarded_when_it_arrives_late() -> None:
    catalog = GatedCatalog([SONG_A, SONG_B])
    collector = Collector()

    async def scenario() -> DebouncedResolver:
        resolver = _resolver(catalog, collector, debounce_s=0.0)
        resolver.submit(TRACK_A)
        while "A X" not in catalog.search_queries:
            await asyncio.sleep(0)
        resolver.submit(TRACK_B)
        catalog.release("B Y")
        while resolver.phase is not ResolverPhase.RESOLVED:
            await asyncio.sleep(0)
        catalog.release("A X")
        await resolver.wait_idle()
        return resolver

    resolver = _run(scenario())
    assert catalog.search_queries == ["A X", "B Y"]
    assert collector.results == [(SONG_B, TRACK_B)]
    assert resolver.tracked == TRACK_B


def test_stale_failure_is_discarded_when_it_arrives_late() -> None:
    catalog = GatedCatalog([SONG_A, SONG_B])
    catalog.errors["A X"] = ClassifiedError(AuthorizationReason.DENIED)
    collector = Collector()

    async def scenario() -> DebouncedResolver:
        resolver = _resolver(catalog, collector, debounce_s=0.0)
        resolver.submit(TRACK_A)
        while "A X" not in catalog.search_queries:
            await asyncio.sleep(0)
        resolver.submit(TRACK_B)
        catalog.release("B Y")
        while resolver.phase is not ResolverPhase.RESOLVED:
            await asyncio.sleep(0)
        catalog.release("A X")
        await resolver.wait_idle()
        return resolver

    resolver = _run(scenario())
    assert catalog.search_queries == ["A X", "B Y"]
    assert collector.results == [(SONG_B, TRACK_B)]
    assert resolver.phase is ResolverPhase.RESOLVED
    assert resolver.last_error is None


def test_failure_reports_no_song_and_keeps_tracked_track() -> None:
    catalog = InMemoryCatalog([SONG_A])
    catalog.fail_next(ClassifiedError(AuthorizationReason.NOT_AUTHORIZED))
    collector = Collector()

    async def scenario() -> DebouncedResolver:
        resolver = _resolver(catalog, collector)
        resolver.submit(TRACK_A)
        await resolver.wait_idle()
        return resolver

    resolver = _run(scenario())
    assert collector.results == [(None, TRACK_A)]
    assert resolver.phase is ResolverPhase.IDLE
    assert resolver.tracked == TRACK_A
    assert resolver.last_error is not None
    assert resolver.last_error.reason is AuthorizationReason.NOT_AUTHORIZED


def test_transient_failure_is_retried_before_reporting() -> None:
    catalog = InMemoryCatalog([SONG_A])
    catalog.fail_next(TimeoutError())
    collector = Collector()

    async def scenario() -> None:
        resolver = _resolver(catalog, collector)
        resolver.submit(TRACK_A)
        await resolver.wait_idle()

    _run(scenario())
    assert catalog.search_queries == ["A X", "A X"]
    assert collector.results == [(SONG_A, TRACK_A)]


def test_reset_allows_same_track_to_resolve_again() -> None:
    catalog = InMemoryCatalog([SONG_A])
    collector = Collector()

    async def scenario() -> None:
        resolver = _resolver(catalog, collector)
        resolver.submit(TRACK_A)
        await resolver.wait_idle()
        resolver.reset()
        assert resolver.phase is ResolverPhase.IDLE
        assert resolver.submit(TRACK_A) is True
        await resolver.wait_idle()

    _run(scenario())
    assert catalog.search_queries == ["A X", "A X"]


def test_reset_during_debounce_cancels_pending_search() -> None:
    catalog = InMemoryCatalog([SONG_A])
    collector = Collector()

    async def scenario() -> None:
        resolver = _resolver(catalog, collector, debounce_s=0.05)
        resolver.submit(TRACK_A)
        resolver.reset()
        await resolver.wait_idle()
        await asyncio.sleep(0.06)

    _run(scenario())
    assert catalog.search_queries == []
    assert collector.results == []


def test_negative_debounce_is_rejected() -> None:
    with pytest.raises(ValueError):
        _resolver(InMemoryCatalog(), Collector(), debounce_s=-1)

"""Tests for playback snapshot transitions."""

from __future__ import annotations

import asyncio

from startune.events import PlaybackChanged
from startune.services.catalog import CatalogSong
from startune.services.playback_state import (
    PlaybackSnapshot,
    PlaybackStateMachine,
    TrackInfo,
)

TRACK_A = TrackInfo(name="A", artist="X")
TRACK_B = TrackInfo(name="B", artist="Y")
SONG_A = CatalogSong(id="1", title="A", artist_name="X")
SONG_B = CatalogSong(id="2", title="B", artist_name="Y")


def _run(coro):
    return asyncio.run(coro)


class EventRecorder:
    def __init__(self) -> None:
        self.events: list[object] = []

    async def __call__(self, event: object) -> None:
        self.events.append(event)

    def snapshots(self) -> list[PlaybackSnapshot]:
        return [event.snapshot for event in self.events if isinstance(event, PlaybackChanged)]


def _machine() -> tuple[PlaybackStateMachine, EventRecorder]:
    recorder = EventRecorder()
    return PlaybackStateMachine(emit_event=recorder), recorder


def test_stopping_clears_track_and_song() -> None:
    async def scenario() -> PlaybackSnapshot:
        machine, _ = _machine()
        await machine.on_playing_changed(True)
        await machine.on_track_changed(TRACK_A)
        await machine.on_resolved_song(SONG_A, TRACK_A)
        await machine.on_playing_changed(False)
        return machine.snapshot

    snapshot = _run(scenario())
    assert snapshot == PlaybackSnapshot(is_playing=False)


def test_resolution_while_stopped_is_ignored() -> None:
    async def scenario():
        machine, recorder = _machine()
        await machine.on_resolved_song(SONG_A, TRACK_A)
        return machine.snapshot, recorder.events

    snapshot, events = _run(scenario())
    assert snapshot.resolved_song is None
    assert events == []


def test_resolution_for_superseded_track_is_dropped() -> None:
    async def scenario() -> PlaybackSnapshot:
        machine, _ = _machine()
        await machine.on_playing_changed(True)
        await machine.on_track_changed(TRACK_A)
        await machine.on_track_changed(TRACK_B)
        await machine.on_resolved_song(SONG_A, TRACK_A)
        return machine.snapshot

    snapshot = _run(scenario())
    assert snapshot.raw_track == TRACK_B
    assert snapshot.resolved_song is None


def test_resolved_song_is_attached_to_matching_track() -> None:
    async def scenario() -> PlaybackSnapshot:
        machine, _ = _machine()
        await machine.on_playing_changed(True)
        await machine.on_track_changed(TRACK_B)
        await machine.on_resolved_song(SONG_B, TRACK_B)
        return machine.snapshot

    snapshot = _run(scenario())
    assert snapshot.is_playing is True
    assert snapshot.raw_track == TRACK_B
    assert snapshot.resolved_song == SONG_B


def test_new_track_clears_previous_resolution() -> None:
    async def scenario() -> PlaybackSnapshot:
        machine, _ = _machine()
        await machine.on_playing_changed(True)
        await machine.on_track_changed(TRACK_A)
        await machine.on_resolved_song(SONG_A, TRACK_A)
        await machine.on_track_changed(TRACK_B)
        return machine.snapshot

    snapshot = _run(scenario())
    assert snapshot.raw_track == TRACK_B
    assert snapshot.resolved_song is None


def test_events_follow_transition_order_and_skip_no_ops() -> None:
    async def scenario() -> EventRecorder:
        machine, recorder = _machine()
        await machine.on_playing_changed(True)
        await machine.on_playing_changed(True)
        await machine.on_track_changed(TRACK_A)
        await machine.on_track_changed(TRACK_A)
        await machine.on_resolved_song(SONG_A, TRACK_A)
        await machine.on_playing_changed(False)
        return recorder

    recorder = _run(scenario())
    snapshots = recorder.snapshots()
    assert len(snapshots) == 4
    assert [snapshot.is_playing for snapshot in snapshots] == [True, True, True, False]
    assert snapshots[1].raw_track == TRACK_A
    assert snapshots[2].resolved_song == SONG_A
    assert snapshots[3].raw_track is None


def test_concurrent_updates_are_linearized() -> None:
    async def scenario() -> PlaybackSnapshot:
        machine, _ = _machine()
        await machine.on_playing_changed(True)
        await machine.on_track_changed(TRACK_A)
        await asyncio.gather(
            machine.on_resolved_song(SONG_A, TRACK_A),
            machine.on_playing_changed(False),
        )
        return machine.snapshot

    snapshot = _run(scenario())
    # The resolution is applied first, then cleared by the stop.
    assert snapshot == PlaybackSnapshot(is_playing=False)


def test_position_is_clamped_to_zero() -> None:
    async def scenario() -> PlaybackSnapshot:
        machine, _ = _machine()
        await machine.on_position_changed(-4)
        return machine.snapshot

    assert _run(scenario()).position_seconds == 0.0

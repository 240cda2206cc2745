"""Unit tests for the audio playback synchronizer."""

import asyncio

import pytest

from convo.services.playback import NO_AUDIO, PlaybackSynchronizer
from factories import clips


class FakePlayer:
    def __init__(self):
        self.played = []
        self.pauses = 0

    async def play(self, clip, position, run):
        self.played.append((position, clip.turn_index, run))

    async def pause(self):
        self.pauses += 1


class FakeView:
    """Tracks marked entries and remembers the largest number marked at once."""

    def __init__(self):
        self.marked = set()
        self.history = []
        self.max_marked = 0
        self.states = []

    async def mark_playing(self, turn_index):
        self.marked.add(turn_index)
        self.history.append(turn_index)
        self.max_marked = max(self.max_marked, len(self.marked))

    async def clear_playing(self):
        self.marked.clear()

    async def show_state(self, playing, position):
        self.states.append((playing, position))


class CountingLoader:
    def __init__(self, result):
        self.result = result
        self.calls = 0

    def __call__(self, conversation_id):
        self.calls += 1
        return list(self.result)


def make_sync(manifest, turns=range(5), **kwargs):
    player, view = FakePlayer(), FakeView()
    loader = CountingLoader(manifest)
    sync = PlaybackSynchronizer("conv_1", turns, player, view, loader=loader, **kwargs)
    return sync, player, view, loader


class TestToggle:

    @pytest.mark.asyncio
    async def test_empty_manifest_reports_no_audio(self):
        sync, player, view, loader = make_sync([])

        assert await sync.load_manifest() == []
        notice = await sync.toggle_play()

        assert notice == NO_AUDIO
        assert sync.playing is False
        assert player.played == []
        assert view.marked == set()

    @pytest.mark.asyncio
    async def test_starts_at_first_clip(self):
        sync, player, view, _ = make_sync(clips(0, 1, 2))

        assert await sync.toggle_play() is None

        assert sync.playing is True
        assert player.played == [(0, 0, 1)]
        assert view.marked == {0}
        assert sync.highlighted == 0

    @pytest.mark.asyncio
    async def test_toggle_while_playing_stops_and_resets(self):
        sync, player, view, _ = make_sync(clips(0, 1, 2))
        await sync.toggle_play()
        await sync.clip_finished(0)

        await sync.toggle_play()

        assert sync.playing is False
        assert sync.cursor == 0
        assert sync.highlighted is None
        assert view.marked == set()
        assert player.pauses == 1

    @pytest.mark.asyncio
    async def test_stop_when_stopped_is_noop(self):
        sync, player, view, _ = make_sync(clips(0, 1))

        await sync.stop()
        await sync.toggle_play()
        await sync.toggle_play()
        await sync.stop()

        assert player.pauses == 1

    @pytest.mark.asyncio
    async def test_manifest_loaded_once(self):
        sync, player, _, loader = make_sync(clips(0, 1))

        await sync.toggle_play()
        await sync.toggle_play()
        await sync.toggle_play()

        assert loader.calls == 1
        assert [run for _, _, run in player.played] == [1, 2]


class TestSequencing:

    @pytest.mark.asyncio
    async def test_plays_in_order_and_skips_failed_clip(self):
        sync, player, view, _ = make_sync(clips(0, 1, 2, 3, 4))

        await sync.toggle_play()
        await sync.clip_finished(0)
        await sync.clip_finished(1)
        await sync.clip_failed(2)
        assert player.played[-1][:2] == (3, 3)
        assert view.marked == {3}

        await sync.clip_finished(3)
        await sync.clip_finished(4)

        assert [p for p, _, _ in player.played] == [0, 1, 2, 3, 4]
        assert view.history == [0, 1, 2, 3, 4]
        assert view.max_marked == 1
        assert sync.playing is False
        assert view.marked == set()
        assert sync.cursor == 0
        assert player.pauses == 1

    @pytest.mark.asyncio
    async def test_stale_signals_are_ignored(self):
        sync, player, _, _ = make_sync(clips(0, 1, 2))
        await sync.toggle_play()

        await sync.clip_finished(2)
        await sync.clip_finished(0, run=99)

        assert player.played == [(0, 0, 1)]
        assert sync.cursor == 0

    @pytest.mark.asyncio
    async def test_signal_after_stop_does_nothing(self):
        sync, player, _, _ = make_sync(clips(0, 1))
        await sync.toggle_play()
        await sync.stop()

        await sync.clip_finished(0)

        assert len(player.played) == 1
        assert sync.playing is False

    @pytest.mark.asyncio
    async def test_clip_without_matching_turn_highlights_nothing(self):
        sync, player, view, _ = make_sync(clips(0, 7), turns=[0, 1])

        await sync.toggle_play()
        await sync.clip_finished(0)

        assert player.played[-1][:2] == (1, 7)
        assert view.marked == set()
        assert sync.highlighted is None


class TestFailsafe:

    @pytest.mark.asyncio
    async def test_overrunning_clips_are_advanced(self):
        sync, player, view, _ = make_sync(clips(0, 1), clip_timeout=0.01)

        await sync.toggle_play()
        await asyncio.sleep(0.2)

        assert [p for p, _, _ in player.played] == [0, 1]
        assert sync.playing is False
        assert view.max_marked == 1

    @pytest.mark.asyncio
    async def test_finished_clip_disarms_timer(self):
        sync, player, _, _ = make_sync(clips(0, 1, 2), clip_timeout=0.05)

        await sync.toggle_play()
        await sync.clip_finished(0)
        await sync.stop()
        await asyncio.sleep(0.1)

        assert [p for p, _, _ in player.played] == [0, 1]

    @pytest.mark.asyncio
    async def test_overrun_past_last_clip_reports_stopped_state(self):
        sync, _, view, _ = make_sync(clips(0), clip_timeout=0.01)

        await sync.toggle_play()
        await asyncio.sleep(0.1)

        assert view.states == [(True, 0), (False, 0)]

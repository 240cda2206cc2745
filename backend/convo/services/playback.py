"""replay a conversation's clips back to back while highlighting the turn being heard."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, Protocol

from convo.config import settings
from convo.models.conversation import AudioClip
from convo.storage import conversations

logger = logging.getLogger(__name__)

NO_AUDIO = "No audio available"


class ClipPlayer(Protocol):
    async def play(self, clip: AudioClip, position: int, run: int) -> None: ...

    async def pause(self) -> None: ...


class TranscriptView(Protocol):
    async def mark_playing(self, turn_index: int) -> None: ...

    async def clear_playing(self) -> None: ...

    async def show_state(self, playing: bool, position: int) -> None: ...


class PlaybackSynchronizer:
    """sole owner of the playback cursor and of the "playing" mark.

    the player reports back through clip_finished / clip_failed, which are
    handled identically: advance, or stop after the last clip. signals for a
    clip other than the current one, or from an earlier run, are ignored.
    """

    def __init__(
        self,
        conversation_id: str,
        turn_indices: Iterable[int],
        player: ClipPlayer,
        view: TranscriptView,
        loader: Callable[[str], list[AudioClip]] | None = None,
        clip_timeout: float | None = None,
    ):
        self.conversation_id = conversation_id
        self.player = player
        self.view = view
        self._turns = set(turn_indices)
        self._loader = loader or conversations.list_audio_manifest
        self.clip_timeout = settings.clip_timeout if clip_timeout is None else clip_timeout

        self.manifest: list[AudioClip] | None = None
        self.playing = False
        self.cursor = 0
        self.highlighted: int | None = None
        self.run = 0
        self._failsafe: asyncio.Task | None = None

    async def load_manifest(self) -> list[AudioClip]:
        self.manifest = list(self._loader(self.conversation_id))
        logger.info("loaded %d clips for %s", len(self.manifest), self.conversation_id)
        return self.manifest

    async def toggle_play(self) -> str | None:
        """returns a user-facing notice when there is nothing to play"""
        if self.playing:
            await self.stop()
            return None
        if self.manifest is None:
            await self.load_manifest()
        if not self.manifest:
            return NO_AUDIO
        self.playing = True
        self.run += 1
        await self.play_clip(0)
        return None

    async def stop(self):
        if not self.playing:
            return
        self.playing = False
        self._cancel_failsafe()
        await self.player.pause()
        await self._clear_mark()
        self.cursor = 0
        await self.view.show_state(False, 0)

    async def play_clip(self, i: int):
        clip = self.manifest[i]
        self.cursor = i
        await self._clear_mark()
        if clip.turn_index in self._turns:
            self.highlighted = clip.turn_index
            await self.view.mark_playing(clip.turn_index)
        self._arm_failsafe(i, self.run)
        await self.player.play(clip, i, self.run)
        await self.view.show_state(True, i)

    async def clip_finished(self, i: int, run: int | None = None):
        if not self.playing or i != self.cursor or (run is not None and run != self.run):
            return
        self._cancel_failsafe()
        if i + 1 < len(self.manifest):
            await self.play_clip(i + 1)
        else:
            await self.stop()

    async def clip_failed(self, i: int, run: int | None = None):
        logger.warning("clip %d of %s failed to play, skipping", i, self.conversation_id)
        await self.clip_finished(i, run)

    async def close(self):
        self._cancel_failsafe()
        self.playing = False

    async def _clear_mark(self):
        self.highlighted = None
        await self.view.clear_playing()

    def _arm_failsafe(self, i: int, run: int):
        self._cancel_failsafe()
        if self.clip_timeout > 0:
            self._failsafe = asyncio.ensure_future(self._expire(i, run))

    def _cancel_failsafe(self):
        if self._failsafe is not None:
            self._failsafe.cancel()
            self._failsafe = None

    async def _expire(self, i: int, run: int):
        await asyncio.sleep(self.clip_timeout)
        # detach first: advancing re-arms and must not cancel this task
        self._failsafe = None
        logger.info("clip %d of %s overran %.0fs, advancing", i, self.conversation_id, self.clip_timeout)
        await self.clip_finished(i, run)

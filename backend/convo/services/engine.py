"""turn-taking engine.

drives one conversation at a time: a human or agent opens, agents answer in
turn until the session ends exactly once, by natural completion (human
directions are single-hop), a termination marker in agent output, a failed
generation, or an explicit stop.

all waiting goes through the session's CancellationToken so a stop wakes
pending timers; an in-flight generation or synthesis call is allowed to
finish and its result is dropped at the next checkpoint.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import random
import re
import string
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from pydantic import BaseModel

from convo.config import settings
from convo.errors import GenerationFailure, SpeechFailure, StartValidationError
from convo.models.conversation import (
    AgentConfig,
    AudioClip,
    ConversationSettings,
    Direction,
    Notice,
    Participant,
    Transcript,
    Turn,
)
from convo.services import llm, speech

logger = logging.getLogger(__name__)

Generate = Callable[[str, list[dict], int, float], Awaitable[str]]
Speak = Callable[[str, Turn, str], Awaitable[AudioClip]]
Listener = Callable[["EngineEvent"], Awaitable[None]]

_NAME_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")


class EngineState(str, enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    THINKING = "thinking"
    RESPONDING = "responding"
    SPEAKING = "speaking"
    ENDED = "ended"


class EngineEvent(BaseModel):
    type: str
    conversation_id: str
    speaker: Participant | None = None
    turn: Turn | None = None
    notice: Notice | None = None
    clip: AudioClip | None = None
    delay: float | None = None
    reason: str | None = None


class CancellationToken:
    def __init__(self):
        self._cancelled = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self):
        self._cancelled.set()

    async def sleep(self, seconds: float) -> bool:
        """False if cancelled before the delay ran out"""
        if self.cancelled:
            return False
        if seconds <= 0:
            await asyncio.sleep(0)
            return not self.cancelled
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False

    async def wait_for(self, event: asyncio.Event, timeout: float) -> bool:
        """wait for event, cancellation or timeout; True only if event fired"""
        if event.is_set() or self.cancelled:
            return event.is_set()
        waiters = [
            asyncio.ensure_future(event.wait()),
            asyncio.ensure_future(self._cancelled.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=max(timeout, 0), return_when=asyncio.FIRST_COMPLETED)
        finally:
            for w in waiters:
                w.cancel()
        return event.is_set()


@dataclass
class ConversationState:
    history: Transcript
    direction: Direction
    active: bool = False
    state: EngineState = EngineState.IDLE
    current_speaker: Participant | None = None
    token: CancellationToken = field(default_factory=CancellationToken)


@dataclass
class Hop:
    speaker: Participant
    message: str
    is_first: bool = False


def new_conversation_id(rng: random.Random | None = None) -> str:
    rng = rng or random.Random()
    suffix = "".join(rng.choices(string.ascii_lowercase + string.digits, k=9))
    return f"conv_{int(time.time() * 1000)}_{suffix}"


def _message_name(name: str) -> str:
    return _NAME_UNSAFE.sub("_", name)[:64] or "user"


class ConversationEngine:
    def __init__(
        self,
        generate: Generate | None = None,
        speak: Speak | None = None,
        *,
        history_window: int | None = None,
        termination_marker: str | None = None,
        thinking_delay: tuple[float, float] | None = None,
        inter_turn_pause: float | None = None,
        speech_fallback_pause: float | None = None,
        speaking_time: Callable[[str], float] | None = None,
        rng: random.Random | None = None,
    ):
        self._generate = generate or llm.complete
        self._speak = speak or speech.speak_turn
        self.history_window = settings.history_window if history_window is None else history_window
        self.termination_marker = termination_marker or settings.termination_marker
        self.thinking_delay = thinking_delay or (settings.thinking_delay_min, settings.thinking_delay_max)
        if self.thinking_delay[0] > self.thinking_delay[1]:
            raise ValueError("thinking delay lower bound exceeds upper bound")
        self.inter_turn_pause = settings.inter_turn_pause if inter_turn_pause is None else inter_turn_pause
        self.speech_fallback_pause = (
            settings.speech_fallback_pause if speech_fallback_pause is None else speech_fallback_pause
        )
        self._speaking_time = speaking_time or speech.estimate_speaking_time
        self._rng = rng or random.Random()
        self._listeners: list[Listener] = []
        self._playback: tuple[int, asyncio.Event] | None = None
        self.state: ConversationState | None = None

    @property
    def active(self) -> bool:
        return self.state is not None and self.state.active

    @property
    def history(self) -> Transcript | None:
        return self.state.history if self.state else None

    def subscribe(self, listener: Listener):
        self._listeners.append(listener)

    async def _emit(self, state: ConversationState, type_: str, **fields):
        event = EngineEvent(type=type_, conversation_id=state.history.conversation_id, **fields)
        for listener in self._listeners:
            try:
                await listener(event)
            except Exception:
                logger.exception("listener failed on %s event", type_)

    # --- lifecycle ---

    async def start(
        self,
        direction: Direction | str,
        starting_message: str,
        agents: dict[Participant, AgentConfig] | dict[str, dict],
    ) -> Transcript:
        """run a conversation to completion and return its transcript"""
        if self.active:
            raise StartValidationError("a conversation is already running")
        if not starting_message or not starting_message.strip():
            raise StartValidationError("Please enter a starting message")
        try:
            direction = Direction(direction)
            snapshot = ConversationSettings(direction=direction, agents=agents)
        except ValueError as e:
            raise StartValidationError(f"invalid conversation settings: {e}") from e
        for participant in (direction.speaker, direction.receiver):
            if participant is not Participant.HUMAN and not snapshot.agent(participant).model:
                raise StartValidationError(f"no model selected for {snapshot.display_name(participant)}")

        state = ConversationState(
            history=Transcript(conversation_id=new_conversation_id(self._rng), settings=snapshot),
            direction=direction,
            active=True,
            state=EngineState.STARTING,
        )
        self.state = state
        logger.info("starting %s (%s)", state.history.conversation_id, direction.value)
        await self._emit(state, "started")

        opening = state.history.append(direction.speaker, starting_message)
        await self._emit(state, "turn", turn=opening)

        hop: Hop | None = Hop(direction.receiver, starting_message, is_first=True)
        while hop is not None:
            hop = await self.process_turn(hop.speaker, hop.message, hop.is_first, state=state)
        return state.history

    async def process_turn(
        self,
        speaker: Participant,
        input_message: str,
        is_first: bool = False,
        state: ConversationState | None = None,
    ) -> Hop | None:
        """one hop: think, generate, check for the marker, speak, pick the next hop"""
        state = state or self.state
        if state is None or not state.active:
            return None

        conv = state.history.settings
        agent = conv.agent(speaker)
        name = conv.display_name(speaker)
        token = state.token

        try:
            state.current_speaker = speaker
            state.state = EngineState.THINKING
            delay = self._rng.uniform(*self.thinking_delay)
            logger.debug("%s thinking for %.2fs", name, delay)
            await self._emit(state, "thinking", speaker=speaker, delay=delay)
            await token.sleep(delay)
            if not state.active:
                await self._emit(state, "idle", speaker=speaker)
                return None

            state.state = EngineState.RESPONDING
            messages = self.build_messages(state.history, speaker, input_message)
            text = await self._generate(agent.model, messages, agent.max_tokens, agent.temperature)
            if not state.active:
                logger.info("dropping response from %s, conversation already stopped", name)
                return None

            if isinstance(text, str) and self.termination_marker in text:
                logger.info("%s sent the termination marker", name)
                await self.end(f"{name} ended the conversation", state=state)
                return None
            if not isinstance(text, str) or not text.strip():
                await self.end(f"{name} returned an empty response", state=state)
                return None

            turn = state.history.append(speaker, text.strip(), agent.model or None)
            await self._emit(state, "turn", turn=turn)

            state.state = EngineState.SPEAKING
            await self._speak_turn(state, speaker, agent, turn)
            if not state.active:
                return None

            await token.sleep(self.inter_turn_pause)
            if not state.active:
                return None

            if state.direction.human_initiated and speaker is state.direction.receiver:
                logger.info("conversation %s ended naturally", state.history.conversation_id)
                await self.end(state=state)
                return None
            if is_first:
                logger.debug("%s answered the opening line", name)
            return Hop(speaker.counterpart, turn.text)

        except GenerationFailure as e:
            logger.warning("generation for %s failed: %s", name, e)
            await self.end(f"Error: {e.message}", state=state)
        except Exception as e:
            logger.exception("turn for %s failed", name)
            await self.end(f"Error: {e}", state=state)
        return None

    async def _speak_turn(self, state: ConversationState, speaker: Participant, agent: AgentConfig, turn: Turn):
        if not agent.tts_enabled:
            return
        try:
            clip = await self._speak(state.history.conversation_id, turn, agent.voice)
        except SpeechFailure as e:
            logger.warning("speech for %s failed, continuing: %s", speaker.value, e)
            await state.token.sleep(self.speech_fallback_pause)
            return
        if not state.active:
            return

        done = asyncio.Event()
        self._playback = (turn.index, done)
        try:
            await self._emit(state, "speaking", speaker=speaker, turn=turn, clip=clip)
            timeout = self._speaking_time(turn.text) + settings.playback_grace
            if not await state.token.wait_for(done, timeout) and state.active:
                logger.debug("speaking timer expired for %s after %.1fs", speaker.value, timeout)
        finally:
            self._playback = None
        await self._emit(state, "idle", speaker=speaker)

    def playback_finished(self, turn_index: int):
        """client reports the clip for turn_index ended or failed to play"""
        if self._playback and self._playback[0] == turn_index:
            self._playback[1].set()

    async def end(self, reason: str | None = None, state: ConversationState | None = None):
        """idempotent shutdown; a reason is recorded whenever there is a transcript to put it in"""
        state = state or self.state
        if state is None:
            return
        was_active = state.active
        state.active = False
        state.state = EngineState.ENDED
        state.token.cancel()

        if reason and (was_active or state.history.turns):
            notice = state.history.add_notice(reason)
            await self._emit(state, "notice", notice=notice)
        if was_active:
            state.current_speaker = None
            await self._emit(state, "idle")
            await self._emit(state, "ended", reason=reason)

    async def stop(self):
        await self.end("Conversation stopped")

    # --- prompt assembly ---

    def build_messages(self, history: Transcript, speaker: Participant, input_message: str) -> list[dict]:
        conv = history.settings
        name = conv.display_name(speaker)
        other = conv.display_name(speaker.counterpart)
        prompt = conv.agent(speaker).prompt
        system = f"{prompt} You are {name} and you are talking to {other}. Keep your responses concise and engaging."
        messages = [{"role": "system", "content": system.strip()}]

        # the newest turn is the input being answered
        prior = history.turns[:-1]
        window = prior[-self.history_window:] if self.history_window > 0 else []
        for t in window:
            if t.speaker is speaker:
                messages.append({"role": "assistant", "content": t.text, "name": _message_name(name)})
            else:
                messages.append({"role": "user", "content": t.text,
                                 "name": _message_name(conv.display_name(t.speaker))})

        author = history.turns[-1].speaker if history.turns else speaker.counterpart
        messages.append({"role": "user", "content": input_message,
                         "name": _message_name(conv.display_name(author))})
        return messages

import asyncio
import functools
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from convo.errors import InvalidConversationId, ShareExpired, SharedNotFound, StartValidationError, StorageFailure
from convo.models.conversation import AudioClip, Turn
from convo.routers.keys import groq_key, openrouter_key
from convo.services import llm, speech
from convo.services.engine import ConversationEngine, EngineEvent
from convo.services.playback import PlaybackSynchronizer
from convo.services.security import INVALID_NONCE, nonce_valid, origin_allowed
from convo.services.sharing import get_shared, share_conversation

logger = logging.getLogger(__name__)

router = APIRouter()


class _Outbox:
    """json sender that goes quiet once the socket is gone"""

    def __init__(self, ws: WebSocket):
        self.ws = ws
        self.closed = False

    async def send(self, payload: dict):
        if self.closed:
            return
        try:
            await self.ws.send_json(payload)
        except (WebSocketDisconnect, RuntimeError):
            self.closed = True


def _as_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def build_engine(ws: WebSocket) -> ConversationEngine:
    openrouter = openrouter_key(ws)
    groq = groq_key(ws)

    async def speak(conversation_id: str, turn: Turn, voice: str) -> AudioClip:
        return await speech.speak_turn(conversation_id, turn, voice, api_key=groq)

    return ConversationEngine(generate=functools.partial(llm.complete, api_key=openrouter), speak=speak)


@router.websocket("/ws/conversation")
async def conversation_ws(ws: WebSocket):
    """drive a conversation from the browser.
    send: {"action": "start", "nonce": "...", "direction": "ai1-to-ai2", "starting_message": "...", "agents": {...}}
          {"action": "stop"} | {"action": "playback_ended", "turn_index": N} | {"action": "share", "nonce": "..."}
    recv: engine events {"type": "thinking" | "turn" | "speaking" | "notice" | "idle" | "ended", ...}"""
    if not origin_allowed(ws):
        logger.warning("rejected conversation socket from origin %s", ws.headers.get("origin"))
        await ws.close(code=1008)
        return
    await ws.accept()
    out = _Outbox(ws)
    engine = build_engine(ws)
    run: asyncio.Task | None = None

    async def forward(event: EngineEvent):
        await out.send(event.model_dump(mode="json", exclude_none=True))

    engine.subscribe(forward)

    async def start(msg: dict):
        try:
            await engine.start(msg.get("direction", ""), msg.get("starting_message", ""), msg.get("agents") or {})
        except StartValidationError as e:
            await out.send({"type": "error", "message": str(e)})

    async def share():
        if engine.history is None or not engine.history.turns:
            await out.send({"type": "error", "message": "nothing to share yet"})
            return
        try:
            result = share_conversation(engine.history.conversation_id, engine.history)
        except StorageFailure as e:
            await out.send({"type": "error", "message": str(e)})
            return
        await out.send({"type": "shared", **result.model_dump(mode="json")})

    try:
        while True:
            msg = json.loads(await ws.receive_text())
            action = msg.get("action")

            if action in ("start", "share") and not nonce_valid(ws, msg.get("nonce")):
                logger.warning("rejected %s on conversation socket: missing or stale nonce", action)
                await out.send({"type": "error", "message": INVALID_NONCE})
            elif action == "start":
                if run is not None and not run.done():
                    await out.send({"type": "error", "message": "a conversation is already running"})
                else:
                    run = asyncio.create_task(start(msg))
            elif action == "stop":
                await engine.stop()
            elif action == "playback_ended":
                turn_index = _as_int(msg.get("turn_index"))
                if turn_index is None:
                    await out.send({"type": "error", "message": "turn_index must be an integer"})
                else:
                    engine.playback_finished(turn_index)
            elif action == "share":
                await share()
            else:
                await out.send({"type": "error", "message": f"unknown action: {action}"})
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("conversation socket failed")
        await ws.close(code=1011)
    finally:
        out.closed = True
        if engine.active:
            await engine.end()
        if run is not None:
            await asyncio.gather(run, return_exceptions=True)


class _SocketPlayer:
    def __init__(self, out: _Outbox):
        self.out = out

    async def play(self, clip: AudioClip, position: int, run: int):
        await self.out.send({"type": "play", "position": position, "run": run, "clip": clip.model_dump()})

    async def pause(self):
        await self.out.send({"type": "pause"})


class _SocketView:
    def __init__(self, out: _Outbox):
        self.out = out

    async def mark_playing(self, turn_index: int):
        await self.out.send({"type": "highlight", "turn_index": turn_index})

    async def clear_playing(self):
        await self.out.send({"type": "highlight", "turn_index": None})

    async def show_state(self, playing: bool, position: int):
        await self.out.send({"type": "state", "playing": playing, "position": position})


@router.websocket("/ws/replay/{conversation_id}")
async def replay_ws(ws: WebSocket, conversation_id: str):
    """replay a shared conversation with synchronized highlighting.
    send: {"action": "toggle"} | {"event": "ended" | "error", "position": N, "run": R}
    recv: {"type": "transcript" | "play" | "pause" | "highlight" | "notice" | "state", ...}"""
    await ws.accept()
    out = _Outbox(ws)
    try:
        view = get_shared(conversation_id)
    except (InvalidConversationId, SharedNotFound, ShareExpired, StorageFailure) as e:
        await out.send({"type": "error", "message": str(e)})
        await ws.close(code=1008)
        return

    await out.send({"type": "transcript", **view.model_dump(mode="json")})
    screen = _SocketView(out)
    sync = PlaybackSynchronizer(
        view.transcript.conversation_id,
        [t.index for t in view.transcript.turns],
        _SocketPlayer(out),
        screen,
    )

    try:
        while True:
            msg = json.loads(await ws.receive_text())
            if msg.get("action") == "toggle":
                notice = await sync.toggle_play()
                if notice:
                    await out.send({"type": "notice", "message": notice})
                    await screen.show_state(sync.playing, sync.cursor)
            elif msg.get("event") in ("ended", "error"):
                position = _as_int(msg.get("position"))
                run = msg.get("run")
                if position is None or (run is not None and _as_int(run) is None):
                    await out.send({"type": "error", "message": "position and run must be integers"})
                    continue
                run = None if run is None else _as_int(run)
                if msg["event"] == "ended":
                    await sync.clip_finished(position, run)
                else:
                    await sync.clip_failed(position, run)
            else:
                await out.send({"type": "error", "message": "unknown message"})
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("replay socket failed")
        await ws.close(code=1011)
    finally:
        out.closed = True
        await sync.close()

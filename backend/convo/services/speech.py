import json
import logging

from convo.config import settings
from convo.errors import SpeechFailure, StorageFailure
from convo.models.conversation import AudioClip, Turn
from convo.services import gateway
from convo.storage import conversations

logger = logging.getLogger(__name__)

# anything shorter is an upstream error body, not audio
MIN_AUDIO_BYTES = 100


async def synthesize(voice: str, text: str, api_key: str | None = None) -> bytes:
    if not voice or not voice.strip():
        raise SpeechFailure(400, "Missing required field: voice")
    if not text or not text.strip():
        raise SpeechFailure(400, "Missing required field: input")
    key = api_key or settings.groq_api_key
    if not key:
        raise SpeechFailure(400, "Groq API key not found")

    try:
        resp = await gateway.forward_speech(voice, text, key)
    except gateway.GatewayError as e:
        raise SpeechFailure(502, str(e)) from e

    if not resp.ok:
        raise SpeechFailure(resp.status_code, f"Groq API Error: HTTP {resp.status_code}")
    if not resp.is_audio or len(resp.content) < MIN_AUDIO_BYTES:
        raise SpeechFailure(502, "Received empty or invalid audio content from API")
    return resp.content


async def speak_turn(conversation_id: str, turn: Turn, voice: str, api_key: str | None = None) -> AudioClip:
    """synthesize a turn and file it under the conversation so replay can find it"""
    audio = await synthesize(voice, turn.text, api_key)
    try:
        return conversations.save_audio_clip(conversation_id, turn.index, audio)
    except StorageFailure as e:
        raise SpeechFailure(500, str(e)) from e


async def transcribe(
    audio: bytes, filename: str = "recording.webm", content_type: str = "audio/webm",
    api_key: str | None = None,
) -> str:
    """best effort: empty string on any failure"""
    key = api_key or settings.groq_api_key
    if not audio or not key:
        return ""
    try:
        resp = await gateway.forward_transcription(audio, filename, content_type, key)
    except gateway.GatewayError as e:
        logger.warning("transcription failed: %s", e)
        return ""
    if not resp.ok:
        logger.warning("transcription returned HTTP %d", resp.status_code)
        return ""
    try:
        data = json.loads(resp.content)
    except ValueError:
        logger.warning("transcription returned a non-JSON body")
        return ""
    text = data.get("text") if isinstance(data, dict) else None
    return text.strip() if isinstance(text, str) else ""


def estimate_speaking_time(text: str) -> float:
    """seconds a clip of this text should take to play"""
    words = len(text.split())
    pause = min(2.0, words * 0.05)
    return max(settings.min_speaking_time, words * settings.seconds_per_word + pause)

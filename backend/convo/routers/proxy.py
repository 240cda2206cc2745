import json
import logging

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from convo.config import settings
from convo.errors import InvalidConversationId, StorageFailure
from convo.routers.keys import groq_key, openrouter_key
from convo.services import gateway, speech
from convo.services.security import require_nonce
from convo.storage import conversations

logger = logging.getLogger(__name__)

router = APIRouter()


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status)


def _relay(resp: gateway.UpstreamResponse) -> Response:
    return Response(content=resp.content, status_code=resp.status_code, media_type=resp.content_type)


async def _chat(request: Request, provider: str, api_key: str) -> Response:
    raw = await request.body()
    try:
        payload = json.loads(raw)
    except ValueError:
        return _error(500, "Invalid JSON data")
    if not isinstance(payload, dict) or not payload.get("model") or not payload.get("messages"):
        return _error(500, "Missing required fields (model or messages)")
    try:
        resp = await gateway.forward_chat(raw, payload["model"], api_key, provider=provider)
    except gateway.GatewayError as e:
        logger.error("%s chat relay failed: %s", provider, e)
        return _error(500, str(e))
    return _relay(resp)


async def _models(provider: str, api_key: str) -> Response:
    try:
        resp = await gateway.forward_models(api_key, provider=provider)
    except gateway.GatewayError as e:
        logger.error("%s models relay failed: %s", provider, e)
        return _error(500, str(e))
    return _relay(resp)


@router.post("/openrouter/chat", dependencies=[Depends(require_nonce)])
async def openrouter_chat(request: Request):
    key = openrouter_key(request)
    if not key:
        return _error(400, "OpenRouter API key not found. Please provide an API key in the settings.")
    return await _chat(request, "openrouter", key)


@router.get("/openrouter/models")
async def openrouter_models(request: Request):
    key = openrouter_key(request)
    if not key:
        return _error(400, "OpenRouter API key not found. Please provide an API key in the settings.")
    return await _models("openrouter", key)


@router.post("/litellm/chat", dependencies=[Depends(require_nonce)])
async def litellm_chat(request: Request):
    if not settings.litellm_api_key:
        return _error(400, "LiteLLM API key not configured")
    return await _chat(request, "litellm", settings.litellm_api_key)


@router.get("/litellm/models")
async def litellm_models():
    if not settings.litellm_api_key:
        return _error(400, "LiteLLM API key not configured")
    return await _models("litellm", settings.litellm_api_key)


class SpeechBody(BaseModel):
    voice: str = ""
    input: str = ""
    conversation_id: str | None = None
    message_index: int = 0


@router.post("/groq/tts", dependencies=[Depends(require_nonce)])
async def groq_tts(body: SpeechBody, request: Request):
    if not body.voice:
        return _error(500, "Missing required field: voice")
    if not body.input:
        return _error(500, "Missing required field: input")
    key = groq_key(request)
    if not key:
        return _error(400, "Groq API key not found. Please provide an API key in the settings.")

    try:
        resp = await gateway.forward_speech(body.voice, body.input, key)
    except gateway.GatewayError as e:
        logger.error("groq tts relay failed: %s", e)
        return _error(500, str(e))

    if not resp.ok:
        try:
            detail = json.loads(resp.content)
            message = f"Groq API Error: {detail}"
        except ValueError:
            message = f"Groq API Error: HTTP {resp.status_code}"
        logger.warning(message)
        return _error(resp.status_code, message)
    if not resp.is_audio:
        logger.warning("groq tts returned non-audio content: %s", resp.content[:200])
        return _relay(resp)

    if body.conversation_id:
        try:
            conversations.sanitize_id(body.conversation_id)
            conversations.save_audio_clip(body.conversation_id, body.message_index, resp.content)
        except (InvalidConversationId, StorageFailure) as e:
            logger.error("could not store clip for %s: %s", body.conversation_id, e)
            return _error(500, str(e))
    else:
        logger.info("no conversation_id given, clip not stored")
    return _relay(resp)


@router.post("/groq/stt", dependencies=[Depends(require_nonce)])
async def groq_stt(request: Request, audio: UploadFile = File(...)):
    key = groq_key(request)
    if not key:
        return _error(400, "Groq API key not found. Please provide an API key in the settings.")
    content = await audio.read()
    if not content:
        return _error(500, "Audio file is required")
    text = await speech.transcribe(
        content, audio.filename or "recording.webm", audio.content_type or "audio/webm", api_key=key,
    )
    return {"success": True, "text": text}

"""relay requests to upstream AI providers and hand back status + raw body."""
import logging
from dataclasses import dataclass

import httpx

from convo.config import settings

logger = logging.getLogger(__name__)


@dataclass
class UpstreamResponse:
    status_code: int
    content: bytes
    content_type: str = "application/json"

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_audio(self) -> bool:
        return self.content_type.startswith("audio/")


class GatewayError(RuntimeError):
    """transport-level failure talking to an upstream (no HTTP status available)"""


def _openrouter_headers(api_key: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "HTTP-Referer": settings.app_referer,
        "X-Title": settings.app_title,
    }


async def _send(method: str, url: str, client: httpx.AsyncClient | None = None, **kwargs) -> UpstreamResponse:
    try:
        if client is not None:
            resp = await client.request(method, url, **kwargs)
        else:
            async with httpx.AsyncClient(timeout=settings.upstream_timeout) as own:
                resp = await own.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        raise GatewayError(f"upstream request failed: {e}") from e
    return UpstreamResponse(
        status_code=resp.status_code,
        content=resp.content,
        content_type=resp.headers.get("content-type", "application/json"),
    )


async def forward_chat(
    raw_body: bytes, model: str, api_key: str, provider: str = "openrouter",
    client: httpx.AsyncClient | None = None,
) -> UpstreamResponse:
    if provider == "litellm":
        url = settings.litellm_api_url + "chat/completions"
        headers = {"Authorization": f"Bearer {api_key}", "x-goog-api-key": api_key}
    else:
        url = settings.openrouter_api_url + "chat/completions"
        headers = _openrouter_headers(api_key)
    headers["Content-Type"] = "application/json"

    resp = await _send("POST", url, client, content=raw_body, headers=headers)
    logger.info("%s chat request to model %s -> %d", provider, model, resp.status_code)
    return resp


async def forward_models(
    api_key: str, provider: str = "openrouter", client: httpx.AsyncClient | None = None,
) -> UpstreamResponse:
    if provider == "litellm":
        url = settings.litellm_api_url + "models"
        headers = {"Authorization": f"Bearer {api_key}"}
    else:
        url = settings.openrouter_api_url + "models"
        headers = _openrouter_headers(api_key)

    resp = await _send("GET", url, client, headers=headers)
    logger.info("%s models request -> %d", provider, resp.status_code)
    return resp


async def forward_speech(
    voice: str, text: str, api_key: str, client: httpx.AsyncClient | None = None,
) -> UpstreamResponse:
    resp = await _send(
        "POST",
        settings.groq_api_url + "audio/speech",
        client,
        json={
            "model": settings.tts_model,
            "voice": voice,
            "input": text,
            "response_format": "mp3",
        },
        headers={"Authorization": f"Bearer {api_key}"},
    )
    logger.info(
        "groq tts request (voice %s) -> %d, %s, %d bytes",
        voice, resp.status_code, resp.content_type, len(resp.content),
    )
    return resp


async def forward_transcription(
    audio: bytes, filename: str, content_type: str, api_key: str,
    client: httpx.AsyncClient | None = None,
) -> UpstreamResponse:
    resp = await _send(
        "POST",
        settings.groq_api_url + "audio/transcriptions",
        client,
        data={"model": settings.stt_model, "response_format": "verbose_json"},
        files={"file": (filename, audio, content_type)},
        headers={"Authorization": f"Bearer {api_key}"},
    )
    logger.info("groq stt request (%d bytes) -> %d", len(audio), resp.status_code)
    return resp

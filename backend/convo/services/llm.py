import logging

import openai
from openai import AsyncOpenAI

from convo.config import settings
from convo.errors import GenerationFailure

logger = logging.getLogger(__name__)

_clients: dict[str, AsyncOpenAI] = {}


def _get_client(api_key: str | None = None) -> AsyncOpenAI:
    key = api_key or settings.openrouter_api_key
    if not key:
        raise GenerationFailure(400, "OpenRouter API key not found. Please provide an API key in the settings.")
    if key not in _clients:
        _clients[key] = AsyncOpenAI(
            api_key=key,
            base_url=settings.openrouter_api_url,
            timeout=settings.upstream_timeout,
            max_retries=0,
            default_headers={"HTTP-Referer": settings.app_referer, "X-Title": settings.app_title},
        )
    return _clients[key]


async def complete(
    model: str,
    messages: list[dict],
    max_tokens: int | None = None,
    temperature: float | None = None,
    api_key: str | None = None,
) -> str:
    """one chat completion through OpenRouter; every failure comes back as GenerationFailure"""
    if not model:
        raise GenerationFailure(400, "no model selected")
    client = _get_client(api_key)
    try:
        resp = await client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=max_tokens or settings.default_max_tokens,
            temperature=settings.default_temperature if temperature is None else temperature,
        )
    except openai.APIStatusError as e:
        raise GenerationFailure(e.status_code, f"OpenRouter error: {e.message}") from e
    except openai.APIError as e:
        raise GenerationFailure(502, f"OpenRouter request failed: {e.message}") from e

    logger.info("completion from %s (%d messages)", model, len(messages))
    if not resp.choices or resp.choices[0].message is None:
        raise GenerationFailure(502, "Invalid response format from API")
    content = resp.choices[0].message.content
    return content.strip() if isinstance(content, str) else ""

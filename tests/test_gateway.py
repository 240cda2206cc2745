"""Unit tests for the upstream relay, using httpx's mock transport."""

import json

import httpx
import pytest

from convo.config import settings
from convo.services import gateway


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class Recorder:
    def __init__(self, response: httpx.Response):
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


class TestChat:

    @pytest.mark.asyncio
    async def test_openrouter_headers_and_raw_body(self):
        rec = Recorder(httpx.Response(200, json={"choices": []}))
        body = json.dumps({"model": "openai/gpt-4o", "messages": [{"role": "user", "content": "hi"}]}).encode()

        async with mock_client(rec) as client:
            resp = await gateway.forward_chat(body, "openai/gpt-4o", "sk-or-test", client=client)

        req = rec.requests[0]
        assert str(req.url) == settings.openrouter_api_url + "chat/completions"
        assert req.headers["Authorization"] == "Bearer sk-or-test"
        assert req.headers["HTTP-Referer"] == settings.app_referer
        assert req.headers["X-Title"] == settings.app_title
        assert req.content == body
        assert resp.ok

    @pytest.mark.asyncio
    async def test_upstream_status_passes_through(self):
        rec = Recorder(httpx.Response(429, json={"error": {"message": "rate limited"}}))

        async with mock_client(rec) as client:
            resp = await gateway.forward_chat(b"{}", "m", "k", client=client)

        assert resp.status_code == 429
        assert not resp.ok
        assert json.loads(resp.content)["error"]["message"] == "rate limited"

    @pytest.mark.asyncio
    async def test_litellm_endpoint(self):
        rec = Recorder(httpx.Response(200, json={}))

        async with mock_client(rec) as client:
            await gateway.forward_chat(b"{}", "gemini", "lk", provider="litellm", client=client)

        req = rec.requests[0]
        assert str(req.url) == settings.litellm_api_url + "chat/completions"
        assert req.headers["x-goog-api-key"] == "lk"
        assert "X-Title" not in req.headers

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def boom(request):
            raise httpx.ConnectError("refused", request=request)

        async with mock_client(boom) as client:
            with pytest.raises(gateway.GatewayError):
                await gateway.forward_chat(b"{}", "m", "k", client=client)


@pytest.mark.asyncio
async def test_models_listing():
    rec = Recorder(httpx.Response(200, json={"data": [{"id": "openai/gpt-4o"}]}))

    async with mock_client(rec) as client:
        resp = await gateway.forward_models("k", client=client)

    assert rec.requests[0].method == "GET"
    assert str(rec.requests[0].url) == settings.openrouter_api_url + "models"
    assert json.loads(resp.content)["data"][0]["id"] == "openai/gpt-4o"


class TestSpeech:

    @pytest.mark.asyncio
    async def test_payload_and_audio_detection(self):
        rec = Recorder(httpx.Response(200, content=b"ID3" * 100, headers={"content-type": "audio/mpeg"}))

        async with mock_client(rec) as client:
            resp = await gateway.forward_speech("Arista-PlayAI", "Hello there", "gk", client=client)

        req = rec.requests[0]
        assert str(req.url) == settings.groq_api_url + "audio/speech"
        assert json.loads(req.content) == {
            "model": settings.tts_model,
            "voice": "Arista-PlayAI",
            "input": "Hello there",
            "response_format": "mp3",
        }
        assert resp.is_audio

    @pytest.mark.asyncio
    async def test_transcription_is_multipart(self):
        rec = Recorder(httpx.Response(200, json={"text": "hello"}))

        async with mock_client(rec) as client:
            await gateway.forward_transcription(b"webm-bytes", "clip.webm", "audio/webm", "gk", client=client)

        req = rec.requests[0]
        assert str(req.url) == settings.groq_api_url + "audio/transcriptions"
        assert req.headers["content-type"].startswith("multipart/form-data")
        assert b"verbose_json" in req.content
        assert b"webm-bytes" in req.content

import asyncio
import json

import httpx
import pytest

from panelgrade.config import Settings
from panelgrade.exceptions import (
    ProviderError,
    ProviderHTTPError,
    ResponseShapeError,
    TransportError,
)
from panelgrade.services.llm import (
    AnthropicClient,
    GeminiClient,
    ImagePart,
    ProviderClient,
    create_client,
)


def _settings(**overrides) -> Settings:
    values = {"llm_api_key": "key-a", "llm_retry_delay": 0.0}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _gemini_reply(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _sse(*frames: dict) -> bytes:
    return "".join(f"data: {json.dumps(f, ensure_ascii=False)}\n\n" for f in frames).encode()


class _ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in fixed pieces, to split SSE frames."""

    def __init__(self, chunks: list[bytes]) -> None:
        self._chunks = chunks

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk


class TestCreateClient:
    def test_selects_adapter(self):
        assert isinstance(create_client(_settings(llm_provider="gemini")), GeminiClient)
        assert isinstance(create_client(_settings(llm_provider="Anthropic")), AnthropicClient)

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_client(_settings(llm_provider="ollama"))


class TestAnthropicClient:
    @pytest.mark.asyncio
    async def test_chat_request_and_response(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "model": "claude-test",
                    "content": [{"type": "text", "text": '{"score": 77}'}],
                    "usage": {"input_tokens": 10, "output_tokens": 5},
                },
            )

        client = AnthropicClient(_settings(), transport=httpx.MockTransport(handler))
        response = await client.chat("프롬프트", "key-b", max_tokens=4096, temperature=0.7)
        await client.close()

        assert response.content == '{"score": 77}'
        assert response.model == "claude-test"
        assert response.input_tokens == 10
        assert seen["url"] == "https://api.anthropic.com/v1/messages"
        assert seen["headers"]["x-api-key"] == "key-b"
        assert seen["headers"]["anthropic-version"] == "2023-06-01"
        assert seen["body"]["max_tokens"] == 4096
        assert seen["body"]["messages"][0]["content"] == "프롬프트"
        assert "stream" not in seen["body"]

    @pytest.mark.asyncio
    async def test_image_blocks_precede_prompt(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"content": [{"type": "text", "text": "ok"}]})

        client = AnthropicClient(_settings(), transport=httpx.MockTransport(handler))
        await client.chat(
            "OCR",
            "key-a",
            max_tokens=4096,
            temperature=0.0,
            images=[ImagePart(media_type="image/png", data="aGVsbG8=")],
        )
        await client.close()

        content = seen["body"]["messages"][0]["content"]
        assert content[0]["type"] == "image"
        assert content[0]["source"] == {"type": "base64", "media_type": "image/png", "data": "aGVsbG8="}
        assert content[1] == {"type": "text", "text": "OCR"}

    @pytest.mark.asyncio
    async def test_http_error_uses_provider_message(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                401, json={"type": "error", "error": {"type": "authentication_error", "message": "invalid x-api-key"}}
            )

        client = AnthropicClient(_settings(), transport=httpx.MockTransport(handler))
        with pytest.raises(ProviderHTTPError) as exc_info:
            await client.chat("p", "bad", max_tokens=10, temperature=0.0)
        await client.close()

        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "invalid x-api-key"
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_missing_text_raises_shape_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"content": []})

        client = AnthropicClient(_settings(), transport=httpx.MockTransport(handler))
        with pytest.raises(ResponseShapeError):
            await client.chat("p", "key-a", max_tokens=10, temperature=0.0)
        await client.close()

    @pytest.mark.asyncio
    async def test_stream_relays_deltas(self):
        body = _sse(
            {"type": "message_start", "message": {"id": "m1"}},
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": '{"sco'}},
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": 're": 77}'}},
            {"type": "message_stop"},
        )
        # split mid-frame to exercise the decoder buffering
        chunks = [body[:37], body[37:90], body[90:]]

        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content)["stream"] is True
            return httpx.Response(200, stream=_ChunkedStream(chunks))

        deltas: list[str] = []

        async def on_delta(delta: str) -> None:
            deltas.append(delta)

        client = AnthropicClient(_settings(), transport=httpx.MockTransport(handler))
        response = await client.chat(
            "p", "key-a", max_tokens=10, temperature=0.0, stream=True, on_delta=on_delta
        )
        await client.close()

        assert deltas == ['{"sco', 're": 77}']
        assert response.content == '{"score": 77}'

    @pytest.mark.asyncio
    async def test_stream_error_frame_raises(self):
        body = _sse({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body)

        client = AnthropicClient(_settings(), transport=httpx.MockTransport(handler))
        with pytest.raises(ProviderError, match="Overloaded"):
            await client.chat("p", "key-a", max_tokens=10, temperature=0.0, stream=True)
        await client.close()


class TestGeminiClient:
    @pytest.mark.asyncio
    async def test_chat_request_and_response(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "candidates": [
                        {
                            "content": {
                                "parts": [
                                    {"text": "생각 중", "thought": True},
                                    {"text": '{"score": 81}'},
                                ]
                            }
                        }
                    ],
                    "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 4},
                    "modelVersion": "gemini-2.5-flash",
                },
            )

        client = GeminiClient(_settings(), transport=httpx.MockTransport(handler))
        response = await client.chat("프롬프트", "key-c", max_tokens=2048, temperature=0.3)
        await client.close()

        assert response.content == '{"score": 81}'
        assert response.output_tokens == 4
        assert seen["url"].endswith("/models/gemini-2.5-flash:generateContent")
        assert seen["headers"]["x-goog-api-key"] == "key-c"
        assert seen["body"]["generationConfig"] == {"maxOutputTokens": 2048, "temperature": 0.3}

    @pytest.mark.asyncio
    async def test_blocked_response_raises_shape_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"candidates": [{"finishReason": "SAFETY"}]})

        client = GeminiClient(_settings(), transport=httpx.MockTransport(handler))
        with pytest.raises(ResponseShapeError):
            await client.chat("p", "key-a", max_tokens=10, temperature=0.0)
        await client.close()

    @pytest.mark.asyncio
    async def test_stream_uses_sse_endpoint(self):
        seen = {}
        body = _sse(
            {"candidates": [{"content": {"parts": [{"text": "모범"}]}}]},
            {"candidates": [{"content": {"parts": [{"text": "답안"}]}}]},
        )

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            return httpx.Response(200, content=body)

        deltas: list[str] = []

        async def on_delta(delta: str) -> None:
            deltas.append(delta)

        client = GeminiClient(_settings(), transport=httpx.MockTransport(handler))
        response = await client.chat(
            "p", "key-a", max_tokens=10, temperature=0.0, stream=True, on_delta=on_delta
        )
        await client.close()

        assert "streamGenerateContent" in seen["url"]
        assert "alt=sse" in seen["url"]
        assert deltas == ["모범", "답안"]
        assert response.content == "모범답안"

    @pytest.mark.asyncio
    async def test_stream_http_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"error": {"code": 429, "message": "Resource exhausted"}})

        client = GeminiClient(_settings(), transport=httpx.MockTransport(handler))
        with pytest.raises(ProviderHTTPError) as exc_info:
            await client.chat("p", "key-a", max_tokens=10, temperature=0.0, stream=True)
        await client.close()

        assert exc_info.value.status_code == 429
        assert exc_info.value.retryable


class TestRetry:
    @pytest.mark.asyncio
    async def test_no_retry_by_default(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            return httpx.Response(503, text="unavailable")

        client = GeminiClient(_settings(), transport=httpx.MockTransport(handler))
        with pytest.raises(ProviderHTTPError):
            await client.chat("p", "key-a", max_tokens=10, temperature=0.0)
        await client.close()

        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_retries_server_errors_when_enabled(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            if len(attempts) < 3:
                return httpx.Response(503, text="unavailable")
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "ok"}]}}]})

        client = GeminiClient(_settings(llm_max_retries=2), transport=httpx.MockTransport(handler))
        response = await client.chat("p", "key-a", max_tokens=10, temperature=0.0)
        await client.close()

        assert response.content == "ok"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            return httpx.Response(400, json={"error": {"message": "bad request"}})

        client = GeminiClient(_settings(llm_max_retries=3), transport=httpx.MockTransport(handler))
        with pytest.raises(ProviderHTTPError):
            await client.chat("p", "key-a", max_tokens=10, temperature=0.0)
        await client.close()

        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = GeminiClient(_settings(llm_max_retries=1), transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError):
            await client.chat("p", "key-a", max_tokens=10, temperature=0.0)
        await client.close()


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_calls_in_flight_are_capped(self):
        in_flight = 0
        peak = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.02)
            in_flight -= 1
            return httpx.Response(200, json=_gemini_reply("ok"))

        client = GeminiClient(_settings(llm_max_concurrent=3), transport=httpx.MockTransport(handler))
        results = await asyncio.gather(
            *(client.chat("p", "key-a", max_tokens=10, temperature=0.0) for _ in range(10))
        )
        await client.close()

        assert [r.content for r in results] == ["ok"] * 10
        assert peak == 3


class TestProviderClientBase:
    def test_cannot_instantiate_without_adapter(self):
        with pytest.raises(TypeError):
            ProviderClient(_settings())


class TestIsReachable:
    @pytest.mark.asyncio
    async def test_reachable(self):
        client = GeminiClient(_settings(), transport=httpx.MockTransport(lambda r: httpx.Response(404)))
        assert await client.is_reachable() is True
        await client.close()

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        client = GeminiClient(_settings(), transport=httpx.MockTransport(handler))
        assert await client.is_reachable() is False
        await client.close()

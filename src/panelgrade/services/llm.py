"""LLM provider clients using httpx.

Every provider is called through the same narrow contract:
``chat(prompt, credential, max_tokens=..., temperature=...) -> ChatResponse``.
Request construction and text extraction are small per-provider adapters
(Anthropic Messages API, Google Gemini generateContent); HTTP handling,
streaming and error mapping are shared.

Streaming mode reads the provider's SSE body incrementally. Each content
delta is handed to ``on_delta`` as soon as it is decoded and the full text is
returned at the end, so callers can relay tokens and still parse the
complete response.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from panelgrade.config import Settings
from panelgrade.exceptions import (
    ProviderError,
    ProviderHTTPError,
    ResponseShapeError,
    TransportError,
)
from panelgrade.utils.sse import SSEDecoder

logger = logging.getLogger(__name__)

DeltaCallback = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class ImagePart:
    media_type: str
    data: str  # base64, no data: prefix


@dataclass(frozen=True)
class ChatResponse:
    content: str
    model: str
    input_tokens: int | None = None
    output_tokens: int | None = None


@dataclass(frozen=True)
class ProviderRequest:
    url: str
    headers: dict[str, str]
    body: dict[str, Any]


class ProviderClient(ABC):
    """Shared HTTP plumbing; subclasses supply the provider wire format."""

    name = "provider"

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._max_retries = settings.llm_max_retries
        self._retry_delay = settings.llm_retry_delay
        self._semaphore = asyncio.Semaphore(settings.llm_max_concurrent)
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=settings.llm_connect_timeout,
                read=settings.llm_timeout,
                write=30.0,
                pool=30.0,
            ),
            transport=transport,
        )

    # ------------------------------------------------------------------ #
    #  Provider adapters
    # ------------------------------------------------------------------ #

    @property
    @abstractmethod
    def model(self) -> str:
        pass

    @property
    @abstractmethod
    def base_url(self) -> str:
        """Provider host, also used for the reachability check."""
        pass

    @abstractmethod
    def build_request(
        self,
        prompt: str,
        credential: str,
        *,
        max_tokens: int,
        temperature: float,
        images: list[ImagePart] | None,
        stream: bool,
    ) -> ProviderRequest:
        """Build the URL, headers and JSON body for one generation call."""
        pass

    @abstractmethod
    def extract_text(self, data: dict[str, Any]) -> str | None:
        """Pull the generated text out of a non-streaming response envelope."""
        pass

    @abstractmethod
    def extract_delta(self, frame: dict[str, Any]) -> str | None:
        """Pull the content delta out of one decoded stream frame."""
        pass

    def extract_usage(self, data: dict[str, Any]) -> tuple[int | None, int | None]:
        return None, None

    # ------------------------------------------------------------------ #
    #  Public API
    # ------------------------------------------------------------------ #

    async def chat(
        self,
        prompt: str,
        credential: str,
        *,
        max_tokens: int,
        temperature: float,
        images: list[ImagePart] | None = None,
        stream: bool = False,
        on_delta: DeltaCallback | None = None,
    ) -> ChatResponse:
        """Send one generation request and return the full generated text.

        Retries with exponential backoff on transport errors and 429/5xx,
        up to ``llm_max_retries`` times. A streamed call is never retried
        once a delta has been relayed, since the consumer already saw it.

        Raises:
            TransportError: network failure or timeout.
            ProviderHTTPError: non-2xx status.
            ResponseShapeError: envelope without generated text.
        """
        delivered = False

        async def _relay(delta: str) -> None:
            nonlocal delivered
            delivered = True
            if on_delta is not None:
                await on_delta(delta)

        last_error: Exception | None = None
        max_attempts = 1 + max(self._max_retries, 0)
        for attempt in range(1, max_attempts + 1):
            request = self.build_request(
                prompt,
                credential,
                max_tokens=max_tokens,
                temperature=temperature,
                images=images,
                stream=stream,
            )
            try:
                async with self._semaphore:
                    if stream:
                        return await self._do_stream(request, _relay)
                    return await self._do_chat(request)
            except ProviderError as e:
                last_error = e
                if attempt >= max_attempts or delivered or not _is_retryable(e):
                    raise
                delay = self._retry_delay * (2 ** (attempt - 1))
                logger.warning(
                    "%s attempt %d/%d failed, retry in %.1fs: %s",
                    self.name,
                    attempt,
                    max_attempts,
                    delay,
                    e,
                )
                await asyncio.sleep(delay)

        raise last_error  # type: ignore[misc]

    async def is_reachable(self) -> bool:
        """Check that the provider host answers at all."""
        try:
            response = await self._client.get(self.base_url, timeout=httpx.Timeout(5.0))
            return response.status_code < 500
        except httpx.HTTPError:
            return False

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------ #
    #  HTTP
    # ------------------------------------------------------------------ #

    async def _do_chat(self, request: ProviderRequest) -> ChatResponse:
        """Execute a single non-streaming request (no retry logic)."""
        try:
            response = await self._client.post(
                request.url, headers=request.headers, json=request.body
            )
        except httpx.HTTPError as e:
            raise TransportError(f"{self.name} request failed: {e!r}") from e

        if not response.is_success:
            raise self._http_error(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise ResponseShapeError(f"{self.name} returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise ResponseShapeError(f"{self.name} returned an unexpected envelope")

        content = self.extract_text(data)
        if not content:
            logger.error(
                "%s response has no text payload: %s",
                self.name,
                json.dumps(data, ensure_ascii=False)[:500],
            )
            raise ResponseShapeError(f"{self.name} response has no text payload")

        input_tokens, output_tokens = self.extract_usage(data)
        logger.debug("%s response (first 200 chars): %s", self.name, content[:200])
        return ChatResponse(
            content=content,
            model=data.get("model") or data.get("modelVersion") or self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    async def _do_stream(
        self, request: ProviderRequest, on_delta: DeltaCallback
    ) -> ChatResponse:
        """Execute a single streaming request, relaying deltas as they arrive."""
        decoder = SSEDecoder()
        content_parts: list[str] = []

        async def _consume(frames: list[dict[str, Any]]) -> None:
            for frame in frames:
                delta = self.extract_delta(frame)
                if delta:
                    content_parts.append(delta)
                    await on_delta(delta)

        try:
            async with self._client.stream(
                "POST", request.url, headers=request.headers, json=request.body
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise self._http_error(response.status_code, body)
                async for chunk in response.aiter_bytes():
                    await _consume(decoder.feed(chunk))
                await _consume(decoder.close())
        except httpx.HTTPError as e:
            raise TransportError(f"{self.name} stream failed: {e!r}") from e

        content = "".join(content_parts)
        if not content:
            raise ResponseShapeError(f"{self.name} stream produced no text")
        logger.debug("%s streamed response (first 200 chars): %s", self.name, content[:200])
        return ChatResponse(content=content, model=self.model)

    def _http_error(self, status_code: int, body: str) -> ProviderHTTPError:
        logger.error("%s API error %d: %s", self.name, status_code, body[:500])
        return ProviderHTTPError(status_code, _provider_message(body))


def _is_retryable(error: ProviderError) -> bool:
    if isinstance(error, TransportError):
        return True
    if isinstance(error, ProviderHTTPError):
        return error.retryable
    return False


def _provider_message(body: str) -> str:
    """Prefer the provider's own error message over the raw body."""
    try:
        data = json.loads(body)
    except ValueError:
        return body.strip()[:300]
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
    return body.strip()[:300]


class AnthropicClient(ProviderClient):
    """Anthropic Messages API (``POST /v1/messages``)."""

    name = "anthropic"

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(settings, transport=transport)
        self._base_url = settings.anthropic_base_url.rstrip("/")
        self._version = settings.anthropic_version
        self._model = settings.anthropic_model

    @property
    def model(self) -> str:
        return self._model

    @property
    def base_url(self) -> str:
        return self._base_url

    def build_request(
        self,
        prompt: str,
        credential: str,
        *,
        max_tokens: int,
        temperature: float,
        images: list[ImagePart] | None,
        stream: bool,
    ) -> ProviderRequest:
        content: str | list[dict[str, Any]] = prompt
        if images:
            content = [
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": image.media_type,
                        "data": image.data,
                    },
                }
                for image in images
            ]
            content.append({"type": "text", "text": prompt})

        body: dict[str, Any] = {
            "model": self._model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": content}],
        }
        if stream:
            body["stream"] = True

        return ProviderRequest(
            url=f"{self._base_url}/v1/messages",
            headers={
                "content-type": "application/json",
                "x-api-key": credential,
                "anthropic-version": self._version,
            },
            body=body,
        )

    def extract_text(self, data: dict[str, Any]) -> str | None:
        blocks = data.get("content")
        if not isinstance(blocks, list):
            return None
        for block in blocks:
            if isinstance(block, dict) and isinstance(block.get("text"), str):
                return block["text"]
        return None

    def extract_delta(self, frame: dict[str, Any]) -> str | None:
        frame_type = frame.get("type")
        if frame_type == "error":
            error = frame.get("error")
            message = error.get("message") if isinstance(error, dict) else None
            raise ProviderError(f"anthropic stream error: {message or frame}")
        if frame_type != "content_block_delta":
            return None
        delta = frame.get("delta")
        if isinstance(delta, dict) and isinstance(delta.get("text"), str):
            return delta["text"]
        return None

    def extract_usage(self, data: dict[str, Any]) -> tuple[int | None, int | None]:
        usage = data.get("usage")
        if not isinstance(usage, dict):
            return None, None
        return usage.get("input_tokens"), usage.get("output_tokens")


class GeminiClient(ProviderClient):
    """Google Gemini API (``models/{model}:generateContent``)."""

    name = "gemini"

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(settings, transport=transport)
        self._base_url = settings.gemini_base_url.rstrip("/")
        self._model = settings.gemini_model

    @property
    def model(self) -> str:
        return self._model

    @property
    def base_url(self) -> str:
        return self._base_url

    def build_request(
        self,
        prompt: str,
        credential: str,
        *,
        max_tokens: int,
        temperature: float,
        images: list[ImagePart] | None,
        stream: bool,
    ) -> ProviderRequest:
        parts: list[dict[str, Any]] = [
            {"inline_data": {"mime_type": image.media_type, "data": image.data}}
            for image in images or []
        ]
        parts.append({"text": prompt})

        method = "streamGenerateContent?alt=sse" if stream else "generateContent"
        return ProviderRequest(
            url=f"{self._base_url}/models/{self._model}:{method}",
            headers={
                "content-type": "application/json",
                "x-goog-api-key": credential,
            },
            body={
                "contents": [{"role": "user", "parts": parts}],
                "generationConfig": {
                    "maxOutputTokens": max_tokens,
                    "temperature": temperature,
                },
            },
        )

    def extract_text(self, data: dict[str, Any]) -> str | None:
        text = _gemini_candidate_text(data)
        if text is None:
            candidates = data.get("candidates")
            finish = (
                candidates[0].get("finishReason")
                if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict)
                else None
            )
            logger.warning("Gemini response without text (finishReason=%s)", finish)
        return text

    def extract_delta(self, frame: dict[str, Any]) -> str | None:
        return _gemini_candidate_text(frame)

    def extract_usage(self, data: dict[str, Any]) -> tuple[int | None, int | None]:
        usage = data.get("usageMetadata")
        if not isinstance(usage, dict):
            return None, None
        return usage.get("promptTokenCount"), usage.get("candidatesTokenCount")


def _gemini_candidate_text(data: dict[str, Any]) -> str | None:
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return None
    first = candidates[0]
    content = first.get("content") if isinstance(first, dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return None
    texts = [
        p["text"]
        for p in parts
        if isinstance(p, dict) and isinstance(p.get("text"), str) and not p.get("thought")
    ]
    return "".join(texts) if texts else None


_CLIENTS: dict[str, type[ProviderClient]] = {
    AnthropicClient.name: AnthropicClient,
    GeminiClient.name: GeminiClient,
}


def create_client(
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProviderClient:
    """Instantiate the client selected by ``settings.llm_provider``."""
    provider = settings.llm_provider.strip().lower()
    client_cls = _CLIENTS.get(provider)
    if client_cls is None:
        raise ValueError(
            f"Unknown llm_provider {settings.llm_provider!r}; "
            f"expected one of {sorted(_CLIENTS)}"
        )
    return client_cls(settings, transport=transport)

"""Tests for vendor adapters (mocked HTTP)."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from llm_conductor.gateway.errors import (
    ConfigurationError,
    FatalProviderError,
    RateLimitedError,
    TransientProviderError,
)
from llm_conductor.gateway.types import GenerationParams, GenerationRequest, ProviderConfig, ProviderKind
from llm_conductor.gateway.vendor_adapters import (
    ADAPTER_REGISTRY,
    AnthropicAdapter,
    GeminiAdapter,
    OllamaAdapter,
    OpenAICompatibleAdapter,
    _parse_sse_line,
    get_adapter,
)

CLIENT_PATH = "llm_conductor.gateway.vendor_adapters.httpx.AsyncClient"


def _make_httpx_response(
    status_code: int,
    json_data: dict | None = None,
    text: str = "",
    headers: dict | None = None,
) -> httpx.Response:
    request = httpx.Request("POST", "https://example.com")
    if json_data is not None:
        return httpx.Response(status_code, json=json_data, headers=headers, request=request)
    return httpx.Response(status_code, text=text, headers=headers, request=request)


def _mock_client(mock_client_cls, response=None, side_effect=None) -> AsyncMock:
    mock_client = AsyncMock()
    if side_effect is not None:
        mock_client.post.side_effect = side_effect
    else:
        mock_client.post.return_value = response
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    mock_client_cls.return_value = mock_client
    return mock_client


def _mock_openai_response(text="Hello world", model="gpt-4o", prompt_tokens=10, completion_tokens=20):
    return _make_httpx_response(
        200,
        json_data={
            "choices": [{"message": {"content": text}, "finish_reason": "stop"}],
            "model": model,
            "usage": {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
        },
    )


def _config(name="openai", kind=ProviderKind.OPENAI_COMPATIBLE, **kwargs) -> ProviderConfig:
    kwargs.setdefault("api_key", "test-key")
    kwargs.setdefault("model", f"{name}-model")
    return ProviderConfig(name=name, kind=kind, **kwargs)


REQUEST = GenerationRequest(prompt="Hello", system_prompt="Be brief")
PARAMS = GenerationParams(temperature=0.3, max_tokens=100)


class TestOpenAICompatibleAdapter:
    @pytest.mark.asyncio
    async def test_success(self):
        adapter = OpenAICompatibleAdapter(_config())

        with patch(CLIENT_PATH) as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, _mock_openai_response())
            result = await adapter.generate(REQUEST, PARAMS)

        assert result.text == "Hello world"
        assert result.provider == "openai"
        assert result.model == "gpt-4o"
        assert result.usage.total_tokens == 30

        url = mock_client.post.call_args.args[0]
        payload = mock_client.post.call_args.kwargs["json"]
        headers = mock_client.post.call_args.kwargs["headers"]
        assert url == "https://api.openai.com/v1/chat/completions"
        assert payload["messages"][0] == {"role": "system", "content": "Be brief"}
        assert payload["temperature"] == 0.3
        assert payload["max_tokens"] == 100
        assert "top_p" not in payload
        assert headers["Authorization"] == "Bearer test-key"

    @pytest.mark.asyncio
    async def test_custom_base_url(self):
        adapter = OpenAICompatibleAdapter(_config("groq", base_url="https://api.groq.com/openai/v1/"))

        with patch(CLIENT_PATH) as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, _mock_openai_response())
            await adapter.generate(REQUEST, PARAMS)

        assert mock_client.post.call_args.args[0] == "https://api.groq.com/openai/v1/chat/completions"

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        adapter = OpenAICompatibleAdapter(_config())

        with patch(CLIENT_PATH) as mock_client_cls:
            _mock_client(mock_client_cls, _make_httpx_response(429, text="rate limited", headers={"retry-after": "12"}))
            with pytest.raises(RateLimitedError) as exc_info:
                await adapter.generate(REQUEST, PARAMS)

        assert exc_info.value.retry_after == 12.0
        assert exc_info.value.provider == "openai"

    @pytest.mark.asyncio
    async def test_server_busy_503_is_rate_limit(self):
        adapter = OpenAICompatibleAdapter(_config("deepseek"))

        with patch(CLIENT_PATH) as mock_client_cls:
            _mock_client(mock_client_cls, _make_httpx_response(503, text="Server is busy, please retry later"))
            with pytest.raises(RateLimitedError):
                await adapter.generate(REQUEST, PARAMS)

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        adapter = OpenAICompatibleAdapter(_config())

        with patch(CLIENT_PATH) as mock_client_cls:
            _mock_client(mock_client_cls, _make_httpx_response(502, text="bad gateway"))
            with pytest.raises(TransientProviderError) as exc_info:
                await adapter.generate(REQUEST, PARAMS)

        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_client_error_is_fatal(self):
        adapter = OpenAICompatibleAdapter(_config())

        with patch(CLIENT_PATH) as mock_client_cls:
            _mock_client(mock_client_cls, _make_httpx_response(401, text="invalid api key"))
            with pytest.raises(FatalProviderError):
                await adapter.generate(REQUEST, PARAMS)

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        adapter = OpenAICompatibleAdapter(_config())

        with patch(CLIENT_PATH) as mock_client_cls:
            _mock_client(mock_client_cls, side_effect=httpx.TimeoutException("timeout"))
            with pytest.raises(TransientProviderError, match="timeout"):
                await adapter.generate(REQUEST, PARAMS)

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        adapter = OpenAICompatibleAdapter(_config())

        with patch(CLIENT_PATH) as mock_client_cls:
            _mock_client(mock_client_cls, side_effect=httpx.ConnectError("refused"))
            with pytest.raises(TransientProviderError):
                await adapter.generate(REQUEST, PARAMS)

    @pytest.mark.asyncio
    async def test_missing_choices_is_fatal(self):
        adapter = OpenAICompatibleAdapter(_config())

        with patch(CLIENT_PATH) as mock_client_cls:
            _mock_client(mock_client_cls, _make_httpx_response(200, json_data={"choices": []}))
            with pytest.raises(FatalProviderError):
                await adapter.generate(REQUEST, PARAMS)

    @pytest.mark.asyncio
    async def test_stream(self):
        adapter = OpenAICompatibleAdapter(_config())
        lines = [
            'data: {"choices": [{"delta": {"role": "assistant"}}]}',
            'data: {"choices": [{"delta": {"content": "Hel"}}]}',
            "",
            'data: {"choices": [{"delta": {"content": "lo"}}]}',
            "data: [DONE]",
        ]

        async def aiter_lines():
            for line in lines:
                yield line

        response = MagicMock(status_code=200)
        response.aiter_lines = aiter_lines
        stream_ctx = MagicMock()
        stream_ctx.__aenter__ = AsyncMock(return_value=response)
        stream_ctx.__aexit__ = AsyncMock(return_value=None)

        with patch(CLIENT_PATH) as mock_client_cls:
            mock_client = _mock_client(mock_client_cls)
            mock_client.stream = MagicMock(return_value=stream_ctx)
            chunks = [chunk async for chunk in adapter.stream(REQUEST, PARAMS)]

        assert chunks == ["Hel", "lo"]
        assert mock_client.stream.call_args.kwargs["json"]["stream"] is True

    def test_missing_key(self):
        with pytest.raises(ConfigurationError):
            OpenAICompatibleAdapter(_config(api_key=""))


class TestParseSseLine:
    def test_content_delta(self):
        assert _parse_sse_line('data: {"choices": [{"delta": {"content": "x"}}]}') == "x"

    def test_ignored_lines(self):
        assert _parse_sse_line("") == ""
        assert _parse_sse_line(": keep-alive") == ""
        assert _parse_sse_line("data: [DONE]") == ""
        assert _parse_sse_line("data: {not json") == ""
        assert _parse_sse_line('data: {"choices": []}') == ""


class TestAnthropicAdapter:
    @pytest.mark.asyncio
    async def test_success(self):
        adapter = AnthropicAdapter(_config("anthropic", ProviderKind.ANTHROPIC))
        body = {
            "content": [{"type": "text", "text": "Hi "}, {"type": "text", "text": "there"}],
            "model": "claude-3-7-sonnet-latest",
            "usage": {"input_tokens": 8, "output_tokens": 4},
        }

        with patch(CLIENT_PATH) as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, _make_httpx_response(200, json_data=body))
            result = await adapter.generate(REQUEST, PARAMS)

        assert result.text == "Hi there"
        assert result.usage.total_tokens == 12

        payload = mock_client.post.call_args.kwargs["json"]
        headers = mock_client.post.call_args.kwargs["headers"]
        assert payload["system"] == "Be brief"
        assert payload["max_tokens"] == 100
        assert headers["x-api-key"] == "test-key"
        assert headers["anthropic-version"] == "2023-06-01"

    @pytest.mark.asyncio
    async def test_overloaded_is_transient(self):
        adapter = AnthropicAdapter(_config("anthropic", ProviderKind.ANTHROPIC))

        with patch(CLIENT_PATH) as mock_client_cls:
            _mock_client(mock_client_cls, _make_httpx_response(529, text="overloaded"))
            with pytest.raises(TransientProviderError):
                await adapter.generate(REQUEST, PARAMS)


class TestGeminiAdapter:
    @pytest.mark.asyncio
    async def test_success(self):
        adapter = GeminiAdapter(_config("gemini", ProviderKind.GEMINI, model="gemini-2.5-pro"))
        body = {
            "candidates": [{"content": {"parts": [{"text": "Hello world"}]}, "finishReason": "STOP"}],
            "usageMetadata": {"promptTokenCount": 10, "candidatesTokenCount": 20, "totalTokenCount": 30},
        }

        with patch(CLIENT_PATH) as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, _make_httpx_response(200, json_data=body))
            result = await adapter.generate(REQUEST, PARAMS)

        assert result.text == "Hello world"
        assert result.usage.total_tokens == 30
        assert mock_client.post.call_args.kwargs["params"] == {"key": "test-key"}
        assert "gemini-2.5-pro:generateContent" in mock_client.post.call_args.args[0]
        payload = mock_client.post.call_args.kwargs["json"]
        assert payload["systemInstruction"] == {"parts": [{"text": "Be brief"}]}
        assert payload["generationConfig"]["maxOutputTokens"] == 100

    @pytest.mark.asyncio
    async def test_safety_block_is_fatal(self):
        adapter = GeminiAdapter(_config("gemini", ProviderKind.GEMINI))
        body = {"candidates": [{"finishReason": "SAFETY"}]}

        with patch(CLIENT_PATH) as mock_client_cls:
            _mock_client(mock_client_cls, _make_httpx_response(200, json_data=body))
            with pytest.raises(FatalProviderError) as exc_info:
                await adapter.generate(REQUEST, PARAMS)

        assert exc_info.value.error_code == "SAFETY"


class TestOllamaAdapter:
    @pytest.mark.asyncio
    async def test_estimates_usage_when_missing(self):
        adapter = OllamaAdapter(_config("ollama", ProviderKind.OLLAMA, api_key=""))

        with patch(CLIENT_PATH) as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, _make_httpx_response(200, json_data={"response": "12345678"}))
            result = await adapter.generate(GenerationRequest(prompt="abcd"), PARAMS)

        assert result.text == "12345678"
        assert result.usage.prompt_tokens == 1
        assert result.usage.completion_tokens == 2
        assert mock_client.post.call_args.args[0] == "http://localhost:11434/api/generate"
        assert mock_client.post.call_args.kwargs["json"]["options"]["num_predict"] == 100

    @pytest.mark.asyncio
    async def test_reported_usage(self):
        adapter = OllamaAdapter(_config("ollama", ProviderKind.OLLAMA, api_key=""))
        body = {"response": "ok", "prompt_eval_count": 7, "eval_count": 3}

        with patch(CLIENT_PATH) as mock_client_cls:
            _mock_client(mock_client_cls, _make_httpx_response(200, json_data=body))
            result = await adapter.generate(REQUEST, PARAMS)

        assert result.usage.total_tokens == 10

    def test_disabled(self):
        with pytest.raises(ConfigurationError):
            OllamaAdapter(_config("ollama", ProviderKind.OLLAMA, api_key="", enabled=False))


class TestAdapterRegistry:
    def test_every_kind_registered(self):
        assert set(ADAPTER_REGISTRY) == set(ProviderKind)

    def test_get_adapter(self):
        adapter = get_adapter(_config("anthropic", ProviderKind.ANTHROPIC))
        assert isinstance(adapter, AnthropicAdapter)
        assert adapter.is_available()

    def test_get_adapter_missing_key(self):
        with pytest.raises(ConfigurationError):
            get_adapter(_config("gemini", ProviderKind.GEMINI, api_key=""))

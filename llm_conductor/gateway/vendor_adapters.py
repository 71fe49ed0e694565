"""Vendor-Specific Adapters — protocol-level handling for each provider family.

Each adapter turns a GenerationRequest into the vendor's HTTP protocol,
sends it and returns a GenerationResult. Failures are raised as tagged
ProviderErrors so the executor never has to guess from message text.

Vendor-specific behaviors:
  - OpenAI-compatible (OpenAI, Groq, Mistral, xAI, Perplexity, OpenRouter,
    DeepSeek): chat completions, SSE streaming, "Server Busy" 503 → rate limited
  - Anthropic: Messages API, overloaded (529) → transient
  - Gemini: generateContent, finishReason SAFETY → fatal
  - Ollama: local /api/generate, no credential, usage estimated when missing
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import httpx

from llm_conductor.gateway.errors import (
    ConfigurationError,
    FailureKind,
    FatalProviderError,
    ProviderError,
    RateLimitedError,
    TransientProviderError,
    classify_status,
)
from llm_conductor.gateway.normalizer import estimate_usage
from llm_conductor.gateway.types import (
    GenerationParams,
    GenerationRequest,
    GenerationResult,
    ProviderConfig,
    ProviderKind,
    TokenUsage,
)

logger = logging.getLogger(__name__)


class BaseVendorAdapter(ABC):
    """Base class for all vendor adapters."""

    kind: ProviderKind
    requires_api_key = True

    def __init__(self, config: ProviderConfig):
        if self.requires_api_key and not config.api_key:
            raise ConfigurationError(f"API key is required for provider {config.name}")
        self.config = config
        self.name = config.name
        self.model = config.model
        self.api_key = config.api_key
        self.timeout = config.timeout_seconds

    def is_available(self) -> bool:
        return self.config.enabled and (bool(self.api_key) or not self.requires_api_key)

    @abstractmethod
    async def generate(self, request: GenerationRequest, params: GenerationParams) -> GenerationResult:
        """Send a request to the vendor and return a normalized result."""
        ...

    async def _post_json(
        self,
        url: str,
        payload: dict,
        headers: dict | None = None,
        params: dict | None = None,
    ) -> dict:
        """POST ``payload`` and return the decoded body, raising tagged errors."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(url, json=payload, headers=headers, params=params)
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"{self.name} timeout after {self.timeout}s", provider=self.name) from e
        except httpx.TransportError as e:
            raise TransientProviderError(f"{self.name} connection error: {e}", provider=self.name) from e

        if resp.status_code >= 400:
            raise self._error_from_response(resp)

        try:
            return resp.json()
        except ValueError as e:
            raise FatalProviderError(f"{self.name} returned a non-JSON body", provider=self.name) from e

    def _error_from_response(self, resp: httpx.Response) -> ProviderError:
        status = resp.status_code
        body = resp.text[:500]

        if status == 429:
            return RateLimitedError(
                f"Rate limited by {self.name}",
                provider=self.name,
                retry_after=_parse_retry_after(resp.headers.get("retry-after")),
            )

        # DeepSeek-style "Server Busy" is throttling, not an outage
        if status == 503 and "busy" in body.lower():
            return RateLimitedError(f"{self.name} server busy", provider=self.name, status_code=503)

        message = f"{self.name} HTTP {status}: {body}"
        if classify_status(status) is FailureKind.TRANSIENT:
            return TransientProviderError(message, provider=self.name, status_code=status)
        return FatalProviderError(message, provider=self.name, status_code=status)

    def _result(self, text: str, usage: TokenUsage, model: str, start: float) -> GenerationResult:
        return GenerationResult(
            text=text or "",
            usage=usage,
            provider=self.name,
            model=model or self.model,
            latency_ms=int((time.monotonic() - start) * 1000),
        )


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# OpenAI-compatible chat completions
# ---------------------------------------------------------------------------


class OpenAICompatibleAdapter(BaseVendorAdapter):
    """Chat Completions adapter shared by every OpenAI-compatible vendor."""

    kind = ProviderKind.OPENAI_COMPATIBLE
    default_base_url = "https://api.openai.com/v1"

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        self.api_url = (config.base_url or self.default_base_url).rstrip("/") + "/chat/completions"

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _payload(self, request: GenerationRequest, params: GenerationParams) -> dict:
        messages = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})

        payload = {"model": self.model, "messages": messages}
        payload.update(params.to_dict())
        return payload

    async def generate(self, request: GenerationRequest, params: GenerationParams) -> GenerationResult:
        start = time.monotonic()
        data = await self._post_json(self.api_url, self._payload(request, params), headers=self._headers())

        try:
            text = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise FatalProviderError(f"{self.name} response has no choices", provider=self.name) from e

        usage = data.get("usage") or {}
        return self._result(
            text,
            TokenUsage(
                prompt_tokens=usage.get("prompt_tokens", 0),
                completion_tokens=usage.get("completion_tokens", 0),
                total_tokens=usage.get("total_tokens", 0),
            ),
            data.get("model", self.model),
            start,
        )

    async def stream(self, request: GenerationRequest, params: GenerationParams) -> AsyncIterator[str]:
        """Yield content deltas from a server-sent-events response."""
        payload = self._payload(request, params)
        payload["stream"] = True
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream("POST", self.api_url, json=payload, headers=self._headers()) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        raise self._error_from_response(resp)
                    async for line in resp.aiter_lines():
                        chunk = _parse_sse_line(line)
                        if chunk:
                            yield chunk
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"{self.name} timeout after {self.timeout}s", provider=self.name) from e
        except httpx.TransportError as e:
            raise TransientProviderError(f"{self.name} connection error: {e}", provider=self.name) from e


def _parse_sse_line(line: str) -> str:
    """Extract the content delta from one ``data:`` line ('' when none)."""
    if not line.startswith("data:"):
        return ""
    data = line[len("data:") :].strip()
    if not data or data == "[DONE]":
        return ""
    try:
        event = json.loads(data)
    except ValueError:
        logger.debug("Skipping malformed SSE line: %s", data[:200])
        return ""
    choices = event.get("choices") or []
    if not choices:
        return ""
    return (choices[0].get("delta") or {}).get("content") or ""


# ---------------------------------------------------------------------------
# Anthropic Messages
# ---------------------------------------------------------------------------


class AnthropicAdapter(BaseVendorAdapter):
    """Anthropic Messages API adapter."""

    kind = ProviderKind.ANTHROPIC
    api_url = "https://api.anthropic.com/v1/messages"
    api_version = "2023-06-01"
    default_max_tokens = 4000

    async def generate(self, request: GenerationRequest, params: GenerationParams) -> GenerationResult:
        start = time.monotonic()
        payload = {
            "model": self.model,
            "max_tokens": params.max_tokens or self.default_max_tokens,
            "messages": [{"role": "user", "content": request.prompt}],
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt
        if params.temperature is not None:
            payload["temperature"] = params.temperature
        if params.top_p is not None:
            payload["top_p"] = params.top_p

        url = f"{self.config.base_url.rstrip('/')}/v1/messages" if self.config.base_url else self.api_url
        data = await self._post_json(
            url,
            payload,
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": self.api_version,
                "Content-Type": "application/json",
            },
        )

        text = "".join(block.get("text", "") for block in data.get("content", []) if block.get("type") == "text")
        usage = data.get("usage") or {}
        input_tokens = usage.get("input_tokens", 0)
        output_tokens = usage.get("output_tokens", 0)
        return self._result(
            text,
            TokenUsage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            data.get("model", self.model),
            start,
        )


# ---------------------------------------------------------------------------
# Gemini (Google AI)
# ---------------------------------------------------------------------------


class GeminiAdapter(BaseVendorAdapter):
    """Google Gemini adapter with SAFETY filter detection."""

    kind = ProviderKind.GEMINI
    api_url_template = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    async def generate(self, request: GenerationRequest, params: GenerationParams) -> GenerationResult:
        start = time.monotonic()

        generation_config = {}
        if params.temperature is not None:
            generation_config["temperature"] = params.temperature
        if params.max_tokens is not None:
            generation_config["maxOutputTokens"] = params.max_tokens
        if params.top_p is not None:
            generation_config["topP"] = params.top_p

        payload = {
            "contents": [{"role": "user", "parts": [{"text": request.prompt}]}],
            "generationConfig": generation_config,
        }
        # System instruction is separate from contents in the Gemini API
        if request.system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": request.system_prompt}]}

        data = await self._post_json(
            self.api_url_template.format(model=self.model),
            payload,
            headers={"Content-Type": "application/json"},
            params={"key": self.api_key},
        )

        candidates = data.get("candidates") or []
        if not candidates:
            raise FatalProviderError(f"{self.name} returned no candidates", provider=self.name)
        candidate = candidates[0]
        if candidate.get("finishReason") == "SAFETY":
            raise FatalProviderError(
                f"{self.name} blocked the response (SAFETY)", provider=self.name, error_code="SAFETY"
            )

        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)

        meta = data.get("usageMetadata") or {}
        return self._result(
            text,
            TokenUsage(
                prompt_tokens=meta.get("promptTokenCount", 0),
                completion_tokens=meta.get("candidatesTokenCount", 0),
                total_tokens=meta.get("totalTokenCount", 0),
            ),
            data.get("modelVersion", self.model),
            start,
        )


# ---------------------------------------------------------------------------
# Ollama (local)
# ---------------------------------------------------------------------------


class OllamaAdapter(BaseVendorAdapter):
    """Local Ollama server; enabled by configuration rather than a key."""

    kind = ProviderKind.OLLAMA
    requires_api_key = False
    default_base_url = "http://localhost:11434"

    def __init__(self, config: ProviderConfig):
        if not config.enabled:
            raise ConfigurationError("Ollama is not enabled")
        super().__init__(config)
        self.api_url = (config.base_url or self.default_base_url).rstrip("/") + "/api/generate"

    async def generate(self, request: GenerationRequest, params: GenerationParams) -> GenerationResult:
        start = time.monotonic()
        options = {}
        if params.temperature is not None:
            options["temperature"] = params.temperature
        if params.max_tokens is not None:
            options["num_predict"] = params.max_tokens
        if params.top_p is not None:
            options["top_p"] = params.top_p

        data = await self._post_json(
            self.api_url,
            {
                "model": self.model,
                "prompt": request.prompt,
                "system": request.system_prompt,
                "stream": False,
                "options": options,
            },
        )

        text = data.get("response", "")
        if "prompt_eval_count" in data or "eval_count" in data:
            prompt_tokens = data.get("prompt_eval_count", 0)
            completion_tokens = data.get("eval_count", 0)
            usage = TokenUsage(prompt_tokens, completion_tokens, prompt_tokens + completion_tokens)
        else:
            usage = estimate_usage(request.prompt, text)
        return self._result(text, usage, data.get("model", self.model), start)


# ---------------------------------------------------------------------------
# Adapter registry
# ---------------------------------------------------------------------------

ADAPTER_REGISTRY: dict[ProviderKind, type[BaseVendorAdapter]] = {
    ProviderKind.OPENAI_COMPATIBLE: OpenAICompatibleAdapter,
    ProviderKind.ANTHROPIC: AnthropicAdapter,
    ProviderKind.GEMINI: GeminiAdapter,
    ProviderKind.OLLAMA: OllamaAdapter,
}


def get_adapter(config: ProviderConfig) -> BaseVendorAdapter:
    """Factory: build the adapter for a provider config.

    Raises ConfigurationError when the provider cannot be used.
    """
    cls = ADAPTER_REGISTRY.get(config.kind)
    if cls is None:
        raise ConfigurationError(f"No adapter registered for provider kind: {config.kind}")
    return cls(config)

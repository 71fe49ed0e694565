"""Core types and DTOs for the dispatch gateway."""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Protocol, runtime_checkable


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ProviderKind(str, Enum):
    """Adapter family used to build a provider handle."""

    OPENAI_COMPATIBLE = "openai_compatible"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    OLLAMA = "ollama"


class ExplicitProviderPolicy(str, Enum):
    """What to do when an explicitly requested provider is cooling down."""

    FAIL_FAST = "fail_fast"  # Reject immediately, no fallback
    WAIT = "wait"  # Sleep out the remaining cooldown once, then attempt


class AttemptOutcome(str, Enum):
    """How one provider's share of a request ended."""

    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    TRANSIENT_EXHAUSTED = "transient_exhausted"
    FATAL = "fatal"


# ---------------------------------------------------------------------------
# Generation parameters
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GenerationParams:
    """Sampling parameters. ``None`` means "not set at this layer"."""

    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None

    def merged_with(self, overrides: GenerationParams | None) -> GenerationParams:
        """Return a copy where every field set in ``overrides`` wins."""
        if overrides is None:
            return self
        changes = {
            f.name: getattr(overrides, f.name) for f in fields(overrides) if getattr(overrides, f.name) is not None
        }
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}


@dataclass(frozen=True)
class ProviderDefaults:
    model: str
    temperature: float = 0.7
    max_tokens: int = 4000


PROVIDER_DEFAULTS: dict[str, ProviderDefaults] = {
    "anthropic": ProviderDefaults(model="claude-3-7-sonnet-latest"),
    "openai": ProviderDefaults(model="gpt-4o"),
    "groq": ProviderDefaults(model="deepseek-r1-distill-llama-70b"),
    "mistral": ProviderDefaults(model="mistral-large-latest"),
    "gemini": ProviderDefaults(model="gemini-2.5-pro"),
    "xai": ProviderDefaults(model="grok-3"),
    "mixtral": ProviderDefaults(model="open-mixtral-8x7b"),
    "ollama": ProviderDefaults(model="llama3"),
    "perplexity": ProviderDefaults(model="sonar"),
    "openrouter": ProviderDefaults(model="mistralai/mistral-7b-instruct"),
    "deepseek": ProviderDefaults(model="deepseek-chat"),
}

# Fallback order used when no explicit priority is configured
DEFAULT_PRIORITY_ORDER: tuple[str, ...] = (
    "anthropic",
    "gemini",
    "openai",
    "groq",
    "mistral",
    "mixtral",
    "ollama",
    "perplexity",
    "openrouter",
    "xai",
    "deepseek",
)


# ---------------------------------------------------------------------------
# Configuration consumed by the gateway
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProviderConfig:
    """Static configuration for one provider."""

    name: str
    kind: ProviderKind = ProviderKind.OPENAI_COMPATIBLE
    api_key: str = ""
    model: str = ""
    base_url: str | None = None
    defaults: GenerationParams = field(default_factory=GenerationParams)
    timeout_seconds: float = 60.0
    enabled: bool = True


@dataclass(frozen=True)
class DispatchConfig:
    """Selection, retry and fallback knobs for one LlmManager."""

    default_provider: str | None = None
    priority_order: tuple[str, ...] = DEFAULT_PRIORITY_ORDER
    max_retries: int = 3
    max_provider_attempts: int = 3
    rate_limit_cooldown: float = 60.0  # seconds
    backoff_base: float = 1.0
    backoff_max: float = 10.0
    backoff_jitter: float = 0.0
    explicit_provider_policy: ExplicitProviderPolicy = ExplicitProviderPolicy.FAIL_FAST
    global_params: GenerationParams = field(default_factory=GenerationParams)
    task_providers: dict[str, list[str]] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Request / result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GenerationRequest:
    """A single generation request as submitted by a caller."""

    prompt: str
    system_prompt: str = ""
    params: GenerationParams = field(default_factory=GenerationParams)
    provider: str | None = None  # Explicit provider: hard preference, no fallback
    label: str = ""  # Diagnostics only
    task_name: str = ""  # Routed through the task-to-provider table
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class GenerationResult:
    """Unified result from any provider."""

    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    provider: str = ""
    model: str = ""
    latency_ms: int = 0
    attempts: int = 0  # Provider calls made for this request

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "usage": {
                "prompt_tokens": self.usage.prompt_tokens,
                "completion_tokens": self.usage.completion_tokens,
                "total_tokens": self.usage.total_tokens,
            },
            "provider": self.provider,
            "model": self.model,
            "latency_ms": self.latency_ms,
            "attempts": self.attempts,
        }


@dataclass
class ProviderAttempt:
    """Record of what happened with one provider during one request."""

    provider: str
    outcome: AttemptOutcome
    calls: int = 0
    error: str = ""

    def describe(self) -> str:
        reason = {
            AttemptOutcome.SUCCESS: "succeeded",
            AttemptOutcome.RATE_LIMITED: "rate limited",
            AttemptOutcome.TRANSIENT_EXHAUSTED: f"transient errors, gave up after {self.calls} call(s)",
            AttemptOutcome.FATAL: "fatal error",
        }[self.outcome]
        if self.error:
            return f"{self.provider}: {reason} ({self.error})"
        return f"{self.provider}: {reason}"


# ---------------------------------------------------------------------------
# Provider capability
# ---------------------------------------------------------------------------


@runtime_checkable
class ProviderCapability(Protocol):
    """The only interface the gateway needs from a vendor adapter.

    ``generate`` signals failure by raising; tagged ``ProviderError``
    subclasses are preferred, anything else is classified by type.
    """

    name: str

    def is_available(self) -> bool: ...

    async def generate(self, request: GenerationRequest, params: GenerationParams) -> GenerationResult: ...


@runtime_checkable
class StreamingCapability(ProviderCapability, Protocol):
    def stream(self, request: GenerationRequest, params: GenerationParams) -> AsyncIterator[str]: ...

"""LLM Manager — orchestrator wiring the dispatch components together.

Main entry point for callers:
  1. Accepts GenerationRequests via send_request / stream_request
  2. Serializes them through the RequestQueue's drain loop
  3. Picks providers from the ProviderRegistry, skipping rate-limited ones
  4. Retries and falls back via the DispatchExecutor
  5. Offers prompt refinement over the same path

Usage:
    manager = LlmManager.from_settings(settings)
    result = await manager.send_request(GenerationRequest(prompt="Hello"))
    await manager.aclose()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import replace

from llm_conductor.gateway.errors import ProvidersExhaustedError
from llm_conductor.gateway.executor import DispatchExecutor
from llm_conductor.gateway.queue_manager import RequestQueue
from llm_conductor.gateway.rate_limiter import RateLimitTracker
from llm_conductor.gateway.refiner import refine_prompt
from llm_conductor.gateway.registry import ProviderRegistry, build_handles
from llm_conductor.gateway.retry_policy import RetryPolicy
from llm_conductor.gateway.streaming import DEFAULT_STALL_TIMEOUT, DEFAULT_STREAM_BUFFER, TokenStream
from llm_conductor.gateway.types import (
    DispatchConfig,
    GenerationParams,
    GenerationRequest,
    GenerationResult,
    ProviderCapability,
    ProviderConfig,
)
from llm_conductor.gateway.vendor_adapters import get_adapter

logger = logging.getLogger(__name__)


class LlmManager:
    """Owns one registry, tracker, executor and queue. No shared globals."""

    def __init__(
        self,
        handles: Mapping[str, ProviderCapability],
        config: DispatchConfig | None = None,
        provider_defaults: Mapping[str, GenerationParams] | None = None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or DispatchConfig()
        tracker_kwargs = {"clock": clock} if clock is not None else {}
        self.tracker = RateLimitTracker(cooldown=self.config.rate_limit_cooldown, **tracker_kwargs)
        self.registry = ProviderRegistry(
            handles,
            self.tracker,
            priority_order=self.config.priority_order,
            default_provider=self.config.default_provider,
            provider_defaults=provider_defaults,
            global_params=self.config.global_params,
            task_providers=self.config.task_providers,
        )
        self.executor = DispatchExecutor(
            self.registry,
            policy=RetryPolicy.from_config(self.config),
            explicit_policy=self.config.explicit_provider_policy,
            sleep=sleep,
        )
        self.queue = RequestQueue(self.executor)

    @classmethod
    def from_configs(
        cls,
        providers: Iterable[ProviderConfig],
        config: DispatchConfig | None = None,
        factory: Callable[[ProviderConfig], ProviderCapability] = get_adapter,
        **kwargs,
    ) -> LlmManager:
        """Build adapters from provider configs; unusable providers are skipped."""
        handles, defaults = build_handles(providers, factory)
        return cls(handles, config=config, provider_defaults=defaults, **kwargs)

    @classmethod
    def from_settings(cls, settings=None, **kwargs) -> LlmManager:
        from llm_conductor.core.config import build_dispatch_config, build_provider_configs
        from llm_conductor.core.config import settings as default_settings

        settings = settings or default_settings
        return cls.from_configs(build_provider_configs(settings), build_dispatch_config(settings), **kwargs)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def send_request(self, request: GenerationRequest, provider: str | None = None) -> GenerationResult:
        """Queue ``request`` and wait for its result.

        ``provider`` overrides ``request.provider`` and is a hard
        preference: no fallback to other providers.
        """
        request = self._prepare(request, provider)
        return await self.queue.submit(request)

    def stream_request(
        self,
        request: GenerationRequest,
        provider: str | None = None,
        buffer: int = DEFAULT_STREAM_BUFFER,
        stall_timeout: float = DEFAULT_STALL_TIMEOUT,
    ) -> TokenStream:
        """Queue ``request`` and return a stream of its output chunks.

        If the caller stops reading for ``stall_timeout`` seconds while the
        buffer is full, remaining chunks are dropped; ``result()`` still
        resolves with the full text.
        """
        request = self._prepare(request, provider)
        stream = TokenStream(maxsize=buffer, stall_timeout=stall_timeout)
        self.queue.enqueue(request, stream=stream)
        return stream

    async def refine_prompt(self, original_prompt: str, failed_response: str, desired_specification: str) -> str:
        return await refine_prompt(self.send_request, original_prompt, failed_response, desired_specification)

    def _prepare(self, request: GenerationRequest, provider: str | None) -> GenerationRequest:
        if not self.registry.has_available_providers():
            raise ProvidersExhaustedError("No LLM providers available. Configure at least one provider API key.")
        # Registry keys are lowercase
        provider = provider or request.provider
        if provider:
            request = replace(request, provider=provider.strip().lower())
        return request

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_default_provider(self) -> str | None:
        return self.registry.get_default_provider()

    def get_available_providers(self) -> list[str]:
        return self.registry.get_available_providers()

    def has_available_providers(self) -> bool:
        return self.registry.has_available_providers()

    def get_provider_for_task(self, task_name: str) -> str | None:
        """Provider routed for ``task_name``, falling back to the default."""
        return self.registry.provider_for_task(task_name) or self.registry.get_default_provider()

    def get_provider_defaults(self, provider: str) -> GenerationParams | None:
        return self.registry.get_provider_defaults(provider.lower())

    def get_status(self) -> dict:
        return {
            "default_provider": self.get_default_provider(),
            "providers": self.registry.describe(),
            "rate_limits": self.tracker.snapshot(),
            "queue": self.queue.get_stats(),
        }

    async def aclose(self) -> None:
        await self.queue.aclose()

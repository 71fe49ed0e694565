"""Retry/Fallback Executor — drives one request through one or more providers.

Per request:
  1. Ask the registry for an ordered list of eligible providers
  2. Call each provider, retrying transient failures with exponential backoff
  3. Mark throttled providers rate-limited and fall back without retrying
  4. Abort at once on a fatal error (no retry, no fallback)
  5. Give up after ``max_provider_attempts`` providers or when the list runs out
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from llm_conductor.core.metrics import PROVIDER_ATTEMPTS, PROVIDER_CALLS
from llm_conductor.gateway.errors import (
    DispatchAbortedError,
    FailureKind,
    ProvidersExhaustedError,
    classify_error,
)
from llm_conductor.gateway.normalizer import normalize_result
from llm_conductor.gateway.registry import ProviderRegistry
from llm_conductor.gateway.retry_policy import RetryPolicy
from llm_conductor.gateway.streaming import TokenStream, stream_into
from llm_conductor.gateway.types import (
    AttemptOutcome,
    ExplicitProviderPolicy,
    GenerationParams,
    GenerationRequest,
    GenerationResult,
    ProviderAttempt,
    ProviderCapability,
)

logger = logging.getLogger(__name__)


class DispatchExecutor:
    """Retry/fallback state machine over the registry's provider list.

    Holds no per-request state between calls; the queue guarantees it is
    never running two requests at once.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        policy: RetryPolicy | None = None,
        explicit_policy: ExplicitProviderPolicy = ExplicitProviderPolicy.FAIL_FAST,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry
        self.policy = policy or RetryPolicy()
        self.explicit_policy = explicit_policy
        self._sleep = sleep

    async def execute(self, request: GenerationRequest, sink: TokenStream | None = None) -> GenerationResult:
        """Run ``request`` to success, exhaustion or abort."""
        providers = await self._select_providers(request)
        if not providers:
            raise ProvidersExhaustedError(self._no_provider_message(request))

        attempts: list[ProviderAttempt] = []
        total_calls = 0
        started = time.monotonic()

        for name in providers:
            if len(attempts) >= self.policy.max_provider_attempts:
                raise ProvidersExhaustedError(
                    f"Gave up after {len(attempts)} provider(s) (max_provider_attempts="
                    f"{self.policy.max_provider_attempts}).",
                    attempts,
                )

            handle = self.registry.get(name)
            params = self.registry.params_for(name, request)
            calls = 0

            while True:
                calls += 1
                total_calls += 1
                PROVIDER_CALLS.labels(provider=name).inc()
                try:
                    result = await self._call(handle, request, params, sink)
                except Exception as e:
                    kind = classify_error(e)
                    error = str(e) or type(e).__name__

                    if kind is FailureKind.RATE_LIMITED:
                        self.registry.tracker.mark_rate_limited(name)
                        attempts.append(self._record(request, name, AttemptOutcome.RATE_LIMITED, calls, error))
                        break

                    if kind is FailureKind.TRANSIENT:
                        if self.policy.should_retry(calls):
                            delay = self.policy.backoff(calls)
                            logger.info(
                                "Retryable error with %s (retry %d/%d) in %.1fs: %s",
                                name,
                                calls,
                                self.policy.max_retries - 1,
                                delay,
                                error,
                                extra={"provider": name, "label": request.label},
                            )
                            await self._sleep(delay)
                            continue
                        attempts.append(self._record(request, name, AttemptOutcome.TRANSIENT_EXHAUSTED, calls, error))
                        break

                    attempts.append(self._record(request, name, AttemptOutcome.FATAL, calls, error))
                    raise DispatchAbortedError(
                        f"Provider {name} failed with a non-retryable error.",
                        provider=name,
                        attempts=attempts,
                    ) from e

                self._record(request, name, AttemptOutcome.SUCCESS, calls)
                return normalize_result(
                    result,
                    provider=name,
                    attempts=total_calls,
                    latency_ms=int((time.monotonic() - started) * 1000),
                )

        raise ProvidersExhaustedError("All LLM providers failed or were skipped.", attempts)

    async def _select_providers(self, request: GenerationRequest) -> list[str]:
        explicit = request.provider
        if explicit:
            providers = self.registry.build_priority_order(explicit=explicit)
            if providers or self.explicit_policy is not ExplicitProviderPolicy.WAIT:
                return providers
            wait = self.registry.tracker.remaining(explicit)
            handle = self.registry.get(explicit)
            if wait <= 0 or handle is None or not handle.is_available():
                return providers
            logger.info("Waiting %.1fs for explicitly requested provider %s to cool down", wait, explicit)
            await self._sleep(wait)
            return self.registry.build_priority_order(explicit=explicit)

        preferred = self.registry.provider_for_task(request.task_name) if request.task_name else None
        return self.registry.build_priority_order(preferred=preferred)

    def _no_provider_message(self, request: GenerationRequest) -> str:
        explicit = request.provider
        if not explicit:
            return "No LLM providers currently available (all may be rate-limited or unconfigured)."
        if self.registry.get(explicit) is None:
            return f"Requested provider {explicit} is not configured."
        if self.registry.tracker.is_rate_limited(explicit):
            return (
                f"Requested provider {explicit} is rate limited for another "
                f"{self.registry.tracker.remaining(explicit):.1f}s."
            )
        return f"Requested provider {explicit} is not available."

    @staticmethod
    async def _call(
        handle: ProviderCapability,
        request: GenerationRequest,
        params: GenerationParams,
        sink: TokenStream | None,
    ) -> GenerationResult:
        if sink is None:
            return await handle.generate(request, params)
        return await stream_into(handle, request, params, sink)

    @staticmethod
    def _record(
        request: GenerationRequest,
        provider: str,
        outcome: AttemptOutcome,
        calls: int,
        error: str = "",
    ) -> ProviderAttempt:
        attempt = ProviderAttempt(provider=provider, outcome=outcome, calls=calls, error=error)
        PROVIDER_ATTEMPTS.labels(provider=provider, outcome=outcome.value).inc()
        if outcome is AttemptOutcome.SUCCESS:
            logger.debug(
                "Request %s served by %s after %d call(s)",
                request.request_id,
                provider,
                calls,
                extra={"provider": provider, "label": request.label},
            )
        else:
            logger.warning(
                "Request %s: %s",
                request.request_id,
                attempt.describe(),
                extra={"provider": provider, "label": request.label},
            )
        return attempt

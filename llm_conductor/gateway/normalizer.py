"""Result Normalizer — post-processes GenerationResults.

Applies final normalization after an adapter returns:
  - Makes token usage internally consistent
  - Stamps provider/model/attempt metadata
"""

from __future__ import annotations

from llm_conductor.gateway.types import GenerationResult, TokenUsage


def normalize_result(
    result: GenerationResult,
    provider: str = "",
    attempts: int = 0,
    latency_ms: int | None = None,
) -> GenerationResult:
    """Apply normalization to a generation result.

    Idempotent: safe to call more than once.
    """
    if result.usage is None:
        result.usage = TokenUsage()

    usage = result.usage
    usage.prompt_tokens = max(int(usage.prompt_tokens or 0), 0)
    usage.completion_tokens = max(int(usage.completion_tokens or 0), 0)
    usage.total_tokens = max(int(usage.total_tokens or 0), 0)
    if usage.total_tokens == 0 and (usage.prompt_tokens or usage.completion_tokens):
        usage.total_tokens = usage.prompt_tokens + usage.completion_tokens

    if result.text is None:
        result.text = ""

    if provider and not result.provider:
        result.provider = provider
    if attempts:
        result.attempts = attempts
    if latency_ms is not None and not result.latency_ms:
        result.latency_ms = latency_ms

    return result


def estimate_usage(prompt: str, completion: str) -> TokenUsage:
    """Rough usage for providers that report none (~4 characters per token)."""
    prompt_tokens = -(-len(prompt) // 4)
    completion_tokens = -(-len(completion) // 4)
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
    )

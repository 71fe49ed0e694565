"""LLM Dispatch Gateway.

Routes prompts to configured LLM vendors with:
  - Serialized Request Queue (single drain loop, FIFO)
  - Provider Registry (default provider, priority order, task routing)
  - Rate-Limit Tracker (per-provider cooldown)
  - Retry/Fallback Executor (exponential backoff, provider fallback)
  - Vendor-Specific Adapters (protocol differences)
  - Prompt Refiner
"""

from llm_conductor.gateway.errors import (
    ConfigurationError,
    DispatchAbortedError,
    DispatchError,
    FatalProviderError,
    ProviderError,
    ProvidersExhaustedError,
    RateLimitedError,
    TransientProviderError,
)
from llm_conductor.gateway.manager import LlmManager
from llm_conductor.gateway.types import (
    DispatchConfig,
    ExplicitProviderPolicy,
    GenerationParams,
    GenerationRequest,
    GenerationResult,
    ProviderConfig,
    ProviderKind,
)

__all__ = [
    "ConfigurationError",
    "DispatchAbortedError",
    "DispatchConfig",
    "DispatchError",
    "ExplicitProviderPolicy",
    "FatalProviderError",
    "GenerationParams",
    "GenerationRequest",
    "GenerationResult",
    "LlmManager",
    "ProviderConfig",
    "ProviderError",
    "ProviderKind",
    "ProvidersExhaustedError",
    "RateLimitedError",
    "TransientProviderError",
]

"""Environment-driven settings and their translation into dispatch objects.

The gateway never reads the environment itself: it is handed the
``ProviderConfig`` list and ``DispatchConfig`` built here.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

from llm_conductor.gateway.types import (
    DEFAULT_PRIORITY_ORDER,
    PROVIDER_DEFAULTS,
    DispatchConfig,
    ExplicitProviderPolicy,
    GenerationParams,
    ProviderConfig,
    ProviderKind,
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Provider credentials
    anthropic_api_key: str = ""
    claude_api_key: str = ""  # legacy alias for anthropic_api_key
    openai_api_key: str = ""
    openai_api_base_url: str = ""
    groq_api_key: str = ""
    mistral_api_key: str = ""
    mixtral_api_key: str = ""
    gemini_api_key: str = ""
    xai_api_key: str = ""
    perplexity_api_key: str = ""
    openrouter_api_key: str = ""
    deepseek_api_key: str = ""

    # Ollama runs locally and needs no key
    ollama_enabled: bool = False
    ollama_api_key: str = ""
    ollama_base_url: str = "http://localhost:11434"

    # Selection
    default_llm_provider: str = ""
    llm_priority_order: str = ""  # comma-separated, empty = built-in order

    # Retry / fallback
    llm_max_retries: int = 3
    llm_max_provider_attempts: int = 3
    llm_rate_limit_cooldown_seconds: float = 60.0
    llm_backoff_base_seconds: float = 1.0
    llm_backoff_max_seconds: float = 10.0
    llm_backoff_jitter_seconds: float = 0.0
    llm_explicit_provider_policy: ExplicitProviderPolicy = ExplicitProviderPolicy.FAIL_FAST
    llm_request_timeout_seconds: float = 60.0

    # Global generation defaults (None = leave to the provider)
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None

    # Task routing, comma-separated task names per provider
    anthropic_tasks: str = ""
    openai_tasks: str = ""
    groq_tasks: str = ""
    mistral_tasks: str = ""
    mixtral_tasks: str = ""
    gemini_tasks: str = ""
    xai_tasks: str = ""
    ollama_tasks: str = ""
    perplexity_tasks: str = ""
    openrouter_tasks: str = ""
    deepseek_tasks: str = ""

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    @property
    def task_providers(self) -> dict[str, list[str]]:
        """Task routing from e.g. ``ANTHROPIC_TASKS="parse-prd, expand-task"``."""
        mapping: dict[str, list[str]] = {}
        for provider in PROVIDER_DEFAULTS:
            raw = getattr(self, f"{provider}_tasks", "")
            tasks = [t.strip().lower() for t in raw.split(",") if t.strip()]
            if tasks:
                mapping[provider] = tasks
        return mapping

    @property
    def max_retries(self) -> int:
        return min(max(self.llm_max_retries, 0), 10)

    @property
    def max_provider_attempts(self) -> int:
        return min(max(self.llm_max_provider_attempts, 1), 5)

    @property
    def priority_order(self) -> tuple[str, ...]:
        names = [p.strip().lower() for p in self.llm_priority_order.split(",") if p.strip()]
        return tuple(names) or DEFAULT_PRIORITY_ORDER

    @property
    def global_params(self) -> GenerationParams:
        return GenerationParams(
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            top_p=self.top_p,
            frequency_penalty=self.frequency_penalty,
            presence_penalty=self.presence_penalty,
        )


# provider name -> (settings attribute holding the key, adapter family, base url)
_PROVIDER_SOURCES: dict[str, tuple[str, ProviderKind, str | None]] = {
    "anthropic": ("anthropic_api_key", ProviderKind.ANTHROPIC, None),
    "openai": ("openai_api_key", ProviderKind.OPENAI_COMPATIBLE, "https://api.openai.com/v1"),
    "groq": ("groq_api_key", ProviderKind.OPENAI_COMPATIBLE, "https://api.groq.com/openai/v1"),
    "mistral": ("mistral_api_key", ProviderKind.OPENAI_COMPATIBLE, "https://api.mistral.ai/v1"),
    "mixtral": ("mixtral_api_key", ProviderKind.OPENAI_COMPATIBLE, "https://api.mistral.ai/v1"),
    "gemini": ("gemini_api_key", ProviderKind.GEMINI, None),
    "xai": ("xai_api_key", ProviderKind.OPENAI_COMPATIBLE, "https://api.x.ai/v1"),
    "ollama": ("ollama_api_key", ProviderKind.OLLAMA, None),
    "perplexity": ("perplexity_api_key", ProviderKind.OPENAI_COMPATIBLE, "https://api.perplexity.ai"),
    "openrouter": ("openrouter_api_key", ProviderKind.OPENAI_COMPATIBLE, "https://openrouter.ai/api/v1"),
    "deepseek": ("deepseek_api_key", ProviderKind.OPENAI_COMPATIBLE, "https://api.deepseek.com"),
}


def build_provider_configs(settings: Settings) -> list[ProviderConfig]:
    """Build one ProviderConfig per known provider.

    Providers without a credential are still listed (with an empty key) so
    the registry can report and skip them uniformly.
    """
    configs: list[ProviderConfig] = []
    for name, (key_attr, kind, base_url) in _PROVIDER_SOURCES.items():
        api_key = getattr(settings, key_attr)
        if name == "anthropic" and not api_key:
            api_key = settings.claude_api_key
        if name == "openai" and settings.openai_api_base_url:
            base_url = settings.openai_api_base_url
        enabled = bool(api_key)
        if name == "ollama":
            base_url = settings.ollama_base_url
            enabled = settings.ollama_enabled or bool(api_key)

        defaults = PROVIDER_DEFAULTS[name]
        configs.append(
            ProviderConfig(
                name=name,
                kind=kind,
                api_key=api_key,
                model=defaults.model,
                base_url=base_url,
                defaults=GenerationParams(
                    temperature=defaults.temperature,
                    max_tokens=defaults.max_tokens,
                ),
                timeout_seconds=settings.llm_request_timeout_seconds,
                enabled=enabled,
            )
        )
    return configs


def build_dispatch_config(settings: Settings) -> DispatchConfig:
    return DispatchConfig(
        default_provider=settings.default_llm_provider.strip().lower() or None,
        priority_order=settings.priority_order,
        max_retries=settings.max_retries,
        max_provider_attempts=settings.max_provider_attempts,
        rate_limit_cooldown=settings.llm_rate_limit_cooldown_seconds,
        backoff_base=settings.llm_backoff_base_seconds,
        backoff_max=settings.llm_backoff_max_seconds,
        backoff_jitter=settings.llm_backoff_jitter_seconds,
        explicit_provider_policy=settings.llm_explicit_provider_policy,
        global_params=settings.global_params,
        task_providers=dict(settings.task_providers),
    )


settings = Settings()

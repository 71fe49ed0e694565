"""Provider Registry — configured handles, default provider and priority order.

Combined with the RateLimitTracker it answers "which providers may be
tried right now, and in what order".
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping

from llm_conductor.gateway.errors import ConfigurationError
from llm_conductor.gateway.rate_limiter import RateLimitTracker
from llm_conductor.gateway.types import (
    DEFAULT_PRIORITY_ORDER,
    GenerationParams,
    GenerationRequest,
    ProviderCapability,
    ProviderConfig,
)

logger = logging.getLogger(__name__)


def _normalize_task(name: str) -> str:
    return name.lower().replace("-", "").replace("_", "")


def build_handles(
    configs: Iterable[ProviderConfig],
    factory: Callable[[ProviderConfig], ProviderCapability],
) -> tuple[dict[str, ProviderCapability], dict[str, GenerationParams]]:
    """Construct a handle per config; providers raising ConfigurationError are skipped."""
    handles: dict[str, ProviderCapability] = {}
    defaults: dict[str, GenerationParams] = {}
    for config in configs:
        if config.name in handles:
            logger.warning("Duplicate provider config %s ignored", config.name)
            continue
        try:
            handles[config.name] = factory(config)
        except ConfigurationError as e:
            logger.info("Provider %s not configured: %s", config.name, e)
            continue
        defaults[config.name] = config.defaults

    if not handles:
        logger.error("No LLM providers available. Configure at least one provider credential.")
    else:
        logger.info("Configured LLM providers: %s", ", ".join(handles))
    return handles, defaults


class ProviderRegistry:
    """Owns every constructed provider handle.

    Handles are ordered by ``priority_order``; handles missing from that
    order keep their insertion order and go last.
    """

    def __init__(
        self,
        handles: Mapping[str, ProviderCapability],
        tracker: RateLimitTracker,
        priority_order: Iterable[str] = DEFAULT_PRIORITY_ORDER,
        default_provider: str | None = None,
        provider_defaults: Mapping[str, GenerationParams] | None = None,
        global_params: GenerationParams | None = None,
        task_providers: Mapping[str, Iterable[str]] | None = None,
    ):
        self.tracker = tracker
        self.global_params = global_params or GenerationParams()
        self._provider_defaults = dict(provider_defaults or {})

        order = [name for name in dict.fromkeys(priority_order) if name in handles]
        order += [name for name in handles if name not in order]
        self._order: tuple[str, ...] = tuple(order)
        self._handles: dict[str, ProviderCapability] = {name: handles[name] for name in order}

        self._default = self._resolve_default(default_provider)
        self._task_map = self._build_task_map(task_providers or {})

    @classmethod
    def from_configs(
        cls,
        configs: Iterable[ProviderConfig],
        factory: Callable[[ProviderConfig], ProviderCapability],
        tracker: RateLimitTracker,
        **kwargs,
    ) -> ProviderRegistry:
        """Build handles from configs, skipping any that fail to construct."""
        handles, defaults = build_handles(configs, factory)
        kwargs.setdefault("provider_defaults", defaults)
        return cls(handles, tracker, **kwargs)

    def _resolve_default(self, requested: str | None) -> str | None:
        if requested:
            requested = requested.lower()
            if requested in self._handles:
                return requested
            logger.warning(
                "Default LLM provider %r is not available, falling back to priority order: %s",
                requested,
                ", ".join(self._order),
            )
        return self._order[0] if self._order else None

    def _build_task_map(self, task_providers: Mapping[str, Iterable[str]]) -> dict[str, str]:
        task_map: dict[str, str] = {}
        for provider, tasks in task_providers.items():
            if provider not in self._handles:
                continue
            for task in tasks:
                task = task.strip().lower()
                if task:
                    task_map[task] = provider
        if task_map:
            logger.info("Loaded %d task-to-provider mappings", len(task_map))
        return task_map

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, name: str) -> ProviderCapability | None:
        return self._handles.get(name)

    def get_default_provider(self) -> str | None:
        return self._default

    def get_available_providers(self) -> list[str]:
        return [name for name, handle in self._handles.items() if handle.is_available()]

    def has_available_providers(self) -> bool:
        return any(handle.is_available() for handle in self._handles.values())

    def is_eligible(self, name: str) -> bool:
        handle = self._handles.get(name)
        return handle is not None and handle.is_available() and not self.tracker.is_rate_limited(name)

    def build_priority_order(self, explicit: str | None = None, preferred: str | None = None) -> list[str]:
        """Ordered list of providers to try for one request.

        An explicit provider is a hard preference: the result is that
        provider alone, or empty if it is not eligible. ``preferred`` (from
        task routing) only moves a provider to the front.
        """
        if explicit:
            return [explicit] if self.is_eligible(explicit) else []

        candidates = [preferred, self._default, *self._order]
        return [name for name in dict.fromkeys(c for c in candidates if c) if self.is_eligible(name)]

    def provider_for_task(self, task_name: str) -> str | None:
        """Provider mapped to ``task_name``, or None.

        Tries an exact match, then a match ignoring case, dashes and
        underscores, then a substring match in either direction.
        """
        if not task_name or not self._task_map:
            return None
        if task_name in self._task_map:
            return self._task_map[task_name]

        wanted = _normalize_task(task_name)
        for mapped, provider in self._task_map.items():
            if _normalize_task(mapped) == wanted:
                return provider
        for mapped, provider in self._task_map.items():
            mapped_norm = _normalize_task(mapped)
            if mapped_norm in wanted or wanted in mapped_norm:
                return provider
        return None

    def get_provider_defaults(self, name: str) -> GenerationParams | None:
        if name not in self._handles:
            return None
        return self._provider_defaults.get(name, GenerationParams()).merged_with(self.global_params)

    def params_for(self, name: str, request: GenerationRequest) -> GenerationParams:
        """Effective parameters: request overrides, then global, then provider defaults."""
        base = self.get_provider_defaults(name) or self.global_params
        return base.merged_with(request.params)

    def describe(self) -> list[dict]:
        return [
            {
                "name": name,
                "available": handle.is_available(),
                "rate_limited": self.tracker.is_rate_limited(name),
                "default": name == self._default,
            }
            for name, handle in self._handles.items()
        ]

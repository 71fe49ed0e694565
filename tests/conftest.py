"""Shared fakes: scripted providers, a manual clock and a recording sleep."""

from __future__ import annotations

import asyncio

import pytest

from llm_conductor.gateway.manager import LlmManager
from llm_conductor.gateway.types import (
    DispatchConfig,
    GenerationParams,
    GenerationRequest,
    GenerationResult,
    TokenUsage,
)


class FakeProvider:
    """Provider whose calls play back ``outcomes`` in order.

    An outcome is either a string (returned as the completion text) or an
    exception instance (raised). Once exhausted it answers "<name> ok".
    """

    def __init__(self, name: str, outcomes=None, available: bool = True, events: list | None = None):
        self.name = name
        self.model = f"{name}-model"
        self.outcomes = list(outcomes or [])
        self.available = available
        self.calls: list[tuple[GenerationRequest, GenerationParams]] = []
        self.events = events
        self.in_flight = 0
        self.max_in_flight = 0

    def is_available(self) -> bool:
        return self.available

    async def generate(self, request: GenerationRequest, params: GenerationParams) -> GenerationResult:
        self.calls.append((request, params))
        if self.events is not None:
            self.events.append((self.name, request.label))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            # Yield a few times so overlapping requests would show up
            for _ in range(3):
                await asyncio.sleep(0)
            outcome = self.outcomes.pop(0) if self.outcomes else f"{self.name} ok"
            if isinstance(outcome, BaseException):
                raise outcome
            return GenerationResult(
                text=outcome,
                usage=TokenUsage(prompt_tokens=3, completion_tokens=4),
                model=self.model,
            )
        finally:
            self.in_flight -= 1

    @property
    def call_count(self) -> int:
        return len(self.calls)


class FakeStreamingProvider(FakeProvider):
    """FakeProvider that also streams: outcomes are lists of chunks or exceptions."""

    async def stream(self, request: GenerationRequest, params: GenerationParams):
        self.calls.append((request, params))
        outcome = self.outcomes.pop(0) if self.outcomes else [f"{self.name} ", "ok"]
        if isinstance(outcome, BaseException):
            raise outcome
        for chunk in outcome:
            await asyncio.sleep(0)
            if isinstance(chunk, BaseException):
                raise chunk
            yield chunk


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Stands in for asyncio.sleep: records delays and advances the clock."""

    def __init__(self, clock: FakeClock | None = None):
        self.clock = clock
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.clock is not None:
            self.clock.advance(delay)
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper(clock):
    return SleepRecorder(clock)


@pytest.fixture
def make_manager(clock, sleeper):
    """Build an LlmManager over fake providers; priority follows argument order."""

    def _make(*providers, **config_kwargs) -> LlmManager:
        config_kwargs.setdefault("priority_order", tuple(p.name for p in providers))
        config = DispatchConfig(**config_kwargs)
        return LlmManager({p.name: p for p in providers}, config=config, clock=clock, sleep=sleeper)

    return _make

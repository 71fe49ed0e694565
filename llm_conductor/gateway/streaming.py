"""Token streams — incremental output delivered through a bounded channel.

The executor only cares about the terminal result of a call; when a
request carries a TokenStream, chunks are pushed into it as the adapter
produces them and the final GenerationResult resolves ``result()``.
"""

from __future__ import annotations

import asyncio
import logging
import time

from llm_conductor.gateway.types import (
    GenerationParams,
    GenerationRequest,
    GenerationResult,
    ProviderCapability,
)

logger = logging.getLogger(__name__)

DEFAULT_STREAM_BUFFER = 64
# Seconds the drain loop waits on a full buffer before giving up on the reader
DEFAULT_STALL_TIMEOUT = 5.0


class TokenStream:
    """Async iterator over text chunks plus the final result.

    Usage:
        stream = manager.stream_request(request)
        async for chunk in stream:
            print(chunk, end="")
        result = await stream.result()

    Iteration raises the DispatchError if the request fails. Chunks of
    an attempt that later fails may already have been yielded;
    ``result()`` carries the authoritative text.
    """

    def __init__(self, maxsize: int = DEFAULT_STREAM_BUFFER, stall_timeout: float = DEFAULT_STALL_TIMEOUT):
        self._stall_timeout = stall_timeout
        self._chunks: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)
        self._changed = asyncio.Event()
        self._outcome: asyncio.Future[GenerationResult] = asyncio.get_running_loop().create_future()
        self._discard = False

    # -- producer side (drain loop) ---------------------------------------

    async def put(self, chunk: str) -> None:
        """Buffer ``chunk`` for the consumer.

        Waits at most ``stall_timeout`` seconds for room in a full buffer.
        A consumer that stops reading for longer than that is treated as
        gone: the stream switches to discard mode and only ``result()``
        is delivered. An abandoned stream holds up the drain loop for at
        most that long.
        """
        if self._discard or not chunk:
            return
        try:
            self._chunks.put_nowait(chunk)
        except asyncio.QueueFull:
            try:
                await asyncio.wait_for(self._chunks.put(chunk), timeout=self._stall_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Stream consumer stalled for %.1fs, dropping further chunks", self._stall_timeout
                )
                self.discard()
                return
            if self._discard:
                self.discard()
                return
        self._changed.set()

    def set_result(self, result: GenerationResult) -> None:
        if not self._outcome.done():
            self._outcome.set_result(result)
        self._changed.set()

    def set_exception(self, exc: BaseException) -> None:
        if not self._outcome.done():
            self._outcome.set_exception(exc)
        self._changed.set()

    @property
    def future(self) -> asyncio.Future[GenerationResult]:
        return self._outcome

    @property
    def done(self) -> bool:
        return self._outcome.done()

    # -- consumer side -----------------------------------------------------

    def __aiter__(self) -> TokenStream:
        return self

    async def __anext__(self) -> str:
        while True:
            if not self._chunks.empty():
                return self._chunks.get_nowait()
            if self._outcome.done():
                exc = self._outcome.exception()
                if exc is not None:
                    raise exc
                raise StopAsyncIteration
            self._changed.clear()
            await self._changed.wait()

    async def result(self) -> GenerationResult:
        """Wait for the final result, discarding any unread chunks."""
        self.discard()
        return await asyncio.shield(self._outcome)

    def discard(self) -> None:
        """Stop buffering chunks so an abandoned stream never blocks the queue."""
        self._discard = True
        while not self._chunks.empty():
            self._chunks.get_nowait()


async def stream_into(
    provider: ProviderCapability,
    request: GenerationRequest,
    params: GenerationParams,
    sink: TokenStream,
) -> GenerationResult:
    """Run one streaming call, forwarding chunks to ``sink``.

    Providers without a ``stream`` method are called through ``generate``
    and their text is forwarded as a single chunk.
    """
    stream = getattr(provider, "stream", None)
    if stream is None:
        result = await provider.generate(request, params)
        await sink.put(result.text)
        return result

    start = time.monotonic()
    parts: list[str] = []
    async for chunk in stream(request, params):
        parts.append(chunk)
        await sink.put(chunk)
    text = "".join(parts)
    return GenerationResult(
        text=text,
        provider=getattr(provider, "name", ""),
        model=getattr(provider, "model", ""),
        latency_ms=int((time.monotonic() - start) * 1000),
    )

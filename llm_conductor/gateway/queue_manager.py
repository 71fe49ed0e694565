"""Serialized Request Queue — FIFO scheduling through a single drain loop.

Every request goes through one consumer task that runs it through the
executor to completion before dequeuing the next. This keeps retry,
backoff and rate-limit state free of races without any locking, at the
cost of head-of-line blocking: a request retrying across every provider
delays everything behind it.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field

from llm_conductor.core.metrics import DISPATCH_DURATION, DISPATCH_REQUESTS, QUEUE_DEPTH
from llm_conductor.gateway.errors import DispatchAbortedError, ProvidersExhaustedError
from llm_conductor.gateway.executor import DispatchExecutor
from llm_conductor.gateway.streaming import TokenStream
from llm_conductor.gateway.types import GenerationRequest, GenerationResult

logger = logging.getLogger(__name__)


@dataclass
class QueueEntry:
    """A submitted request and the future its caller is waiting on."""

    sequence: int  # FIFO position only, never a priority
    request: GenerationRequest
    future: asyncio.Future[GenerationResult]
    stream: TokenStream | None = None
    enqueued_at: float = field(default_factory=time.monotonic)


class RequestQueue:
    """Single-consumer request queue.

    Usage:
        queue = RequestQueue(executor)
        result = await queue.submit(request)

        # On shutdown:
        await queue.aclose()
    """

    def __init__(self, executor: DispatchExecutor):
        self.executor = executor
        self._queue: asyncio.Queue[QueueEntry] = asyncio.Queue()
        self._sequence = itertools.count(1)
        self._worker: asyncio.Task | None = None
        self._closed = False

    def enqueue(self, request: GenerationRequest, stream: TokenStream | None = None) -> QueueEntry:
        """Append ``request`` to the tail and make sure the drain loop runs."""
        if self._closed:
            raise RuntimeError("Request queue is closed")

        loop = asyncio.get_running_loop()
        entry = QueueEntry(
            sequence=next(self._sequence),
            request=request,
            future=stream.future if stream is not None else loop.create_future(),
            stream=stream,
        )
        self._queue.put_nowait(entry)
        QUEUE_DEPTH.set(self._queue.qsize())
        logger.debug("Enqueued request %s (#%d, label=%s)", request.request_id, entry.sequence, request.label)

        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._drain(), name="llm-conductor-drain")
        return entry

    async def submit(self, request: GenerationRequest) -> GenerationResult:
        """Enqueue ``request`` and wait for its result."""
        entry = self.enqueue(request)
        return await entry.future

    async def _drain(self) -> None:
        """Process entries one at a time until the queue is empty."""
        while True:
            try:
                entry = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            QUEUE_DEPTH.set(self._queue.qsize())
            try:
                if entry.future.cancelled():
                    logger.debug("Skipping request %s cancelled before dispatch", entry.request.request_id)
                    continue
                await self._process(entry)
            finally:
                self._queue.task_done()

    async def _process(self, entry: QueueEntry) -> None:
        started = time.monotonic()
        try:
            result = await self.executor.execute(entry.request, sink=entry.stream)
        except ProvidersExhaustedError as e:
            DISPATCH_REQUESTS.labels(status="exhausted").inc()
            self._reject(entry, e)
        except DispatchAbortedError as e:
            DISPATCH_REQUESTS.labels(status="aborted").inc()
            self._reject(entry, e)
        except Exception as e:
            logger.exception("Unexpected error dispatching request %s", entry.request.request_id)
            DISPATCH_REQUESTS.labels(status="error").inc()
            self._reject(entry, e)
        else:
            DISPATCH_REQUESTS.labels(status="success").inc()
            if entry.stream is not None:
                entry.stream.set_result(result)
            elif not entry.future.done():
                entry.future.set_result(result)
        finally:
            DISPATCH_DURATION.observe(time.monotonic() - started)

    @staticmethod
    def _reject(entry: QueueEntry, exc: BaseException) -> None:
        logger.warning("Request %s failed: %s", entry.request.request_id, exc)
        if entry.stream is not None:
            entry.stream.set_exception(exc)
        elif not entry.future.done():
            entry.future.set_exception(exc)

    def pending(self) -> int:
        """Number of requests waiting behind the one in flight."""
        return self._queue.qsize()

    @property
    def is_draining(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def get_stats(self) -> dict:
        return {"pending": self.pending(), "draining": self.is_draining}

    async def aclose(self) -> None:
        """Stop accepting requests and wait for queued ones to resolve."""
        self._closed = True
        if self._worker is not None and not self._worker.done():
            await self._worker

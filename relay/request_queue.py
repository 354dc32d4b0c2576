from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from relay.errors import RelayError
from relay.models import QueueEntry, Request

logger = logging.getLogger(__name__)

Handler = Callable[[Request], Awaitable[str]]


class RequestQueue:
    """Strict FIFO with exactly one worker.

    The shared page has a single composer and a single response stream, so a
    request only starts after the previous one has settled, whatever its
    outcome. Callers cannot cancel a request that is already running.
    """

    def __init__(self, handler: Handler) -> None:
        self._handler = handler
        self._queue: asyncio.Queue[QueueEntry] | None = None
        self._worker: asyncio.Task | None = None
        self.in_flight: Request | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._worker = asyncio.get_running_loop().create_task(self._run(), name="relay-request-worker")

    async def stop(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        if self._queue is not None:
            while not self._queue.empty():
                entry = self._queue.get_nowait()
                if not entry.future.done():
                    entry.future.set_exception(RelayError("relay is shutting down"))

    async def enqueue(self, request: Request) -> str:
        if not self.running:
            raise RuntimeError("RequestQueue.start() must be called before enqueue()")
        entry = QueueEntry(request)
        entry.future.add_done_callback(_consume_result)
        self._queue.put_nowait(entry)
        logger.debug("[%s] queued (%d waiting)", request.id, self._queue.qsize())
        # shield: a caller giving up must not cancel the interaction on the page
        return await asyncio.shield(entry.future)

    async def _run(self) -> None:
        while True:
            entry = await self._queue.get()
            request = entry.request
            self.in_flight = request
            try:
                result = await self._handler(request)
            except asyncio.CancelledError:
                if not entry.future.done():
                    entry.future.set_exception(RelayError("relay is shutting down"))
                raise
            except Exception as exc:  # noqa: BLE001
                if not entry.future.done():
                    entry.future.set_exception(exc)
            else:
                if not entry.future.done():
                    entry.future.set_result(result)
            finally:
                self.in_flight = None
                self._queue.task_done()


def _consume_result(future: asyncio.Future) -> None:
    # Marks the exception as retrieved when the caller stopped waiting.
    if not future.cancelled():
        future.exception()

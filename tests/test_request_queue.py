import asyncio

import pytest

from relay.errors import RelayError, UpstreamError
from relay.models import Request
from relay.request_queue import RequestQueue


def _request(prompt: str) -> Request:
    return Request.create(prompt, timeout_ms=1_000)


class RecordingHandler:
    def __init__(self, fail_on=()):
        self.events: list[tuple[str, str]] = []
        self.active = 0
        self.max_active = 0
        self.fail_on = set(fail_on)

    async def __call__(self, request: Request) -> str:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.events.append(("start", request.prompt))
        try:
            for _ in range(3):
                await asyncio.sleep(0)
            if request.prompt in self.fail_on:
                raise UpstreamError(f"failed {request.prompt}")
            return f"answer to {request.prompt}"
        finally:
            self.events.append(("end", request.prompt))
            self.active -= 1


@pytest.mark.asyncio
async def test_requests_run_one_at_a_time_in_arrival_order():
    handler = RecordingHandler()
    queue = RequestQueue(handler)
    queue.start()
    prompts = [f"q{i}" for i in range(5)]

    results = await asyncio.gather(*(queue.enqueue(_request(p)) for p in prompts))
    await queue.stop()

    assert results == [f"answer to {p}" for p in prompts]
    assert handler.max_active == 1
    expected = []
    for p in prompts:
        expected += [("start", p), ("end", p)]
    assert handler.events == expected


@pytest.mark.asyncio
async def test_failure_only_fails_its_own_request():
    handler = RecordingHandler(fail_on={"bad"})
    queue = RequestQueue(handler)
    queue.start()

    results = await asyncio.gather(
        queue.enqueue(_request("first")),
        queue.enqueue(_request("bad")),
        queue.enqueue(_request("last")),
        return_exceptions=True,
    )
    await queue.stop()

    assert results[0] == "answer to first"
    assert isinstance(results[1], UpstreamError)
    assert results[2] == "answer to last"


@pytest.mark.asyncio
async def test_caller_cancellation_does_not_interrupt_running_request():
    release = asyncio.Event()
    finished = []

    async def handler(request: Request) -> str:
        await release.wait()
        finished.append(request.prompt)
        return "done"

    queue = RequestQueue(handler)
    queue.start()
    caller = asyncio.ensure_future(queue.enqueue(_request("slow")))
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    caller.cancel()
    with pytest.raises(asyncio.CancelledError):
        await caller
    release.set()
    follow_up = await queue.enqueue(_request("next"))
    await queue.stop()

    assert finished == ["slow", "next"]
    assert follow_up == "done"


@pytest.mark.asyncio
async def test_pending_counts_waiting_requests():
    release = asyncio.Event()

    async def handler(request: Request) -> str:
        await release.wait()
        return request.prompt

    queue = RequestQueue(handler)
    queue.start()
    tasks = [asyncio.ensure_future(queue.enqueue(_request(p))) for p in ("a", "b", "c")]
    for _ in range(3):
        await asyncio.sleep(0)

    assert queue.in_flight.prompt == "a"
    assert queue.pending == 2

    release.set()
    assert await asyncio.gather(*tasks) == ["a", "b", "c"]
    await queue.stop()


@pytest.mark.asyncio
async def test_stop_fails_waiting_requests():
    async def handler(request: Request) -> str:
        await asyncio.Event().wait()
        return "never"

    queue = RequestQueue(handler)
    queue.start()
    tasks = [asyncio.ensure_future(queue.enqueue(_request(p))) for p in ("a", "b")]
    for _ in range(3):
        await asyncio.sleep(0)

    await queue.stop()
    results = await asyncio.gather(*tasks, return_exceptions=True)

    assert all(isinstance(r, RelayError) for r in results)
    assert not queue.running


@pytest.mark.asyncio
async def test_enqueue_requires_started_queue():
    queue = RequestQueue(RecordingHandler())

    with pytest.raises(RuntimeError):
        await queue.enqueue(_request("early"))

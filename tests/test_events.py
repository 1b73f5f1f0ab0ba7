"""Progress emitter tests: per-job fan-out and SSE framing."""

import asyncio
import json
import queue

import pytest

from moderation_worker.events import ProgressEmitter, format_sse


def _drain(subscription: "queue.Queue") -> list:
    messages = []
    while True:
        try:
            messages.append(subscription.get_nowait())
        except queue.Empty:
            return messages


def test_every_subscriber_receives_each_message() -> None:
    emitter = ProgressEmitter()
    first = emitter.subscribe("job-1")
    second = emitter.subscribe("job-1")

    emitter.emit_progress("job-1", "processing", 15, "Extracting frames...")

    expected = {
        "type": "progress",
        "job_id": "job-1",
        "status": "processing",
        "percent": 15,
        "message": "Extracting frames...",
    }
    assert _drain(first) == [expected]
    assert _drain(second) == [expected]


def test_channels_are_isolated_per_job() -> None:
    emitter = ProgressEmitter()
    mine = emitter.subscribe("job-1")
    other = emitter.subscribe("job-2")

    emitter.emit_complete("job-1", "safe", 0)

    assert len(_drain(mine)) == 1
    assert _drain(other) == []


def test_late_subscriber_gets_no_replay() -> None:
    emitter = ProgressEmitter()
    emitter.emit_progress("job-1", "processing", 0, "Starting analysis...")

    late = emitter.subscribe("job-1")
    emitter.emit_error("job-1", "Analysis failed")

    assert _drain(late) == [{"type": "error", "job_id": "job-1", "message": "Analysis failed"}]


def test_publish_without_subscribers_is_a_noop() -> None:
    ProgressEmitter().emit_progress("nobody", "processing", 30, "Sending to analysis...")


def test_unsubscribe_stops_delivery() -> None:
    emitter = ProgressEmitter()
    subscription = emitter.subscribe("job-1")
    emitter.unsubscribe("job-1", subscription)

    emitter.emit_complete("job-1", "flagged", 72)

    assert _drain(subscription) == []
    assert emitter.subscriber_count("job-1") == 0


def test_dead_subscriber_does_not_block_others() -> None:
    emitter = ProgressEmitter()
    full: "queue.Queue" = queue.Queue(maxsize=1)
    full.put_nowait({"type": "stale"})
    emitter._add("job-1", (full, None))
    healthy = emitter.subscribe("job-1")

    emitter.emit_progress("job-1", "processing", 85, "Calculating score...")

    assert len(_drain(healthy)) == 1


def test_async_subscriber_receives_threaded_publish() -> None:
    emitter = ProgressEmitter()

    async def scenario():
        subscription = await emitter.subscribe_async("job-1")
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, emitter.emit_complete, "job-1", "safe", 4)
        return await asyncio.wait_for(subscription.get(), timeout=1.0)

    message = asyncio.run(scenario())

    assert message == {"type": "complete", "job_id": "job-1", "status": "safe", "score": 4}


@pytest.mark.parametrize("message", [
    {"type": "progress", "job_id": "j", "status": "processing", "percent": 42, "message": "Analyzing frame 3/10..."},
    {"type": "complete", "job_id": "j", "status": "flagged", "score": 61},
])
def test_format_sse(message) -> None:
    frame = format_sse(message)

    assert frame.startswith(f"event: {message['type']}\n")
    assert frame.endswith("\n\n")
    assert json.loads(frame.split("data: ", 1)[1]) == message

"""
Per-job progress event fan-out.

Observers subscribe to a job's channel and receive messages published after
they joined. Publishing never blocks and never raises.
"""

import asyncio
import json
import logging
import queue
import threading
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger("moderation_worker")

PROGRESS = "progress"
COMPLETE = "complete"
ERROR = "error"

Subscriber = Tuple[Any, Optional[asyncio.AbstractEventLoop]]


class ProgressEmitter:
    """In-memory publish/subscribe channels keyed by job id"""

    def __init__(self) -> None:
        self._channels: Dict[str, List[Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(self, job_id: str) -> "queue.Queue[Dict[str, Any]]":
        """Subscribe a thread-side consumer to a job's channel"""
        subscription: "queue.Queue[Dict[str, Any]]" = queue.Queue()
        self._add(job_id, (subscription, None))
        return subscription

    async def subscribe_async(self, job_id: str) -> "asyncio.Queue[Dict[str, Any]]":
        """Subscribe a consumer running on the current event loop"""
        subscription: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        self._add(job_id, (subscription, asyncio.get_running_loop()))
        return subscription

    def unsubscribe(self, job_id: str, subscription: Any) -> None:
        with self._lock:
            subscribers = self._channels.get(job_id)
            if not subscribers:
                return
            subscribers[:] = [entry for entry in subscribers if entry[0] is not subscription]
            if not subscribers:
                del self._channels[job_id]

    def subscriber_count(self, job_id: str) -> int:
        with self._lock:
            return len(self._channels.get(job_id, ()))

    def publish(self, job_id: str, message: Dict[str, Any]) -> None:
        """Deliver message to every current subscriber of job_id"""
        with self._lock:
            subscribers = list(self._channels.get(job_id, ()))
        for subscription, loop in subscribers:
            try:
                if loop is None:
                    subscription.put_nowait(message)
                else:
                    loop.call_soon_threadsafe(subscription.put_nowait, message)
            except Exception as e:
                # Closed loop or dead consumer: drop the message, keep going
                logger.debug(f"Dropped {message.get('type')} event for job {job_id}: {e}")

    def emit_progress(self, job_id: str, status: str, percent: int, message: str) -> None:
        self.publish(job_id, {
            "type": PROGRESS,
            "job_id": job_id,
            "status": status,
            "percent": percent,
            "message": message,
        })

    def emit_complete(self, job_id: str, status: str, score: int) -> None:
        self.publish(job_id, {
            "type": COMPLETE,
            "job_id": job_id,
            "status": status,
            "score": score,
        })

    def emit_error(self, job_id: str, message: str) -> None:
        self.publish(job_id, {
            "type": ERROR,
            "job_id": job_id,
            "message": message,
        })

    def _add(self, job_id: str, entry: Subscriber) -> None:
        with self._lock:
            self._channels.setdefault(job_id, []).append(entry)


def format_sse(message: Dict[str, Any]) -> str:
    payload = json.dumps(message, ensure_ascii=False)
    return f"event: {message.get('type', 'message')}\ndata: {payload}\n\n"

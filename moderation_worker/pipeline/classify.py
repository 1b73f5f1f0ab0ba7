import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence

from ..adapters.base import LabelDetector
from ..errors import ClassificationError
from ..models import FrameSample, ModerationLabel

logger = logging.getLogger("moderation_worker")

# on_complete(frame, labels, completed, total)
CompletionCallback = Callable[[FrameSample, List[ModerationLabel], int, int], None]


class ClassifierPool:
    """Sends frames to a label detector under bounded concurrency"""

    def __init__(
        self,
        detector: LabelDetector,
        max_concurrent: int = 5,
        timeout_sec: float = 30.0,
        max_retries: int = 3,
        backoff_sec: float = 0.5,
        backoff_multiplier: float = 2.0
    ):
        self.detector = detector
        self.max_concurrent = max_concurrent
        self.timeout_sec = timeout_sec
        self.max_retries = max_retries
        self.backoff_sec = backoff_sec
        self.backoff_multiplier = backoff_multiplier

    @property
    def analysis_method(self) -> str:
        return self.detector.name

    def classify(self, frame: FrameSample) -> List[ModerationLabel]:
        """
        Classify a single frame.

        Any failure degrades to an empty label list.
        """
        return self.classify_all([frame])[0]

    def classify_all(
        self,
        frames: Sequence[FrameSample],
        on_complete: Optional[CompletionCallback] = None
    ) -> List[List[ModerationLabel]]:
        """
        Classify frames in parallel.

        Args:
            frames: Frames to classify
            on_complete: Called once per frame as soon as it finishes, in
                completion order, from a single worker thread

        Returns:
            Label lists aligned with frames
        """
        if not frames:
            return []
        return asyncio.run(self._classify_all_async(frames, on_complete))

    async def _classify_all_async(
        self,
        frames: Sequence[FrameSample],
        on_complete: Optional[CompletionCallback]
    ) -> List[List[ModerationLabel]]:
        start_time = time.time()
        loop = asyncio.get_running_loop()
        semaphore = asyncio.Semaphore(self.max_concurrent)
        total = len(frames)
        completed = 0

        logger.info(f"Classifying {total} frames with {self.max_concurrent} concurrent requests")

        # One thread keeps completion callbacks (job store writes) ordered and off the loop
        callback_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="classifier-progress")

        async def run_one(frame: FrameSample) -> List[ModerationLabel]:
            nonlocal completed
            labels = await self._classify_frame(frame, semaphore)
            completed += 1
            if on_complete is not None:
                await loop.run_in_executor(
                    callback_executor, self._notify, on_complete, frame, labels, completed, total
                )
            return labels

        try:
            results = await asyncio.gather(*(run_one(frame) for frame in frames))
        finally:
            callback_executor.shutdown(wait=True)

        elapsed = time.time() - start_time
        labelled = sum(1 for labels in results if labels)
        logger.info(f"Classified {total} frames in {elapsed:.2f}s ({labelled} with labels)")
        return list(results)

    @staticmethod
    def _notify(
        on_complete: CompletionCallback,
        frame: FrameSample,
        labels: List[ModerationLabel],
        completed: int,
        total: int
    ) -> None:
        try:
            on_complete(frame, labels, completed, total)
        except Exception as e:
            logger.warning(f"Completion callback failed for frame {frame.index}: {e}")

    def _call_detector(self, loop: asyncio.AbstractEventLoop, frame: FrameSample, image_bytes: bytes) -> asyncio.Future:
        """
        Run detect_labels on a thread of its own.

        The call starts immediately, so its timeout never includes time spent
        queueing behind an earlier call that hung. A timed-out call is
        abandoned; whatever it returns later is dropped.
        """
        future = loop.create_future()

        def deliver(setter, value) -> None:
            if not future.done():
                setter(value)

        def target() -> None:
            try:
                labels = self.detector.detect_labels(image_bytes)
            except Exception as e:
                outcome = (future.set_exception, e)
            else:
                outcome = (future.set_result, labels)
            try:
                loop.call_soon_threadsafe(deliver, *outcome)
            except RuntimeError:
                logger.debug(f"Dropped late classifier result for frame {frame.index}")

        threading.Thread(target=target, name=f"classifier-frame-{frame.index}", daemon=True).start()
        return future

    async def _classify_frame(self, frame: FrameSample, semaphore: asyncio.Semaphore) -> List[ModerationLabel]:
        loop = asyncio.get_running_loop()
        async with semaphore:
            try:
                image_bytes = frame.read_bytes()
            except OSError as e:
                logger.warning(f"Could not read frame {frame.index}: {e}")
                return []

            attempt = 0
            while True:
                try:
                    labels = await asyncio.wait_for(
                        self._call_detector(loop, frame, image_bytes),
                        timeout=self.timeout_sec
                    )
                    logger.debug(f"Frame {frame.index}: {len(labels)} labels")
                    return list(labels)
                except asyncio.TimeoutError:
                    logger.warning(f"Classification of frame {frame.index} timed out after {self.timeout_sec}s")
                    return []
                except ClassificationError as e:
                    if e.throttled and attempt < self.max_retries:
                        delay = self.backoff_sec * (self.backoff_multiplier ** attempt)
                        attempt += 1
                        logger.info(
                            f"Classifier throttled on frame {frame.index}, "
                            f"retry {attempt}/{self.max_retries} in {delay:.2f}s"
                        )
                        await asyncio.sleep(delay)
                        continue
                    logger.warning(f"Classification failed for frame {frame.index}: {e}")
                    return []
                except Exception as e:
                    logger.warning(f"Unexpected classifier error for frame {frame.index}: {e}")
                    return []

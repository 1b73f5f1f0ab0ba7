import os
import ffmpeg
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional
from PIL import Image

from ..errors import ExtractionError
from ..models import FrameSample

logger = logging.getLogger("moderation_worker")

DEFAULT_DURATION_SEC = 10.0
MIN_INTERVAL_SEC = 1.0


def probe_duration(video_path: str) -> float:
    """Get container duration in seconds with ffprobe"""
    probe = ffmpeg.probe(video_path)
    duration = probe.get('format', {}).get('duration')
    if duration is None:
        # Some containers only report duration on the stream
        video_stream = next(
            (stream for stream in probe.get('streams', []) if stream.get('codec_type') == 'video'),
            {}
        )
        duration = video_stream.get('duration', 0)
    return float(duration)


def extract_frame_at(video_path: str, timestamp: float, output_path: str) -> str:
    """Extract a single JPEG frame at timestamp"""
    (
        ffmpeg
        .input(video_path, ss=timestamp)
        .output(output_path, vframes=1, format='image2', vcodec='mjpeg', **{'q:v': 2})
        .overwrite_output()
        .run(quiet=True)
    )
    return output_path


def sample_timestamps(duration: float, count: int) -> List[float]:
    """
    Evenly spaced sample times strictly inside (0, duration).

    interval = max(duration / (count + 1), 1); times are i * interval for
    i = 1..count, dropping any that would land at or past the end.
    """
    if count < 1:
        return []
    interval = max(duration / (count + 1), MIN_INTERVAL_SEC)
    timestamps = []
    for i in range(1, count + 1):
        timestamp = i * interval
        if timestamp >= duration:
            break
        timestamps.append(timestamp)
    return timestamps


def validate_frame_file(frame_path: str) -> bool:
    """Validate that frame file exists and is a readable image"""
    if not os.path.exists(frame_path) or os.path.getsize(frame_path) == 0:
        return False

    try:
        with Image.open(frame_path) as img:
            img.verify()
        return True
    except Exception:
        return False


class FrameSampler:
    """Extracts a bounded, time-evenly-spaced set of frames from a video"""

    def __init__(
        self,
        max_workers: int = 4,
        default_duration: float = DEFAULT_DURATION_SEC,
        prober: Optional[Callable[[str], float]] = None,
        extractor: Optional[Callable[[str, float, str], str]] = None
    ):
        self.max_workers = max_workers
        self.default_duration = default_duration
        self.prober = prober or probe_duration
        self.extractor = extractor or extract_frame_at

    def get_duration(self, source_path: str) -> float:
        """Probe duration, falling back to the default when probing fails"""
        try:
            duration = self.prober(source_path)
        except Exception as e:
            logger.warning(f"Could not probe duration of {source_path}, using {self.default_duration}s: {e}")
            return self.default_duration

        if not duration or duration <= 0:
            logger.warning(f"Probe returned no duration for {source_path}, using {self.default_duration}s")
            return self.default_duration
        return duration

    def extract(self, source_path: str, requested_count: int, output_dir: str) -> List[FrameSample]:
        """
        Extract up to requested_count frames into output_dir.

        Args:
            source_path: Readable local video file
            requested_count: Number of frames to sample
            output_dir: Job-scoped directory to write frames into

        Returns:
            Frame samples ordered by index (and therefore by timestamp)

        Raises:
            ExtractionError: if the source is unreadable or no frame could be extracted
        """
        if requested_count < 1:
            raise ValueError(f"requested_count must be at least 1, got {requested_count}")

        if not os.path.isfile(source_path) or not os.access(source_path, os.R_OK):
            raise ExtractionError(f"Source video is not readable: {source_path}")

        duration = self.get_duration(source_path)
        timestamps = sample_timestamps(duration, requested_count)

        logger.info(
            f"Extracting {len(timestamps)} frames from {source_path} "
            f"(duration {duration:.2f}s, requested {requested_count})"
        )

        frames = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._extract_one, source_path, index, timestamp, output_dir): index
                for index, timestamp in enumerate(timestamps, start=1)
            }
            for future in as_completed(futures):
                frame = future.result()
                if frame is not None:
                    frames.append(frame)

        if not frames:
            raise ExtractionError(f"Could not extract any frames from {source_path}")

        frames.sort(key=lambda frame: frame.index)
        logger.info(f"Frame extraction completed for {source_path}: {len(frames)}/{len(timestamps)} frames")
        return frames

    def _extract_one(self, source_path: str, index: int, timestamp: float, output_dir: str) -> Optional[FrameSample]:
        frame_path = os.path.join(output_dir, f"frame_{index:03d}.jpg")

        try:
            self.extractor(source_path, timestamp, frame_path)
        except Exception as e:
            logger.warning(f"Error extracting frame {index} at {timestamp:.2f}s: {e}")
            return None

        if not validate_frame_file(frame_path):
            logger.warning(f"Frame {index} at {timestamp:.2f}s is missing or invalid")
            try:
                os.remove(frame_path)
            except OSError:
                pass
            return None

        logger.debug(f"Extracted frame {index} at {timestamp:.2f}s")
        return FrameSample(index=index, timestamp=timestamp, path=frame_path)

"""Frame sampler tests: timestamp layout, partial failures and fallbacks."""

import os
from pathlib import Path

import pytest

from moderation_worker.errors import ExtractionError
from moderation_worker.pipeline.frames import FrameSampler, sample_timestamps


def test_sample_timestamps_even_spacing() -> None:
    assert sample_timestamps(30.0, 5) == [5.0, 10.0, 15.0, 20.0, 25.0]


@pytest.mark.parametrize("duration", [0.5, 1.0, 3.7, 10.0, 11.0, 59.9, 3600.0])
@pytest.mark.parametrize("count", [1, 2, 5, 10, 40])
def test_sample_timestamps_strictly_inside_and_increasing(duration: float, count: int) -> None:
    timestamps = sample_timestamps(duration, count)

    assert 0 <= len(timestamps) <= count
    assert all(0 < ts < duration for ts in timestamps)
    assert all(a < b for a, b in zip(timestamps, timestamps[1:]))


def test_sample_timestamps_minimum_interval_truncates_short_videos() -> None:
    # 10 frames over 4s would be 0.36s apart; the 1s floor keeps 3 of them
    assert sample_timestamps(4.0, 10) == [1.0, 2.0, 3.0]


def test_extract_returns_ordered_samples(tmp_path: Path, video_file: str, jpeg_writer) -> None:
    seen = []

    def extractor(path: str, timestamp: float, output_path: str) -> str:
        seen.append(timestamp)
        return jpeg_writer(output_path)

    sampler = FrameSampler(max_workers=3, prober=lambda path: 30.0, extractor=extractor)
    frames = sampler.extract(video_file, 5, str(tmp_path))

    assert [frame.index for frame in frames] == [1, 2, 3, 4, 5]
    assert [frame.timestamp for frame in frames] == [5.0, 10.0, 15.0, 20.0, 25.0]
    assert sorted(seen) == [5.0, 10.0, 15.0, 20.0, 25.0]
    assert all(os.path.dirname(frame.path) == str(tmp_path) for frame in frames)


def test_single_failed_extraction_does_not_abort_batch(tmp_path: Path, video_file: str, jpeg_writer) -> None:
    def extractor(path: str, timestamp: float, output_path: str) -> str:
        if timestamp == 15.0:
            raise RuntimeError("ffmpeg exited with status 1")
        return jpeg_writer(output_path)

    sampler = FrameSampler(prober=lambda path: 30.0, extractor=extractor)
    frames = sampler.extract(video_file, 5, str(tmp_path))

    assert [frame.index for frame in frames] == [1, 2, 4, 5]


def test_invalid_image_is_discarded(tmp_path: Path, video_file: str, jpeg_writer) -> None:
    def extractor(path: str, timestamp: float, output_path: str) -> str:
        if timestamp == 10.0:
            Path(output_path).write_bytes(b"garbage")
            return output_path
        return jpeg_writer(output_path)

    sampler = FrameSampler(prober=lambda path: 30.0, extractor=extractor)
    frames = sampler.extract(video_file, 5, str(tmp_path))

    assert 2 not in [frame.index for frame in frames]
    assert not (tmp_path / "frame_002.jpg").exists()


def test_probe_failure_falls_back_to_default_duration(tmp_path: Path, video_file: str, jpeg_writer) -> None:
    def prober(path: str) -> float:
        raise RuntimeError("ffprobe not found")

    sampler = FrameSampler(prober=prober, extractor=lambda p, t, o: jpeg_writer(o))
    frames = sampler.extract(video_file, 4, str(tmp_path))

    # 10s default / 5 = 2s spacing
    assert [frame.timestamp for frame in frames] == [2.0, 4.0, 6.0, 8.0]


def test_zero_duration_uses_default(video_file: str) -> None:
    sampler = FrameSampler(prober=lambda path: 0.0, default_duration=12.0)
    assert sampler.get_duration(video_file) == 12.0


def test_no_frames_raises_extraction_error(tmp_path: Path, video_file: str) -> None:
    def extractor(path: str, timestamp: float, output_path: str) -> str:
        raise RuntimeError("decode error")

    sampler = FrameSampler(prober=lambda path: 30.0, extractor=extractor)

    with pytest.raises(ExtractionError):
        sampler.extract(video_file, 5, str(tmp_path))


def test_unreadable_source_raises_extraction_error(tmp_path: Path) -> None:
    sampler = FrameSampler(prober=lambda path: 30.0)

    with pytest.raises(ExtractionError):
        sampler.extract(str(tmp_path / "missing.mp4"), 5, str(tmp_path))


def test_requested_count_must_be_positive(tmp_path: Path, video_file: str) -> None:
    sampler = FrameSampler(prober=lambda path: 30.0)

    with pytest.raises(ValueError):
        sampler.extract(video_file, 0, str(tmp_path))

"""Shared fixtures: fake collaborators, sample media and a wired orchestrator."""

import os
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest
from PIL import Image

from moderation_worker.adapters.base import BlobStore, LabelDetector
from moderation_worker.adapters.memory_adapter import InMemoryJobStore
from moderation_worker.config import WorkerConfig
from moderation_worker.events import ProgressEmitter
from moderation_worker.models import Job, ModerationLabel
from moderation_worker.orchestrator import PipelineOrchestrator
from moderation_worker.pipeline.classify import ClassifierPool
from moderation_worker.pipeline.frames import FrameSampler
from moderation_worker.storage import StorageMigrator


def write_jpeg(path: str) -> str:
    Image.new("RGB", (8, 8), (200, 10, 10)).save(path, "JPEG")
    return path


class FakeDetector(LabelDetector):
    """Label detector returning canned labels, or running a per-call hook"""

    name = "Fake Detector"

    def __init__(
        self,
        labels: Optional[List[ModerationLabel]] = None,
        hook: Optional[Callable[[bytes], List[ModerationLabel]]] = None,
    ) -> None:
        self.labels = labels or []
        self.hook = hook
        self.calls = 0
        self._lock = threading.Lock()

    def detect_labels(self, image_bytes: bytes) -> List[ModerationLabel]:
        with self._lock:
            self.calls += 1
        if self.hook is not None:
            return self.hook(image_bytes)
        return list(self.labels)


class FakeBlobStore(BlobStore):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.objects: Dict[str, bytes] = {}
        self.deleted: List[str] = []

    def upload(self, path: str, key: str, mime_type: str) -> str:
        if self.fail:
            raise ConnectionError("bucket unreachable")
        with open(path, "rb") as handle:
            self.objects[key] = handle.read()
        return key

    def delete(self, key: str) -> None:
        self.deleted.append(key)
        self.objects.pop(key, None)

    def get_url(self, key: str, expires_in: int = 3600) -> Optional[str]:
        return f"https://blobs.example/{key}?expires={expires_in}"


def fake_extractor(video_path: str, timestamp: float, output_path: str) -> str:
    return write_jpeg(output_path)


@pytest.fixture
def detector_factory():
    return FakeDetector


@pytest.fixture
def blob_store_factory():
    return FakeBlobStore


@pytest.fixture
def jpeg_writer():
    return write_jpeg


@pytest.fixture
def video_file(tmp_path: Path) -> str:
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    path = uploads / "1700000000-clip.mp4"
    path.write_bytes(b"not really a video")
    return str(path)


@pytest.fixture
def config(tmp_path: Path) -> WorkerConfig:
    return WorkerConfig(
        JOB_STORE_TYPE="memory",
        DATA_DIR=str(tmp_path),
        TEMP_DIR=str(tmp_path / "temp"),
        FRAME_COUNT=5,
        CLASSIFIER_MAX_CONCURRENT=3,
    )


@pytest.fixture
def job_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def emitter() -> ProgressEmitter:
    return ProgressEmitter()


@pytest.fixture
def pending_job(job_store: InMemoryJobStore, video_file: str) -> Job:
    return job_store.create_job(Job(id="job-1", source_path=video_file, mime_type="video/mp4"))


@pytest.fixture
def make_orchestrator(config: WorkerConfig, job_store: InMemoryJobStore, emitter: ProgressEmitter):
    def build(
        detector: Optional[LabelDetector] = None,
        duration: float = 30.0,
        extractor=fake_extractor,
        blob_store: Optional[BlobStore] = None,
    ) -> PipelineOrchestrator:
        sampler = FrameSampler(max_workers=2, prober=lambda path: duration, extractor=extractor)
        classifier = ClassifierPool(
            detector or FakeDetector(),
            max_concurrent=config.CLASSIFIER_MAX_CONCURRENT,
            timeout_sec=2.0,
            backoff_sec=0.01,
        )
        migrator = StorageMigrator(blob_store, prefix="videos/") if blob_store is not None else None
        return PipelineOrchestrator(config, job_store, sampler, classifier, emitter, migrator=migrator)

    return build


@pytest.fixture
def temp_frames_dir(config: WorkerConfig):
    def resolve(job_id: str) -> str:
        return os.path.join(config.TEMP_DIR, job_id)

    return resolve

"""
Pipeline orchestration and execution management.

Drives one moderation job through frame sampling, classification, scoring
and storage tiering. Owns the job's status and progress for the duration of
the run and guarantees temporary frames are cleaned up.
"""

import time
import logging
import threading
from typing import Optional, Dict, Any, List
from datetime import datetime

from .adapters.base import JobStore
from .config import WorkerConfig
from .errors import ConcurrencyConflict, JobNotFoundError, MigrationError
from .events import ProgressEmitter
from .logging_setup import log_exception
from .models import (
    FrameSample, Job, JobStatus, ModerationLabel, ProcessingResult, SensitivityResult, StorageTier, round_half_up
)
from .pipeline.classify import ClassifierPool
from .pipeline.frames import FrameSampler
from .pipeline.scoring import aggregate
from .pipeline.util import frame_workspace, get_file_size_mb
from .storage import StorageMigrator

logger = logging.getLogger("moderation_worker")

# Progress checkpoints
PROGRESS_START = 0
PROGRESS_EXTRACTING = 15
PROGRESS_FRAMES_READY = 30
PROGRESS_CLASSIFIED = 80
PROGRESS_SCORING = 85
PROGRESS_MIGRATING = 90
PROGRESS_DONE = 100

GENERIC_ERROR_MESSAGE = "Analysis failed"


class ProgressTracker:
    """Single writer for a job's progress during one run"""

    def __init__(self, job_id: str, job_store: JobStore, emitter: ProgressEmitter):
        self.job_id = job_id
        self.job_store = job_store
        self.emitter = emitter
        self.percent = PROGRESS_START
        self._lock = threading.Lock()

    def advance(self, percent: int, message: str) -> None:
        """Persist and publish a checkpoint; progress never moves backwards"""
        with self._lock:
            percent = max(self.percent, min(PROGRESS_DONE, percent))
            self.percent = percent
            self.job_store.update(self.job_id, {'progress': percent})
        logger.debug(f"Job {self.job_id} progress: {percent}% {message}")
        self.emitter.emit_progress(self.job_id, JobStatus.PROCESSING.value, percent, message)

    def frame_done(self, completed: int, total: int) -> None:
        span = PROGRESS_CLASSIFIED - PROGRESS_FRAMES_READY
        percent = PROGRESS_FRAMES_READY + round_half_up(completed / total * span)
        self.advance(percent, f"Analyzing frame {completed}/{total}...")


class PipelineOrchestrator:
    """Manages pipeline execution flow and coordination"""

    def __init__(
        self,
        config: WorkerConfig,
        job_store: JobStore,
        sampler: FrameSampler,
        classifier: ClassifierPool,
        emitter: ProgressEmitter,
        migrator: Optional[StorageMigrator] = None
    ):
        self.config = config
        self.job_store = job_store
        self.sampler = sampler
        self.classifier = classifier
        self.emitter = emitter
        self.migrator = migrator
        self._stats_lock = threading.Lock()
        self.reset_stats()

    def run(self, job_id: str, requested_frame_count: Optional[int] = None) -> ProcessingResult:
        """
        Run moderation for one job.

        Args:
            job_id: Job to moderate
            requested_frame_count: Frames to sample (defaults to FRAME_COUNT)

        Returns:
            ProcessingResult with the final status and verdict

        Raises:
            JobNotFoundError: if the job does not exist
            ConcurrencyConflict: if another run owns the job
        """
        job = self._claim(job_id)
        frame_count = requested_frame_count or self.config.FRAME_COUNT

        start_time = time.time()
        stages_completed: List[str] = []
        tracker = ProgressTracker(job.id, self.job_store, self.emitter)
        source_size_mb = get_file_size_mb(job.source_path)

        try:
            logger.info(f"Executing moderation pipeline for job {job.id} ({job.source_path})")
            tracker.advance(PROGRESS_START, "Starting analysis...")

            with frame_workspace(self.config.TEMP_DIR, job.id) as frames_dir:
                tracker.advance(PROGRESS_EXTRACTING, "Extracting frames...")
                frames = self.sampler.extract(job.source_path, frame_count, frames_dir)
                stages_completed.append("frames")

                tracker.advance(PROGRESS_FRAMES_READY, "Sending to analysis...")
                frame_labels = self._classify(frames, tracker)
                stages_completed.append("classify")

            tracker.advance(PROGRESS_SCORING, "Calculating score...")
            result = aggregate(frame_labels, analysis_method=self.classifier.analysis_method)
            stages_completed.append("score")

            storage_fields = self._migrate(job, tracker)
            if storage_fields.get('storage_tier') == StorageTier.REMOTE:
                stages_completed.append("migrate")

            final_status = self._complete(job, result, storage_fields)
            stages_completed.append("complete")

            processing_time = time.time() - start_time
            self._record(processing_time, success=True, flagged=result.is_flagged)
            logger.info(
                f"Pipeline completed for job {job.id}: {final_status.value} "
                f"(score {result.overall_score}) in {processing_time:.2f}s"
            )

            return ProcessingResult(
                success=True,
                status=final_status,
                stages_completed=stages_completed,
                result=result,
                metrics={
                    'processing_time_sec': processing_time,
                    'frames_count': len(frames),
                    'source_size_mb': source_size_mb,
                    'migration_error': storage_fields.get('storage_error')
                }
            )

        except Exception as e:
            error_msg = f"Pipeline failed for job {job.id}: {str(e)}"
            log_exception(logger, error_msg)
            self._fail(job)

            processing_time = time.time() - start_time
            self._record(processing_time, success=False)

            return ProcessingResult(
                success=False,
                status=JobStatus.ERROR,
                stages_completed=stages_completed,
                error=error_msg,
                metrics={
                    'processing_time_sec': processing_time,
                    'failed_at_stage': stages_completed[-1] if stages_completed else 'start'
                }
            )

        except BaseException:
            # Shutdown mid-run: release the claim so the job can be resubmitted
            logger.warning(f"Run of job {job.id} interrupted, marking it errored")
            self._fail(job)
            self._record(time.time() - start_time, success=False)
            raise

    def _claim(self, job_id: str) -> Job:
        """Move the job into processing or reject the run"""
        job = self.job_store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")

        if job.status == JobStatus.PROCESSING:
            raise ConcurrencyConflict(f"Job {job_id} is already processing")

        if not self.job_store.compare_and_set_status(job_id, job.status, JobStatus.PROCESSING):
            raise ConcurrencyConflict(f"Job {job_id} was claimed by another run")

        job.status = JobStatus.PROCESSING
        return job

    def _classify(self, frames: List[FrameSample], tracker: ProgressTracker) -> List[List[ModerationLabel]]:
        def on_complete(frame: FrameSample, labels: List[ModerationLabel], completed: int, total: int) -> None:
            tracker.frame_done(completed, total)

        return self.classifier.classify_all(frames, on_complete=on_complete)

    def _migrate(self, job: Job, tracker: ProgressTracker) -> Dict[str, Any]:
        """Move the source to durable storage; failures leave it local"""
        if self.migrator is None:
            return {}

        tracker.advance(PROGRESS_MIGRATING, "Uploading to cloud storage...")
        try:
            tier, key = self.migrator.migrate(job)
        except MigrationError as e:
            logger.warning(f"Storage migration failed for job {job.id}, keeping local copy: {e}")
            return {'storage_tier': StorageTier.LOCAL, 'storage_error': str(e)}

        return {'storage_tier': tier, 'storage_key': key, 'storage_error': None}

    def _complete(self, job: Job, result: SensitivityResult, storage_fields: Dict[str, Any]) -> JobStatus:
        final_status = JobStatus.FLAGGED if result.is_flagged else JobStatus.SAFE

        self.job_store.update(job.id, {
            'status': final_status,
            'progress': PROGRESS_DONE,
            'sensitivity_details': result.to_dict(),
            'processed_at': datetime.now(),
            **storage_fields
        })

        if result.is_flagged:
            names = ", ".join(label.name for label in result.detected_labels) or "score threshold"
            message = f"FLAGGED: {names}"
        else:
            message = "Safe"

        self.emitter.emit_progress(job.id, final_status.value, PROGRESS_DONE, message)
        self.emitter.emit_complete(job.id, final_status.value, result.overall_score)
        return final_status

    def _fail(self, job: Job) -> None:
        """Mark the job errored; no retry, the caller must resubmit"""
        try:
            self.job_store.update(job.id, {'status': JobStatus.ERROR, 'progress': PROGRESS_START})
        except Exception as e:
            log_exception(logger, f"Error recording failure for job {job.id}: {e}")
        self.emitter.emit_error(job.id, GENERIC_ERROR_MESSAGE)

    def _record(self, processing_time: float, success: bool, flagged: bool = False) -> None:
        with self._stats_lock:
            if success:
                self.stats['jobs_processed'] += 1
                if flagged:
                    self.stats['jobs_flagged'] += 1
            else:
                self.stats['jobs_failed'] += 1
            self.stats['total_processing_time'] += processing_time

    def get_stats(self) -> Dict[str, Any]:
        """Get orchestrator statistics"""
        with self._stats_lock:
            stats = dict(self.stats)
        uptime = (datetime.now() - stats['start_time']).total_seconds()
        finished = stats['jobs_processed'] + stats['jobs_failed']

        return {
            'jobs_processed': stats['jobs_processed'],
            'jobs_failed': stats['jobs_failed'],
            'jobs_flagged': stats['jobs_flagged'],
            'total_processing_time': stats['total_processing_time'],
            'average_processing_time': stats['total_processing_time'] / finished if finished > 0 else 0,
            'uptime_seconds': uptime,
            'success_rate': stats['jobs_processed'] / finished if finished > 0 else 0
        }

    def reset_stats(self) -> None:
        """Reset orchestrator statistics"""
        with self._stats_lock:
            self.stats = {
                'jobs_processed': 0,
                'jobs_failed': 0,
                'jobs_flagged': 0,
                'total_processing_time': 0.0,
                'start_time': datetime.now()
            }
        logger.debug("Orchestrator statistics reset")

"""
Main worker service.

Wires the moderation pipeline from configuration and runs pending jobs,
either by polling the job store or on demand through the HTTP API.
"""

import time
import signal
import sys
import logging
from typing import Optional, Dict, Any

from .config import WorkerConfig
from .adapters.base import BlobStore, JobStore, LabelDetector
from .adapters.memory_adapter import InMemoryJobStore
from .adapters.postgres_adapter import PostgresJobStore
from .adapters.rekognition_adapter import RekognitionLabelDetector
from .adapters.s3_adapter import S3BlobStore
from .errors import ConcurrencyConflict
from .events import ProgressEmitter
from .models import JobStatus
from .orchestrator import PipelineOrchestrator
from .pipeline.classify import ClassifierPool
from .pipeline.frames import FrameSampler
from .storage import StorageMigrator
from .logging_setup import setup_logging, log_exception
from .http_server import start_health_server

logger = logging.getLogger("moderation_worker")


class WorkerService:
    """Main worker service with adapter-based architecture"""

    def __init__(self, config: Optional[WorkerConfig] = None):
        self.config = config or WorkerConfig.from_env()
        self.job_store: Optional[JobStore] = None
        self.detector: Optional[LabelDetector] = None
        self.blob_store: Optional[BlobStore] = None
        self.emitter = ProgressEmitter()
        self.migrator: Optional[StorageMigrator] = None
        self.orchestrator: Optional[PipelineOrchestrator] = None
        self.health_server = None
        self.running = False
        self.backoff_interval = self.config.POLL_INTERVAL_MS
        self.max_backoff = self.config.MAX_BACKOFF_MS

    def initialize(self):
        """Initialize worker with adapters based on configuration"""
        try:
            # Setup logging
            setup_logging(self.config.LOG_LEVEL, self.config.LOG_DIR)

            # Validate configuration
            self.config.validate()

            # Initialize adapters
            self._initialize_adapters()

            # Initialize orchestrator
            self.orchestrator = self._create_orchestrator()

            # Start HTTP server if enabled
            self.health_server = start_health_server(self)

            logger.info("Worker service initialized successfully")

        except Exception as e:
            log_exception(logger, f"Failed to initialize worker service: {e}")
            raise

    def _initialize_adapters(self):
        """Initialize job store, classifier backend and blob store based on configuration"""

        self.job_store = self._create_job_store()
        self.job_store.connect()

        self.detector = self._create_label_detector()
        self.detector.connect()

        if self.config.blob_store_enabled:
            self.blob_store = self._create_blob_store()
            self.blob_store.connect()
            self.migrator = StorageMigrator(
                self.blob_store,
                prefix=self.config.BLOB_STORE_CONFIG.get("prefix", "")
            )

        logger.info(
            f"Initialized adapters: {self.config.JOB_STORE_TYPE} job store, "
            f"{self.config.CLASSIFIER_BACKEND} classifier, {self.config.BLOB_STORE_TYPE} blob store"
        )

    def _create_job_store(self) -> JobStore:
        """Create job store based on configuration"""

        if self.config.JOB_STORE_TYPE == "postgres":
            config = self.config.JOB_STORE_CONFIG
            return PostgresJobStore(
                database_url=config["database_url"],
                pool_size=config.get("connection_pool_size", 5),
                timeout=config.get("connection_timeout", 10)
            )

        elif self.config.JOB_STORE_TYPE == "memory":
            return InMemoryJobStore()

        else:
            raise ValueError(f"Unsupported job store type: {self.config.JOB_STORE_TYPE}")

    def _create_label_detector(self) -> LabelDetector:
        """Create classifier backend based on configuration"""
        config = self.config.CLASSIFIER_CONFIG

        if self.config.CLASSIFIER_BACKEND == "rekognition":
            return RekognitionLabelDetector(
                region=config.get("region", "us-east-1"),
                min_confidence=config.get("min_confidence", 50.0)
            )

        elif self.config.CLASSIFIER_BACKEND == "openai":
            # Imported lazily so Rekognition deployments need no OpenAI setup
            from .adapters.openai_adapter import OpenAIVisionLabelDetector
            return OpenAIVisionLabelDetector(
                model=config.get("model", "gpt-4o"),
                min_confidence=config.get("min_confidence", 50.0)
            )

        else:
            raise ValueError(f"Unsupported classifier backend: {self.config.CLASSIFIER_BACKEND}")

    def _create_blob_store(self) -> BlobStore:
        """Create blob store based on configuration"""

        if self.config.BLOB_STORE_TYPE == "s3":
            config = self.config.BLOB_STORE_CONFIG
            return S3BlobStore(
                bucket=config["bucket"],
                region=config.get("region", "us-east-1")
            )

        else:
            raise ValueError(f"Unsupported blob store type: {self.config.BLOB_STORE_TYPE}")

    def _create_orchestrator(self) -> PipelineOrchestrator:
        sampler = FrameSampler(
            max_workers=self.config.EXTRACT_MAX_WORKERS,
            default_duration=self.config.DEFAULT_DURATION_SEC
        )
        classifier = ClassifierPool(
            self.detector,
            max_concurrent=self.config.CLASSIFIER_MAX_CONCURRENT,
            timeout_sec=self.config.CLASSIFIER_TIMEOUT_SEC,
            max_retries=self.config.CLASSIFIER_MAX_RETRIES,
            backoff_sec=self.config.CLASSIFIER_BACKOFF_MS / 1000.0
        )
        return PipelineOrchestrator(
            self.config,
            self.job_store,
            sampler,
            classifier,
            self.emitter,
            migrator=self.migrator
        )

    def start(self):
        """Start the worker service"""
        if self.running:
            logger.warning("Worker service is already running")
            return

        self.running = True
        logger.info("Worker service started")
        self._start_polling_loop()

    def _start_polling_loop(self):
        """Poll the job store for pending jobs"""
        logger.info("Worker started, polling for jobs...")

        while self.running:
            try:
                processed = self.run_once()

                if not processed:
                    # No job available, use exponential backoff
                    time.sleep(self.backoff_interval / 1000.0)
                    self.backoff_interval = min(
                        self.backoff_interval * self.config.BACKOFF_MULTIPLIER,
                        self.max_backoff
                    )
                else:
                    # Reset backoff on successful processing
                    self.backoff_interval = self.config.POLL_INTERVAL_MS

            except KeyboardInterrupt:
                logger.info("Received interrupt signal, shutting down...")
                break
            except Exception as e:
                log_exception(logger, f"Unexpected error in worker loop: {str(e)}")
                # Use backoff for errors too
                time.sleep(self.backoff_interval / 1000.0)
                self.backoff_interval = min(
                    self.backoff_interval * self.config.BACKOFF_MULTIPLIER,
                    self.max_backoff
                )

        logger.info("Worker polling loop stopped")

    def run_once(self) -> bool:
        """
        Run the oldest pending job, if any.

        Returns:
            True if a job was run (successfully or not), False if none was available
        """
        try:
            pending = self.job_store.list_jobs(status=JobStatus.PENDING, limit=1)
            if not pending:
                return False

            job = pending[0]
            try:
                self.orchestrator.run(job.id)
            except ConcurrencyConflict:
                # Another worker claimed it between listing and running
                logger.debug(f"Job {job.id} claimed elsewhere, skipping")
            return True

        except Exception as e:
            log_exception(logger, f"Error in worker loop: {str(e)}")
            return False

    def stop(self):
        """Stop the worker service"""
        self.running = False

        if self.health_server:
            self.health_server.stop()

        if self.job_store:
            self.job_store.close()
        if self.blob_store:
            self.blob_store.close()

        logger.info("Worker service stopped")

    def get_stats(self) -> Dict[str, Any]:
        """Get worker statistics"""
        stats = {
            'running': self.running,
            'config': {
                'job_store_type': self.config.JOB_STORE_TYPE,
                'classifier_backend': self.config.CLASSIFIER_BACKEND,
                'blob_store_type': self.config.BLOB_STORE_TYPE,
                'frame_count': self.config.FRAME_COUNT,
                'classifier_max_concurrent': self.config.CLASSIFIER_MAX_CONCURRENT
            }
        }

        if self.orchestrator:
            stats['orchestrator'] = self.orchestrator.get_stats()

        return stats


def signal_handler(signum, frame):
    """Handle shutdown signals"""
    logger.info(f"Received signal {signum}, shutting down...")
    sys.exit(0)


def main():
    """Main entry point"""
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    worker = WorkerService()

    try:
        worker.initialize()
        worker.start()
    except Exception as e:
        log_exception(logger, f"Worker failed to start: {str(e)}")
        sys.exit(1)
    finally:
        worker.stop()


if __name__ == "__main__":
    main()

"""
In-memory job store.

Keeps job records in a dict guarded by a lock. Used for local development
(JOB_STORE_TYPE=memory) and tests.
"""

import dataclasses
import logging
import threading
from datetime import datetime
from typing import Optional, Dict, Any, List

from .base import JobStore
from ..models import Job, JobStatus

logger = logging.getLogger("moderation_worker")


class InMemoryJobStore(JobStore):
    """Dict-backed implementation of the job store"""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            # Hand out copies so callers never mutate stored state
            return dataclasses.replace(job) if job else None

    def compare_and_set_status(self, job_id: str, expected: JobStatus, new_status: JobStatus) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != expected:
                return False
            job.status = new_status
            return True

    def update(self, job_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                logger.warning(f"Ignoring update for unknown job {job_id}")
                return
            for name, value in fields.items():
                if not hasattr(job, name):
                    raise AttributeError(f"Job has no field {name!r}")
                setattr(job, name, value)

    def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 10) -> List[Job]:
        with self._lock:
            jobs = [
                dataclasses.replace(job) for job in self._jobs.values()
                if status is None or job.status == status
            ]
        jobs.sort(key=lambda job: job.created_at or datetime.min)
        return jobs[:limit]

    def create_job(self, job: Job) -> Job:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job {job.id} already exists")
            if job.created_at is None:
                job.created_at = datetime.now()
            self._jobs[job.id] = dataclasses.replace(job)
        logger.info(f"Created job {job.id} for {job.source_path}")
        return job

    def delete_job(self, job_id: str) -> bool:
        with self._lock:
            removed = self._jobs.pop(job_id, None) is not None
        if removed:
            logger.info(f"Deleted job {job_id}")
        return removed

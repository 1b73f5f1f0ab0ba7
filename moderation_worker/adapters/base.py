"""
Abstract base classes for the pipeline's external collaborators.

Defines the interface that all adapters must implement, enabling
easy swapping between job stores (Postgres, in-memory), blob stores
(S3) and label detection backends (Rekognition, OpenAI).
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List

from ..models import Job, JobStatus, ModerationLabel


class JobStore(ABC):
    """Abstract base class for job record persistence"""

    def connect(self) -> None:
        """Open connections, if the store needs any"""

    def close(self) -> None:
        """Release connections, if the store holds any"""

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[Job]:
        """
        Get a job by id.

        Args:
            job_id: ID of the job to retrieve

        Returns:
            Job object if found, None otherwise
        """
        pass

    @abstractmethod
    def compare_and_set_status(self, job_id: str, expected: JobStatus, new_status: JobStatus) -> bool:
        """
        Atomically move a job from expected to new_status.

        Args:
            job_id: ID of the job
            expected: Status the job must currently have
            new_status: Status to set

        Returns:
            True if the transition was applied, False if the job's status
            was not expected (or the job does not exist)
        """
        pass

    @abstractmethod
    def update(self, job_id: str, fields: Dict[str, Any]) -> None:
        """
        Update job fields.

        Args:
            job_id: ID of the job
            fields: Mapping of Job attribute names to new values
        """
        pass

    @abstractmethod
    def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 10) -> List[Job]:
        """
        List jobs, oldest first.

        Args:
            status: Only return jobs with this status
            limit: Maximum number of jobs to return
        """
        pass

    @abstractmethod
    def create_job(self, job: Job) -> Job:
        """
        Insert a new job record.

        Args:
            job: Job to store

        Returns:
            The stored job
        """
        pass

    @abstractmethod
    def delete_job(self, job_id: str) -> bool:
        """
        Remove a job record.

        Args:
            job_id: ID of the job

        Returns:
            True if a record was removed, False if the job did not exist
        """
        pass


class BlobStore(ABC):
    """Abstract base class for durable object storage"""

    def connect(self) -> None:
        """Initialize the client, if the store needs one"""

    def close(self) -> None:
        """Release the client, if the store holds one"""

    @abstractmethod
    def upload(self, path: str, key: str, mime_type: str) -> str:
        """
        Upload a local file.

        Args:
            path: Local file to upload
            key: Object key to store it under
            mime_type: Content type of the object

        Returns:
            The key the object was stored under
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """
        Delete an object.

        Args:
            key: Object key to delete
        """
        pass

    @abstractmethod
    def get_url(self, key: str, expires_in: int = 3600) -> Optional[str]:
        """
        Get a time-limited URL for reading an object.

        Args:
            key: Object key
            expires_in: URL lifetime in seconds

        Returns:
            URL if one could be generated, None otherwise
        """
        pass


class LabelDetector(ABC):
    """Abstract base class for frame-level moderation backends"""

    name: str = "unknown"

    def connect(self) -> None:
        """Initialize the client, if the backend needs one"""

    @abstractmethod
    def detect_labels(self, image_bytes: bytes) -> List[ModerationLabel]:
        """
        Detect moderation labels in a single image.

        Args:
            image_bytes: Encoded image (JPEG)

        Returns:
            Labels found in the image, possibly empty

        Raises:
            ClassificationError: if the backend call failed. Throttling-class
                failures set ``throttled`` so callers can back off.
        """
        pass

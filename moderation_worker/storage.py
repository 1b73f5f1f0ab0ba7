"""
Storage tiering for finished source videos.

Moves a moderated video from local disk to the blob store and resolves
where it can be played back from afterwards.
"""

import os
import logging
from typing import Optional, Tuple

from .adapters.base import BlobStore
from .errors import MigrationError
from .models import Job, StorageTier

logger = logging.getLogger("moderation_worker")


class StorageMigrator:
    """Uploads finished source files to durable storage"""

    def __init__(self, blob_store: BlobStore, prefix: str = ""):
        self.blob_store = blob_store
        self.prefix = prefix

    def key_for(self, job: Job) -> str:
        """Stable object key derived from the stored filename"""
        return f"{self.prefix}{os.path.basename(job.source_path)}"

    def migrate(self, job: Job) -> Tuple[StorageTier, str]:
        """
        Upload the job's source file and delete the local copy.

        Args:
            job: Job whose source file should move to durable storage

        Returns:
            (StorageTier.REMOTE, key) once the upload is confirmed

        Raises:
            MigrationError: if the file is missing or the upload fails
        """
        key = self.key_for(job)

        if not os.path.isfile(job.source_path):
            raise MigrationError(f"Source file {job.source_path} no longer exists")

        try:
            stored_key = self.blob_store.upload(job.source_path, key, job.mime_type)
        except Exception as e:
            raise MigrationError(f"Upload of {job.source_path} failed: {e}") from e

        if stored_key != key:
            raise MigrationError(f"Upload of {job.source_path} returned unexpected key {stored_key!r}")

        try:
            os.remove(job.source_path)
        except OSError as e:
            # The remote copy is authoritative now; a stray local file is only wasted space
            logger.warning(f"Uploaded {job.source_path} but could not delete local copy: {e}")

        logger.info(f"Migrated job {job.id} source to remote key {key}")
        return StorageTier.REMOTE, key

    def remove(self, job: Job) -> None:
        """Delete the remote object of a remote-tier job"""
        if job.storage_tier != StorageTier.REMOTE or not job.storage_key:
            return
        self.blob_store.delete(job.storage_key)

    def playback_url(self, job: Job, expires_in: int = 3600) -> Optional[str]:
        """Presigned URL for remote jobs, None for local ones"""
        if job.storage_tier != StorageTier.REMOTE or not job.storage_key:
            return None
        return self.blob_store.get_url(job.storage_key, expires_in)


def resolve_within(path: str, root: str) -> Optional[str]:
    """Real path of path if it lies inside root (symlinks resolved), else None"""
    resolved = os.path.realpath(path)
    base = os.path.realpath(root)
    if os.path.commonpath([resolved, base]) != base:
        return None
    return resolved

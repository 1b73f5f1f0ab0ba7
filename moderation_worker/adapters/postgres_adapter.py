"""
Postgres adapter implementation for the job store.

Job status transitions use a conditional UPDATE so that only one run can
move a job into processing.
"""

import logging
from enum import Enum
from typing import Optional, Dict, Any, List

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from .base import JobStore
from ..models import Job, JobStatus, StorageTier
from ..logging_setup import log_exception

logger = logging.getLogger("moderation_worker")

JOB_COLUMNS = (
    "id", "source_path", "mime_type", "original_name", "status", "progress",
    "sensitivity_details", "storage_tier", "storage_key", "storage_error",
    "created_at", "processed_at",
)

UPDATABLE_COLUMNS = frozenset(JOB_COLUMNS) - {"id", "created_at"}


class PostgresJobStore(JobStore):
    """Postgres implementation of the job store"""

    def __init__(self, database_url: str, pool_size: int = 5, timeout: int = 10):
        self.database_url = database_url
        self.pool_size = pool_size
        self.timeout = timeout
        self.pool = None

    def connect(self):
        """Initialize connection pool"""
        try:
            self.pool = ConnectionPool(
                self.database_url,
                min_size=1,
                max_size=self.pool_size,
                kwargs={
                    "connect_timeout": self.timeout,
                    "application_name": "moderation_worker"
                }
            )
            logger.info("Postgres job store connection pool initialized")
            self._bootstrap_schema()
        except Exception as e:
            log_exception(logger, f"Failed to connect to Postgres job store: {e}")
            raise

    def _bootstrap_schema(self):
        """Create the jobs table if it does not exist yet"""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS moderation_jobs (
                        id TEXT PRIMARY KEY,
                        source_path TEXT NOT NULL,
                        mime_type TEXT NOT NULL,
                        original_name TEXT,
                        status TEXT NOT NULL DEFAULT 'pending',
                        progress INTEGER NOT NULL DEFAULT 0
                            CHECK (progress BETWEEN 0 AND 100),
                        sensitivity_details JSONB,
                        storage_tier TEXT NOT NULL DEFAULT 'local',
                        storage_key TEXT,
                        storage_error TEXT,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                        processed_at TIMESTAMPTZ
                    );
                """)
                cur.execute("""
                    CREATE INDEX IF NOT EXISTS moderation_jobs_status_idx
                    ON moderation_jobs (status, created_at);
                """)
                conn.commit()
                logger.info("Postgres job store schema validated")

    def get_job(self, job_id: str) -> Optional[Job]:
        """Get information about a specific job"""
        with self.pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    sql.SQL("SELECT {} FROM moderation_jobs WHERE id = %s").format(
                        sql.SQL(", ").join(map(sql.Identifier, JOB_COLUMNS))
                    ),
                    (job_id,)
                )
                row = cur.fetchone()
                return _row_to_job(row) if row else None

    def compare_and_set_status(self, job_id: str, expected: JobStatus, new_status: JobStatus) -> bool:
        """Move the job to new_status only if it currently has expected"""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    UPDATE moderation_jobs
                    SET status = %s
                    WHERE id = %s AND status = %s
                    RETURNING id
                """, (JobStatus(new_status).value, job_id, JobStatus(expected).value))
                result = cur.fetchone()
                conn.commit()
                if result:
                    logger.debug(f"Job {job_id} status {expected.value} -> {new_status.value}")
                return result is not None

    def update(self, job_id: str, fields: Dict[str, Any]) -> None:
        """Update the given job columns"""
        if not fields:
            return

        unknown = set(fields) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update job columns: {', '.join(sorted(unknown))}")

        names = list(fields)
        query = sql.SQL("UPDATE moderation_jobs SET {} WHERE id = %s").format(
            sql.SQL(", ").join(
                sql.SQL("{} = %s").format(sql.Identifier(name)) for name in names
            )
        )
        values = [_to_db_value(fields[name]) for name in names]

        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, (*values, job_id))
                conn.commit()

    def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 10) -> List[Job]:
        """List jobs oldest first, optionally filtered by status"""
        columns = sql.SQL(", ").join(map(sql.Identifier, JOB_COLUMNS))
        with self.pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                if status is None:
                    cur.execute(
                        sql.SQL("SELECT {} FROM moderation_jobs ORDER BY created_at LIMIT %s").format(columns),
                        (limit,)
                    )
                else:
                    cur.execute(
                        sql.SQL(
                            "SELECT {} FROM moderation_jobs WHERE status = %s ORDER BY created_at LIMIT %s"
                        ).format(columns),
                        (JobStatus(status).value, limit)
                    )
                return [_row_to_job(row) for row in cur.fetchall()]

    def create_job(self, job: Job) -> Job:
        """Insert a new job record"""
        with self.pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute("""
                    INSERT INTO moderation_jobs
                        (id, source_path, mime_type, original_name, status, progress, storage_tier)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING created_at
                """, (
                    job.id, job.source_path, job.mime_type, job.original_name,
                    job.status.value, job.progress, job.storage_tier.value
                ))
                result = cur.fetchone()
                conn.commit()
                job.created_at = result['created_at']
                logger.info(f"Created job {job.id} for {job.source_path}")
                return job

    def delete_job(self, job_id: str) -> bool:
        """Delete a job record"""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM moderation_jobs WHERE id = %s RETURNING id", (job_id,))
                result = cur.fetchone()
                conn.commit()
                if result:
                    logger.info(f"Deleted job {job_id}")
                return result is not None

    def close(self):
        """Close connection pool"""
        if self.pool:
            self.pool.close()
            logger.info("Postgres job store connection pool closed")


def _to_db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return Jsonb(value)
    return value


def _row_to_job(row: Dict[str, Any]) -> Job:
    return Job(
        id=row['id'],
        source_path=row['source_path'],
        mime_type=row['mime_type'],
        original_name=row['original_name'],
        status=JobStatus(row['status']),
        progress=row['progress'] or 0,
        sensitivity_details=row['sensitivity_details'],
        storage_tier=StorageTier(row['storage_tier']),
        storage_key=row['storage_key'],
        storage_error=row['storage_error'],
        created_at=row['created_at'],
        processed_at=row['processed_at']
    )

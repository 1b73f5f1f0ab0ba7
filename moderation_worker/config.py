"""
Configuration management for the moderation worker.

Centralizes all configuration loading from environment variables
and provides type-safe access to configuration values.
"""

import os
from typing import Dict, Any
from dataclasses import dataclass


@dataclass
class WorkerConfig:
    """Configuration for the moderation worker"""

    # Job store settings
    JOB_STORE_TYPE: str = "postgres"  # postgres, memory
    JOB_STORE_CONFIG: Dict[str, Any] = None

    # Classifier settings
    CLASSIFIER_BACKEND: str = "rekognition"  # rekognition, openai
    CLASSIFIER_CONFIG: Dict[str, Any] = None
    CLASSIFIER_MAX_CONCURRENT: int = 5
    CLASSIFIER_TIMEOUT_SEC: float = 30.0
    CLASSIFIER_MAX_RETRIES: int = 3
    CLASSIFIER_BACKOFF_MS: int = 500

    # Blob store settings
    BLOB_STORE_TYPE: str = "none"  # none, s3
    BLOB_STORE_CONFIG: Dict[str, Any] = None

    # Frame sampling settings
    FRAME_COUNT: int = 10
    EXTRACT_MAX_WORKERS: int = 4
    DEFAULT_DURATION_SEC: float = 10.0

    # Polling settings
    POLL_INTERVAL_MS: int = 1500
    BACKOFF_MULTIPLIER: float = 1.5
    MAX_BACKOFF_MS: int = 12000

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "/app/data/worker"

    # HTTP server
    ENABLE_HTTP_SERVER: bool = False
    HTTP_PORT: int = 8000

    # Data directories
    DATA_DIR: str = "/app/data"
    TEMP_DIR: str = "/app/data/temp"

    @classmethod
    def from_env(cls) -> 'WorkerConfig':
        """Load configuration from environment variables"""
        config = cls()

        # Job store configuration
        config.JOB_STORE_TYPE = os.getenv("JOB_STORE_TYPE", "postgres")
        config.JOB_STORE_CONFIG = cls._parse_job_store_config()

        # Classifier configuration
        config.CLASSIFIER_BACKEND = os.getenv("CLASSIFIER_BACKEND", "rekognition")
        config.CLASSIFIER_CONFIG = cls._parse_classifier_config()
        config.CLASSIFIER_MAX_CONCURRENT = int(os.getenv("CLASSIFIER_MAX_CONCURRENT", "5"))
        config.CLASSIFIER_TIMEOUT_SEC = float(os.getenv("CLASSIFIER_TIMEOUT_SEC", "30"))
        config.CLASSIFIER_MAX_RETRIES = int(os.getenv("CLASSIFIER_MAX_RETRIES", "3"))
        config.CLASSIFIER_BACKOFF_MS = int(os.getenv("CLASSIFIER_BACKOFF_MS", "500"))

        # Blob store configuration
        config.BLOB_STORE_TYPE = os.getenv("BLOB_STORE_TYPE", "none")
        config.BLOB_STORE_CONFIG = cls._parse_blob_store_config()

        # Frame sampling
        config.FRAME_COUNT = int(os.getenv("FRAME_COUNT", "10"))
        config.EXTRACT_MAX_WORKERS = int(os.getenv("EXTRACT_MAX_WORKERS", "4"))
        config.DEFAULT_DURATION_SEC = float(os.getenv("DEFAULT_DURATION_SEC", "10"))

        # Polling
        config.POLL_INTERVAL_MS = int(os.getenv("WORKER_POLL_MS", "1500"))
        config.BACKOFF_MULTIPLIER = float(os.getenv("WORKER_BACKOFF_MULTIPLIER", "1.5"))
        config.MAX_BACKOFF_MS = int(os.getenv("WORKER_MAX_BACKOFF_MS", "12000"))

        # Data directories
        config.DATA_DIR = os.getenv("DATA_DIR", "/app/data")
        config.TEMP_DIR = os.getenv("TEMP_DIR", os.path.join(config.DATA_DIR, "temp"))

        # Logging
        config.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        config.LOG_DIR = os.getenv("LOG_DIR", os.path.join(config.DATA_DIR, "worker"))

        # HTTP server
        config.ENABLE_HTTP_SERVER = os.getenv("WORKER_DEV_HTTP", "false").lower() == "true"
        config.HTTP_PORT = int(os.getenv("WORKER_HTTP_PORT", "8000"))

        return config

    @classmethod
    def _parse_job_store_config(cls) -> Dict[str, Any]:
        """Parse job store specific configuration"""
        job_store_type = os.getenv("JOB_STORE_TYPE", "postgres")

        if job_store_type == "postgres":
            return {
                "database_url": os.getenv("DATABASE_URL"),
                "connection_pool_size": int(os.getenv("POSTGRES_POOL_SIZE", "5")),
                "connection_timeout": int(os.getenv("POSTGRES_TIMEOUT", "10"))
            }
        else:
            return {}

    @classmethod
    def _parse_classifier_config(cls) -> Dict[str, Any]:
        """Parse classifier backend specific configuration"""
        backend = os.getenv("CLASSIFIER_BACKEND", "rekognition")

        if backend == "rekognition":
            return {
                "region": os.getenv("AWS_REGION", "us-east-1"),
                "min_confidence": float(os.getenv("CLASSIFIER_MIN_CONFIDENCE", "50"))
            }
        elif backend == "openai":
            return {
                "model": os.getenv("OPENAI_MODEL", "gpt-4o"),
                "min_confidence": float(os.getenv("CLASSIFIER_MIN_CONFIDENCE", "50"))
            }
        else:
            return {}

    @classmethod
    def _parse_blob_store_config(cls) -> Dict[str, Any]:
        """Parse blob store specific configuration"""
        blob_store_type = os.getenv("BLOB_STORE_TYPE", "none")

        if blob_store_type == "s3":
            return {
                "bucket": os.getenv("AWS_S3_BUCKET"),
                "region": os.getenv("AWS_REGION", "us-east-1"),
                "prefix": os.getenv("S3_PREFIX", "")
            }
        else:
            return {}

    def validate(self) -> None:
        """Validate configuration and raise errors for missing required values"""
        required_vars = []

        if self.JOB_STORE_TYPE not in ("postgres", "memory"):
            raise ValueError(f"Unsupported job store type: {self.JOB_STORE_TYPE}")

        if self.CLASSIFIER_BACKEND not in ("rekognition", "openai"):
            raise ValueError(f"Unsupported classifier backend: {self.CLASSIFIER_BACKEND}")

        if self.BLOB_STORE_TYPE not in ("none", "s3"):
            raise ValueError(f"Unsupported blob store type: {self.BLOB_STORE_TYPE}")

        # Check required environment variables based on configuration
        if self.JOB_STORE_TYPE == "postgres" and not (self.JOB_STORE_CONFIG or {}).get("database_url"):
            required_vars.append("DATABASE_URL")

        if self.BLOB_STORE_TYPE == "s3" and not (self.BLOB_STORE_CONFIG or {}).get("bucket"):
            required_vars.append("AWS_S3_BUCKET")

        if self.CLASSIFIER_BACKEND == "openai" and not os.getenv("OPENAI_API_KEY"):
            required_vars.append("OPENAI_API_KEY")

        if required_vars:
            raise ValueError(f"Missing required environment variables: {', '.join(required_vars)}")

        if self.FRAME_COUNT < 1:
            raise ValueError("FRAME_COUNT must be at least 1")

        if self.CLASSIFIER_MAX_CONCURRENT < 1 or self.EXTRACT_MAX_WORKERS < 1:
            raise ValueError("Worker pool sizes must be at least 1")

    @property
    def blob_store_enabled(self) -> bool:
        return self.BLOB_STORE_TYPE != "none"

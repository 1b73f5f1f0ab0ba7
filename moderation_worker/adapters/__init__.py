"""
Adapter pattern implementations for the pipeline's collaborators.

This module provides abstract base classes and concrete implementations
for job stores (Postgres, in-memory), blob stores (S3) and label
detection backends (Rekognition, OpenAI).
"""

from .base import BlobStore, JobStore, LabelDetector
from .memory_adapter import InMemoryJobStore

__all__ = [
    'BlobStore',
    'JobStore',
    'LabelDetector',
    'InMemoryJobStore'
]

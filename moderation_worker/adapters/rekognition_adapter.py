"""
AWS Rekognition adapter for frame moderation labels.
"""

import boto3
import logging
from typing import List
from botocore.exceptions import BotoCoreError, ClientError

from .base import LabelDetector
from ..errors import ClassificationError
from ..models import ModerationLabel

logger = logging.getLogger("moderation_worker")

THROTTLING_ERROR_CODES = frozenset({
    "ThrottlingException",
    "ProvisionedThroughputExceededException",
    "LimitExceededException",
    "TooManyRequestsException",
})


class RekognitionLabelDetector(LabelDetector):
    """Detects moderation labels with Rekognition DetectModerationLabels"""

    name = "AWS Rekognition"

    def __init__(self, region: str = "us-east-1", min_confidence: float = 50.0, client=None):
        self.region = region
        self.min_confidence = min_confidence
        self.rekognition = client

    def connect(self):
        """Initialize Rekognition client"""
        if self.rekognition is not None:
            return
        try:
            self.rekognition = boto3.client('rekognition', region_name=self.region)
            logger.info(f"Rekognition client initialized in {self.region}")
        except Exception as e:
            logger.error(f"Failed to create Rekognition client: {e}")
            raise

    def detect_labels(self, image_bytes: bytes) -> List[ModerationLabel]:
        try:
            response = self.rekognition.detect_moderation_labels(
                Image={'Bytes': image_bytes},
                MinConfidence=self.min_confidence
            )
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code', '')
            raise ClassificationError(
                f"Rekognition request failed ({code})",
                throttled=code in THROTTLING_ERROR_CODES
            ) from e
        except BotoCoreError as e:
            raise ClassificationError(f"Rekognition request failed: {e}") from e

        return [
            ModerationLabel(
                name=label['Name'],
                parent=label.get('ParentName') or None,
                confidence=float(label['Confidence'])
            )
            for label in response.get('ModerationLabels', [])
        ]

"""
AWS S3 adapter for durable blob storage.

Holds finished source videos once moderation has completed.
"""

import boto3
import logging
from typing import Optional
from botocore.exceptions import BotoCoreError, ClientError

from .base import BlobStore

logger = logging.getLogger("moderation_worker")


class S3BlobStore(BlobStore):
    """AWS S3 implementation of the blob store"""

    def __init__(self, bucket: str, region: str = "us-east-1", client=None):
        self.bucket = bucket
        self.region = region
        self.s3 = client

    def connect(self):
        """Initialize S3 client"""
        if self.s3 is not None:
            return
        try:
            self.s3 = boto3.client('s3', region_name=self.region)
            logger.info(f"S3 blob store connected to bucket: {self.bucket}")
        except Exception as e:
            logger.error(f"Failed to connect to S3: {e}")
            raise

    def upload(self, path: str, key: str, mime_type: str) -> str:
        """Upload a local file under key"""
        try:
            self.s3.upload_file(
                path,
                self.bucket,
                key,
                ExtraArgs={'ContentType': mime_type}
            )
            logger.info(f"Uploaded {path} to s3://{self.bucket}/{key}")
            return key
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Error uploading {path} to S3: {e}")
            raise

    def delete(self, key: str) -> None:
        """Delete the object stored under key"""
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=key)
            logger.info(f"Deleted s3://{self.bucket}/{key}")
        except ClientError as e:
            logger.error(f"Error deleting {key} from S3: {e}")
            raise

    def get_url(self, key: str, expires_in: int = 3600) -> Optional[str]:
        """Generate a presigned GET URL for key"""
        try:
            return self.s3.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket, 'Key': key},
                ExpiresIn=expires_in
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Error generating URL for {key}: {e}")
            return None

    def close(self):
        """Close S3 connection"""
        self.s3 = None
        logger.info("S3 blob store connection closed")

"""
Amazon S3 storage for original uploaded files.
"""

import asyncio
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import BlobStoreConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class S3BlobStore:
    """Stores uploaded bytes in S3 and returns their public URL."""

    def __init__(self, config: BlobStoreConfig):
        """
        Initialize the S3 blob store.

        Args:
            config: BlobStoreConfig with bucket, region and optional public base URL
        """
        self.config = config
        self.s3 = boto3.client('s3', region_name=config.region)

        logger.info(f'Initialized S3 blob store for bucket: {config.bucket}')

    def object_url(self, key: str) -> str:
        if self.config.public_base_url:
            return f'{self.config.public_base_url.rstrip("/")}/{key}'
        return f'https://{self.config.bucket}.s3.{self.config.region}.amazonaws.com/{key}'

    def _put(self, data: bytes, key: str, content_type: Optional[str]) -> str:
        extra = {'ContentType': content_type} if content_type else {}
        self.s3.put_object(Bucket=self.config.bucket, Key=key, Body=data, **extra)
        return self.object_url(key)

    async def store(self, data: bytes, path_hint: str, content_type: Optional[str] = None) -> Optional[str]:
        """
        Upload bytes under the given key.

        Args:
            data: File contents
            path_hint: Object key
            content_type: Optional MIME type stored with the object

        Returns:
            Object URL, or None when the upload failed
        """
        if not self.config.bucket:
            logger.warning('Blob store bucket is not configured, skipping upload')
            return None

        try:
            url = await asyncio.to_thread(self._put, data, path_hint, content_type)
            logger.debug(f'Uploaded {len(data)} bytes to {path_hint}')
            return url
        except (BotoCoreError, ClientError) as e:
            logger.error(f'Blob upload error for {path_hint}: {e}')
            return None

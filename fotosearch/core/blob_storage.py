# fotosearch/core/blob_storage.py

import logging
import mimetypes
import uuid
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from fotosearch.config import BlobStorageConfig
from fotosearch.core.errors import BlobStorageError

logger = logging.getLogger(__name__)


class S3BlobStore:
    """
    Uploads original image bytes to an S3 bucket
    """

    def __init__(self, config: BlobStorageConfig, s3_client=None):
        if not config.s3_bucket_name:
            raise ValueError("S3BlobStore requires s3_bucket_name")

        self.bucket_name = config.s3_bucket_name
        self.region = config.region
        self.key_prefix = config.key_prefix
        self.s3_client = s3_client or boto3.client('s3', region_name=self.region)

    def generate_key(self, content_type: str = "") -> str:
        extension = mimetypes.guess_extension(content_type) if content_type else None
        return f"{self.key_prefix}{uuid.uuid4().hex}{extension or ''}"

    def object_url(self, key: str) -> str:
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{key}"

    def put(self, data: bytes, content_type: str = "") -> str:
        """
        Upload bytes under a fresh key

        Returns:
            URL of the stored object
        """
        key = self.generate_key(content_type)
        params = {'Bucket': self.bucket_name, 'Key': key, 'Body': data}
        if content_type:
            params['ContentType'] = content_type

        try:
            self.s3_client.put_object(**params)
        except (ClientError, BotoCoreError) as e:
            raise BlobStorageError(f"Failed to upload s3://{self.bucket_name}/{key}: {e}") from e

        logger.info(f"Uploaded {len(data)} bytes to s3://{self.bucket_name}/{key}")
        return self.object_url(key)


def create_blob_store(config: BlobStorageConfig) -> Optional[S3BlobStore]:
    """Blob store for the configuration, or None when no bucket is set"""
    if not config.s3_bucket_name:
        return None
    return S3BlobStore(config)

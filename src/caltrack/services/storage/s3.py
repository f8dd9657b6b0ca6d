"""
S3 blob store for the cloud deployment.

Access to stored photos is configurable: ``public`` returns the bucket's
object URL (bucket policy must allow reads), ``signed`` returns a
presigned GET URL that expires.
"""

import asyncio
import logging
from typing import Iterable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from .base import DEFAULT_MAX_BYTES, BlobStore
from ...utils.errors import StorageWriteError

logger = logging.getLogger(__name__)

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class S3BlobStore(BlobStore):
    """Upload calibration photos to an S3 bucket."""

    def __init__(self, bucket_name: str, region: str = "us-east-1",
                 prefix: str = "", access: str = "public",
                 url_expiry: int = 3600, endpoint_url: Optional[str] = None,
                 allowed_types: Optional[Iterable[str]] = None,
                 max_bytes: int = DEFAULT_MAX_BYTES):
        """
        Initialize S3 blob store.

        Args:
            bucket_name: Name of the S3 bucket
            region: AWS region for S3 operations
            prefix: Optional key prefix inside the bucket
            access: "public" for object URLs, "signed" for presigned URLs
            url_expiry: Presigned URL lifetime in seconds
            endpoint_url: Custom endpoint (S3-compatible services)
            allowed_types: Accepted image content types
            max_bytes: Largest accepted upload
        """
        super().__init__(allowed_types, max_bytes)
        if access not in ("public", "signed"):
            raise ValueError(f"Unknown blob access mode: {access}")

        self.bucket_name = bucket_name
        self.region = region
        self.prefix = prefix.strip("/")
        self.access = access
        self.url_expiry = url_expiry
        self.endpoint_url = endpoint_url

        try:
            self.s3_client = boto3.client('s3', region_name=region, endpoint_url=endpoint_url)
            logger.info(f"Initialized S3 blob store for bucket: {bucket_name} (access={access})")
        except NoCredentialsError:
            logger.error("AWS credentials not found")
            raise

    def _object_key(self, key: str) -> str:
        return f"{self.prefix}/{key}" if self.prefix else key

    async def _write(self, key: str, data: bytes, content_type: str) -> None:
        upload_params = {
            'Bucket': self.bucket_name,
            'Key': self._object_key(key),
            'Body': data,
            'ContentType': content_type,
        }
        try:
            await asyncio.to_thread(self.s3_client.put_object, **upload_params)
        except ClientError as e:
            error_code = e.response['Error']['Code']
            logger.error(f"S3 upload failed for {key}: {error_code} - {e}")
            raise StorageWriteError(f"could not store image: {error_code}") from e
        except BotoCoreError as e:
            logger.error(f"S3 upload failed for {key}: {e}")
            raise StorageWriteError("could not store image") from e

        logger.info(f"Uploaded {key} to s3://{self.bucket_name} ({len(data)} bytes)")

    async def remove(self, key: str) -> None:
        try:
            await asyncio.to_thread(
                self.s3_client.delete_object,
                Bucket=self.bucket_name,
                Key=self._object_key(key)
            )
        except ClientError as e:
            error_code = e.response['Error']['Code']
            if error_code in _MISSING_CODES:
                logger.debug(f"Blob {key} already removed from S3")
                return
            logger.error(f"S3 delete failed for {key}: {error_code} - {e}")
            raise
        logger.info(f"Removed {key} from s3://{self.bucket_name}")

    async def exists(self, key: str) -> bool:
        try:
            await asyncio.to_thread(
                self.s3_client.head_object,
                Bucket=self.bucket_name,
                Key=self._object_key(key)
            )
        except ClientError as e:
            if e.response['Error']['Code'] in _MISSING_CODES:
                return False
            raise
        return True

    def to_address(self, key: str) -> str:
        object_key = self._object_key(key)
        if self.access == "signed":
            # Presigning is a local computation; no request is sent.
            return self.s3_client.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket_name, 'Key': object_key},
                ExpiresIn=self.url_expiry
            )
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket_name}/{object_key}"
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{object_key}"

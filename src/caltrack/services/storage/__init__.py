"""
Blob storage backends for calibration photos.
"""

from .base import BlobStore, generate_key, sanitize_extension, validate_image
from .local import LocalBlobStore
from .s3 import S3BlobStore
from ...config import Settings


def build_blob_store(settings: Settings) -> BlobStore:
    """Construct the backend selected by ``settings.blob_backend``."""
    if settings.blob_backend == "s3":
        return S3BlobStore(
            bucket_name=settings.s3_bucket,
            region=settings.s3_region,
            prefix=settings.s3_prefix,
            access=settings.blob_access,
            url_expiry=settings.signed_url_expiry,
            endpoint_url=settings.s3_endpoint_url,
            allowed_types=settings.allowed_image_types,
            max_bytes=settings.max_upload_bytes,
        )
    return LocalBlobStore(
        settings.uploads_dir,
        settings.uploads_url_prefix,
        allowed_types=settings.allowed_image_types,
        max_bytes=settings.max_upload_bytes,
    )


__all__ = [
    "BlobStore",
    "LocalBlobStore",
    "S3BlobStore",
    "build_blob_store",
    "generate_key",
    "sanitize_extension",
    "validate_image",
]

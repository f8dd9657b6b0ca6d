"""
Configuration settings for the calibration record service
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

DEFAULT_IMAGE_TYPES = [
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/bmp",
    "image/heic",
]


class Settings(BaseSettings):
    # Network
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: List[str] = ["*"]

    # Record store
    data_dir: Path = Path("data")
    database_filename: str = "calibration.db"
    storage_mode: str = "file"

    # Blob store
    blob_backend: str = "local"
    uploads_dir: Path = Path("uploads")
    uploads_url_prefix: str = "/uploads"
    max_upload_bytes: int = 10 * 1024 * 1024
    allowed_image_types: List[str] = DEFAULT_IMAGE_TYPES

    # S3 deployment mode
    s3_bucket: str = "calibration"
    s3_region: str = "us-east-1"
    s3_prefix: str = ""
    s3_endpoint_url: Optional[str] = None
    blob_access: str = "public"
    signed_url_expiry: int = 3600

    # Machine registry override (JSON object of name -> volume)
    machines_file: Optional[Path] = None

    # Prebuilt UI served at "/"
    static_dir: Optional[Path] = None

    # Real-time channel
    subscriber_queue_size: int = 100

    log_level: str = "INFO"

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 < v <= 65535:
            raise ValueError(f"port must be between 1 and 65535 (got {v})")
        return v

    @field_validator("max_upload_bytes", "signed_url_expiry", "subscriber_queue_size")
    @classmethod
    def validate_positive(cls, v: int, info) -> int:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive (got {v})")
        return v

    @field_validator("storage_mode")
    @classmethod
    def validate_storage_mode(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("file", "snapshot"):
            raise ValueError("storage_mode must be 'file' or 'snapshot'")
        return v

    @field_validator("blob_backend")
    @classmethod
    def validate_blob_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("local", "s3"):
            raise ValueError("blob_backend must be 'local' or 's3'")
        return v

    @field_validator("blob_access")
    @classmethod
    def validate_blob_access(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("public", "signed"):
            raise ValueError("blob_access must be 'public' or 'signed'")
        return v

    @field_validator("allowed_image_types")
    @classmethod
    def normalize_image_types(cls, v: List[str]) -> List[str]:
        return [item.strip().lower() for item in v if item.strip()]

    @field_validator("uploads_url_prefix")
    @classmethod
    def normalize_prefix(cls, v: str) -> str:
        return "/" + v.strip("/")

    @property
    def database_path(self) -> Path:
        return self.data_dir / self.database_filename

    class Config:
        env_prefix = "CALTRACK_"
        env_file = None


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings loaded from the environment"""
    return Settings()

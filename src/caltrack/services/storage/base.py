"""
Blob store contract shared by the local-disk and S3 backends.

Blobs are calibration photos addressed by a generated key. The key never
contains the uploader's filename; only a sanitised extension survives.
"""

import re
import secrets
import time
from abc import ABC, abstractmethod
from pathlib import PurePosixPath
from typing import Iterable, Optional

from ...config import DEFAULT_IMAGE_TYPES
from ...utils.errors import ValidationError

KEY_PREFIX = "records"

DEFAULT_MAX_BYTES = 10 * 1024 * 1024

_EXTENSION_RE = re.compile(r"^\.[a-z0-9]{1,10}$")


def sanitize_extension(suggested: Optional[str]) -> str:
    """Return a safe ``.ext`` from a filename or ``.ext`` string, or ''."""
    if not suggested:
        return ""
    name = PurePosixPath(suggested.replace("\\", "/")).name.lower()
    if "." not in name:
        return ""
    suffix = "." + name.rsplit(".", 1)[1]
    return suffix if _EXTENSION_RE.match(suffix) else ""


def generate_key(suggested_extension: Optional[str] = None) -> str:
    """Time prefix + random suffix + extension, e.g. records/1700000000000_9f2c...e1.jpg"""
    millis = int(time.time() * 1000)
    return f"{KEY_PREFIX}/{millis}_{secrets.token_hex(8)}{sanitize_extension(suggested_extension)}"


def validate_image(
    size: int,
    content_type: Optional[str],
    allowed_types: Iterable[str],
    max_bytes: int
) -> None:
    """Reject uploads before any bytes are persisted.

    Raises:
        ValidationError: empty, oversized, or non-image payload
    """
    declared = (content_type or "").split(";")[0].strip().lower()
    if declared not in set(allowed_types):
        raise ValidationError(f"unsupported image type: {declared or 'unknown'}")
    if size <= 0:
        raise ValidationError("image file is empty")
    if size > max_bytes:
        raise ValidationError(f"image exceeds maximum size of {max_bytes} bytes")


class BlobStore(ABC):
    """Key -> bytes storage with delete-on-demand.

    Only images of an allowed type and size are accepted; ``put`` checks
    them before any bytes reach the backend.
    """

    def __init__(self, allowed_types: Optional[Iterable[str]] = None,
                 max_bytes: int = DEFAULT_MAX_BYTES):
        self.allowed_types = tuple(DEFAULT_IMAGE_TYPES if allowed_types is None else allowed_types)
        self.max_bytes = max_bytes

    async def put(self, data: bytes, content_type: str,
                  suggested_extension: Optional[str] = None) -> str:
        """Validate, persist durably and return the generated key.

        Raises:
            ValidationError: empty, oversized, or non-image payload
            StorageWriteError: the bytes could not be stored
        """
        validate_image(len(data), content_type, self.allowed_types, self.max_bytes)
        key = generate_key(suggested_extension)
        await self._write(key, data, content_type)
        return key

    @abstractmethod
    async def _write(self, key: str, data: bytes, content_type: str) -> None:
        """Store bytes under ``key``; raise StorageWriteError on failure."""

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete a blob. Removing a missing key is not an error."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    def to_address(self, key: str) -> str:
        """Map a key to a retrievable locator. Pure, no I/O."""

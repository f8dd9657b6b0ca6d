"""
Local-disk blob store used by the desktop deployment.
"""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, Optional

from .base import DEFAULT_MAX_BYTES, BlobStore
from ...utils.errors import StorageWriteError

logger = logging.getLogger(__name__)


class LocalBlobStore(BlobStore):
    """Store blobs as files below ``root``; locators are URL paths under ``url_prefix``."""

    def __init__(self, root: Path, url_prefix: str = "/uploads",
                 allowed_types: Optional[Iterable[str]] = None,
                 max_bytes: int = DEFAULT_MAX_BYTES):
        super().__init__(allowed_types, max_bytes)
        self.root = Path(root)
        self.url_prefix = "/" + url_prefix.strip("/")
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initialized local blob store at {self.root}")

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Blob key escapes store root: {key!r}")
        return path

    async def _write(self, key: str, data: bytes, content_type: str) -> None:
        try:
            await asyncio.to_thread(self._write_file, self._path_for(key), data)
        except OSError as e:
            logger.error(f"Blob write failed for {key}: {e}")
            raise StorageWriteError(f"could not store image: {e}") from e
        logger.info(f"Stored blob {key} ({len(data)} bytes, {content_type})")

    @staticmethod
    def _write_file(path: Path, data: bytes) -> None:
        # Write to a sibling temp file and rename so a crash never leaves a torn blob.
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".upload-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    async def remove(self, key: str) -> None:
        path = self._path_for(key)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            logger.debug(f"Blob {key} already removed")
            return
        logger.info(f"Removed blob {key}")

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path_for(key).is_file)

    def to_address(self, key: str) -> str:
        return f"{self.url_prefix}/{key}"

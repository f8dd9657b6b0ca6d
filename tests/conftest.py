"""
Pytest configuration and fixtures for the calibration record service tests.

Every fixture works inside pytest's tmp_path; nothing touches the real
data or uploads directories.
"""

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from caltrack.config import Settings
from caltrack.main import create_app
from caltrack.services.broadcaster import ChangeBroadcaster
from caltrack.services.machine_registry import MachineRegistry
from caltrack.services.record_service import RecordService
from caltrack.services.record_store import RecordStore
from caltrack.services.storage import LocalBlobStore

PNG_BYTES = (
    b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01"
    b"\x08\x02\x00\x00\x00\x90wS\xde\x00\x00\x00\x0cIDATx\x9cc\xf8\x0f\x00"
    b"\x00\x01\x01\x00\x05\x18\xd8N\x00\x00\x00\x00IEND\xaeB`\x82"
)


@pytest.fixture
def png_bytes():
    return PNG_BYTES


@pytest.fixture
def settings(tmp_path):
    """Settings pointing every storage location at tmp_path."""
    return Settings(
        data_dir=tmp_path / "data",
        uploads_dir=tmp_path / "uploads",
        max_upload_bytes=1024,
    )


@pytest.fixture
def client(settings):
    """Test client with the lifespan running (store open, broadcaster live)."""
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def registry():
    return MachineRegistry.default()


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "uploads")


@pytest.fixture
def broadcaster():
    return ChangeBroadcaster(queue_size=100)


@pytest_asyncio.fixture(params=["file", "snapshot"])
async def record_store(request, tmp_path):
    """Open record store, once per storage engine."""
    store = RecordStore(tmp_path / "data" / "calibration.db", mode=request.param)
    await store.open()
    yield store
    await store.close()


@pytest.fixture
def record_service(registry, record_store, blob_store, broadcaster):
    return RecordService(
        registry=registry,
        store=record_store,
        blobs=blob_store,
        broadcaster=broadcaster,
        allowed_image_types=["image/png", "image/jpeg"],
        max_upload_bytes=1024,
    )

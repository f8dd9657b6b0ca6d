"""
Calibration records API router.

Thin translation between HTTP requests and record service calls; all
validation lives in the service.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Path, Query, UploadFile, status

from ..dependencies import get_record_service
from ..schemas.record import (
    BulkDeleteResponse,
    DeleteResponse,
    ImageUpload,
    RecordCreate,
    RecordRead,
    SummaryResponse,
)
from ..services.record_service import RecordService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["records"])

# Largest value SQLite stores in an INTEGER PRIMARY KEY
MAX_RECORD_ID = 2**63 - 1


async def read_upload(upload: Optional[UploadFile], max_bytes: int) -> Optional[ImageUpload]:
    """Read at most ``max_bytes + 1`` bytes.

    Oversized uploads are caught without reading them into memory.
    """
    if upload is None:
        return None
    data = await upload.read(max_bytes + 1)
    await upload.close()
    # Browsers send an empty, unnamed part when no file was chosen
    if not upload.filename and not data:
        return None
    return ImageUpload(data=data, content_type=upload.content_type, filename=upload.filename)


@router.get("/records", response_model=List[RecordRead])
async def list_records(
    machine: Optional[str] = Query(None, description="Only records for this machine"),
    service: RecordService = Depends(get_record_service)
):
    """All records, newest calibration date first (ties: newest id first)."""
    records = await service.list_records(machine)
    return [service.to_public(record) for record in records]


@router.get("/records/{record_id}", response_model=RecordRead)
async def get_record(
    record_id: int = Path(..., ge=1, le=MAX_RECORD_ID, description="Record identifier"),
    service: RecordService = Depends(get_record_service)
):
    return service.to_public(await service.get_record(record_id))


@router.post("/records", response_model=RecordRead, status_code=status.HTTP_201_CREATED)
async def create_record(
    machine: Optional[str] = Form(None, description="Machine registry key"),
    date: Optional[str] = Form(None, description="Calibration date (ISO-8601)"),
    status_: Optional[str] = Form(None, alias="status", description="pass or fail"),
    calibrator: Optional[str] = Form(None, description="Technician name"),
    notes: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None, description="Optional calibration photo"),
    service: RecordService = Depends(get_record_service)
):
    """
    Create a calibration record with an optional photo.

    The machine volume is resolved server-side; any submitted volume is ignored.
    """
    upload = await read_upload(image, service.max_upload_bytes)
    record = await service.create_record(
        RecordCreate(
            machine=machine,
            date=date,
            status=status_,
            calibrator=calibrator,
            notes=notes,
        ),
        upload
    )
    return service.to_public(record)


@router.delete("/records/{record_id}", response_model=DeleteResponse)
async def delete_record(
    record_id: int = Path(..., ge=1, le=MAX_RECORD_ID, description="Record identifier"),
    service: RecordService = Depends(get_record_service)
):
    record = await service.delete_record(record_id)
    return DeleteResponse(message="Record deleted", id=record.id)


@router.delete("/records", response_model=BulkDeleteResponse)
async def delete_records_for_machine(
    machine: Optional[str] = Query(None, description="Machine whose records are removed"),
    service: RecordService = Depends(get_record_service)
):
    count = await service.delete_by_machine(machine)
    machine = machine.strip()
    return BulkDeleteResponse(
        message=f"Deleted {count} records for {machine}",
        machine=machine,
        count=count
    )


@router.get("/summary", response_model=SummaryResponse)
async def summary(service: RecordService = Depends(get_record_service)):
    """Per-machine totals and latest result for the dashboard."""
    machines = await service.summarize()
    return SummaryResponse(machines=machines, total=sum(m.total for m in machines))

"""
Pydantic schemas for calibration records
"""

from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel, Field


class RecordCreate(BaseModel):
    """Raw form fields for a new record. Validation happens in the record service."""
    machine: Optional[str] = None
    date: Optional[str] = None
    status: Optional[str] = None
    calibrator: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class ImageUpload:
    """An uploaded photo as received at the HTTP boundary."""
    data: bytes
    content_type: Optional[str]
    filename: Optional[str] = None


class RecordRead(BaseModel):
    """Wire shape of a calibration record"""
    id: int = Field(..., description="Record identifier assigned by the store")
    machine: str = Field(..., description="Machine registry key")
    volume: float = Field(..., description="Nominal machine volume at insert time")
    date: str = Field(..., description="Calibration date, ISO-8601 UTC")
    status: str = Field(..., description="pass or fail")
    image: Optional[str] = Field(None, description="Locator of the attached photo")
    timestamp: str = Field(..., description="Insertion time, ISO-8601 UTC")
    calibrator: str
    notes: Optional[str] = None


class DeleteResponse(BaseModel):
    message: str
    id: int


class BulkDeleteResponse(BaseModel):
    message: str
    machine: str
    count: int


class MachineSummary(BaseModel):
    """Per-machine aggregation for the dashboard"""
    machine: str
    volume: float
    total: int = 0
    passed: int = 0
    failed: int = 0
    latest_date: Optional[str] = None
    latest_status: Optional[str] = None


class SummaryResponse(BaseModel):
    machines: List[MachineSummary]
    total: int

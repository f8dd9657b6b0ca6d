"""
Record service: the only entry point that mutates calibration records.

Validation happens before any storage is touched. A create writes the
photo first and the row second, so a crash in between leaves at most an
unreferenced blob, never a row pointing at a missing file. Deletes
remove the row first and release the blob afterwards.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from ..models.record import CalibrationRecord
from ..schemas.record import ImageUpload, MachineSummary, RecordCreate, RecordRead
from ..utils.errors import CleanupError, NotFoundError, ValidationError
from .broadcaster import ChangeBroadcaster, ChangeType
from .machine_registry import MachineRegistry
from .record_store import NewRecord, RecordStore
from .storage import BlobStore, validate_image

logger = logging.getLogger(__name__)

VALID_STATUSES = ("pass", "fail")


def parse_date(value) -> datetime:
    """Parse an ISO-8601 date or datetime into naive UTC.

    Naive input is taken to be UTC already.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = (value or "").strip() if isinstance(value, str) else ""
        if not text:
            raise ValidationError("invalid date")
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError("invalid date")
    if parsed.tzinfo is not None:
        try:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        except OverflowError:
            # Valid offset, but the UTC instant falls outside datetime's range
            raise ValidationError("invalid date")
    return parsed


def format_timestamp(value: datetime) -> str:
    return value.replace(tzinfo=timezone.utc).isoformat().replace("+00:00", "Z")


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class RecordService:
    """Validates, stores and announces calibration records."""

    def __init__(
        self,
        registry: MachineRegistry,
        store: RecordStore,
        blobs: BlobStore,
        broadcaster: ChangeBroadcaster,
        allowed_image_types: Iterable[str],
        max_upload_bytes: int
    ):
        self.registry = registry
        self.store = store
        self.blobs = blobs
        self.broadcaster = broadcaster
        self.allowed_image_types = tuple(allowed_image_types)
        self.max_upload_bytes = max_upload_bytes

    def to_public(self, record: CalibrationRecord) -> RecordRead:
        return RecordRead(
            id=record.id,
            machine=record.machine,
            volume=record.volume,
            date=format_timestamp(record.date),
            status=record.status,
            image=self.blobs.to_address(record.image_ref) if record.image_ref else None,
            timestamp=format_timestamp(record.timestamp),
            calibrator=record.calibrator,
            notes=record.notes,
        )

    async def create_record(
        self,
        data: RecordCreate,
        image: Optional[ImageUpload] = None
    ) -> CalibrationRecord:
        """
        Validate and persist a new record, then announce it.

        Raises:
            ValidationError: unknown machine, bad date/status, missing
                calibrator, or an unacceptable image
            StorageWriteError: the photo or the row could not be written
        """
        machine = _clean(data.machine)
        volume = self.registry.lookup_volume(machine)
        if volume is None:
            raise ValidationError("unknown machine")

        date = parse_date(data.date)

        status = (data.status or "").strip().lower()
        if status not in VALID_STATUSES:
            raise ValidationError("invalid status")

        calibrator = _clean(data.calibrator)
        if not calibrator:
            raise ValidationError("missing calibrator")

        image_ref = None
        if image is not None:
            validate_image(
                len(image.data),
                image.content_type,
                self.allowed_image_types,
                self.max_upload_bytes
            )
            image_ref = await self.blobs.put(image.data, image.content_type, image.filename)

        try:
            record = await self.store.insert(NewRecord(
                machine=machine,
                volume=volume,
                date=date,
                status=status,
                calibrator=calibrator,
                notes=_clean(data.notes),
                image_ref=image_ref,
            ))
        except Exception:
            if image_ref is not None:
                logger.warning(f"Insert failed, removing orphaned blob {image_ref}")
                await self._release_blob(image_ref)
            raise

        logger.info(f"Created record {record.id} ({record.machine}, {record.status}) by {record.calibrator}")
        self.broadcaster.publish(ChangeType.INSERT, record=self.to_public(record).model_dump())
        return record

    async def delete_record(self, record_id: int) -> CalibrationRecord:
        """
        Delete one record and release its photo.

        Raises:
            NotFoundError: no record with this id
        """
        record = await self.store.delete_by_id(record_id)
        if record is None:
            raise NotFoundError(f"record {record_id} not found")

        if record.image_ref:
            await self._release_blob(record.image_ref)

        logger.info(f"Deleted record {record.id} ({record.machine})")
        self.broadcaster.publish(ChangeType.DELETE, id=record.id, machine=record.machine)
        return record

    async def delete_by_machine(self, machine: Optional[str]) -> int:
        """
        Delete every record of a registered machine.

        Returns:
            Number of records removed
        """
        machine = _clean(machine)
        if not machine:
            raise ValidationError("machine is required")
        if machine not in self.registry:
            raise ValidationError("unknown machine")

        records = await self.store.delete_by_machine(machine)

        failed = []
        for record in records:
            if record.image_ref and not await self._release_blob(record.image_ref, log=False):
                failed.append(record.image_ref)
        if failed:
            logger.error(
                f"Bulk delete for {machine}: {len(failed)} blob(s) could not be removed: "
                f"{', '.join(failed)}"
            )

        logger.info(f"Deleted {len(records)} record(s) for {machine}")
        self.broadcaster.publish(ChangeType.BULK_DELETE, machine=machine, count=len(records))
        return len(records)

    async def _release_blob(self, key: str, log: bool = True) -> bool:
        """Best-effort blob removal; failures never propagate."""
        try:
            await self.blobs.remove(key)
        except Exception as e:
            if log:
                error = CleanupError(f"could not remove blob {key}: {e}")
                logger.error(error.message, exc_info=e)
            return False
        return True

    async def get_record(self, record_id: int) -> CalibrationRecord:
        record = await self.store.get_by_id(record_id)
        if record is None:
            raise NotFoundError(f"record {record_id} not found")
        return record

    async def list_records(self, machine: Optional[str] = None) -> List[CalibrationRecord]:
        return await self.store.list_all(machine=_clean(machine))

    async def summarize(self) -> List[MachineSummary]:
        """Totals and latest result per machine, in registry order."""
        summaries: Dict[str, MachineSummary] = {
            name: MachineSummary(machine=name, volume=self.registry.lookup_volume(name))
            for name in self.registry
        }
        # Newest first, so the first record seen per machine is its latest.
        for record in await self.store.list_all():
            summary = summaries.get(record.machine)
            if summary is None:
                summary = summaries[record.machine] = MachineSummary(
                    machine=record.machine, volume=record.volume
                )
            summary.total += 1
            if record.status == "pass":
                summary.passed += 1
            else:
                summary.failed += 1
            if summary.latest_date is None:
                summary.latest_date = format_timestamp(record.date)
                summary.latest_status = record.status
        return list(summaries.values())

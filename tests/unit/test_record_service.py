"""
Unit tests for the record service: validation, write ordering,
compensation and change notifications.
"""

import logging
from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest

from caltrack.schemas.record import ImageUpload, RecordCreate
from caltrack.services.record_service import format_timestamp, parse_date
from caltrack.utils.errors import NotFoundError, StorageWriteError, ValidationError


def valid_form(**overrides):
    fields = {
        "machine": "LX4",
        "date": "2024-05-01",
        "status": "pass",
        "calibrator": "Somchai",
        "notes": None,
    }
    fields.update(overrides)
    return RecordCreate(**fields)


def stored_blobs(blob_store):
    directory = blob_store.root / "records"
    if not directory.exists():
        return []
    return [p for p in directory.iterdir() if not p.name.startswith(".")]


class TestDateHandling:

    @pytest.mark.parametrize("value,expected", [
        ("2024-05-01", datetime(2024, 5, 1)),
        ("2024-05-01T08:30:00", datetime(2024, 5, 1, 8, 30)),
        ("2024-05-01T08:30:00Z", datetime(2024, 5, 1, 8, 30)),
        ("2024-05-01T15:30:00+07:00", datetime(2024, 5, 1, 8, 30)),
    ])
    def test_parse_date(self, value, expected):
        assert parse_date(value) == expected

    @pytest.mark.parametrize("value", [
        "", "   ", None, "yesterday", "2024-13-40",
        # Parses, but the UTC instant is past datetime.max
        "9999-12-31T23:59:59-05:00",
    ])
    def test_parse_date_rejects(self, value):
        with pytest.raises(ValidationError) as exc_info:
            parse_date(value)
        assert exc_info.value.message == "invalid date"

    def test_format_timestamp(self):
        assert format_timestamp(datetime(2024, 5, 1, 8, 30)) == "2024-05-01T08:30:00Z"


class TestCreateRecord:

    @pytest.mark.asyncio
    async def test_volume_comes_from_registry(self, record_service):
        record = await record_service.create_record(valid_form(notes="  drift ok  "))

        assert record.id == 1
        assert record.volume == 60
        assert record.date == datetime(2024, 5, 1)
        assert record.notes == "drift ok"
        assert record.image_ref is None

    @pytest.mark.asyncio
    async def test_status_is_case_insensitive(self, record_service):
        record = await record_service.create_record(valid_form(status=" FAIL "))
        assert record.status == "fail"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides,message", [
        ({"machine": "ZZ9"}, "unknown machine"),
        ({"machine": None}, "unknown machine"),
        ({"date": "not-a-date"}, "invalid date"),
        ({"date": None}, "invalid date"),
        ({"status": "maybe"}, "invalid status"),
        ({"calibrator": "   "}, "missing calibrator"),
        # First failing check wins
        ({"machine": "ZZ9", "status": "maybe"}, "unknown machine"),
    ])
    async def test_validation_errors_write_nothing(
        self, record_service, blob_store, png_bytes, overrides, message
    ):
        image = ImageUpload(data=png_bytes, content_type="image/png", filename="scan.png")

        with pytest.raises(ValidationError) as exc_info:
            await record_service.create_record(valid_form(**overrides), image)

        assert exc_info.value.message == message
        assert await record_service.store.count() == 0
        assert stored_blobs(blob_store) == []

    @pytest.mark.asyncio
    async def test_rejected_image_writes_nothing(self, record_service, blob_store):
        image = ImageUpload(data=b"%PDF-1.4", content_type="application/pdf", filename="doc.pdf")

        with pytest.raises(ValidationError):
            await record_service.create_record(valid_form(), image)

        assert await record_service.store.count() == 0
        assert stored_blobs(blob_store) == []

    @pytest.mark.asyncio
    async def test_oversized_image_rejected(self, record_service, blob_store):
        image = ImageUpload(data=b"x" * 1025, content_type="image/png")

        with pytest.raises(ValidationError):
            await record_service.create_record(valid_form(), image)

        assert stored_blobs(blob_store) == []

    @pytest.mark.asyncio
    async def test_image_stored_before_row(self, record_service, blob_store, png_bytes):
        image = ImageUpload(data=png_bytes, content_type="image/png", filename="scan.png")

        record = await record_service.create_record(valid_form(), image)

        assert record.image_ref.startswith("records/")
        assert await blob_store.exists(record.image_ref)
        public = record_service.to_public(record)
        assert public.image == f"/uploads/{record.image_ref}"

    @pytest.mark.asyncio
    async def test_failed_insert_removes_blob(self, record_service, blob_store, broadcaster, png_bytes):
        subscription = broadcaster.subscribe()
        image = ImageUpload(data=png_bytes, content_type="image/png", filename="scan.png")

        with patch.object(
            record_service.store, "insert",
            AsyncMock(side_effect=StorageWriteError("database write failed"))
        ):
            with pytest.raises(StorageWriteError):
                await record_service.create_record(valid_form(), image)

        assert stored_blobs(blob_store) == []
        assert await record_service.store.count() == 0
        assert subscription.pending() == 0

    @pytest.mark.asyncio
    async def test_failed_blob_write_leaves_no_row(self, record_service, png_bytes):
        image = ImageUpload(data=png_bytes, content_type="image/png")

        with patch.object(
            record_service.blobs, "put",
            AsyncMock(side_effect=StorageWriteError("could not store image"))
        ):
            with pytest.raises(StorageWriteError):
                await record_service.create_record(valid_form(), image)

        assert await record_service.store.count() == 0

    @pytest.mark.asyncio
    async def test_insert_is_announced_after_commit(self, record_service, broadcaster):
        subscription = broadcaster.subscribe()

        record = await record_service.create_record(valid_form())

        event = subscription.get_nowait()
        assert event["type"] == "insert"
        assert event["record"]["id"] == record.id
        assert event["record"]["volume"] == 60
        assert event["record"]["date"] == "2024-05-01T00:00:00Z"
        assert await record_service.store.get_by_id(record.id) is not None


class TestDeleteRecord:

    @pytest.mark.asyncio
    async def test_delete_removes_row_and_blob(self, record_service, blob_store, broadcaster, png_bytes):
        image = ImageUpload(data=png_bytes, content_type="image/png", filename="scan.png")
        record = await record_service.create_record(valid_form(), image)
        subscription = broadcaster.subscribe()

        deleted = await record_service.delete_record(record.id)

        assert deleted.id == record.id
        assert await record_service.store.get_by_id(record.id) is None
        assert stored_blobs(blob_store) == []
        assert subscription.get_nowait() == {"type": "delete", "id": record.id, "machine": "LX4"}

    @pytest.mark.asyncio
    async def test_delete_missing_record(self, record_service, broadcaster):
        subscription = broadcaster.subscribe()

        with pytest.raises(NotFoundError):
            await record_service.delete_record(12345)

        assert subscription.pending() == 0

    @pytest.mark.asyncio
    async def test_blob_cleanup_failure_is_logged_not_raised(
        self, record_service, png_bytes, caplog
    ):
        image = ImageUpload(data=png_bytes, content_type="image/png")
        record = await record_service.create_record(valid_form(), image)

        with patch.object(record_service.blobs, "remove", AsyncMock(side_effect=OSError("busy"))):
            with caplog.at_level(logging.ERROR, logger="caltrack.services.record_service"):
                await record_service.delete_record(record.id)

        assert await record_service.store.get_by_id(record.id) is None
        assert "could not remove blob" in caplog.text


class TestDeleteByMachine:

    @pytest.mark.asyncio
    async def test_bulk_delete(self, record_service, blob_store, broadcaster, png_bytes):
        for _ in range(3):
            await record_service.create_record(
                valid_form(machine="A5"),
                ImageUpload(data=png_bytes, content_type="image/png")
            )
        keep = await record_service.create_record(valid_form(machine="B6"))
        subscription = broadcaster.subscribe()

        count = await record_service.delete_by_machine("A5")

        assert count == 3
        assert [r.id for r in await record_service.list_records()] == [keep.id]
        assert stored_blobs(blob_store) == []
        assert subscription.get_nowait() == {"type": "bulk-delete", "machine": "A5", "count": 3}

    @pytest.mark.asyncio
    async def test_bulk_delete_with_no_records(self, record_service):
        assert await record_service.delete_by_machine("DD600") == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("machine,message", [
        (None, "machine is required"),
        ("  ", "machine is required"),
        ("ZZ9", "unknown machine"),
    ])
    async def test_bulk_delete_validation(self, record_service, machine, message):
        with pytest.raises(ValidationError) as exc_info:
            await record_service.delete_by_machine(machine)
        assert exc_info.value.message == message

    @pytest.mark.asyncio
    async def test_blob_failures_are_aggregated(self, record_service, png_bytes, caplog):
        for _ in range(2):
            await record_service.create_record(
                valid_form(machine="A4"),
                ImageUpload(data=png_bytes, content_type="image/png")
            )

        with patch.object(record_service.blobs, "remove", AsyncMock(side_effect=OSError("busy"))):
            with caplog.at_level(logging.ERROR, logger="caltrack.services.record_service"):
                count = await record_service.delete_by_machine("A4")

        assert count == 2
        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(errors) == 1
        assert "2 blob(s)" in errors[0].getMessage()


class TestReads:

    @pytest.mark.asyncio
    async def test_get_record(self, record_service):
        record = await record_service.create_record(valid_form())

        assert (await record_service.get_record(record.id)).calibrator == "Somchai"
        with pytest.raises(NotFoundError):
            await record_service.get_record(record.id + 1)

    @pytest.mark.asyncio
    async def test_summary(self, record_service, registry):
        await record_service.create_record(valid_form(date="2024-05-01", status="pass"))
        await record_service.create_record(valid_form(date="2024-05-03", status="fail"))
        await record_service.create_record(valid_form(machine="A5", date="2024-04-01"))

        summaries = {s.machine: s for s in await record_service.summarize()}

        assert len(summaries) == len(registry)
        lx4 = summaries["LX4"]
        assert (lx4.total, lx4.passed, lx4.failed) == (2, 1, 1)
        assert lx4.latest_status == "fail"
        assert lx4.latest_date == "2024-05-03T00:00:00Z"
        assert summaries["A5"].total == 1
        assert summaries["DD600"].total == 0
        assert summaries["DD600"].latest_status is None

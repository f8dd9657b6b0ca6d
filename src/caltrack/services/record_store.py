"""
Record store: the authoritative ``records`` table.

All mutations run through a single write queue so that no two writes
ever interleave on the SQLite file. Two engines implement the same
interface:

- ``file``: a durable SQLite file (WAL, synchronous=FULL). Reads open
  their own connections and never wait on the write queue.
- ``snapshot``: the database lives in memory on one connection. Each
  mutation captures a snapshot inside the write queue and hands it to the
  persistence scheduler; the caller resumes once that snapshot is on disk.
  Reads share the single connection, so they are queued too.
"""

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Tuple

import aiosqlite
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ..database.core import Base, create_file_engine, create_memory_engine
from ..models.record import CalibrationRecord
from ..utils.errors import StorageWriteError
from .persistence import PersistenceScheduler

logger = logging.getLogger(__name__)

STORAGE_MODES = ("file", "snapshot")


@dataclass(frozen=True)
class NewRecord:
    """Validated field values for a record that has no id yet."""
    machine: str
    volume: float
    date: datetime
    status: str
    calibrator: str
    notes: Optional[str] = None
    image_ref: Optional[str] = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class WriteQueue:
    """Ordered pending-operation queue drained by one worker task."""

    def __init__(self, name: str = "record-store-writer"):
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._closed = False
            self._task = asyncio.get_running_loop().create_task(
                self._worker_loop(), name=self.name
            )

    async def submit(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        """Append ``operation`` and wait for its result.

        The operation runs even if the caller stops waiting; there is no
        mid-operation cancellation.
        """
        if self._closed or self._task is None:
            raise StorageWriteError("record store is not open")
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((operation, future))
        return await future

    async def _worker_loop(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                operation, future = item
                try:
                    result = await operation()
                except Exception as e:
                    if not future.cancelled():
                        future.set_exception(e)
                else:
                    if not future.cancelled():
                        future.set_result(result)
            finally:
                self._queue.task_done()

    async def stop(self) -> None:
        """Run everything already queued, then stop the worker."""
        self._closed = True
        if self._task is None:
            return
        self._queue.put_nowait(None)
        await self._task
        self._task = None


class RecordStore:
    """Single-writer access to the calibration record table."""

    def __init__(self, database_path: Path, mode: str = "file"):
        if mode not in STORAGE_MODES:
            raise ValueError(f"Unknown storage mode: {mode}")
        self.database_path = Path(database_path)
        self.mode = mode
        self.scheduler: Optional[PersistenceScheduler] = (
            PersistenceScheduler(self.database_path) if mode == "snapshot" else None
        )
        self._engine: Optional[AsyncEngine] = None
        self._sessions: Optional[async_sessionmaker] = None
        self._writes = WriteQueue()

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    async def open(self) -> None:
        if self.is_open:
            return
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            if self.mode == "file":
                self._engine = create_file_engine(self.database_path)
            else:
                self._engine = create_memory_engine()
                await self._load_snapshot()

            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, sqlite3.Error, OSError) as e:
            logger.error(f"Failed to open record store at {self.database_path}: {e}")
            if self._engine is not None:
                await self._engine.dispose()
                self._engine = None
            raise StorageWriteError(f"could not open database: {e}") from e

        self._sessions = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False
        )
        self._writes = WriteQueue()
        self._writes.start()
        logger.info(f"Record store opened ({self.mode} mode) at {self.database_path}")

    async def close(self) -> None:
        """Finish queued writes, drain pending flushes and release the database."""
        if not self.is_open:
            return
        await self._writes.stop()
        if self.scheduler is not None:
            await self.scheduler.drain()
        await self._engine.dispose()
        self._engine = None
        self._sessions = None
        logger.info(f"Record store closed ({self.database_path})")

    # ------------------------------------------------------------------
    # snapshot engine plumbing
    # ------------------------------------------------------------------

    async def _driver_connection(self, conn) -> aiosqlite.Connection:
        raw = await conn.get_raw_connection()
        return raw.driver_connection

    async def _load_snapshot(self) -> None:
        if not self.database_path.exists():
            return
        async with self._engine.connect() as conn:
            target = await self._driver_connection(conn)
            async with aiosqlite.connect(self.database_path) as source:
                await source.backup(target)
        logger.info(f"Loaded snapshot from {self.database_path}")

    async def _capture_snapshot(self) -> bytes:
        """Copy the in-memory database into a serialized file image."""
        snapshot = sqlite3.connect(":memory:", check_same_thread=False)
        try:
            async with self._engine.connect() as conn:
                source = await self._driver_connection(conn)
                await source.backup(snapshot)
            return snapshot.serialize()
        finally:
            snapshot.close()

    # ------------------------------------------------------------------
    # execution paths
    # ------------------------------------------------------------------

    def _require_open(self) -> None:
        if not self.is_open:
            raise StorageWriteError("record store is not open")

    async def _write(self, work: Callable[[AsyncSession], Awaitable[Any]]) -> Any:
        self._require_open()

        async def operation() -> Tuple[Any, Optional[asyncio.Task]]:
            async with self._sessions() as session:
                result = await work(session)
            flush = None
            if self.scheduler is not None:
                flush = self.scheduler.schedule(await self._capture_snapshot())
            return result, flush

        try:
            result, flush = await self._writes.submit(operation)
        except StorageWriteError:
            raise
        except (SQLAlchemyError, sqlite3.Error, OSError) as e:
            logger.error(f"Record store write failed: {e}")
            raise StorageWriteError(f"database write failed: {e}") from e

        if flush is not None:
            # The in-memory commit already happened; a failed flush is logged by
            # the scheduler and the next flush rewrites the full state.
            await asyncio.wait({flush})
        return result

    async def _read(self, work: Callable[[AsyncSession], Awaitable[Any]]) -> Any:
        self._require_open()

        async def operation() -> Any:
            async with self._sessions() as session:
                return await work(session)

        if self.mode == "snapshot":
            return await self._writes.submit(operation)
        return await operation()

    # ------------------------------------------------------------------
    # public operations
    # ------------------------------------------------------------------

    async def insert(self, new: NewRecord) -> CalibrationRecord:
        async def work(session: AsyncSession) -> CalibrationRecord:
            record = CalibrationRecord(
                machine=new.machine,
                volume=new.volume,
                date=new.date,
                status=new.status,
                image_ref=new.image_ref,
                timestamp=utcnow(),
                calibrator=new.calibrator,
                notes=new.notes,
            )
            session.add(record)
            await session.commit()
            return record

        record = await self._write(work)
        logger.debug(f"Inserted record {record.id} for {record.machine}")
        return record

    async def get_by_id(self, record_id: int) -> Optional[CalibrationRecord]:
        async def work(session: AsyncSession) -> Optional[CalibrationRecord]:
            return await session.get(CalibrationRecord, record_id)

        return await self._read(work)

    async def list_all(self, machine: Optional[str] = None) -> List[CalibrationRecord]:
        """Records newest calibration date first; equal dates by id descending."""
        async def work(session: AsyncSession) -> List[CalibrationRecord]:
            query = select(CalibrationRecord).order_by(
                CalibrationRecord.date.desc(),
                CalibrationRecord.id.desc()
            )
            if machine is not None:
                query = query.where(CalibrationRecord.machine == machine)
            result = await session.execute(query)
            return list(result.scalars().all())

        return await self._read(work)

    async def count(self) -> int:
        async def work(session: AsyncSession) -> int:
            result = await session.execute(select(func.count()).select_from(CalibrationRecord))
            return result.scalar_one()

        return await self._read(work)

    async def delete_by_id(self, record_id: int) -> Optional[CalibrationRecord]:
        """Delete one row and return its prior values (including ``image_ref``)."""
        async def work(session: AsyncSession) -> Optional[CalibrationRecord]:
            record = await session.get(CalibrationRecord, record_id)
            if record is None:
                return None
            await session.delete(record)
            await session.commit()
            return record

        return await self._write(work)

    async def delete_by_machine(self, machine: str) -> List[CalibrationRecord]:
        async def work(session: AsyncSession) -> List[CalibrationRecord]:
            result = await session.execute(
                select(CalibrationRecord)
                .where(CalibrationRecord.machine == machine)
                .order_by(CalibrationRecord.id)
            )
            records = list(result.scalars().all())
            if records:
                await session.execute(
                    delete(CalibrationRecord).where(CalibrationRecord.machine == machine)
                )
                await session.commit()
            return records

        return await self._write(work)

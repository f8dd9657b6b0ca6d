"""
Snapshot flush scheduling for the in-memory record store.

Every mutation of the in-memory database produces a full snapshot. The
scheduler writes snapshots to the backing file strictly one after another,
in the order they were scheduled. When several snapshots are waiting, the
next flush writes the newest one and the older ones are considered durable
once it lands.
"""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def write_snapshot_file(path: Path, data: bytes) -> None:
    """Atomically replace ``path`` with ``data`` (temp file, fsync, rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}-")
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


class PersistenceScheduler:
    """Single pending-flush chain for database snapshots."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._tail: Optional[asyncio.Task] = None
        self._scheduled_seq = 0
        self._written_seq = 0
        self._latest: Optional[bytes] = None
        self.flush_count = 0

    @property
    def pending(self) -> bool:
        return self._tail is not None and not self._tail.done()

    def schedule(self, snapshot: bytes) -> asyncio.Task:
        """Queue a snapshot behind every earlier one.

        Must be called in mutation order; the returned task completes once
        this snapshot (or a newer one) is on disk.
        """
        self._scheduled_seq += 1
        self._latest = snapshot
        previous = self._tail
        task = asyncio.get_running_loop().create_task(
            self._run_after(previous, self._scheduled_seq)
        )
        task.add_done_callback(self._log_failure)
        self._tail = task
        return task

    async def _run_after(self, previous: Optional[asyncio.Task], seq: int) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})

        if self._written_seq >= seq:
            return

        target_seq = self._scheduled_seq
        data = self._latest
        await asyncio.to_thread(write_snapshot_file, self.path, data)
        self._written_seq = target_seq
        self.flush_count += 1
        if target_seq == self._scheduled_seq:
            self._latest = None
        logger.debug(f"Flushed snapshot {target_seq} to {self.path} ({len(data)} bytes)")

    @staticmethod
    def _log_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Snapshot flush failed", exc_info=exc)

    async def drain(self) -> None:
        """Wait until the last scheduled flush has finished."""
        while self._tail is not None and not self._tail.done():
            await asyncio.wait({self._tail})
        if self._tail is not None:
            logger.info(f"Persistence scheduler drained ({self.flush_count} flushes)")

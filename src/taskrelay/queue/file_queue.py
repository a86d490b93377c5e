"""Durable FIFO queue persisted as a single JSON array."""

import logging
import random
import string
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, List, Optional, TypeVar

from pydantic import ValidationError

from ..core.task import Backend, QueuedTask, TaskSubmission
from ..errors import MalformedState
from ..utils.atomic_io import atomic_write_json, read_json
from .locks import FileLock

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_file_task_id() -> str:
    """``file-<epoch ms>-<9 base36 chars>``: unique without coordination."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"file-{int(time.time() * 1000)}-{suffix}"


class FileQueue:
    """
    File-based FIFO queue of task records.

    - The whole queue lives in one JSON array, head first
    - Every mutation is a full read-modify-write under an exclusive lock,
      so at most one mutator runs at a time even across processes
    - Writes go through temp file + rename
    - Corrupt content reads as an empty queue (logged at WARNING)

    Meant for low volume: every call rewrites the whole file.
    """

    def __init__(self, queue_path: Path, lock_timeout: float = 5.0, lock_retries: int = 3):
        self.queue_path = Path(queue_path)
        self.lock_timeout = lock_timeout
        self.lock_retries = lock_retries
        self.queue_path.parent.mkdir(parents=True, exist_ok=True)

    def _lock(self) -> FileLock:
        return FileLock(self.queue_path, timeout=self.lock_timeout, retries=self.lock_retries)

    def _read(self) -> List[dict]:
        try:
            return read_json(self.queue_path, list)
        except MalformedState as e:
            logger.warning(f"Malformed queue store, treating as empty: {e}")
            return []

    def _write(self, records: List[dict]) -> None:
        atomic_write_json(self.queue_path, records)

    def _mutate(self, fn: Callable[[List[dict]], T]) -> T:
        """Run ``fn`` on the stored records under the lock and persist the result."""
        with self._lock():
            records = self._read()
            result = fn(records)
            self._write(records)
            return result

    @staticmethod
    def _parse(raw: dict) -> Optional[QueuedTask]:
        try:
            return QueuedTask(**raw)
        except (ValidationError, TypeError) as e:
            logger.warning(f"Skipping malformed queue record {raw!r}: {e}")
            return None

    def enqueue(self, task: TaskSubmission) -> QueuedTask:
        """Append a task to the tail of the queue."""
        record = QueuedTask(
            id=task.id or generate_file_task_id(),
            name=task.name,
            payload=task.payload,
            queued_at=datetime.now(UTC),
            source_backend=Backend.FILE,
            attempt=task.attempt,
        )
        self._mutate(lambda records: records.append(record.model_dump(mode="json")))
        logger.info(f"[FileQueue] Task enqueued: {record.id}")
        return record

    def dequeue(self) -> Optional[QueuedTask]:
        """Remove and return the head of the queue, or None if empty."""

        def pop_head(records: List[dict]) -> Optional[QueuedTask]:
            while records:
                record = self._parse(records.pop(0))
                if record is not None:
                    return record
            return None

        record = self._mutate(pop_head)
        if record is not None:
            logger.info(f"[FileQueue] Task dequeued: {record.id}")
        return record

    def peek(self) -> Optional[QueuedTask]:
        """Return the head of the queue without removing it."""
        for raw in self._read():
            record = self._parse(raw)
            if record is not None:
                return record
        return None

    def remove(self, task_id: str) -> bool:
        """Delete a still-queued task by id. Returns True if it was found."""

        def drop(records: List[dict]) -> bool:
            for i, raw in enumerate(records):
                if isinstance(raw, dict) and raw.get("id") == task_id:
                    del records[i]
                    return True
            return False

        removed = self._mutate(drop)
        if removed:
            logger.info(f"[FileQueue] Task removed: {task_id}")
        return removed

    def list(self) -> List[QueuedTask]:
        """All queued records, head first."""
        records = (self._parse(raw) for raw in self._read())
        return [r for r in records if r is not None]

    def count(self) -> int:
        """Number of dequeueable records; malformed entries are not counted."""
        return len(self.list())

    def ensure_usable(self) -> None:
        """Raise OSError or LockContention if the store cannot be locked and written."""
        with self._lock():
            if not self.queue_path.exists():
                self._write([])

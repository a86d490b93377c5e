"""Queue facade that prefers the broker and falls back to the file queue."""

import logging
from datetime import UTC, datetime
from typing import Any, Optional, Union

from ..core.task import Backend, QueuedTask, TaskSubmission
from .broker import Broker, BrokerJob
from .file_queue import FileQueue

logger = logging.getLogger(__name__)

# How many waiting broker jobs a dequeue will try to claim before giving up
DEQUEUE_SCAN_SIZE = 10


class UnifiedQueue:
    """
    Single enqueue/dequeue/peek/stats API over the broker and the file queue.

    The broker is probed with a ping before every call and the answer is
    never remembered: a broker that died since the last call must not yield
    a false success, and one that came back must be used again right away.

    Broker and file queue are separate ordering domains. FIFO holds within
    each backend; a record enqueued during an outage is served from the file
    queue once the broker has nothing waiting.
    """

    def __init__(self, file_queue: FileQueue, broker: Optional[Broker] = None):
        self.file_queue = file_queue
        self.broker = broker

    def broker_available(self) -> bool:
        """Live reachability probe. Re-run on every call."""
        if self.broker is None:
            return False
        try:
            return self.broker.ping()
        except Exception as e:
            logger.debug(f"[Queue] Broker probe raised: {e}")
            return False

    @staticmethod
    def _coerce(task: Union[TaskSubmission, dict[str, Any]]) -> TaskSubmission:
        if isinstance(task, TaskSubmission):
            return task
        return TaskSubmission(**task)

    @staticmethod
    def _from_broker(job: BrokerJob) -> QueuedTask:
        data = job.data
        queued_at = data.get("queued_at")
        return QueuedTask(
            id=job.id,
            name=job.name,
            payload=data.get("payload"),
            queued_at=queued_at or datetime.now(UTC),
            source_backend=Backend.BROKER,
            attempt=data.get("attempt", 0),
        )

    def enqueue(self, task: Union[TaskSubmission, dict[str, Any]]) -> QueuedTask:
        """Enqueue on the broker when reachable, else on the file queue."""
        submission = self._coerce(task)

        if self.broker_available():
            try:
                queued_at = datetime.now(UTC)
                job_id = self.broker.add_job(
                    submission.name,
                    {
                        "payload": submission.payload,
                        "queued_at": queued_at.isoformat(),
                        "attempt": submission.attempt,
                    },
                    job_id=submission.id,
                )
                logger.info(f"[Queue] Task enqueued (broker): {job_id}")
                return QueuedTask(
                    id=job_id,
                    name=submission.name,
                    payload=submission.payload,
                    queued_at=queued_at,
                    source_backend=Backend.BROKER,
                    attempt=submission.attempt,
                )
            except Exception as e:
                logger.warning(f"[Queue] Broker enqueue failed: {e}")

        logger.info("[Queue] Using file queue fallback")
        return self.file_queue.enqueue(submission)

    def dequeue(self) -> Optional[QueuedTask]:
        """Remove and return the next record from the broker, else the file queue."""
        if self.broker_available():
            try:
                for job in self.broker.list_waiting(0, DEQUEUE_SCAN_SIZE - 1):
                    if self.broker.remove_job(job.id):
                        logger.info(f"[Queue] Task dequeued (broker): {job.id}")
                        return self._from_broker(job)
                    logger.debug(f"[Queue] Job {job.id} claimed by another worker")
            except Exception as e:
                logger.warning(f"[Queue] Broker dequeue failed: {e}")

        return self.file_queue.dequeue()

    def peek(self) -> Optional[QueuedTask]:
        """Return the next record without removing it."""
        if self.broker_available():
            try:
                jobs = self.broker.list_waiting(0, 0)
                if jobs:
                    return self._from_broker(jobs[0])
            except Exception as e:
                logger.warning(f"[Queue] Broker peek failed: {e}")

        return self.file_queue.peek()

    def remove(self, task_id: str) -> bool:
        """Cancel a task that is still queued on either backend."""
        if self.broker_available():
            try:
                if self.broker.remove_job(task_id):
                    logger.info(f"[Queue] Task removed (broker): {task_id}")
                    return True
            except Exception as e:
                logger.warning(f"[Queue] Broker remove failed: {e}")

        return self.file_queue.remove(task_id)

    def list_queued(self) -> list[QueuedTask]:
        """Every waiting record, broker first then file queue."""
        records: list[QueuedTask] = []
        if self.broker_available():
            try:
                records.extend(self._from_broker(job) for job in self.broker.list_waiting())
            except Exception as e:
                logger.warning(f"[Queue] Broker listing failed: {e}")
        records.extend(self.file_queue.list())
        return records

    def stats(self) -> dict[str, Any]:
        stats = {
            "broker": {"available": False, "waiting_count": 0},
            "file": {"waiting_count": 0},
        }

        available = self.broker_available()
        stats["broker"]["available"] = available
        if available:
            try:
                stats["broker"]["waiting_count"] = self.broker.waiting_count()
            except Exception as e:
                logger.warning(f"[Queue] Broker stats failed: {e}")

        stats["file"]["waiting_count"] = self.file_queue.count()
        return stats

"""Task models shared by the queue backends, tracker and state store."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class Backend(str, Enum):
    """Queue backend that served a record."""
    BROKER = "broker"
    FILE = "file"


class TrackedStatus(str, Enum):
    """Execution status of a tracked task."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TrackedStatus.COMPLETED, TrackedStatus.FAILED)


class HookEvent(str, Enum):
    """Lifecycle events a hook can subscribe to."""
    START = "start"
    PROGRESS = "progress"
    COMPLETE = "complete"
    FAIL = "fail"
    RETRY = "retry"


class TaskSubmission(BaseModel):
    """What a producer hands to ``enqueue``.

    ``id`` and ``attempt`` are only set when the worker re-queues a retry, so
    the task keeps its identity across attempts.
    """

    name: str = "default"
    payload: Any = None
    id: Optional[str] = None
    attempt: int = 0


class QueuedTask(BaseModel):
    """A task record as stored in either queue backend."""

    model_config = ConfigDict(use_enum_values=True)

    id: str
    name: str
    payload: Any = None
    queued_at: datetime
    source_backend: Backend
    attempt: int = 0

    @field_serializer("queued_at")
    def serialize_datetime(self, v: datetime) -> str:
        return v.isoformat()

    def to_submission(self, attempt: Optional[int] = None) -> TaskSubmission:
        """Build the submission used to re-queue this record."""
        return TaskSubmission(
            name=self.name,
            payload=self.payload,
            id=self.id,
            attempt=self.attempt if attempt is None else attempt,
        )


class LogEntry(BaseModel):
    """One structured entry in a tracked task's log."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    level: str
    message: str
    meta: dict[str, Any] = Field(default_factory=dict)

    @field_serializer("timestamp")
    def serialize_datetime(self, v: datetime) -> str:
        return v.isoformat()


class TrackedTask(BaseModel):
    """In-memory execution record for a task that has been picked up."""

    model_config = ConfigDict(use_enum_values=True)

    task_id: str
    data: Any = None
    started_at: datetime
    progress: int = Field(default=0, ge=0, le=100)
    logs: list[LogEntry] = Field(default_factory=list)
    status: TrackedStatus = TrackedStatus.RUNNING
    retry_attempt: int = 0

    result: Any = None
    error: Optional[str] = None
    duration: Optional[float] = None  # seconds
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    @field_serializer("started_at", "completed_at", "failed_at")
    def serialize_datetime(self, v: Optional[datetime]) -> Optional[str]:
        return v.isoformat() if v else None

    @property
    def is_terminal(self) -> bool:
        return TrackedStatus(self.status).is_terminal

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe copy of this record for persistence."""
        return self.model_dump(mode="json")

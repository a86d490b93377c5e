"""In-memory execution records for tasks that are being worked on."""

import logging
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional

from pydantic_core import to_jsonable_python

from ..errors import LockContention
from .hooks import HookDispatcher
from .state import StateManager
from .task import HookEvent, LogEntry, TrackedStatus, TrackedTask

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    """JSON-safe copy of ``value``; types JSON cannot express are stringified."""
    return to_jsonable_python(value, fallback=str)


class RuntimeTracker:
    """
    Source of truth for a task while it runs.

    Mutators (``start``, ``resume``, ``log``, ``progress``, ``retry``,
    ``complete``, ``fail``) fire the matching hook. Terminal transitions
    happen at most once per task; the snapshot is copied into the state
    store before the ``complete``/``fail`` hook fires, and stays there after
    the in-memory record is evicted.

    Calls for an unknown task id are ignored. Not safe for concurrent
    mutation of the same task id; the worker runs one attempt at a time.
    """

    def __init__(
        self,
        state: StateManager,
        hooks: HookDispatcher,
        max_log_entries: Optional[int] = 500,
    ):
        self.state = state
        self.hooks = hooks
        self.max_log_entries = max_log_entries
        self._tracking: Dict[str, TrackedTask] = {}

    def start(self, task_id: str, data: Any = None, attempt: int = 1) -> TrackedTask:
        tracked = TrackedTask(
            task_id=task_id,
            data=_jsonable(data),
            started_at=datetime.now(UTC),
            retry_attempt=attempt,
        )
        self._tracking[task_id] = tracked
        self.log(task_id, "TASK_START", "Task started", attempt=attempt)
        self.hooks.dispatch(HookEvent.START, task_id, data)
        return tracked

    def resume(self, task_id: str, data: Any = None, attempt: int = 1) -> TrackedTask:
        """Begin another attempt of a task already being tracked.

        Falls back to ``start`` when this process has no record of the task,
        e.g. a retry picked up by a different worker.
        """
        tracked = self._tracking.get(task_id)
        if tracked is None or tracked.is_terminal:
            return self.start(task_id, data, attempt=attempt)

        tracked.retry_attempt = attempt
        tracked.progress = 0
        self.log(task_id, "ATTEMPT", f"Attempt #{attempt}", attempt=attempt)
        return tracked

    def log(self, task_id: str, level: str, message: str, **meta: Any) -> None:
        tracked = self._tracking.get(task_id)
        if tracked is None:
            return
        tracked.logs.append(LogEntry(level=level, message=message, meta=_jsonable(meta)))
        if self.max_log_entries and len(tracked.logs) > self.max_log_entries:
            del tracked.logs[: len(tracked.logs) - self.max_log_entries]
        logger.debug(f"[Track:{task_id}] [{level}] {message}")

    def progress(self, task_id: str, percent: int, message: str = "") -> None:
        tracked = self._tracking.get(task_id)
        if tracked is None or tracked.is_terminal:
            return
        percent = max(0, min(100, int(percent)))
        tracked.progress = percent
        self.log(task_id, "PROGRESS", message, percent=percent)
        self.hooks.dispatch(HookEvent.PROGRESS, task_id, {"percent": percent, "message": message})

    def retry(self, task_id: str, attempt: int, error: str) -> None:
        tracked = self._tracking.get(task_id)
        if tracked is None or tracked.is_terminal:
            return
        tracked.retry_attempt = attempt
        tracked.error = error
        self.log(task_id, "RETRY", f"Retry #{attempt}", error=error)
        self.hooks.dispatch(HookEvent.RETRY, task_id, {"attempt": attempt, "error": error})

    def complete(self, task_id: str, result: Any = None) -> Optional[TrackedTask]:
        tracked = self._tracking.get(task_id)
        if tracked is None or tracked.is_terminal:
            return None
        # Stored and persisted as-is, so it must be JSON-safe before the record turns terminal
        result = _jsonable(result)
        now = datetime.now(UTC)
        tracked.status = TrackedStatus.COMPLETED
        tracked.completed_at = now
        tracked.progress = 100
        tracked.result = result
        tracked.error = None
        tracked.duration = (now - tracked.started_at).total_seconds()
        self.log(task_id, "COMPLETE", "Task completed", result=result)

        self._persist(tracked)
        self.hooks.dispatch(HookEvent.COMPLETE, task_id, result)
        return tracked

    def fail(self, task_id: str, error: str, attempt: Optional[int] = None) -> Optional[TrackedTask]:
        tracked = self._tracking.get(task_id)
        if tracked is None or tracked.is_terminal:
            return None
        now = datetime.now(UTC)
        tracked.status = TrackedStatus.FAILED
        tracked.failed_at = now
        tracked.error = error
        if attempt is not None:
            tracked.retry_attempt = attempt
        tracked.duration = (now - tracked.started_at).total_seconds()
        self.log(task_id, "ERROR", "Task failed", error=error)

        self._persist(tracked)
        self.hooks.dispatch(HookEvent.FAIL, task_id, {"error": error})
        return tracked

    def _persist(self, tracked: TrackedTask) -> None:
        try:
            self.state.set(tracked.task_id, tracked.snapshot())
        except (LockContention, OSError) as e:
            # The in-memory record stays authoritative until the next process restart
            logger.error(f"Could not persist terminal state for {tracked.task_id}: {e}", exc_info=True)

    def get(self, task_id: str) -> Optional[TrackedTask]:
        return self._tracking.get(task_id)

    def list(self) -> List[TrackedTask]:
        return list(self._tracking.values())

    def evict(self, task_id: str) -> bool:
        """Drop a terminal record from memory. Running records are kept."""
        tracked = self._tracking.get(task_id)
        if tracked is None or not tracked.is_terminal:
            return False
        del self._tracking[task_id]
        return True

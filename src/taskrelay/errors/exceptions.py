"""Exceptions raised across the queue, worker and state layers."""

from pathlib import Path
from typing import Optional


class TaskRelayError(Exception):
    """Base class for all task relay errors."""


class TransportUnavailable(TaskRelayError):
    """Broker could not be reached or rejected the operation.

    Never surfaced past the unified queue: it triggers the file-queue fallback.
    """


class LockContention(TaskRelayError):
    """Exclusive file lock could not be acquired within the retry budget."""

    def __init__(self, lock_path: Path, attempts: int, timeout: float):
        self.lock_path = lock_path
        self.attempts = attempts
        self.timeout = timeout
        super().__init__(
            f"Could not lock {lock_path} after {attempts} attempts "
            f"({timeout}s timeout each)"
        )


class MalformedState(TaskRelayError):
    """A backing store held unreadable or corrupt JSON."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Malformed store {path}: {reason}")


class TaskExecutionError(TaskRelayError):
    """A job step raised while executing."""

    def __init__(self, task_id: str, step: Optional[str], cause: BaseException):
        self.task_id = task_id
        self.step = step
        self.cause = cause
        where = f" in step '{step}'" if step else ""
        super().__init__(f"Task {task_id} failed{where}: {cause}")


class StepTimeout(TaskExecutionError):
    """A job step ran past the configured step timeout."""

    def __init__(self, task_id: str, step: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            task_id, step, TimeoutError(f"step exceeded {timeout}s timeout")
        )


class UnknownJobKind(TaskRelayError):
    """A job name has no registered definition."""

    def __init__(self, name: str, known: list[str]):
        self.name = name
        self.known = known
        super().__init__(
            f"Unknown job kind '{name}'. Registered kinds: {', '.join(known) or 'none'}"
        )


class UnknownHookEvent(TaskRelayError):
    """Hook registration named an event outside the lifecycle set."""

    def __init__(self, event: str, known: list[str]):
        self.event = event
        super().__init__(f"Unknown hook event '{event}'. Expected one of: {', '.join(known)}")

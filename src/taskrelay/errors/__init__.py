"""Error taxonomy for the task relay."""

from .exceptions import (
    LockContention,
    MalformedState,
    StepTimeout,
    TaskExecutionError,
    TaskRelayError,
    TransportUnavailable,
    UnknownHookEvent,
    UnknownJobKind,
)

__all__ = [
    "LockContention",
    "MalformedState",
    "StepTimeout",
    "TaskExecutionError",
    "TaskRelayError",
    "TransportUnavailable",
    "UnknownHookEvent",
    "UnknownJobKind",
]

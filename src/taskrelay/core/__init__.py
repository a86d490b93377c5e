"""Core models and configuration."""

from .task import Backend, HookEvent, QueuedTask, TaskSubmission, TrackedStatus, TrackedTask
from .config import TaskRelayConfig, load_config

__all__ = [
    "Backend",
    "HookEvent",
    "QueuedTask",
    "TaskSubmission",
    "TrackedStatus",
    "TrackedTask",
    "TaskRelayConfig",
    "load_config",
]

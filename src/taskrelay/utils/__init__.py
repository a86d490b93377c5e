"""Shared utility functions for the task relay."""

from .atomic_io import atomic_write_json, atomic_write_text, read_json
from .rich_logging import ContextLogger, WorkerLogFormatter, setup_rich_logging

__all__ = [
    # Atomic I/O
    "atomic_write_json",
    "atomic_write_text",
    "read_json",
    # Logging
    "ContextLogger",
    "WorkerLogFormatter",
    "setup_rich_logging",
]

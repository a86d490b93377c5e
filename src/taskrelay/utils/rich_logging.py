"""Worker logging with task context and readable formatting."""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional


_ANSI_RESET = "\033[0m"
_LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}


class WorkerLogFormatter(logging.Formatter):
    """One line per record: time, level, worker id, then task id and attempt when set."""

    def __init__(self, worker_id: str, use_colors: bool = True):
        super().__init__()
        self.worker_id = worker_id
        self.use_colors = use_colors

    def _level(self, levelname: str) -> str:
        padded = f"{levelname:8s}"
        if not self.use_colors or levelname not in _LEVEL_COLORS:
            return padded
        return f"{_LEVEL_COLORS[levelname]}{padded}{_ANSI_RESET}"

    def format(self, record: logging.LogRecord) -> str:
        parts = [
            datetime.fromtimestamp(record.created).strftime("%H:%M:%S"),
            self._level(record.levelname),
            f"[{self.worker_id}]",
        ]
        task_id = getattr(record, "task_id", None)
        if task_id:
            parts.append(f"[{task_id}]")
        attempt = getattr(record, "attempt", None)
        if attempt is not None:
            parts.append(f"[attempt {attempt}]")
        parts.append(record.getMessage())

        message = " ".join(parts)
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


class ContextLogger(logging.LoggerAdapter):
    """Adapter that stamps the current task id and attempt onto every record."""

    def __init__(self, logger: logging.Logger, worker_id: str):
        super().__init__(logger, {})
        self.worker_id = worker_id
        self.current_task_id: Optional[str] = None
        self.current_attempt: Optional[int] = None

    def set_task_context(self, task_id: Optional[str] = None, attempt: Optional[int] = None):
        if task_id:
            self.current_task_id = task_id
        if attempt is not None:
            self.current_attempt = attempt

    def clear_context(self):
        self.current_task_id = None
        self.current_attempt = None

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})

        if self.current_task_id:
            extra["task_id"] = self.current_task_id
        if self.current_attempt is not None:
            extra["attempt"] = self.current_attempt

        kwargs["extra"] = extra
        return msg, kwargs

    def task_started(self, task_id: str, name: str, attempt: int):
        """Log task pickup with context."""
        self.set_task_context(task_id=task_id, attempt=attempt)
        self.info(f"📋 Processing task: {name}")

    def task_completed(self, duration_seconds: float):
        self.info(f"✅ Task completed in {duration_seconds:.1f}s")
        self.clear_context()

    def task_retrying(self, error: str, delay: float):
        self.warning(f"🔄 Attempt failed, retrying in {delay:.1f}s: {error}")
        self.clear_context()

    def task_failed(self, error: str):
        self.error(f"❌ Task failed: {error}")
        self.clear_context()


def setup_rich_logging(
    worker_id: str,
    log_dir: Optional[Path] = None,
    log_level: str = "INFO",
    use_file: bool = True,
    use_json: bool = False,
) -> ContextLogger:
    """
    Setup worker logging.

    Handlers go on the ``taskrelay`` package logger so every module logger
    inherits them.

    Args:
        worker_id: Worker identifier
        log_dir: Directory for ``<worker_id>.log`` (required when use_file)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        use_file: Write to log file
        use_json: Use JSON structured logging

    Returns:
        ContextLogger instance
    """
    package_logger = logging.getLogger("taskrelay")
    package_logger.setLevel(getattr(logging, log_level.upper()))

    # Re-running setup must not leak file handles
    for handler in package_logger.handlers[:]:
        handler.close()
        package_logger.removeHandler(handler)

    if use_json:
        formatter = logging.Formatter(
            '{"timestamp":"%(asctime)s","worker":"%(worker)s","level":"%(levelname)s",'
            '"message":"%(message)s","module":"%(module)s","function":"%(funcName)s"}',
            defaults={"worker": worker_id},
        )
        plain_formatter = formatter
    else:
        use_colors = sys.stderr.isatty() if hasattr(sys.stderr, "isatty") else False
        formatter = WorkerLogFormatter(worker_id, use_colors=use_colors)
        # Plain formatter for files (no ANSI codes)
        plain_formatter = WorkerLogFormatter(worker_id, use_colors=False)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    if use_file and log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / f"{worker_id}.log")
        file_handler.setFormatter(plain_formatter)
        package_logger.addHandler(file_handler)

    # PID suffix keeps replicas sharing a worker id apart
    worker_logger = logging.getLogger(f"taskrelay.worker.{worker_id}-{os.getpid()}")
    return ContextLogger(worker_logger, worker_id)

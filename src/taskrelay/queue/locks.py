"""Exclusive advisory file locking for the JSON stores."""

import fcntl
import logging
import os
import time
from pathlib import Path
from typing import Optional, TextIO

from ..errors import LockContention

logger = logging.getLogger(__name__)


class FileLock:
    """
    Exclusive ``flock`` on a sidecar ``<store>.lock`` file.

    - Scoped to a single read-modify-write: acquire, mutate, release
    - Works across processes sharing the same store file
    - Released by the kernel if the holder dies, so no stale-lock cleanup
    - Non-blocking attempts are polled until ``timeout``; the whole wait is
      retried ``retries`` times before raising LockContention
    """

    POLL_INTERVAL = 0.05

    def __init__(self, store_path: Path, timeout: float = 5.0, retries: int = 3):
        self.store_path = Path(store_path)
        self.lock_path = self.store_path.with_suffix(f"{self.store_path.suffix}.lock")
        self.timeout = timeout
        self.retries = retries
        self._fd: Optional[TextIO] = None

    @property
    def acquired(self) -> bool:
        return self._fd is not None

    def acquire(self) -> bool:
        """
        Attempt to acquire the lock within one timeout window.

        Returns True if lock acquired, False otherwise.
        """
        if self._fd is not None:
            return True

        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = open(self.lock_path, "a")
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                self._fd = fd
                logger.debug(f"Acquired lock {self.lock_path} (PID: {os.getpid()})")
                return True
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    fd.close()
                    logger.debug(f"Lock {self.lock_path} is held by another process")
                    return False
                time.sleep(self.POLL_INTERVAL)

    def acquire_or_raise(self) -> None:
        """Acquire the lock, retrying up to ``retries`` windows."""
        for attempt in range(1, self.retries + 1):
            if self.acquire():
                return
            logger.warning(
                f"Lock contention on {self.lock_path} (attempt {attempt}/{self.retries})"
            )
        raise LockContention(self.lock_path, self.retries, self.timeout)

    def release(self) -> None:
        """Release the lock."""
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            self._fd.close()
            self._fd = None

    def __enter__(self):
        self.acquire_or_raise()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False

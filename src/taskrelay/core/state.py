"""Persisted last-known status of every task, keyed by task id."""

import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import MalformedState
from ..queue.locks import FileLock
from ..utils.atomic_io import atomic_write_json, read_json
from .task import TrackedStatus

logger = logging.getLogger(__name__)

_TERMINAL = {s.value for s in TrackedStatus if s.is_terminal}
# The first terminal outcome wins; later writes only add other fields
_FROZEN_ONCE_TERMINAL = ("status", "result", "error", "completed_at", "failed_at")


class StateManager:
    """
    JSON-file store of task snapshots.

    Every ``set``/``delete`` re-reads the file, applies the change and
    rewrites the whole file under an exclusive lock. Reads are lock-free and
    may be slightly stale.

    A terminal outcome is sticky: a later ``set`` may add fields but never
    changes the status, result or error of a completed or failed task.
    """

    def __init__(self, state_path: Path, lock_timeout: float = 5.0, lock_retries: int = 3):
        self.state_path = Path(state_path)
        self.lock_timeout = lock_timeout
        self.lock_retries = lock_retries
        self.state_path.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> Dict[str, dict]:
        try:
            return read_json(self.state_path, dict)
        except MalformedState as e:
            logger.warning(f"Malformed state store, treating as empty: {e}")
            return {}

    def _lock(self) -> FileLock:
        return FileLock(self.state_path, timeout=self.lock_timeout, retries=self.lock_retries)

    def get(self, task_id: str) -> Optional[dict[str, Any]]:
        return self._load().get(task_id)

    def set(self, task_id: str, update: dict[str, Any]) -> dict[str, Any]:
        """Merge ``update`` into the stored snapshot and stamp ``updated_at``."""
        with self._lock():
            state = self._load()
            current = state.get(task_id, {})
            merged = {**current, **update, "task_id": task_id, "updated_at": time.time()}

            if current.get("status") in _TERMINAL:
                if update.get("status", current["status"]) != current["status"]:
                    logger.warning(
                        f"Ignoring status change for {task_id}: "
                        f"{current['status']} -> {update['status']}"
                    )
                for key in _FROZEN_ONCE_TERMINAL:
                    if key in current:
                        merged[key] = current[key]
                    else:
                        merged.pop(key, None)

            state[task_id] = merged
            atomic_write_json(self.state_path, state)
        return merged

    def delete(self, task_id: str) -> bool:
        with self._lock():
            state = self._load()
            if task_id not in state:
                return False
            del state[task_id]
            atomic_write_json(self.state_path, state)
        return True

    def list(self) -> List[dict[str, Any]]:
        return [{**snapshot, "task_id": task_id} for task_id, snapshot in self._load().items()]

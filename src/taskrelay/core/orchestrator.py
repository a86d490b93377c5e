"""Owns the queue, tracker, hooks and state for one relay instance."""

import logging
from typing import Any, Dict, List, Optional, Union

from ..errors import LockContention
from ..queue.broker import Broker, RedisBroker
from ..queue.file_queue import FileQueue
from ..queue.unified import UnifiedQueue
from ..safeguards.retry_handler import RetryHandler
from ..utils.rich_logging import ContextLogger
from .config import TaskRelayConfig
from .hooks import HookCallback, HookDispatcher, install_default_hooks
from .jobs import JobRegistry, default_registry
from .state import StateManager
from .task import HookEvent, QueuedTask, TaskSubmission
from .tracker import RuntimeTracker
from .worker import Worker

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Explicit container for everything a relay instance shares.

    Hook lists and the tracker map live here rather than at module level, so
    independent instances (e.g. one per test) never see each other's state.
    """

    def __init__(
        self,
        config: Optional[TaskRelayConfig] = None,
        broker: Optional[Broker] = None,
        registry: Optional[JobRegistry] = None,
    ):
        self.config = config or TaskRelayConfig()
        storage = self.config.storage

        if broker is None and self.config.broker.enabled:
            broker = RedisBroker(
                url=self.config.broker.url,
                queue_name=self.config.broker.queue_name,
                socket_timeout=self.config.broker.socket_timeout,
            )
        self.broker = broker

        self.file_queue = FileQueue(
            storage.queue_path,
            lock_timeout=storage.lock_timeout,
            lock_retries=storage.lock_retries,
        )
        self.queue = UnifiedQueue(self.file_queue, self.broker)
        self.state = StateManager(
            storage.state_path,
            lock_timeout=storage.lock_timeout,
            lock_retries=storage.lock_retries,
        )
        self.hooks = HookDispatcher()
        if self.config.tracker.default_hooks:
            install_default_hooks(self.hooks)
        self.tracker = RuntimeTracker(
            self.state,
            self.hooks,
            max_log_entries=self.config.tracker.max_log_entries,
        )
        self.registry = registry or default_registry()
        self.retry = RetryHandler(
            max_attempts=self.config.worker.max_attempts,
            initial_backoff=self.config.worker.backoff_initial,
            multiplier=self.config.worker.backoff_multiplier,
            max_backoff=self.config.worker.backoff_max,
        )

    # -- Producer / consumer API --

    def enqueue(self, task: Union[TaskSubmission, Dict[str, Any]]) -> QueuedTask:
        return self.queue.enqueue(task)

    def dequeue(self) -> Optional[QueuedTask]:
        return self.queue.dequeue()

    def peek(self) -> Optional[QueuedTask]:
        return self.queue.peek()

    def remove(self, task_id: str) -> bool:
        return self.queue.remove(task_id)

    def create_task(self, name: str, payload: Any = None) -> QueuedTask:
        """Validate ``payload`` against the job kind, then enqueue it.

        Raises UnknownJobKind or pydantic.ValidationError for bad input.
        """
        validated = self.registry.validate(name, payload)
        return self.queue.enqueue(TaskSubmission(name=name, payload=validated.model_dump(mode="json")))

    # -- Observability API --

    def stats(self) -> Dict[str, Any]:
        return self.queue.stats()

    def get_task_status(self, task_id: str) -> Optional[Dict[str, Any]]:
        """Runtime record first, then persisted snapshot, then the queues."""
        tracked = self.tracker.get(task_id)
        if tracked is not None:
            return tracked.snapshot()

        persisted = self.state.get(task_id)
        if persisted is not None:
            return persisted

        for record in self.queue.list_queued():
            if record.id == task_id:
                return {**record.model_dump(mode="json"), "task_id": task_id, "status": "queued"}
        return None

    def list_tasks(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "queued": [r.model_dump(mode="json") for r in self.queue.list_queued()],
            "runtime": [t.snapshot() for t in self.tracker.list()],
            "persisted": self.state.list(),
        }

    # -- Hooks --

    def register_hook(self, event: Union[HookEvent, str], callback: HookCallback) -> None:
        self.hooks.register(event, callback)

    # -- Worker --

    def create_worker(self, logger: Optional[ContextLogger] = None) -> Worker:
        return Worker(
            self.queue,
            self.tracker,
            self.registry,
            retry=self.retry,
            poll_interval=self.config.worker.poll_interval,
            step_timeout=self.config.worker.step_timeout,
            worker_id=self.config.worker_id,
            logger=logger,
        )

    def check_backends(self) -> bool:
        """True if at least one backend can serve requests."""
        if self.queue.broker_available():
            return True
        try:
            self.file_queue.ensure_usable()
        except (OSError, LockContention) as e:
            logger.error(f"File queue unusable at {self.file_queue.queue_path}: {e}")
            return False
        return True

    def close(self) -> None:
        if self.broker is not None:
            self.broker.close()

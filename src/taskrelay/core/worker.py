"""Worker loop: pulls one job at a time and drives it through its steps."""

import asyncio
import inspect
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, ValidationError

from ..errors import StepTimeout, TaskExecutionError, UnknownJobKind
from ..queue.unified import UnifiedQueue
from ..safeguards.retry_handler import RetryHandler
from ..utils.rich_logging import ContextLogger
from .jobs import JobDefinition, JobRegistry, JobStep
from .task import QueuedTask, TrackedTask
from .tracker import RuntimeTracker


class Worker:
    """
    Consumes the unified queue one job at a time.

    Per task: queued -> running -> completed | failed. A failed attempt is
    re-queued after its backoff until the retry budget is spent, then the
    task is terminally failed. Hooks, tracker logs and the state store are
    the only outputs.
    """

    def __init__(
        self,
        queue: UnifiedQueue,
        tracker: RuntimeTracker,
        registry: JobRegistry,
        retry: Optional[RetryHandler] = None,
        poll_interval: float = 1.0,
        step_timeout: Optional[float] = None,
        worker_id: str = "worker",
        logger: Optional[ContextLogger] = None,
    ):
        self.queue = queue
        self.tracker = tracker
        self.registry = registry
        self.retry = retry or RetryHandler()
        self.poll_interval = poll_interval
        self.step_timeout = step_timeout
        self.worker_id = worker_id
        self.logger = logger or ContextLogger(logging.getLogger(__name__), worker_id)
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run(self) -> None:
        """Main polling loop. Returns after ``stop()``."""
        self._running = True
        self.logger.info(f"🚀 Starting {self.worker_id}")

        while self._running:
            try:
                tracked = await self.run_once()
            except Exception as e:
                # A backing-store failure must not take the worker down
                self.logger.error(f"Unhandled error in worker loop: {e}", exc_info=True)
                self.logger.clear_context()
                tracked = None

            if tracked is None and self._running:
                await asyncio.sleep(self.poll_interval)

        self.logger.info(f"🛑 {self.worker_id} stopped")

    def stop(self) -> None:
        self._running = False

    async def run_once(self) -> Optional[TrackedTask]:
        """Process at most one job. Returns its tracked record, or None if idle."""
        record = self.queue.dequeue()
        if record is None:
            return None
        return await self.process(record)

    async def process(self, record: QueuedTask) -> TrackedTask:
        """Run one attempt of ``record`` and settle its outcome."""
        task_id = record.id
        attempt = record.attempt + 1
        self.logger.task_started(task_id, record.name, attempt)

        if attempt == 1:
            tracked = self.tracker.start(task_id, record.payload, attempt=attempt)
        else:
            tracked = self.tracker.resume(task_id, record.payload, attempt=attempt)

        try:
            definition = self.registry.get(record.name)
            payload = definition.validate(record.payload)
        except (UnknownJobKind, ValidationError) as e:
            # Malformed input never succeeds on retry
            self.logger.task_failed(f"rejected job: {e}")
            self.tracker.fail(task_id, str(e), attempt=attempt)
            return tracked

        try:
            result = await self._execute(task_id, definition, payload)
        except TaskExecutionError as e:
            await self._handle_failure(record, attempt, e)
            return tracked

        self.tracker.complete(task_id, result)
        self.logger.task_completed(tracked.duration or 0.0)
        return tracked

    async def _execute(self, task_id: str, definition: JobDefinition, payload: BaseModel) -> Dict[str, Any]:
        try:
            steps = definition.build_steps(payload)
        except Exception as e:
            raise TaskExecutionError(task_id, None, e) from e
        total = len(steps)
        results: Dict[str, Any] = {}

        for i, step in enumerate(steps):
            self.tracker.progress(task_id, round(i / total * 100), f"Step {i + 1}: {step.name}")
            try:
                results[step.name] = await self._run_step(task_id, step, payload)
            except StepTimeout:
                raise
            except Exception as e:
                raise TaskExecutionError(task_id, step.name, e) from e

        return {"success": True, "steps": results}

    async def _run_step(self, task_id: str, step: JobStep, payload: BaseModel) -> Any:
        threaded = not inspect.iscoroutinefunction(step.run)
        scope = asyncio.timeout(self.step_timeout)
        try:
            async with scope:
                if threaded:
                    # Sync steps run in a thread so the event loop (and the timeout) keep ticking
                    result = await asyncio.to_thread(step.run, payload)
                else:
                    result = await step.run(payload)
                if inspect.isawaitable(result):
                    result = await result
        except TimeoutError:
            # A TimeoutError raised by the step itself is an ordinary step failure
            if not scope.expired():
                raise
            if threaded:
                self.logger.warning(
                    f"Step '{step.name}' timed out; its thread cannot be cancelled and may still be running"
                )
            raise StepTimeout(task_id, step.name, self.step_timeout) from None
        return result

    async def _handle_failure(self, record: QueuedTask, attempt: int, error: TaskExecutionError) -> None:
        task_id = record.id
        message = str(error.cause)

        if not self.retry.should_retry(attempt):
            self.tracker.fail(task_id, message, attempt=attempt)
            self.logger.task_failed(f"{error} (after {attempt} attempts)")
            return

        delay = self.retry.calculate_backoff(attempt)
        self.tracker.retry(task_id, attempt, message)
        self.logger.task_retrying(str(error), delay)
        if delay > 0:
            await asyncio.sleep(delay)

        try:
            requeued = self.queue.enqueue(record.to_submission(attempt=attempt))
        except Exception as e:
            # Nothing holds the task any more, so settle it here
            self.logger.error(f"Re-queue of {task_id} failed: {e}", exc_info=True)
            self.tracker.fail(task_id, f"{message} (re-queue failed: {e})", attempt=attempt)
            return

        self.tracker.log(
            task_id,
            "REQUEUE",
            f"Re-queued for attempt #{attempt + 1}",
            backend=requeued.source_backend,
        )

"""Lifecycle hook registry and isolated dispatch."""

import logging
from typing import Any, Callable, Dict, List, Union

from ..errors import UnknownHookEvent
from .task import HookEvent

logger = logging.getLogger(__name__)

HookCallback = Callable[[str, Any], Any]


class HookDispatcher:
    """
    Ordered callbacks per lifecycle event.

    Callbacks run synchronously in registration order. One that raises is
    logged and skipped; the rest still run and the task keeps going.
    """

    def __init__(self):
        self._hooks: Dict[HookEvent, List[HookCallback]] = {event: [] for event in HookEvent}

    @staticmethod
    def _event(event: Union[HookEvent, str]) -> HookEvent:
        try:
            return HookEvent(event)
        except ValueError:
            raise UnknownHookEvent(str(event), [e.value for e in HookEvent]) from None

    def register(self, event: Union[HookEvent, str], callback: HookCallback) -> None:
        hook_event = self._event(event)
        self._hooks[hook_event].append(callback)
        logger.debug(f"[Hook] Registered: {hook_event.value} -> {getattr(callback, '__name__', callback)!r}")

    def callbacks(self, event: Union[HookEvent, str]) -> List[HookCallback]:
        return list(self._hooks[self._event(event)])

    def dispatch(self, event: Union[HookEvent, str], task_id: str, payload: Any = None) -> int:
        """Invoke every callback for ``event``. Returns how many raised."""
        hook_event = self._event(event)
        failures = 0
        for callback in list(self._hooks[hook_event]):
            try:
                callback(task_id, payload)
            except Exception as e:
                failures += 1
                logger.error(f"[Hook] {hook_event.value} callback error for {task_id}: {e}", exc_info=True)
        return failures


def install_default_hooks(dispatcher: HookDispatcher) -> None:
    """Log every lifecycle transition at INFO."""
    hook_logger = logging.getLogger("taskrelay.hooks")

    dispatcher.register(HookEvent.START, lambda task_id, data: hook_logger.info(f"📝 Task started: {task_id}"))
    dispatcher.register(
        HookEvent.PROGRESS,
        lambda task_id, p: hook_logger.info(f"⏳ Task progress: {task_id} - {p['percent']}% - {p['message']}"),
    )
    dispatcher.register(HookEvent.COMPLETE, lambda task_id, result: hook_logger.info(f"✅ Task completed: {task_id}"))
    dispatcher.register(HookEvent.FAIL, lambda task_id, p: hook_logger.info(f"❌ Task failed: {task_id} - {p['error']}"))
    dispatcher.register(
        HookEvent.RETRY,
        lambda task_id, p: hook_logger.info(f"🔄 Task retry: {task_id} - Attempt #{p['attempt']}"),
    )

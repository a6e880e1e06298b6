"""
Notification bus for pipeline events

Events: stage_started, stage_completed, exploit_discovered,
session_completed, session_failed. Delivery is fire-and-forget.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from .interfaces import Notifier


EVENT_TYPES = (
    "stage_started",
    "stage_completed",
    "exploit_discovered",
    "session_completed",
    "session_failed",
)

Subscriber = Callable[[str, Dict[str, Any]], Any]


class NotificationBus(Notifier):
    """
    Fans events out to subscribers

    Subscribers may be plain functions or coroutine functions; coroutines are
    scheduled on the running loop. A failing subscriber is logged and skipped.
    """

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._subscribers: List[tuple] = []
        self._pending: set = set()

    def subscribe(self, callback: Subscriber, event_types: Optional[List[str]] = None) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it"""
        entry = (callback, frozenset(event_types) if event_types else None)
        self._subscribers.append(entry)

        def unsubscribe():
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        for callback, event_filter in list(self._subscribers):
            if event_filter is not None and event_type not in event_filter:
                continue
            try:
                result = callback(event_type, payload)
                if asyncio.iscoroutine(result):
                    try:
                        loop = asyncio.get_running_loop()
                    except RuntimeError:
                        result.close()
                        raise
                    task = loop.create_task(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_delivered)
            except Exception as e:
                self.logger.warning(f"⚠️ Notification subscriber failed on {event_type}: {e}")

    def _on_delivered(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.warning(f"⚠️ Async notification subscriber failed: {task.exception()}")

    async def drain(self) -> None:
        """Wait for scheduled async deliveries"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

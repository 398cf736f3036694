"""
Notification Bus

Push channel for engine events. Consumers either pull from an
asyncio.Queue subscription or register a listener callback; the
status views stay available for callers that prefer polling.
"""

import time
import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    NEW_POOL_DETECTED = "new_pool_detected"
    SNIPE_EXECUTED = "snipe_executed"
    SNIPE_FAILED = "snipe_failed"
    MONITORING_STARTED = "monitoring_started"
    SNIPER_DETECTED = "sniper_detected"
    MONITOR_EXPIRED = "monitor_expired"
    MONITOR_ERROR = "monitor_error"
    AUTO_SELL_EXECUTED = "auto_sell_executed"
    SELL_FAILED = "sell_failed"
    EMERGENCY_STOP = "emergency_stop"


@dataclass(frozen=True)
class Notification:
    type: NotificationType
    asset_id: Optional[str]
    timestamp: float
    data: Dict[str, Any] = field(default_factory=dict)


Listener = Callable[[Notification], Any]


class NotificationBus:
    """
    Usage:
        bus = NotificationBus()
        queue = bus.subscribe()
        bus.add_listener(telegram.handle, {NotificationType.SNIPER_DETECTED})
        bus.publish(NotificationType.SNIPER_DETECTED, mint, trader=wallet)
    """

    def __init__(self, history_size: int = 200):
        self.history: deque = deque(maxlen=history_size)
        self._queues: List[asyncio.Queue] = []
        self._listeners: List[tuple] = []
        self._tasks: set = set()

    def subscribe(self, maxsize: int = 1000) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        if queue in self._queues:
            self._queues.remove(queue)

    def add_listener(self, listener: Listener, types: Optional[set] = None):
        self._listeners.append((listener, frozenset(types) if types else None))

    def publish(self, type: NotificationType, asset_id: Optional[str] = None, **data) -> Notification:
        notification = Notification(type=type, asset_id=asset_id, timestamp=time.time(), data=data)
        self.history.append(notification)

        for queue in self._queues:
            if queue.full():
                # Slow consumer: drop its oldest item
                queue.get_nowait()
            queue.put_nowait(notification)

        for listener, types in self._listeners:
            if types is not None and type not in types:
                continue
            self._dispatch(listener, notification)

        return notification

    def _dispatch(self, listener: Listener, notification: Notification):
        try:
            result = listener(notification)
        except Exception:
            logger.exception(f"❌ Notification listener failed on {notification.type.value}")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_listener_done)

    def _on_listener_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"❌ Async notification listener failed: {error}")

    async def drain(self):
        """Wait for in-flight async listeners."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def recent(self, type: Optional[NotificationType] = None, asset_id: Optional[str] = None) -> List[Notification]:
        return [
            n for n in self.history
            if (type is None or n.type == type) and (asset_id is None or n.asset_id == asset_id)
        ]

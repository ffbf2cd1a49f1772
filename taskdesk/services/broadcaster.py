"""
In-process publish/subscribe fan-out for live task events.

Each connected client owns a bounded queue. ``emit`` never awaits: it puts
the message on every subscriber queue and drops it for subscribers whose
queue is full.
"""

import asyncio
import logging
from typing import Any, Dict, Set

logger = logging.getLogger(__name__)


class Broadcaster:
    """
    Usage:
        broadcaster = Broadcaster()
        queue = broadcaster.subscribe()
        broadcaster.emit("task:created", {"task": {...}})
        message = await queue.get()   # {"event": "task:created", "data": {...}}
        broadcaster.unsubscribe(queue)
    """

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: Set[asyncio.Queue] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.add(queue)
        logger.info(f"Subscriber connected ({len(self._subscribers)} total)")
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)
        logger.info(f"Subscriber disconnected ({len(self._subscribers)} total)")

    def emit(self, event: str, payload: Dict[str, Any]) -> int:
        """Publish ``payload`` under ``event``. Returns how many queues took it."""
        message = {"event": event, "data": payload}
        delivered = 0
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Subscriber queue full, dropping {event}")
        logger.debug(f"Emitted {event} to {delivered} subscriber(s)")
        return delivered

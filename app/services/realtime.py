"""
In-process realtime event bus for chat messages.

Subscribers register a room filter plus insert/delete callbacks and receive
row-level change events. Delivery is at-least-once from the subscriber's
point of view: a message can arrive through the bulk fetch and again as a
live event, so consumers must deduplicate by id.
"""

import logging
import threading
import uuid
from typing import Callable, Dict, Optional, Tuple

from app.models.message import MessageRead

logger = logging.getLogger(__name__)

Callback = Callable[[MessageRead], None]


class RoomEventBus:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: Dict[str, Tuple[Optional[str], Callback, Callback]] = {}

    def subscribe(self, room_id: Optional[str], on_insert: Callback, on_delete: Callback) -> str:
        """room_id=None receives events for every room."""
        handle = uuid.uuid4().hex
        with self._lock:
            self._subscriptions[handle] = (room_id, on_insert, on_delete)

        logger.debug("Subscription %s opened for room %s", handle, room_id)
        return handle

    def unsubscribe(self, handle: Optional[str]) -> None:
        # unknown or repeated handles are fine
        with self._lock:
            removed = self._subscriptions.pop(handle, None) if handle else None

        if removed:
            logger.debug("Subscription %s closed", handle)

    def subscriber_count(self, room_id: Optional[str] = None) -> int:
        with self._lock:
            return sum(1 for room, _, _ in self._subscriptions.values() if room_id is None or room == room_id)

    def publish_insert(self, message: MessageRead) -> None:
        self._publish(message, 1)

    def publish_delete(self, message: MessageRead) -> None:
        self._publish(message, 2)

    def _publish(self, message: MessageRead, slot: int) -> None:
        with self._lock:
            targets = [
                sub[slot]
                for sub in self._subscriptions.values()
                if sub[0] is None or sub[0] == message.room_id
            ]

        for callback in targets:
            try:
                callback(message)
            except Exception:
                # one broken subscriber must not starve the others
                logger.exception("Subscriber failed for message %s", message.id)


bus = RoomEventBus()


def get_event_bus() -> RoomEventBus:
    return bus

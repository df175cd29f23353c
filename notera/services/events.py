import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Subscriber(Protocol):
    async def send_json(self, data: Any) -> None: ...


class LessonEventHub:
    """In-process registry of live subscribers, keyed by class id.

    Lesson writes publish here; every WebSocket watching the lesson's class
    receives the message.  A subscriber whose send fails is dropped.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscriber]] = {}

    def register(self, class_id: str, subscriber: Subscriber) -> None:
        self._subscribers.setdefault(class_id, []).append(subscriber)

    def unregister(self, class_id: str, subscriber: Subscriber) -> None:
        subscribers = self._subscribers.get(class_id, [])
        if subscriber in subscribers:
            subscribers.remove(subscriber)
        if not subscribers:
            self._subscribers.pop(class_id, None)

    def subscriber_count(self, class_id: str) -> int:
        return len(self._subscribers.get(class_id, []))

    async def publish(self, class_id: str, message: dict) -> None:
        for subscriber in list(self._subscribers.get(class_id, [])):
            try:
                await subscriber.send_json(message)
            except Exception as e:
                logger.info("Dropping subscriber for class %s: %s", class_id, e)
                self.unregister(class_id, subscriber)

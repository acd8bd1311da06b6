"""
Record Event Bus

Fire-and-forget broadcast of record status deltas to subscribed observers.
"""

import logging
import threading
from typing import Callable, Dict, Optional
from uuid import uuid4

from .models import PhotoRecord, RecordEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[RecordEvent], None]


class EventBus:
    """
    Observer registry for record updates.

    publish() never raises: a failing subscriber is logged and skipped so
    the pipeline is never blocked by an observer.
    """

    def __init__(self):
        self._subscribers: Dict[str, Subscriber] = {}
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> str:
        """Register a callback. Returns a token for unsubscribe()."""
        token = str(uuid4())
        with self._lock:
            self._subscribers[token] = callback
        return token

    def unsubscribe(self, token: str) -> bool:
        """Remove a subscriber. Returns False if the token was unknown."""
        with self._lock:
            return self._subscribers.pop(token, None) is not None

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, record_id: str, delta: Optional[dict] = None) -> RecordEvent:
        """Deliver a delta for one record to every current subscriber."""
        event = RecordEvent(record_id=record_id, delta=dict(delta or {}))

        with self._lock:
            subscribers = list(self._subscribers.items())

        for token, callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Subscriber {token[:8]} failed on {record_id[:8]}: {e}")

        return event


def record_delta(record: PhotoRecord, *fields: str) -> dict:
    """Event payload with the given record fields plus the derived status."""
    data = record.model_dump(mode="json", include=set(fields))
    data["overall_status"] = record.overall_status.value
    return data

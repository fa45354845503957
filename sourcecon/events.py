"""
Event registry for SourceCon.

Listeners are registered explicitly per event:

    CONNECT     listener()
    DISCONNECT  listener()
    ERROR       listener(error)
    MESSAGE     listener(frame)      every decoded frame, matched or not
    AUTH        listener(error)      error is None on success
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)


class Event(Enum):
    """Observable engine events."""
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    ERROR = "error"
    MESSAGE = "message"
    AUTH = "auth"


Listener = Callable[..., None]


class EventBus:
    """Thread-safe listener registry."""

    def __init__(self):
        self._lock = threading.RLock()
        self._listeners: Dict[Event, List[Listener]] = {event: [] for event in Event}

    def subscribe(self, event: Event, listener: Listener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            A function that removes the listener again
        """
        event = Event(event)
        with self._lock:
            self._listeners[event].append(listener)

        def _unsubscribe() -> None:
            self.unsubscribe(event, listener)

        return _unsubscribe

    def unsubscribe(self, event: Event, listener: Listener) -> bool:
        """Remove a listener. Returns False if it was not registered."""
        event = Event(event)
        with self._lock:
            try:
                self._listeners[event].remove(listener)
                return True
            except ValueError:
                return False

    def clear(self) -> None:
        with self._lock:
            for listeners in self._listeners.values():
                listeners.clear()

    def listener_count(self, event: Event) -> int:
        with self._lock:
            return len(self._listeners[Event(event)])

    def emit(self, event: Event, *args) -> None:
        """Notify listeners; a failing listener does not stop the rest."""
        with self._lock:
            listeners = list(self._listeners[event])
        for listener in listeners:
            try:
                listener(*args)
            except Exception as e:
                logger.error(f"[EVENT] Listener error on {event.value}: {e}")

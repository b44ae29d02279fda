"""Callback registry shared by the connection manager and the sync client."""

import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class ListenerRegistry:
    """
    Named event listeners with '*' wildcard support.

    Listener errors are logged and never reach the emitter or other listeners.
    """

    def __init__(self):
        self._listeners: dict[str, list[Callable]] = {}

    def on(self, event_type: str, callback: Callable) -> Callable[[], None]:
        """
        Register an event listener.

        Args:
            event_type: Event name, or '*' for every event
            callback: Called with the event's positional arguments
                      (wildcard listeners also get the event name first)

        Returns:
            Unsubscribe function
        """
        self._listeners.setdefault(event_type, []).append(callback)

        def unsubscribe():
            callbacks = self._listeners.get(event_type)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def _emit(self, event_type: str, *args) -> None:
        for callback in list(self._listeners.get(event_type, ())):
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"Error in listener for {event_type}: {e}")

        for callback in list(self._listeners.get("*", ())):
            try:
                callback(event_type, *args)
            except Exception as e:
                logger.error(f"Error in wildcard listener: {e}")

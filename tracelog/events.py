"""
Invocation lifecycle events.

Host handlers announce the end of a function invocation with:

    from tracelog.events import ENDED, invocation_events

    await invocation_events.emit(ENDED)

Listeners may be plain functions or coroutine functions. A failing listener
is logged and does not stop the others.
"""

import inspect
import logging
from collections import defaultdict
from collections.abc import Callable

logger = logging.getLogger(__name__)

ENDED = "tracelog.ended"


class InvocationEvents:
    """Minimal listener registry keyed by event name."""

    def __init__(self):
        self._listeners: dict[str, list[Callable]] = defaultdict(list)

    def on(self, event: str, callback: Callable):
        """Register a listener."""
        self._listeners[event].append(callback)

    def off(self, event: str, callback: Callable):
        """Remove a listener; unknown listeners are ignored."""
        listeners = self._listeners.get(event, [])
        if callback in listeners:
            listeners.remove(callback)

    def listeners(self, event: str) -> list[Callable]:
        return list(self._listeners.get(event, []))

    async def emit(self, event: str):
        """
        Call every listener for event, awaiting coroutine results.

        Listeners that start background work and return None (like the
        end-of-invocation flush) are not waited for.
        """
        for callback in self.listeners(event):
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"Listener for {event} failed: {e}")

    def clear(self):
        self._listeners.clear()


invocation_events = InvocationEvents()

"""Lossy notification stream from the agent loop to an observer.

Single producer (the loop), best-effort consumer. emit() never blocks: when
the queue is full the event is dropped and counted. Nothing read from the
stream feeds back into the loop.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any

from dockerizer.core.models import AgentEvent, EventType

logger = logging.getLogger(__name__)

DEFAULT_MAX_EVENTS = 100


class EventStream:
    def __init__(self, maxsize: int = DEFAULT_MAX_EVENTS):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self._queue: queue.Queue[AgentEvent] = queue.Queue(maxsize=maxsize)
        self._dropped = 0
        self._lock = threading.Lock()

    def emit(self, event_type: EventType, message: str, data: Any = None) -> bool:
        """Try to enqueue an event. Returns False if it was dropped."""
        event = AgentEvent(type=event_type, message=message, data=data)
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            with self._lock:
                self._dropped += 1
            logger.debug(f"Event stream full, dropped {event_type.value} event")
            return False
        return True

    def get(self, timeout: float | None = None) -> AgentEvent | None:
        """Next event, or None if none arrives within `timeout`."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[AgentEvent]:
        """Remove and return every queued event without blocking."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    def __len__(self) -> int:
        return self._queue.qsize()

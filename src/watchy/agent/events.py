"""Forward tool events from a running turn to an observer without blocking it."""

from __future__ import annotations

import logging
import queue
import threading

from watchy.agent.messages import ToolResultEvent, ToolStartEvent

logger = logging.getLogger(__name__)

ToolEvent = ToolStartEvent | ToolResultEvent


class EventRelay:
    """Bounded queue between the turn thread and a renderer.

    ``put`` never blocks: when the observer falls behind, events are dropped
    and counted.
    """

    def __init__(self, maxsize: int = 256) -> None:
        self._queue: queue.Queue[ToolEvent] = queue.Queue(maxsize=maxsize)
        self._dropped = 0
        self._lock = threading.Lock()

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    def put(self, event: ToolEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            with self._lock:
                self._dropped += 1
            logger.debug("Event relay full; dropped %s event", event.tool)

    def on_tool_start(self, event: ToolStartEvent) -> None:
        self.put(event)

    def on_tool_result(self, event: ToolResultEvent) -> None:
        self.put(event)

    def get(self, timeout: float | None = None) -> ToolEvent | None:
        """Next event, or ``None`` if nothing arrives within ``timeout``."""

        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[ToolEvent]:
        events: list[ToolEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

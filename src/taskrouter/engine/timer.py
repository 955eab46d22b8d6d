"""Route timeout scheduling."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Protocol

from taskrouter.model.entities import RouterObjectId

logger = logging.getLogger(__name__)

TimeoutHandler = Callable[[RouterObjectId, int], object]


class TimeoutScheduler(Protocol):
    """Calls the bound handler for (task, route index) once the timeout elapses."""

    def bind(self, handler: TimeoutHandler) -> None: ...

    def schedule(self, task_id: RouterObjectId, route_index: int, delay: float) -> None: ...

    def cancel(self, task_id: RouterObjectId) -> None: ...


class RouteTimer:
    """
    ``threading.Timer`` based scheduler.

    At most one timer is pending per task; scheduling a new route entry
    replaces the previous one. The handler itself must ignore calls for a
    route the task has already left.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._timers: dict[RouterObjectId, tuple[int, threading.Timer]] = {}
        self._handler: TimeoutHandler | None = None

    def bind(self, handler: TimeoutHandler) -> None:
        self._handler = handler

    def schedule(self, task_id: RouterObjectId, route_index: int, delay: float) -> None:
        timer = threading.Timer(max(0.0, delay), self._fire, args=(task_id, route_index))
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(task_id, None)
            if previous is not None:
                previous[1].cancel()
            self._timers[task_id] = (route_index, timer)
        logger.debug("Task %s: route %d times out in %.1fs", task_id, route_index, delay)
        timer.start()

    def cancel(self, task_id: RouterObjectId) -> None:
        with self._lock:
            entry = self._timers.pop(task_id, None)
        if entry is not None:
            entry[1].cancel()

    def pending(self) -> dict[RouterObjectId, int]:
        with self._lock:
            return {task_id: index for task_id, (index, _) in self._timers.items()}

    def shutdown(self) -> None:
        with self._lock:
            entries = list(self._timers.values())
            self._timers.clear()
        for _, timer in entries:
            timer.cancel()

    def _fire(self, task_id: RouterObjectId, route_index: int) -> None:
        with self._lock:
            entry = self._timers.get(task_id)
            if entry is None or entry[0] != route_index:
                return
            del self._timers[task_id]
        if self._handler is None:
            logger.warning("Task %s: route timeout fired with no handler bound", task_id)
            return
        try:
            self._handler(task_id, route_index)
        except Exception:
            logger.exception("Task %s: route %d advance failed", task_id, route_index)

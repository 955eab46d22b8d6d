"""Task callback notification."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from taskrouter.model.entities import Agent, Task

logger = logging.getLogger(__name__)


class CallbackNotifier(Protocol):
    def task_assigned(self, task: Task, agent: Agent) -> None: ...

    def task_canceled(self, task: Task) -> None: ...


class LoggingCallbackNotifier:
    """Only logs events; used when no callback delivery is wanted."""

    def task_assigned(self, task: Task, agent: Agent) -> None:
        logger.info("Task %s assigned to agent %s", task, agent.ref)

    def task_canceled(self, task: Task) -> None:
        logger.info("Task %s canceled: routes exhausted", task)


class HttpCallbackNotifier:
    """POSTs task events as JSON to the task's ``callback_url``."""

    def __init__(self, timeout: float = 5.0, client: httpx.Client | None = None) -> None:
        self.client = client or httpx.Client(timeout=timeout)

    def task_assigned(self, task: Task, agent: Agent) -> None:
        self._post(task, {"event": "assigned", "task": task.to_dict(), "agent": agent.to_dict()})

    def task_canceled(self, task: Task) -> None:
        self._post(task, {"event": "canceled", "task": task.to_dict(), "agent": None})

    def _post(self, task: Task, payload: dict[str, Any]) -> None:
        if not task.callback_url:
            return
        try:
            response = self.client.post(task.callback_url, json=payload)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            # The assignment is already committed; delivery is best effort
            logger.error("Task %s: callback to %s failed: %s", task, task.callback_url, e)

    def close(self) -> None:
        self.client.close()

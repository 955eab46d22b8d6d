"""Tests for HTTP callback notification."""

from __future__ import annotations

import json

import httpx

from taskrouter.engine.callbacks import HttpCallbackNotifier
from taskrouter.model import Agent, AgentState, Task, TaskState


def _notifier(status: int, seen: list[httpx.Request]) -> HttpCallbackNotifier:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status)

    return HttpCallbackNotifier(client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_assigned_payload() -> None:
    seen: list[httpx.Request] = []
    notifier = _notifier(200, seen)
    task = Task(ref="t1", router_ref="r1", queue_ref="q1", state=TaskState.ASSIGNED,
                agent_ref="a1", callback_url="http://callback.test/done")
    agent = Agent(ref="a1", router_ref="r1", address="sip:a1", state=AgentState.BUSY)

    notifier.task_assigned(task, agent)

    assert len(seen) == 1
    assert str(seen[0].url) == "http://callback.test/done"
    payload = json.loads(seen[0].content)
    assert payload["event"] == "assigned"
    assert payload["task"]["ref"] == "t1"
    assert payload["agent"]["address"] == "sip:a1"
    notifier.close()


def test_canceled_payload() -> None:
    seen: list[httpx.Request] = []
    notifier = _notifier(204, seen)
    task = Task(ref="t1", router_ref="r1", queue_ref="q1", state=TaskState.CANCELED,
                callback_url="http://callback.test/done")

    notifier.task_canceled(task)

    payload = json.loads(seen[0].content)
    assert (payload["event"], payload["agent"]) == ("canceled", None)
    assert payload["task"]["state"] == "canceled"


def test_no_callback_url() -> None:
    seen: list[httpx.Request] = []
    _notifier(200, seen).task_canceled(Task(ref="t1", router_ref="r1", queue_ref="q1"))
    assert seen == []


def test_delivery_failure_is_logged() -> None:
    seen: list[httpx.Request] = []
    task = Task(ref="t1", router_ref="r1", queue_ref="q1", callback_url="http://callback.test/x")
    _notifier(500, seen).task_canceled(task)  # must not raise
    assert len(seen) == 1


def test_unparsable_url_is_logged() -> None:
    seen: list[httpx.Request] = []
    task = Task(ref="t1", router_ref="r1", queue_ref="q1", callback_url="http://[::1/cb")
    _notifier(200, seen).task_canceled(task)  # must not raise
    assert seen == []

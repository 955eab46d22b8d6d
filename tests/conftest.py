"""Shared fixtures: an application context with a hand-driven timer and clock."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest

from taskrouter.config import Settings
from taskrouter.context import AppContext
from taskrouter.engine.timer import TimeoutHandler
from taskrouter.model.entities import Agent, RouterObjectId, Task


class ManualTimer:
    """Records scheduled timeouts; tests fire them explicitly."""

    def __init__(self) -> None:
        self.handler: TimeoutHandler | None = None
        self.scheduled: dict[RouterObjectId, tuple[int, float]] = {}

    def bind(self, handler: TimeoutHandler) -> None:
        self.handler = handler

    def schedule(self, task_id: RouterObjectId, route_index: int, delay: float) -> None:
        self.scheduled[task_id] = (route_index, delay)

    def cancel(self, task_id: RouterObjectId) -> None:
        self.scheduled.pop(task_id, None)

    def fire(self, task_id: RouterObjectId) -> object:
        route_index, _ = self.scheduled.pop(task_id)
        assert self.handler is not None
        return self.handler(task_id, route_index)


class RecordingNotifier:
    def __init__(self) -> None:
        self.assigned: list[tuple[Task, Agent]] = []
        self.canceled: list[Task] = []

    def task_assigned(self, task: Task, agent: Agent) -> None:
        self.assigned.append((task, agent))

    def task_canceled(self, task: Task) -> None:
        self.canceled.append(task)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def timer() -> ManualTimer:
    return ManualTimer()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def app(
    tmp_path: Path, timer: ManualTimer, notifier: RecordingNotifier, clock: FakeClock
) -> Generator[AppContext, None, None]:
    ctx = AppContext(
        Settings(data_dir=tmp_path / "taskrouter"), notifier=notifier, timer=timer, clock=clock
    )
    yield ctx
    ctx.close()


@pytest.fixture
def router(app: AppContext) -> str:
    """A router named ``r1`` with queue ``q1`` accepting English speakers."""
    app.routers.replace("r1", name="Router 1")
    app.queues.create("r1", "lang==en", ref="q1")
    return "r1"

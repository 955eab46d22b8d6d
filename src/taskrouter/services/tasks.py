"""Task operations: submission, completion and removal."""

from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from collections.abc import Callable, Mapping
from typing import Any

import httpx

from taskrouter.engine.dispatcher import TaskDispatcher
from taskrouter.engine.plans import resolve
from taskrouter.errors import BadValueError, InvalidStateError
from taskrouter.model.attributes import AttributeGroup
from taskrouter.model.entities import Agent, Route, RouterObjectId, Task, TaskState
from taskrouter.storage.repositories import Repositories
from taskrouter.storage.transaction import TransactionManager

logger = logging.getLogger(__name__)


def check_callback_url(url: str) -> str:
    """Reject callback URLs that could never be delivered to."""
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as e:
        raise BadValueError(f"Invalid callback_url {url!r}: {e}") from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise BadValueError(f"callback_url must be an absolute http(s) URL, got {url!r}")
    return url


class TaskService:
    def __init__(
        self,
        tx: TransactionManager,
        repos: Repositories,
        dispatcher: TaskDispatcher,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.tx = tx
        self.repos = repos
        self.dispatcher = dispatcher
        self.clock = clock

    def create(
        self,
        router_ref: str,
        requirements: Mapping[str, Any] | None = None,
        queue_ref: str | None = None,
        plan_ref: str | None = None,
        callback_url: str | None = None,
        user_context: dict[str, Any] | None = None,
        ref: str | None = None,
    ) -> Task:
        """
        Submit a task either straight to ``queue_ref`` or through ``plan_ref``.

        The task waits on the first resolved route and is offered to the
        longest-ready agent of that queue right after commit.
        """
        task = self._new_task(
            RouterObjectId(ref or uuid.uuid4().hex, router_ref),
            requirements,
            queue_ref,
            plan_ref,
            callback_url,
            user_context,
        )
        self.tx.execute_void(lambda conn: self._insert(conn, task), router_ref=router_ref)
        return self._submitted(task)

    def replace(
        self,
        oid: RouterObjectId,
        requirements: Mapping[str, Any] | None = None,
        queue_ref: str | None = None,
        plan_ref: str | None = None,
        callback_url: str | None = None,
        user_context: dict[str, Any] | None = None,
    ) -> Task:
        """Create or replace the task under ``oid``; an assigned task cannot be replaced."""
        task = self._new_task(oid, requirements, queue_ref, plan_ref, callback_url, user_context)

        def _replace(conn: sqlite3.Connection) -> None:
            existing = self.repos.task.get_or_none(conn, oid)
            if existing is not None:
                if existing.state is TaskState.ASSIGNED:
                    raise InvalidStateError(f"Replacing assigned task {oid} not allowed")
                self.repos.task.delete(conn, existing)
            self._insert(conn, task)

        self.tx.execute_void(_replace, router_ref=oid.router_ref)
        self.dispatcher.timer.cancel(oid)
        return self._submitted(task)

    def get(self, oid: RouterObjectId) -> Task:
        with self.tx.db.connect() as conn:
            return self.repos.task.get(conn, oid)

    def list_for_router(self, router_ref: str) -> list[Task]:
        with self.tx.db.connect() as conn:
            self.repos.router.get(conn, router_ref)
            return self.repos.task.list_for_router(conn, router_ref)

    def update(
        self,
        oid: RouterObjectId,
        callback_url: str | None = None,
        user_context: dict[str, Any] | None = None,
    ) -> Task:
        def _update(conn: sqlite3.Connection) -> Task:
            task = self.repos.task.get(conn, oid)
            if callback_url is not None:
                task.callback_url = check_callback_url(callback_url)
            if user_context is not None:
                task.user_context = user_context
            self.repos.task.update(conn, task)
            return task

        return self.tx.execute(_update, router_ref=oid.router_ref)

    def delete(self, oid: RouterObjectId) -> None:
        def _delete(conn: sqlite3.Connection) -> None:
            task = self.repos.task.get(conn, oid)
            if task.state is TaskState.ASSIGNED:
                raise InvalidStateError(
                    f"Deleting task {oid} not allowed while assigned to agent {task.agent_ref}"
                )
            self.repos.task.delete(conn, task)

        self.tx.execute_void(_delete, router_ref=oid.router_ref)
        self.dispatcher.timer.cancel(oid)
        logger.info("Task %s deleted", oid)

    def complete(self, oid: RouterObjectId) -> Agent:
        """Finish an assigned task; returns the freed agent."""
        return self.dispatcher.complete_task(oid)

    def _new_task(
        self,
        oid: RouterObjectId,
        requirements: Mapping[str, Any] | None,
        queue_ref: str | None,
        plan_ref: str | None,
        callback_url: str | None,
        user_context: dict[str, Any] | None,
    ) -> Task:
        if (queue_ref is None) == (plan_ref is None):
            raise BadValueError("Exactly one of queue_ref or plan_ref is required")
        if callback_url is not None:
            check_callback_url(callback_url)
        return Task(
            ref=oid.ref,
            router_ref=oid.router_ref,
            requirements=AttributeGroup.from_dict(requirements),
            callback_url=callback_url,
            queue_ref=queue_ref or "",
            plan_ref=plan_ref,
            user_context=user_context,
        )

    def _insert(self, conn: sqlite3.Connection, task: Task) -> None:
        self.repos.router.get(conn, task.router_ref)
        if task.plan_ref is not None:
            plan = self.repos.plan.get(conn, RouterObjectId(task.plan_ref, task.router_ref))
            task.routes = resolve(plan, task.requirements)
        else:
            task.routes = [Route(queue_ref=task.queue_ref)]
        task.state = TaskState.WAITING
        task.agent_ref = None
        task.current_route = 0
        task.queue_ref = task.routes[0].queue_ref
        task.route_entered_at = self.clock()
        self.repos.queue.get(conn, RouterObjectId(task.queue_ref, task.router_ref))
        self.repos.task.insert(conn, task)
        logger.info("Task %s queued in %s", task, task.queue_ref)

    def _submitted(self, task: Task) -> Task:
        self.dispatcher.arm_timer(task)
        assignment = self.dispatcher.dispatch_task(task.object_id)
        return assignment.task if assignment else task

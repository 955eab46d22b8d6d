"""
Task Dispatcher

Assigns waiting tasks to ready agents. Every dispatch, route advance and
completion runs in one transaction holding the router lock, so a task is
assigned to at most one agent and an agent holds at most one task.

Scan order: an agent looks through its bound queues in queue creation order
and takes the oldest waiting task of the first non-empty queue. A task picks
the bound ready agent that has been ready the longest.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable

from taskrouter.engine.callbacks import CallbackNotifier
from taskrouter.engine.timer import TimeoutScheduler
from taskrouter.errors import InternalError, InvalidStateError
from taskrouter.model.entities import (
    Agent,
    AgentState,
    Assignment,
    RouterObjectId,
    Task,
    TaskState,
)
from taskrouter.storage.repositories import Repositories
from taskrouter.storage.transaction import TransactionManager

logger = logging.getLogger(__name__)


class TaskDispatcher:
    """Event-driven assignment of tasks to agents."""

    def __init__(
        self,
        tx: TransactionManager,
        repos: Repositories,
        timer: TimeoutScheduler,
        notifier: CallbackNotifier,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.tx = tx
        self.repos = repos
        self.timer = timer
        self.notifier = notifier
        self.clock = clock
        timer.bind(self.advance_route)

    def dispatch_agent(self, agent_id: RouterObjectId) -> Assignment | None:
        """Give a newly ready agent the oldest waiting task of its queues."""
        assignment: Assignment | None = None
        with self.tx.transaction(agent_id.router_ref) as conn:
            agent = self.repos.agent.get_or_none(conn, agent_id)
            if agent is None or agent.state is not AgentState.READY:
                logger.debug("Agent %s: not ready, skipping dispatch", agent_id)
                return None
            assert agent.id is not None
            for queue in self.repos.queue.bound_to_agent(conn, agent.id):
                assert queue.id is not None
                task = self.repos.task.oldest_waiting(conn, queue.id)
                if task is not None:
                    assignment = self._assign(conn, task, agent)
                    break

        if assignment is None:
            logger.debug("Agent %s: no waiting task", agent_id)
            return None
        self._assigned(assignment)
        return assignment

    def dispatch_task(self, task_id: RouterObjectId) -> Assignment | None:
        """Give a waiting task to the longest-ready agent of its current queue."""
        assignment: Assignment | None = None
        with self.tx.transaction(task_id.router_ref) as conn:
            task = self.repos.task.get_or_none(conn, task_id)
            if task is None or task.state is not TaskState.WAITING:
                logger.debug("Task %s: not waiting, skipping dispatch", task_id)
                return None
            queue = self.repos.queue.get(conn, RouterObjectId(task.queue_ref, task.router_ref))
            assert queue.id is not None
            agent = self.repos.agent.longest_ready(conn, queue.id)
            if agent is not None:
                assignment = self._assign(conn, task, agent)

        if assignment is None:
            logger.debug("Task %s: no ready agent in queue %s", task_id, task.queue_ref)
            return None
        self._assigned(assignment)
        return assignment

    def advance_route(self, task_id: RouterObjectId, route_index: int) -> Task | None:
        """
        Move an unserved task from route ``route_index`` to the next route.

        Calls for a task that was assigned, deleted or already moved on are
        ignored. When no route is left the task is canceled.
        """
        with self.tx.transaction(task_id.router_ref) as conn:
            task = self.repos.task.get_or_none(conn, task_id)
            if (
                task is None
                or task.state is not TaskState.WAITING
                or task.current_route != route_index
            ):
                logger.debug("Task %s: left route %d, ignoring timeout", task_id, route_index)
                return None

            next_index = self._next_route(conn, task, route_index + 1)
            if next_index is None:
                task.state = TaskState.CANCELED
                logger.info("Task %s: routes exhausted, canceling", task)
            else:
                task.current_route = next_index
                task.queue_ref = task.routes[next_index].queue_ref
                task.route_entered_at = self.clock()
                logger.info("Task %s: route %d timed out, moving to queue %s",
                            task, route_index, task.queue_ref)
            self.repos.task.update(conn, task)

        if task.state is TaskState.CANCELED:
            self.notifier.task_canceled(task)
        else:
            self.arm_timer(task)
            self.dispatch_task(task_id)
        return task

    def complete_task(self, task_id: RouterObjectId) -> Agent:
        """Finish an assigned task: destroy it and return its agent to ready."""
        with self.tx.transaction(task_id.router_ref) as conn:
            task = self.repos.task.get(conn, task_id)
            if task.state is not TaskState.ASSIGNED or task.agent_ref is None:
                raise InvalidStateError(f"Completing task in state {task.state} not allowed")
            agent = self.repos.agent.get(conn, RouterObjectId(task.agent_ref, task.router_ref))
            if agent.state is not AgentState.BUSY:
                raise InternalError(f"Agent {agent} holds task {task} but is {agent.state}")
            held = self.repos.task.assigned_to(conn, agent)
            if held != [task]:
                raise InternalError(f"Agent {agent} holds tasks {held}, expected only {task}")
            self.repos.task.delete(conn, task)
            agent.state = AgentState.READY
            agent.ready_since = self.clock()
            self.repos.agent.update(conn, agent)
            logger.info("Task %s completed by agent %s", task, agent.ref)

        self.dispatch_agent(agent.object_id)
        return agent

    def arm_timer(self, task: Task) -> None:
        """Schedule the timeout of the task's current route, if it has one."""
        route = task.current
        if route is None or route.timeout is None:
            return
        entered = task.route_entered_at if task.route_entered_at is not None else self.clock()
        remaining = route.timeout - (self.clock() - entered)
        self.timer.schedule(task.object_id, task.current_route, remaining)

    def _next_route(self, conn: sqlite3.Connection, task: Task, start: int) -> int | None:
        for index in range(start, len(task.routes)):
            queue_ref = task.routes[index].queue_ref
            if self.repos.queue.get_or_none(conn, RouterObjectId(queue_ref, task.router_ref)):
                return index
            logger.warning("Task %s: skipping route %d, queue %s no longer exists",
                           task, index, queue_ref)
        return None

    def _assign(self, conn: sqlite3.Connection, task: Task, agent: Agent) -> Assignment:
        if task.state is not TaskState.WAITING or agent.state is not AgentState.READY:
            raise InternalError(
                f"Cannot assign task {task} ({task.state}) to agent {agent} ({agent.state})"
            )
        task.state = TaskState.ASSIGNED
        task.agent_ref = agent.ref
        agent.state = AgentState.BUSY
        agent.ready_since = None
        self.repos.task.update(conn, task)
        self.repos.agent.update(conn, agent)
        logger.info("Task %s => Agent %s (queue %s)", task, agent.ref, task.queue_ref)
        return Assignment(task=task, agent=agent)

    def _assigned(self, assignment: Assignment) -> None:
        self.timer.cancel(assignment.task.object_id)
        self.notifier.task_assigned(assignment.task, assignment.agent)

"""Queue operations."""

from __future__ import annotations

import logging
import sqlite3
import uuid

from taskrouter.engine.bindings import BindingMaintainer
from taskrouter.engine.dispatcher import TaskDispatcher
from taskrouter.errors import InvalidStateError
from taskrouter.eval.parser import validate
from taskrouter.model.entities import AgentState, Queue, RouterObjectId
from taskrouter.storage.repositories import Repositories
from taskrouter.storage.transaction import TransactionManager

logger = logging.getLogger(__name__)


class QueueService:
    def __init__(
        self,
        tx: TransactionManager,
        repos: Repositories,
        bindings: BindingMaintainer,
        dispatcher: TaskDispatcher,
    ) -> None:
        self.tx = tx
        self.repos = repos
        self.bindings = bindings
        self.dispatcher = dispatcher

    def create(
        self,
        router_ref: str,
        predicate: str,
        description: str | None = None,
        ref: str | None = None,
    ) -> Queue:
        validate(predicate)
        queue = Queue(
            ref=ref or uuid.uuid4().hex,
            router_ref=router_ref,
            predicate=predicate,
            description=description,
        )
        self.tx.execute_void(lambda conn: self._insert(conn, queue), router_ref=router_ref)
        return queue

    def replace(self, oid: RouterObjectId, predicate: str, description: str | None = None) -> Queue:
        """Create or replace the queue stored under ``oid``."""
        validate(predicate)
        queue = Queue(
            ref=oid.ref, router_ref=oid.router_ref, predicate=predicate, description=description
        )

        def _replace(conn: sqlite3.Connection) -> None:
            existing = self.repos.queue.get_or_none(conn, oid)
            if existing is not None:
                if self.repos.queue.task_count(conn, existing):
                    raise InvalidStateError(f"Replacing queue {oid} with tasks not allowed")
                self.repos.queue.delete(conn, existing)
            self._insert(conn, queue)

        self.tx.execute_void(_replace, router_ref=oid.router_ref)
        return queue

    def get(self, oid: RouterObjectId) -> Queue:
        with self.tx.db.connect() as conn:
            return self.repos.queue.get(conn, oid)

    def list_for_router(self, router_ref: str) -> list[Queue]:
        with self.tx.db.connect() as conn:
            self.repos.router.get(conn, router_ref)
            return self.repos.queue.list_for_router(conn, router_ref)

    def agent_refs(self, oid: RouterObjectId) -> list[str]:
        """Agents currently bound to the queue."""
        with self.tx.db.connect() as conn:
            return self.repos.queue.agent_refs(conn, self.repos.queue.get(conn, oid))

    def task_count(self, oid: RouterObjectId) -> int:
        with self.tx.db.connect() as conn:
            return self.repos.queue.task_count(conn, self.repos.queue.get(conn, oid))

    def update(
        self,
        oid: RouterObjectId,
        predicate: str | None = None,
        description: str | None = None,
    ) -> Queue:
        """Change the given fields; a new predicate re-binds the router's agents."""
        if predicate is not None:
            validate(predicate)

        def _update(conn: sqlite3.Connection) -> tuple[Queue, bool]:
            queue = self.repos.queue.get(conn, oid)
            rebind = predicate is not None and predicate != queue.predicate
            if predicate is not None:
                queue.predicate = predicate
            if description is not None:
                queue.description = description
            self.repos.queue.update(conn, queue)
            if rebind:
                self.bindings.reconcile_queue(conn, queue, is_new_queue=False)
            return queue, rebind

        queue, rebind = self.tx.execute(_update, router_ref=oid.router_ref)
        if rebind:
            self._dispatch_ready_agents(queue)
        return queue

    def delete(self, oid: RouterObjectId) -> None:
        """Delete a queue that holds no tasks and is not routed to by any plan."""

        def _delete(conn: sqlite3.Connection) -> None:
            queue = self.repos.queue.get(conn, oid)
            if self.repos.queue.task_count(conn, queue):
                raise InvalidStateError(f"Deleting queue {oid} with tasks not allowed")
            plans = self.repos.plan.routing_to(conn, queue)
            if plans:
                raise InvalidStateError(
                    f"Deleting queue {oid} not allowed: routed to by plan {plans[0].ref}"
                )
            self.repos.queue.delete(conn, queue)

        self.tx.execute_void(_delete, router_ref=oid.router_ref)
        logger.info("Queue %s deleted", oid)

    def _insert(self, conn: sqlite3.Connection, queue: Queue) -> None:
        self.repos.router.get(conn, queue.router_ref)
        self.repos.queue.insert(conn, queue)
        self.bindings.reconcile_queue(conn, queue, is_new_queue=True)

    def _dispatch_ready_agents(self, queue: Queue) -> None:
        with self.tx.db.connect() as conn:
            agents = [
                a
                for a in self.repos.agent.list_for_router(conn, queue.router_ref)
                if a.state is AgentState.READY
            ]
        for agent in agents:
            self.dispatcher.dispatch_agent(agent.object_id)

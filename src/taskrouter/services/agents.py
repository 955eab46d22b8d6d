"""Agent operations: registration, state updates and availability."""

from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from collections.abc import Callable, Mapping
from typing import Any

from taskrouter.engine.agent_state import check_settable, update_state
from taskrouter.engine.bindings import BindingMaintainer, capabilities_equal
from taskrouter.engine.dispatcher import TaskDispatcher
from taskrouter.errors import InvalidStateError
from taskrouter.model.attributes import AttributeGroup
from taskrouter.model.entities import Agent, AgentState, RouterObjectId
from taskrouter.storage.repositories import Repositories
from taskrouter.storage.transaction import TransactionManager

logger = logging.getLogger(__name__)


class AgentService:
    def __init__(
        self,
        tx: TransactionManager,
        repos: Repositories,
        bindings: BindingMaintainer,
        dispatcher: TaskDispatcher,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.tx = tx
        self.repos = repos
        self.bindings = bindings
        self.dispatcher = dispatcher
        self.clock = clock

    def create(
        self,
        router_ref: str,
        address: str | None = None,
        capabilities: Mapping[str, Any] | None = None,
        ref: str | None = None,
    ) -> Agent:
        """Register an offline agent and bind it to every matching queue."""
        agent = Agent(
            ref=ref or uuid.uuid4().hex,
            router_ref=router_ref,
            address=address,
            capabilities=AttributeGroup.from_dict(capabilities),
        )
        self.tx.execute_void(lambda conn: self._insert(conn, agent), router_ref=router_ref)
        return agent

    def replace(
        self,
        oid: RouterObjectId,
        address: str | None = None,
        capabilities: Mapping[str, Any] | None = None,
    ) -> Agent:
        """Create or replace the agent under ``oid``; a busy agent cannot be replaced."""
        agent = Agent(
            ref=oid.ref,
            router_ref=oid.router_ref,
            address=address,
            capabilities=AttributeGroup.from_dict(capabilities),
        )

        def _replace(conn: sqlite3.Connection) -> None:
            existing = self.repos.agent.get_or_none(conn, oid)
            if existing is not None:
                if not existing.state.is_delete_allowed:
                    raise InvalidStateError(f"Replacing busy agent {oid} not allowed")
                self.repos.agent.delete(conn, existing)
            self._insert(conn, agent)

        self.tx.execute_void(_replace, router_ref=oid.router_ref)
        return agent

    def get(self, oid: RouterObjectId) -> Agent:
        with self.tx.db.connect() as conn:
            return self.repos.agent.get(conn, oid)

    def list_for_router(self, router_ref: str) -> list[Agent]:
        with self.tx.db.connect() as conn:
            self.repos.router.get(conn, router_ref)
            return self.repos.agent.list_for_router(conn, router_ref)

    def queue_refs(self, oid: RouterObjectId) -> list[str]:
        """Queues the agent is currently bound to, in creation order."""
        with self.tx.db.connect() as conn:
            agent = self.repos.agent.get(conn, oid)
            assert agent.id is not None
            return [q.ref for q in self.repos.queue.bound_to_agent(conn, agent.id)]

    def update(
        self,
        oid: RouterObjectId,
        state: AgentState | None = None,
        address: str | None = None,
        capabilities: Mapping[str, Any] | None = None,
    ) -> Agent:
        """
        Apply a partial update.

        A capability set with the same keys as the current one counts as
        unchanged and is ignored, values included. A transition to ready
        dispatches the agent once the change is committed.
        """
        check_settable(state)
        new_capabilities = AttributeGroup.from_dict(capabilities) if capabilities is not None else None

        def _update(conn: sqlite3.Connection) -> tuple[Agent, bool]:
            agent = self.repos.agent.get(conn, oid)
            transition = update_state(agent.state, state)
            if transition.new_state is not agent.state:
                logger.info("Agent %s: %s -> %s", agent, agent.state, transition.new_state)
                agent.state = transition.new_state
                agent.ready_since = self.clock() if agent.state is AgentState.READY else None
            if address is not None:
                agent.address = address

            rebound = False
            if capabilities is not None and not capabilities_equal(
                capabilities, agent.capabilities.to_dict()
            ):
                assert new_capabilities is not None
                agent.capabilities = new_capabilities
                self.bindings.reconcile(conn, agent, new_capabilities, is_new_agent=False)
                rebound = True
            self.repos.agent.update(conn, agent)
            return agent, transition.became_ready or (rebound and agent.state is AgentState.READY)

        agent, dispatch = self.tx.execute(_update, router_ref=oid.router_ref)
        if dispatch:
            self.dispatcher.dispatch_agent(oid)
        return agent

    def delete(self, oid: RouterObjectId) -> None:
        def _delete(conn: sqlite3.Connection) -> None:
            agent = self.repos.agent.get(conn, oid)
            if not agent.state.is_delete_allowed:
                raise InvalidStateError(
                    f"Deleting busy agent {oid} not allowed. Complete the corresponding task."
                )
            self.repos.agent.delete(conn, agent)

        self.tx.execute_void(_delete, router_ref=oid.router_ref)
        logger.info("Agent %s deleted", oid)

    def heartbeat(self, oid: RouterObjectId) -> Agent:
        """
        Record that the agent is alive.

        An agent previously swept to unavailable returns to ready and is
        dispatched.
        """

        def _heartbeat(conn: sqlite3.Connection) -> tuple[Agent, bool]:
            agent = self.repos.agent.get(conn, oid)
            now = self.clock()
            agent.last_heartbeat = now
            revived = agent.state is AgentState.UNAVAILABLE
            if revived:
                logger.info("Agent %s: heartbeat received, back to ready", agent)
                agent.state = AgentState.READY
                agent.ready_since = now
            self.repos.agent.update(conn, agent)
            return agent, revived

        agent, revived = self.tx.execute(_heartbeat, router_ref=oid.router_ref)
        if revived:
            self.dispatcher.dispatch_agent(oid)
        return agent

    def sweep_stale(self, timeout: float) -> list[Agent]:
        """Mark ready agents silent for longer than ``timeout`` seconds unavailable."""
        cutoff = self.clock() - timeout
        with self.tx.db.connect() as conn:
            candidates = self.repos.agent.stale_ready(conn, cutoff)

        swept: list[Agent] = []
        for candidate in candidates:

            def _sweep(conn: sqlite3.Connection, oid: RouterObjectId = candidate.object_id) -> Agent | None:
                agent = self.repos.agent.get_or_none(conn, oid)
                if (
                    agent is None
                    or agent.state is not AgentState.READY
                    or agent.last_heartbeat is None
                    or agent.last_heartbeat >= cutoff
                ):
                    return None
                agent.state = AgentState.UNAVAILABLE
                agent.ready_since = None
                self.repos.agent.update(conn, agent)
                return agent

            agent = self.tx.execute(_sweep, router_ref=candidate.router_ref)
            if agent is not None:
                logger.warning("Agent %s: no heartbeat for %.0fs, marked unavailable", agent, timeout)
                swept.append(agent)
        return swept

    def _insert(self, conn: sqlite3.Connection, agent: Agent) -> None:
        self.repos.router.get(conn, agent.router_ref)
        self.repos.agent.insert(conn, agent)
        self.bindings.reconcile(conn, agent, agent.capabilities, is_new_agent=True)

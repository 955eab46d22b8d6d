"""
Binding Maintainer

Keeps the agent<->queue mapping set consistent with queue predicates and
agent capabilities. A mapping exists iff the queue's predicate holds for the
agent's current capabilities. Callers run these functions inside a
transaction holding the router lock.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Mapping
from typing import Any

from taskrouter.errors import RouterError
from taskrouter.eval.evaluator import evaluate
from taskrouter.model.attributes import AttributeGroup
from taskrouter.model.entities import Agent, Queue
from taskrouter.storage.repositories import Repositories

logger = logging.getLogger(__name__)


def capabilities_equal(
    new: Mapping[str, Any] | None, old: Mapping[str, Any] | None
) -> bool:
    """
    Weak equality of two capability dicts.

    Only sizes and key sets are compared, never values: a value-only change
    is treated as "unchanged" and does not re-bind queues.
    """
    if new is None and old is None:
        return True
    if new is None or old is None:
        return False
    if len(new) != len(old):
        return False
    return all(key in old for key in new)


class BindingMaintainer:
    """Creates and removes agent-queue mappings."""

    def __init__(self, repos: Repositories) -> None:
        self.repos = repos

    def reconcile(
        self,
        conn: sqlite3.Connection,
        agent: Agent,
        capabilities: AttributeGroup,
        is_new_agent: bool,
    ) -> int:
        """
        Recompute the agent's mappings against every queue of its router.

        Returns the number of queues whose predicate matched. An evaluation
        failure on any queue is logged and re-raised so the caller's
        transaction rolls back.
        """
        assert agent.id is not None
        logger.info("Agent %s: attaching queues...", agent)

        existing = set() if is_new_agent else self.repos.agent.mapped_queue_ids(conn, agent)
        matched = 0
        for queue in self.repos.queue.list_for_router(conn, agent.router_ref):
            assert queue.id is not None
            try:
                is_match = evaluate(queue.predicate, capabilities)
            except RouterError as e:
                logger.error(
                    "Agent %s: failure attaching queue %s in router %s: %s",
                    agent.ref,
                    queue.ref,
                    agent.router_ref,
                    e,
                )
                raise

            if is_match:
                matched += 1
                if queue.id not in existing:
                    logger.info("Queue %s <=> Agent %s", queue.ref, agent.ref)
                    self.repos.agent.add_mapping(conn, agent.id, queue.id)
            elif not is_new_agent and queue.id in existing:
                self.repos.agent.remove_mapping(conn, agent.id, queue.id)

        logger.info("Agent %s: queues attached: %d", agent, matched)
        return matched

    def reconcile_queue(self, conn: sqlite3.Connection, queue: Queue, is_new_queue: bool) -> int:
        """Recompute a queue's mappings against every agent of its router."""
        assert queue.id is not None
        logger.info("Queue %s: attaching agents...", queue)

        existing = set(self.repos.queue.agent_refs(conn, queue)) if not is_new_queue else set()
        matched = 0
        for agent in self.repos.agent.list_for_router(conn, queue.router_ref):
            assert agent.id is not None
            try:
                is_match = evaluate(queue.predicate, agent.capabilities)
            except RouterError as e:
                logger.error(
                    "Queue %s: failure attaching agent %s in router %s: %s",
                    queue.ref,
                    agent.ref,
                    queue.router_ref,
                    e,
                )
                raise

            if is_match:
                matched += 1
                if agent.ref not in existing:
                    logger.info("Queue %s <=> Agent %s", queue.ref, agent.ref)
                    self.repos.agent.add_mapping(conn, agent.id, queue.id)
            elif agent.ref in existing:
                self.repos.agent.remove_mapping(conn, agent.id, queue.id)

        logger.info("Queue %s: agents attached: %d", queue, matched)
        return matched

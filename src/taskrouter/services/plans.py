"""Routing plan operations."""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Mapping
from typing import Any

from taskrouter.engine.plans import resolve, validate_plan
from taskrouter.model.attributes import AttributeGroup
from taskrouter.model.entities import Plan, Route, RouterObjectId, Rule
from taskrouter.storage.repositories import Repositories
from taskrouter.storage.transaction import TransactionManager

logger = logging.getLogger(__name__)


class PlanService:
    def __init__(self, tx: TransactionManager, repos: Repositories) -> None:
        self.tx = tx
        self.repos = repos

    def create(
        self,
        router_ref: str,
        rules: list[Rule] | None = None,
        default_route: Route | None = None,
        description: str | None = None,
        ref: str | None = None,
    ) -> Plan:
        plan = Plan(
            ref=ref or uuid.uuid4().hex,
            router_ref=router_ref,
            description=description,
            rules=list(rules or []),
            default_route=default_route,
        )
        self.tx.execute_void(lambda conn: self._insert(conn, plan), router_ref=router_ref)
        logger.info("Plan %s created with %d rules", plan, len(plan.rules))
        return plan

    def replace(
        self,
        oid: RouterObjectId,
        rules: list[Rule] | None = None,
        default_route: Route | None = None,
        description: str | None = None,
    ) -> Plan:
        """Create or replace the plan under ``oid``; existing tasks keep their routes."""
        plan = Plan(
            ref=oid.ref,
            router_ref=oid.router_ref,
            description=description,
            rules=list(rules or []),
            default_route=default_route,
        )

        def _replace(conn: sqlite3.Connection) -> None:
            existing = self.repos.plan.get_or_none(conn, oid)
            if existing is not None:
                self.repos.plan.delete(conn, existing)
            self._insert(conn, plan)

        self.tx.execute_void(_replace, router_ref=oid.router_ref)
        return plan

    def get(self, oid: RouterObjectId) -> Plan:
        with self.tx.db.connect() as conn:
            return self.repos.plan.get(conn, oid)

    def list_for_router(self, router_ref: str) -> list[Plan]:
        with self.tx.db.connect() as conn:
            self.repos.router.get(conn, router_ref)
            return self.repos.plan.list_for_router(conn, router_ref)

    def update(
        self,
        oid: RouterObjectId,
        rules: list[Rule] | None = None,
        default_route: Route | None = None,
        description: str | None = None,
    ) -> Plan:
        def _update(conn: sqlite3.Connection) -> Plan:
            plan = self.repos.plan.get(conn, oid)
            if rules is not None:
                plan.rules = list(rules)
            if default_route is not None:
                plan.default_route = default_route
            if description is not None:
                plan.description = description
            validate_plan(conn, self.repos, plan)
            self.repos.plan.update(conn, plan)
            return plan

        return self.tx.execute(_update, router_ref=oid.router_ref)

    def delete(self, oid: RouterObjectId) -> None:
        def _delete(conn: sqlite3.Connection) -> None:
            self.repos.plan.delete(conn, self.repos.plan.get(conn, oid))

        self.tx.execute_void(_delete, router_ref=oid.router_ref)
        logger.info("Plan %s deleted", oid)

    def resolve(self, oid: RouterObjectId, requirements: Mapping[str, Any] | None) -> list[Route]:
        """Routes the plan would give a task with ``requirements``."""
        return resolve(self.get(oid), AttributeGroup.from_dict(requirements))

    def _insert(self, conn: sqlite3.Connection, plan: Plan) -> None:
        self.repos.router.get(conn, plan.router_ref)
        validate_plan(conn, self.repos, plan)
        self.repos.plan.insert(conn, plan)

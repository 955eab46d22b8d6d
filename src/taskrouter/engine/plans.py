"""Routing plan validation and route resolution."""

from __future__ import annotations

import logging
import sqlite3

from taskrouter.errors import BadValueError
from taskrouter.eval.evaluator import evaluate
from taskrouter.eval.parser import validate
from taskrouter.model.attributes import AttributeGroup
from taskrouter.model.entities import Plan, Route, RouterObjectId
from taskrouter.storage.repositories import Repositories

logger = logging.getLogger(__name__)


def resolve(plan: Plan, requirements: AttributeGroup) -> list[Route]:
    """
    Ordered candidate routes for a task.

    The first rule whose predicate matches wins; otherwise the plan's default
    route is used.
    """
    for index, rule in enumerate(plan.rules):
        if evaluate(rule.predicate, requirements):
            logger.debug("Plan %s: rule %d (%s) matched", plan, index, rule.tag or rule.predicate)
            return list(rule.routes)
    if plan.default_route is None:
        raise BadValueError(f"Plan {plan}: no rule matched and no default route is set")
    logger.debug("Plan %s: no rule matched, using default route", plan)
    return [plan.default_route]


def validate_plan(conn: sqlite3.Connection, repos: Repositories, plan: Plan) -> None:
    """Reject plans that could never route: empty, malformed or naming unknown queues."""
    if not plan.rules and plan.default_route is None:
        raise BadValueError(f"Plan {plan} needs at least one rule or a default route")

    routes: list[Route] = []
    for index, rule in enumerate(plan.rules):
        if not rule.predicate:
            raise BadValueError(f"Plan {plan}: rule {index} has no predicate")
        validate(rule.predicate)
        if not rule.routes:
            raise BadValueError(f"Plan {plan}: rule {index} has no routes")
        routes.extend(rule.routes)
    if plan.default_route is not None:
        routes.append(plan.default_route)

    for route in routes:
        # raises NotFoundError for queues outside the plan's router
        repos.queue.get(conn, RouterObjectId(route.queue_ref, plan.router_ref))

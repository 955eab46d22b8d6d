"""Row mapping and queries for routing entities."""

from __future__ import annotations

import json
import sqlite3
from typing import Any

from taskrouter.errors import InternalError, InvalidStateError, NotFoundError
from taskrouter.model.attributes import AttributeGroup
from taskrouter.model.entities import (
    Agent,
    AgentQueueMapping,
    AgentState,
    Plan,
    Queue,
    Route,
    Router,
    RouterObjectId,
    Rule,
    Task,
    TaskState,
)


def _load_json(value: str | None) -> Any:
    return json.loads(value) if value else None


def _insert(
    conn: sqlite3.Connection, entity: str, ref: object, sql: str, params: tuple[Any, ...]
) -> sqlite3.Cursor:
    try:
        return conn.execute(sql, params)
    except sqlite3.IntegrityError as e:
        raise InvalidStateError(f"{entity} {ref} already exists") from e


class RouterRepository:
    """Routers are keyed by ref alone."""

    DEPENDENT_TABLES = (("queues", "queue"), ("agents", "agent"), ("plans", "plan"), ("tasks", "task"))

    def get_or_none(self, conn: sqlite3.Connection, ref: str) -> Router | None:
        row = conn.execute("SELECT * FROM routers WHERE ref = ?", (ref,)).fetchone()
        if row is None:
            return None
        return Router(ref=row["ref"], name=row["name"], description=row["description"])

    def get(self, conn: sqlite3.Connection, ref: str) -> Router:
        router = self.get_or_none(conn, ref)
        if router is None:
            raise NotFoundError("Router", ref)
        return router

    def list_all(self, conn: sqlite3.Connection) -> list[Router]:
        rows = conn.execute("SELECT * FROM routers ORDER BY created_at, ref").fetchall()
        return [Router(ref=r["ref"], name=r["name"], description=r["description"]) for r in rows]

    def insert(self, conn: sqlite3.Connection, router: Router) -> None:
        _insert(
            conn,
            "Router",
            router.ref,
            "INSERT INTO routers (ref, name, description) VALUES (?, ?, ?)",
            (router.ref, router.name, router.description),
        )

    def update(self, conn: sqlite3.Connection, router: Router) -> None:
        conn.execute(
            "UPDATE routers SET name = ?, description = ? WHERE ref = ?",
            (router.name, router.description, router.ref),
        )

    def delete(self, conn: sqlite3.Connection, ref: str) -> None:
        conn.execute("DELETE FROM routers WHERE ref = ?", (ref,))

    def first_dependent(self, conn: sqlite3.Connection, ref: str) -> str | None:
        """Name of the first entity kind still referencing the router, if any."""
        for table, entity in self.DEPENDENT_TABLES:
            row = conn.execute(f"SELECT 1 FROM {table} WHERE router_ref = ? LIMIT 1", (ref,)).fetchone()
            if row is not None:
                return entity
        return None

    def counts(self, conn: sqlite3.Connection, ref: str) -> dict[str, int]:
        return {
            entity: conn.execute(f"SELECT COUNT(*) FROM {table} WHERE router_ref = ?", (ref,)).fetchone()[0]
            for table, entity in self.DEPENDENT_TABLES
        }


class QueueRepository:
    def _row_to_queue(self, row: sqlite3.Row) -> Queue:
        return Queue(
            ref=row["ref"],
            router_ref=row["router_ref"],
            predicate=row["predicate"],
            description=row["description"],
            id=row["id"],
        )

    def get_or_none(self, conn: sqlite3.Connection, oid: RouterObjectId) -> Queue | None:
        row = conn.execute(
            "SELECT * FROM queues WHERE router_ref = ? AND ref = ?", (oid.router_ref, oid.ref)
        ).fetchone()
        return self._row_to_queue(row) if row else None

    def get(self, conn: sqlite3.Connection, oid: RouterObjectId) -> Queue:
        queue = self.get_or_none(conn, oid)
        if queue is None:
            raise NotFoundError("Queue", oid)
        return queue

    def list_for_router(self, conn: sqlite3.Connection, router_ref: str) -> list[Queue]:
        """Queues of a router in creation order."""
        rows = conn.execute(
            "SELECT * FROM queues WHERE router_ref = ? ORDER BY id", (router_ref,)
        ).fetchall()
        return [self._row_to_queue(r) for r in rows]

    def bound_to_agent(self, conn: sqlite3.Connection, agent_id: int) -> list[Queue]:
        """Queues the agent is mapped to, in creation order."""
        rows = conn.execute(
            """
            SELECT q.* FROM queues q
            JOIN agent_queue_mappings m ON m.queue_id = q.id
            WHERE m.agent_id = ?
            ORDER BY q.id
            """,
            (agent_id,),
        ).fetchall()
        return [self._row_to_queue(r) for r in rows]

    def insert(self, conn: sqlite3.Connection, queue: Queue) -> Queue:
        cursor = _insert(
            conn,
            "Queue",
            queue.object_id,
            "INSERT INTO queues (router_ref, ref, predicate, description) VALUES (?, ?, ?, ?)",
            (queue.router_ref, queue.ref, queue.predicate, queue.description),
        )
        queue.id = cursor.lastrowid
        return queue

    def update(self, conn: sqlite3.Connection, queue: Queue) -> None:
        conn.execute(
            "UPDATE queues SET predicate = ?, description = ? WHERE id = ?",
            (queue.predicate, queue.description, queue.id),
        )

    def delete(self, conn: sqlite3.Connection, queue: Queue) -> None:
        conn.execute("DELETE FROM queues WHERE id = ?", (queue.id,))

    def task_count(self, conn: sqlite3.Connection, queue: Queue) -> int:
        return conn.execute("SELECT COUNT(*) FROM tasks WHERE queue_id = ?", (queue.id,)).fetchone()[0]

    def agent_refs(self, conn: sqlite3.Connection, queue: Queue) -> list[str]:
        rows = conn.execute(
            """
            SELECT a.ref FROM agents a
            JOIN agent_queue_mappings m ON m.agent_id = a.id
            WHERE m.queue_id = ?
            ORDER BY a.id
            """,
            (queue.id,),
        ).fetchall()
        return [r["ref"] for r in rows]


class AgentRepository:
    def _row_to_agent(self, row: sqlite3.Row) -> Agent:
        try:
            state = AgentState(row["state"])
        except ValueError as e:
            raise InternalError(f"Unexpected agent state: {row['state']}") from e
        return Agent(
            ref=row["ref"],
            router_ref=row["router_ref"],
            address=row["address"],
            capabilities=AttributeGroup.from_dict(_load_json(row["capabilities"])),
            state=state,
            last_heartbeat=row["last_heartbeat"],
            ready_since=row["ready_since"],
            id=row["id"],
        )

    def get_or_none(self, conn: sqlite3.Connection, oid: RouterObjectId) -> Agent | None:
        row = conn.execute(
            "SELECT * FROM agents WHERE router_ref = ? AND ref = ?", (oid.router_ref, oid.ref)
        ).fetchone()
        return self._row_to_agent(row) if row else None

    def get(self, conn: sqlite3.Connection, oid: RouterObjectId) -> Agent:
        agent = self.get_or_none(conn, oid)
        if agent is None:
            raise NotFoundError("Agent", oid)
        return agent

    def list_for_router(self, conn: sqlite3.Connection, router_ref: str) -> list[Agent]:
        rows = conn.execute(
            "SELECT * FROM agents WHERE router_ref = ? ORDER BY id", (router_ref,)
        ).fetchall()
        return [self._row_to_agent(r) for r in rows]

    def insert(self, conn: sqlite3.Connection, agent: Agent) -> Agent:
        cursor = _insert(
            conn,
            "Agent",
            agent.object_id,
            """
            INSERT INTO agents (
                router_ref, ref, address, capabilities, state, last_heartbeat, ready_since
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                agent.router_ref,
                agent.ref,
                agent.address,
                json.dumps(agent.capabilities.to_dict()),
                agent.state.value,
                agent.last_heartbeat,
                agent.ready_since,
            ),
        )
        agent.id = cursor.lastrowid
        return agent

    def update(self, conn: sqlite3.Connection, agent: Agent) -> None:
        conn.execute(
            """
            UPDATE agents
            SET address = ?, capabilities = ?, state = ?, last_heartbeat = ?, ready_since = ?
            WHERE id = ?
            """,
            (
                agent.address,
                json.dumps(agent.capabilities.to_dict()),
                agent.state.value,
                agent.last_heartbeat,
                agent.ready_since,
                agent.id,
            ),
        )

    def delete(self, conn: sqlite3.Connection, agent: Agent) -> None:
        conn.execute("DELETE FROM agents WHERE id = ?", (agent.id,))

    def mapped_queue_ids(self, conn: sqlite3.Connection, agent: Agent) -> set[int]:
        rows = conn.execute(
            "SELECT queue_id FROM agent_queue_mappings WHERE agent_id = ?", (agent.id,)
        ).fetchall()
        return {r["queue_id"] for r in rows}

    def mappings(self, conn: sqlite3.Connection, agent: Agent) -> set[AgentQueueMapping]:
        rows = conn.execute(
            """
            SELECT q.ref, q.router_ref FROM queues q
            JOIN agent_queue_mappings m ON m.queue_id = q.id
            WHERE m.agent_id = ?
            """,
            (agent.id,),
        ).fetchall()
        return {
            AgentQueueMapping(agent=agent.object_id, queue=RouterObjectId(r["ref"], r["router_ref"]))
            for r in rows
        }

    def add_mapping(self, conn: sqlite3.Connection, agent_id: int, queue_id: int) -> None:
        conn.execute(
            "INSERT OR IGNORE INTO agent_queue_mappings (agent_id, queue_id) VALUES (?, ?)",
            (agent_id, queue_id),
        )

    def remove_mapping(self, conn: sqlite3.Connection, agent_id: int, queue_id: int) -> None:
        conn.execute(
            "DELETE FROM agent_queue_mappings WHERE agent_id = ? AND queue_id = ?",
            (agent_id, queue_id),
        )

    def longest_ready(self, conn: sqlite3.Connection, queue_id: int) -> Agent | None:
        """The ready agent bound to the queue that has been waiting longest."""
        row = conn.execute(
            """
            SELECT a.* FROM agents a
            JOIN agent_queue_mappings m ON m.agent_id = a.id
            WHERE m.queue_id = ? AND a.state = ?
            ORDER BY a.ready_since IS NULL, a.ready_since, a.id
            LIMIT 1
            """,
            (queue_id, AgentState.READY.value),
        ).fetchone()
        return self._row_to_agent(row) if row else None

    def stale_ready(self, conn: sqlite3.Connection, cutoff: float) -> list[Agent]:
        """Ready agents whose last heartbeat is older than ``cutoff``."""
        rows = conn.execute(
            """
            SELECT * FROM agents
            WHERE state = ? AND last_heartbeat IS NOT NULL AND last_heartbeat < ?
            ORDER BY id
            """,
            (AgentState.READY.value, cutoff),
        ).fetchall()
        return [self._row_to_agent(r) for r in rows]


class PlanRepository:
    def _row_to_plan(self, row: sqlite3.Row) -> Plan:
        default_route = _load_json(row["default_route"])
        return Plan(
            ref=row["ref"],
            router_ref=row["router_ref"],
            description=row["description"],
            rules=[Rule.from_dict(r) for r in _load_json(row["rules"]) or []],
            default_route=Route.from_dict(default_route) if default_route else None,
            id=row["id"],
        )

    def get_or_none(self, conn: sqlite3.Connection, oid: RouterObjectId) -> Plan | None:
        row = conn.execute(
            "SELECT * FROM plans WHERE router_ref = ? AND ref = ?", (oid.router_ref, oid.ref)
        ).fetchone()
        return self._row_to_plan(row) if row else None

    def get(self, conn: sqlite3.Connection, oid: RouterObjectId) -> Plan:
        plan = self.get_or_none(conn, oid)
        if plan is None:
            raise NotFoundError("Plan", oid)
        return plan

    def list_for_router(self, conn: sqlite3.Connection, router_ref: str) -> list[Plan]:
        rows = conn.execute(
            "SELECT * FROM plans WHERE router_ref = ? ORDER BY id", (router_ref,)
        ).fetchall()
        return [self._row_to_plan(r) for r in rows]

    def _params(self, plan: Plan) -> tuple[Any, ...]:
        return (
            plan.description,
            json.dumps([r.to_dict() for r in plan.rules]),
            json.dumps(plan.default_route.to_dict()) if plan.default_route else None,
        )

    def insert(self, conn: sqlite3.Connection, plan: Plan) -> Plan:
        cursor = _insert(
            conn,
            "Plan",
            plan.object_id,
            """
            INSERT INTO plans (router_ref, ref, description, rules, default_route)
            VALUES (?, ?, ?, ?, ?)
            """,
            (plan.router_ref, plan.ref, *self._params(plan)),
        )
        plan.id = cursor.lastrowid
        return plan

    def update(self, conn: sqlite3.Connection, plan: Plan) -> None:
        conn.execute(
            "UPDATE plans SET description = ?, rules = ?, default_route = ? WHERE id = ?",
            (*self._params(plan), plan.id),
        )

    def delete(self, conn: sqlite3.Connection, plan: Plan) -> None:
        conn.execute("DELETE FROM plans WHERE id = ?", (plan.id,))

    def routing_to(self, conn: sqlite3.Connection, queue: Queue) -> list[Plan]:
        """Plans of the queue's router with a route pointing at it."""
        plans = []
        for plan in self.list_for_router(conn, queue.router_ref):
            routes = [r for rule in plan.rules for r in rule.routes]
            if plan.default_route:
                routes.append(plan.default_route)
            if any(r.queue_ref == queue.ref for r in routes):
                plans.append(plan)
        return plans


class TaskRepository:
    _SELECT = """
        SELECT t.*, q.ref AS queue_ref, a.ref AS agent_ref
        FROM tasks t
        JOIN queues q ON q.id = t.queue_id
        LEFT JOIN agents a ON a.id = t.agent_id
    """

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        try:
            state = TaskState(row["state"])
        except ValueError as e:
            raise InternalError(f"Unexpected task state: {row['state']}") from e
        return Task(
            ref=row["ref"],
            router_ref=row["router_ref"],
            requirements=AttributeGroup.from_dict(_load_json(row["requirements"])),
            callback_url=row["callback_url"],
            queue_ref=row["queue_ref"],
            state=state,
            agent_ref=row["agent_ref"],
            plan_ref=row["plan_ref"],
            routes=[Route.from_dict(r) for r in _load_json(row["routes"]) or []],
            current_route=row["current_route"],
            route_entered_at=row["route_entered_at"],
            user_context=_load_json(row["user_context"]),
            id=row["id"],
        )

    def get_or_none(self, conn: sqlite3.Connection, oid: RouterObjectId) -> Task | None:
        row = conn.execute(
            self._SELECT + " WHERE t.router_ref = ? AND t.ref = ?", (oid.router_ref, oid.ref)
        ).fetchone()
        return self._row_to_task(row) if row else None

    def get(self, conn: sqlite3.Connection, oid: RouterObjectId) -> Task:
        task = self.get_or_none(conn, oid)
        if task is None:
            raise NotFoundError("Task", oid)
        return task

    def list_for_router(self, conn: sqlite3.Connection, router_ref: str) -> list[Task]:
        rows = conn.execute(self._SELECT + " WHERE t.router_ref = ? ORDER BY t.id", (router_ref,)).fetchall()
        return [self._row_to_task(r) for r in rows]

    def oldest_waiting(self, conn: sqlite3.Connection, queue_id: int) -> Task | None:
        row = conn.execute(
            self._SELECT + " WHERE t.queue_id = ? AND t.state = ? ORDER BY t.id LIMIT 1",
            (queue_id, TaskState.WAITING.value),
        ).fetchone()
        return self._row_to_task(row) if row else None

    def assigned_to(self, conn: sqlite3.Connection, agent: Agent) -> list[Task]:
        rows = conn.execute(
            self._SELECT + " WHERE t.agent_id = ? AND t.state = ? ORDER BY t.id",
            (agent.id, TaskState.ASSIGNED.value),
        ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def waiting_with_timeout(self, conn: sqlite3.Connection) -> list[Task]:
        """Waiting tasks across all routers whose current route has a timeout."""
        rows = conn.execute(
            self._SELECT + " WHERE t.state = ? ORDER BY t.id", (TaskState.WAITING.value,)
        ).fetchall()
        tasks = [self._row_to_task(r) for r in rows]
        return [t for t in tasks if t.current is not None and t.current.timeout is not None]

    def _params(self, task: Task) -> tuple[Any, ...]:
        return (
            json.dumps(task.requirements.to_dict()),
            task.callback_url,
            task.router_ref,
            task.queue_ref,
            task.state.value,
            task.router_ref,
            task.agent_ref,
            task.plan_ref,
            json.dumps([r.to_dict() for r in task.routes]),
            task.current_route,
            task.route_entered_at,
            json.dumps(task.user_context) if task.user_context is not None else None,
        )

    def insert(self, conn: sqlite3.Connection, task: Task) -> Task:
        cursor = _insert(
            conn,
            "Task",
            task.object_id,
            """
            INSERT INTO tasks (
                router_ref, ref, requirements, callback_url, queue_id, state, agent_id,
                plan_ref, routes, current_route, route_entered_at, user_context
            ) VALUES (
                ?, ?, ?, ?,
                (SELECT id FROM queues WHERE router_ref = ? AND ref = ?),
                ?,
                (SELECT id FROM agents WHERE router_ref = ? AND ref = ?),
                ?, ?, ?, ?, ?
            )
            """,
            (task.router_ref, task.ref, *self._params(task)),
        )
        task.id = cursor.lastrowid
        return task

    def update(self, conn: sqlite3.Connection, task: Task) -> None:
        conn.execute(
            """
            UPDATE tasks SET
                requirements = ?, callback_url = ?,
                queue_id = (SELECT id FROM queues WHERE router_ref = ? AND ref = ?),
                state = ?,
                agent_id = (SELECT id FROM agents WHERE router_ref = ? AND ref = ?),
                plan_ref = ?, routes = ?, current_route = ?, route_entered_at = ?,
                user_context = ?
            WHERE id = ?
            """,
            (*self._params(task), task.id),
        )

    def delete(self, conn: sqlite3.Connection, task: Task) -> None:
        conn.execute("DELETE FROM tasks WHERE id = ?", (task.id,))


class Repositories:
    """Facade over the per-entity repositories."""

    def __init__(self) -> None:
        self.router = RouterRepository()
        self.queue = QueueRepository()
        self.agent = AgentRepository()
        self.plan = PlanRepository()
        self.task = TaskRepository()

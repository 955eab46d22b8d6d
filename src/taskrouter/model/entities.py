"""
Routing Domain Model

Router is the tenant boundary. Queues, agents, plans and tasks are scoped by
``(router_ref, ref)``; identity and equality always compare both parts, so two
routers may reuse the same ref for unrelated objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from taskrouter.errors import BadValueError
from taskrouter.model.attributes import AttributeGroup


@dataclass(frozen=True)
class RouterObjectId:
    """Composite key of every router-scoped entity."""

    ref: str
    router_ref: str

    def __str__(self) -> str:
        return f"{self.router_ref}:{self.ref}"


@dataclass(eq=False)
class RouterObject:
    """Base for router-scoped entities; equality is by composite key."""

    ref: str
    router_ref: str

    @property
    def object_id(self) -> RouterObjectId:
        return RouterObjectId(self.ref, self.router_ref)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RouterObject) or type(other) is not type(self):
            return NotImplemented
        return (self.router_ref, self.ref) == (other.router_ref, other.ref)

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.router_ref, self.ref))

    def __str__(self) -> str:
        return str(self.object_id)


@dataclass
class Router:
    """Tenant/namespace boundary."""

    ref: str
    name: str | None = None
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"ref": self.ref, "name": self.name, "description": self.description}


@dataclass(eq=False)
class Queue(RouterObject):
    """A queue whose predicate selects the agents allowed to serve it."""

    predicate: str = "true"
    description: str | None = None
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ref": self.ref,
            "router_ref": self.router_ref,
            "predicate": self.predicate,
            "description": self.description,
        }


class AgentState(StrEnum):
    """Agent availability states."""

    OFFLINE = "offline"
    READY = "ready"
    BUSY = "busy"
    UNAVAILABLE = "unavailable"

    @property
    def is_delete_allowed(self) -> bool:
        return self is not AgentState.BUSY


@dataclass(eq=False)
class Agent(RouterObject):
    """An agent holding typed capabilities."""

    address: str | None = None
    capabilities: AttributeGroup = field(default_factory=AttributeGroup)
    state: AgentState = AgentState.OFFLINE
    last_heartbeat: float | None = None
    ready_since: float | None = None
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ref": self.ref,
            "router_ref": self.router_ref,
            "address": self.address,
            "capabilities": self.capabilities.to_dict(),
            "state": self.state.value,
        }


@dataclass(frozen=True)
class AgentQueueMapping:
    """Membership of an agent in a queue; equality by the pair."""

    agent: RouterObjectId
    queue: RouterObjectId


@dataclass(frozen=True)
class Route:
    """Try ``queue_ref``; if unserved within ``timeout`` seconds fall through."""

    queue_ref: str
    timeout: float | None = None

    def __post_init__(self) -> None:
        if not self.queue_ref:
            raise BadValueError("Route queue_ref is required")
        if self.timeout is not None and self.timeout < 0:
            raise BadValueError(f"Route timeout must be >= 0, got {self.timeout}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Route:
        if not isinstance(data, dict):
            raise BadValueError(f"Route must be an object, got {data!r}")
        timeout = data.get("timeout")
        return cls(
            queue_ref=data.get("queue_ref") or "",
            timeout=float(timeout) if timeout is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"queue_ref": self.queue_ref, "timeout": self.timeout}


@dataclass
class Rule:
    """Routes selected when ``predicate`` matches the task requirements."""

    predicate: str
    routes: list[Route] = field(default_factory=list)
    tag: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Rule:
        if not isinstance(data, dict):
            raise BadValueError(f"Rule must be an object, got {data!r}")
        return cls(
            predicate=data.get("predicate") or "",
            routes=[Route.from_dict(r) for r in data.get("routes") or []],
            tag=data.get("tag"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tag": self.tag,
            "predicate": self.predicate,
            "routes": [r.to_dict() for r in self.routes],
        }


@dataclass(eq=False)
class Plan(RouterObject):
    """Ordered predicate-guarded rules plus a default route."""

    description: str | None = None
    rules: list[Rule] = field(default_factory=list)
    default_route: Route | None = None
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ref": self.ref,
            "router_ref": self.router_ref,
            "description": self.description,
            "rules": [r.to_dict() for r in self.rules],
            "default_route": self.default_route.to_dict() if self.default_route else None,
        }


class TaskState(StrEnum):
    """Task lifecycle states."""

    WAITING = "waiting"
    ASSIGNED = "assigned"
    CANCELED = "canceled"


@dataclass(eq=False)
class Task(RouterObject):
    """A unit of work waiting on, or assigned from, a queue."""

    requirements: AttributeGroup = field(default_factory=AttributeGroup)
    callback_url: str | None = None
    queue_ref: str = ""
    state: TaskState = TaskState.WAITING
    agent_ref: str | None = None
    plan_ref: str | None = None
    routes: list[Route] = field(default_factory=list)
    current_route: int = 0
    route_entered_at: float | None = None
    user_context: dict[str, Any] | None = None
    id: int | None = None

    @property
    def current(self) -> Route | None:
        if 0 <= self.current_route < len(self.routes):
            return self.routes[self.current_route]
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ref": self.ref,
            "router_ref": self.router_ref,
            "requirements": self.requirements.to_dict(),
            "callback_url": self.callback_url,
            "queue_ref": self.queue_ref,
            "state": self.state.value,
            "agent_ref": self.agent_ref,
            "plan_ref": self.plan_ref,
            "routes": [r.to_dict() for r in self.routes],
            "current_route": self.current_route,
            "user_context": self.user_context,
        }


@dataclass(frozen=True)
class Assignment:
    """A committed task-to-agent assignment."""

    task: Task
    agent: Agent

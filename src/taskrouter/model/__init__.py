"""Routing domain model."""

from taskrouter.model.attributes import Attribute, AttributeGroup, AttributeType
from taskrouter.model.entities import (
    Agent,
    AgentQueueMapping,
    AgentState,
    Assignment,
    Plan,
    Queue,
    Route,
    Router,
    RouterObject,
    RouterObjectId,
    Rule,
    Task,
    TaskState,
)

__all__ = [
    "Agent",
    "AgentQueueMapping",
    "AgentState",
    "Assignment",
    "Attribute",
    "AttributeGroup",
    "AttributeType",
    "Plan",
    "Queue",
    "Route",
    "Router",
    "RouterObject",
    "RouterObjectId",
    "Rule",
    "Task",
    "TaskState",
]

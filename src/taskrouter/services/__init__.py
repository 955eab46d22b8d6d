"""Router, queue, agent, plan and task operations."""

from taskrouter.services.agents import AgentService
from taskrouter.services.plans import PlanService
from taskrouter.services.queues import QueueService
from taskrouter.services.routers import RouterService
from taskrouter.services.tasks import TaskService

__all__ = ["AgentService", "PlanService", "QueueService", "RouterService", "TaskService"]

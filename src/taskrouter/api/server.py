"""FastAPI server exposing routers, queues, agents, plans and tasks."""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Annotated, Any

import click
from fastapi import APIRouter, Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from taskrouter import __version__
from taskrouter.config import Settings, configure_logging
from taskrouter.context import AppContext
from taskrouter.errors import RouterError
from taskrouter.model.entities import AgentState, Route, RouterObjectId, Rule

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "bad_value": 400,
    "expression": 400,
    "evaluator": 400,
    "not_found": 404,
    "invalid_state": 409,
    "internal": 500,
}

_start_time = time.monotonic()


class RouterArg(BaseModel):
    name: str | None = None
    description: str | None = None


class QueueArg(BaseModel):
    predicate: str = "true"
    description: str | None = None


class QueueUpdateArg(BaseModel):
    predicate: str | None = None
    description: str | None = None


class AgentArg(BaseModel):
    address: str | None = None
    capabilities: dict[str, Any] | None = None


class AgentUpdateArg(BaseModel):
    state: AgentState | None = None
    address: str | None = None
    capabilities: dict[str, Any] | None = None


class RouteArg(BaseModel):
    queue_ref: str
    timeout: float | None = None

    def to_route(self) -> Route:
        return Route(queue_ref=self.queue_ref, timeout=self.timeout)


class RuleArg(BaseModel):
    predicate: str
    routes: list[RouteArg] = Field(default_factory=list)
    tag: str | None = None

    def to_rule(self) -> Rule:
        return Rule(predicate=self.predicate, routes=[r.to_route() for r in self.routes], tag=self.tag)


class PlanArg(BaseModel):
    description: str | None = None
    rules: list[RuleArg] | None = None
    default_route: RouteArg | None = None

    def rule_list(self) -> list[Rule] | None:
        return [r.to_rule() for r in self.rules] if self.rules is not None else None

    def route(self) -> Route | None:
        return self.default_route.to_route() if self.default_route else None


class TaskArg(BaseModel):
    requirements: dict[str, Any] | None = None
    queue_ref: str | None = None
    plan_ref: str | None = None
    callback_url: str | None = None
    user_context: dict[str, Any] | None = None


class TaskUpdateArg(BaseModel):
    callback_url: str | None = None
    user_context: dict[str, Any] | None = None


def get_context(request: Request) -> AppContext:
    return request.app.state.context


Context = Annotated[AppContext, Depends(get_context)]

api = APIRouter(prefix="/api")


@api.get("/health")
async def health() -> dict[str, Any]:
    """Health check."""
    uptime = time.monotonic() - _start_time
    return {"status": "ok", "version": __version__, "uptime_seconds": round(uptime, 1)}


# Routers


@api.get("/routers")
def list_routers(ctx: Context) -> list[dict[str, Any]]:
    return [r.to_dict() for r in ctx.routers.list_all()]


@api.post("/routers", status_code=201)
def create_router(arg: RouterArg, ctx: Context) -> dict[str, Any]:
    return ctx.routers.create(arg.name, arg.description).to_dict()


@api.put("/routers/{router}")
def replace_router(router: str, arg: RouterArg, ctx: Context) -> dict[str, Any]:
    return ctx.routers.replace(router, arg.name, arg.description).to_dict()


@api.get("/routers/{router}")
def get_router(router: str, ctx: Context) -> dict[str, Any]:
    return ctx.routers.get(router).to_dict()


@api.post("/routers/{router}")
def update_router(router: str, arg: RouterArg, ctx: Context) -> dict[str, Any]:
    return ctx.routers.update(router, arg.name, arg.description).to_dict()


@api.delete("/routers/{router}", status_code=204)
def delete_router(router: str, ctx: Context) -> Response:
    ctx.routers.delete(router)
    return Response(status_code=204)


@api.get("/routers/{router}/stats")
def router_stats(router: str, ctx: Context) -> dict[str, int]:
    return ctx.routers.stats(router)


# Queues


@api.get("/routers/{router}/queues")
def list_queues(router: str, ctx: Context) -> list[dict[str, Any]]:
    return [q.to_dict() for q in ctx.queues.list_for_router(router)]


@api.post("/routers/{router}/queues", status_code=201)
def create_queue(router: str, arg: QueueArg, ctx: Context) -> dict[str, Any]:
    return ctx.queues.create(router, arg.predicate, arg.description).to_dict()


@api.put("/routers/{router}/queues/{ref}")
def replace_queue(router: str, ref: str, arg: QueueArg, ctx: Context) -> dict[str, Any]:
    return ctx.queues.replace(RouterObjectId(ref, router), arg.predicate, arg.description).to_dict()


@api.get("/routers/{router}/queues/{ref}")
def get_queue(router: str, ref: str, ctx: Context) -> dict[str, Any]:
    return ctx.queues.get(RouterObjectId(ref, router)).to_dict()


@api.post("/routers/{router}/queues/{ref}")
def update_queue(router: str, ref: str, arg: QueueUpdateArg, ctx: Context) -> dict[str, Any]:
    return ctx.queues.update(RouterObjectId(ref, router), arg.predicate, arg.description).to_dict()


@api.delete("/routers/{router}/queues/{ref}", status_code=204)
def delete_queue(router: str, ref: str, ctx: Context) -> Response:
    ctx.queues.delete(RouterObjectId(ref, router))
    return Response(status_code=204)


@api.get("/routers/{router}/queues/{ref}/agents")
def queue_agents(router: str, ref: str, ctx: Context) -> list[str]:
    return ctx.queues.agent_refs(RouterObjectId(ref, router))


# Agents


@api.get("/routers/{router}/agents")
def list_agents(router: str, ctx: Context) -> list[dict[str, Any]]:
    return [a.to_dict() for a in ctx.agents.list_for_router(router)]


@api.post("/routers/{router}/agents", status_code=201)
def create_agent(router: str, arg: AgentArg, ctx: Context) -> dict[str, Any]:
    return ctx.agents.create(router, arg.address, arg.capabilities).to_dict()


@api.put("/routers/{router}/agents/{ref}")
def replace_agent(router: str, ref: str, arg: AgentArg, ctx: Context) -> dict[str, Any]:
    return ctx.agents.replace(RouterObjectId(ref, router), arg.address, arg.capabilities).to_dict()


@api.get("/routers/{router}/agents/{ref}")
def get_agent(router: str, ref: str, ctx: Context) -> dict[str, Any]:
    return ctx.agents.get(RouterObjectId(ref, router)).to_dict()


@api.post("/routers/{router}/agents/{ref}")
def update_agent(router: str, ref: str, arg: AgentUpdateArg, ctx: Context) -> dict[str, Any]:
    agent = ctx.agents.update(
        RouterObjectId(ref, router), arg.state, arg.address, arg.capabilities
    )
    return agent.to_dict()


@api.delete("/routers/{router}/agents/{ref}", status_code=204)
def delete_agent(router: str, ref: str, ctx: Context) -> Response:
    ctx.agents.delete(RouterObjectId(ref, router))
    return Response(status_code=204)


@api.get("/routers/{router}/agents/{ref}/queues")
def agent_queues(router: str, ref: str, ctx: Context) -> list[str]:
    return ctx.agents.queue_refs(RouterObjectId(ref, router))


@api.post("/routers/{router}/agents/{ref}/heartbeat")
def agent_heartbeat(router: str, ref: str, ctx: Context) -> dict[str, Any]:
    return ctx.agents.heartbeat(RouterObjectId(ref, router)).to_dict()


# Plans


@api.get("/routers/{router}/plans")
def list_plans(router: str, ctx: Context) -> list[dict[str, Any]]:
    return [p.to_dict() for p in ctx.plans.list_for_router(router)]


@api.post("/routers/{router}/plans", status_code=201)
def create_plan(router: str, arg: PlanArg, ctx: Context) -> dict[str, Any]:
    return ctx.plans.create(router, arg.rule_list(), arg.route(), arg.description).to_dict()


@api.put("/routers/{router}/plans/{ref}")
def replace_plan(router: str, ref: str, arg: PlanArg, ctx: Context) -> dict[str, Any]:
    plan = ctx.plans.replace(
        RouterObjectId(ref, router), arg.rule_list(), arg.route(), arg.description
    )
    return plan.to_dict()


@api.get("/routers/{router}/plans/{ref}")
def get_plan(router: str, ref: str, ctx: Context) -> dict[str, Any]:
    return ctx.plans.get(RouterObjectId(ref, router)).to_dict()


@api.post("/routers/{router}/plans/{ref}")
def update_plan(router: str, ref: str, arg: PlanArg, ctx: Context) -> dict[str, Any]:
    plan = ctx.plans.update(
        RouterObjectId(ref, router), arg.rule_list(), arg.route(), arg.description
    )
    return plan.to_dict()


@api.delete("/routers/{router}/plans/{ref}", status_code=204)
def delete_plan(router: str, ref: str, ctx: Context) -> Response:
    ctx.plans.delete(RouterObjectId(ref, router))
    return Response(status_code=204)


# Tasks


@api.get("/routers/{router}/tasks")
def list_tasks(router: str, ctx: Context) -> list[dict[str, Any]]:
    return [t.to_dict() for t in ctx.tasks.list_for_router(router)]


@api.post("/routers/{router}/tasks", status_code=201)
def create_task(router: str, arg: TaskArg, ctx: Context) -> dict[str, Any]:
    task = ctx.tasks.create(
        router,
        requirements=arg.requirements,
        queue_ref=arg.queue_ref,
        plan_ref=arg.plan_ref,
        callback_url=arg.callback_url,
        user_context=arg.user_context,
    )
    return task.to_dict()


@api.put("/routers/{router}/tasks/{ref}")
def replace_task(router: str, ref: str, arg: TaskArg, ctx: Context) -> dict[str, Any]:
    task = ctx.tasks.replace(
        RouterObjectId(ref, router),
        requirements=arg.requirements,
        queue_ref=arg.queue_ref,
        plan_ref=arg.plan_ref,
        callback_url=arg.callback_url,
        user_context=arg.user_context,
    )
    return task.to_dict()


@api.get("/routers/{router}/tasks/{ref}")
def get_task(router: str, ref: str, ctx: Context) -> dict[str, Any]:
    return ctx.tasks.get(RouterObjectId(ref, router)).to_dict()


@api.post("/routers/{router}/tasks/{ref}")
def update_task(router: str, ref: str, arg: TaskUpdateArg, ctx: Context) -> dict[str, Any]:
    return ctx.tasks.update(RouterObjectId(ref, router), arg.callback_url, arg.user_context).to_dict()


@api.delete("/routers/{router}/tasks/{ref}", status_code=204)
def delete_task(router: str, ref: str, ctx: Context) -> Response:
    ctx.tasks.delete(RouterObjectId(ref, router))
    return Response(status_code=204)


@api.post("/routers/{router}/tasks/{ref}/complete")
def complete_task(router: str, ref: str, ctx: Context) -> dict[str, Any]:
    """Complete an assigned task; returns the agent it freed."""
    return ctx.tasks.complete(RouterObjectId(ref, router)).to_dict()


async def router_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RouterError)
    status = ERROR_STATUS.get(exc.kind, 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status,
        content={"error": {"kind": exc.kind, "description": exc.message}},
    )


async def validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RequestValidationError)
    problems = "; ".join(
        f"{' -> '.join(str(loc) for loc in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    logger.warning("%s %s rejected: %s", request.method, request.url.path, problems)
    return JSONResponse(
        status_code=400,
        content={"error": {"kind": "bad_value", "description": problems}},
    )


def create_app(context: AppContext | None = None) -> FastAPI:
    """Build the application around ``context`` (a default one when omitted)."""
    ctx = context or AppContext()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        yield
        ctx.close()

    app = FastAPI(
        title="Taskrouter API",
        version=__version__,
        description="Capability-based task routing",
        lifespan=lifespan,
    )
    app.state.context = ctx
    app.add_exception_handler(RouterError, router_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(api)
    return app


@click.command()
@click.option("--port", type=int, default=None, help="Port to listen on")
@click.option("--host", default=None, help="Host to bind to")
def main(port: int | None, host: str | None) -> None:
    """Start the Taskrouter API server."""
    import uvicorn

    settings = Settings.load()
    configure_logging(settings.log_level)
    ctx = AppContext(settings)
    ctx.recover()
    uvicorn.run(
        create_app(ctx),
        host=host or settings.host,
        port=port or settings.port,
        log_config=None,
    )

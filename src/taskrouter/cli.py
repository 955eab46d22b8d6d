"""CLI entry point for taskrouter."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.table import Table

from taskrouter import __version__
from taskrouter.config import Settings, configure_logging

if TYPE_CHECKING:
    from taskrouter.context import AppContext

console = Console()


def _context(settings: Settings) -> AppContext:
    from taskrouter.context import AppContext
    from taskrouter.engine.callbacks import LoggingCallbackNotifier

    return AppContext(settings, notifier=LoggingCallbackNotifier())


@click.group()
@click.version_option(version=__version__, prog_name="taskrouter")
@click.pass_context
def main(ctx: click.Context) -> None:
    """Taskrouter: route tasks to agents by capability."""
    settings = Settings.load()
    configure_logging(settings.log_level)
    ctx.obj = settings


@main.command()
@click.pass_obj
def init(settings: Settings) -> None:
    """Initialize taskrouter: create the data directory and database."""
    from taskrouter.storage.database import Database

    db = Database(settings.data_dir)
    db.ensure_tables()
    console.print(f"[green]Taskrouter initialized at {db.data_dir}[/green]")
    console.print(f"  Database: {db.db_path}")
    console.print(f"  Config:   {db.data_dir / 'config.toml'}")


@main.command()
@click.pass_obj
def routers(settings: Settings) -> None:
    """List routers with their entity counts."""
    app = _context(settings)
    try:
        rows = [(r, app.routers.stats(r.ref)) for r in app.routers.list_all()]
    finally:
        app.close()

    if not rows:
        console.print("[dim]No routers yet.[/dim]")
        return

    table = Table(title="Routers")
    table.add_column("Ref", style="cyan")
    table.add_column("Name")
    table.add_column("Queues", justify="right")
    table.add_column("Agents", justify="right")
    table.add_column("Plans", justify="right")
    table.add_column("Tasks", justify="right")
    for router, counts in rows:
        table.add_row(
            router.ref,
            router.name or "",
            str(counts["queue"]),
            str(counts["agent"]),
            str(counts["plan"]),
            str(counts["task"]),
        )
    console.print(table)


@main.command()
@click.argument("router")
@click.pass_obj
def status(settings: Settings, router: str) -> None:
    """Show queues and agents of ROUTER."""
    from taskrouter.errors import NotFoundError

    app = _context(settings)
    try:
        queues = app.queues.list_for_router(router)
        agents = app.agents.list_for_router(router)
        queue_rows = [
            (q, app.queues.task_count(q.object_id), app.queues.agent_refs(q.object_id))
            for q in queues
        ]
        agent_rows = [(a, app.agents.queue_refs(a.object_id)) for a in agents]
    except NotFoundError as e:
        raise click.ClickException(e.message) from e
    finally:
        app.close()

    table = Table(title=f"Queues in {router}")
    table.add_column("Queue", style="cyan")
    table.add_column("Predicate", max_width=40)
    table.add_column("Tasks", justify="right")
    table.add_column("Agents")
    for queue, tasks, agent_refs in queue_rows:
        table.add_row(queue.ref, queue.predicate, str(tasks), ", ".join(agent_refs))
    console.print(table)

    state_color = {"ready": "green", "busy": "yellow", "unavailable": "red"}
    table = Table(title=f"Agents in {router}")
    table.add_column("Agent", style="cyan")
    table.add_column("State")
    table.add_column("Queues")
    for agent, queue_refs in agent_rows:
        color = state_color.get(agent.state.value, "dim")
        table.add_row(agent.ref, f"[{color}]{agent.state.value}[/{color}]", ", ".join(queue_refs))
    console.print(table)


@main.command(name="eval")
@click.argument("expression")
@click.option("--attrs", default="{}", help="Attributes as a JSON object")
def eval_command(expression: str, attrs: str) -> None:
    """Evaluate a predicate EXPRESSION against JSON attributes."""
    from taskrouter.errors import RouterError
    from taskrouter.eval.evaluator import evaluate
    from taskrouter.model.attributes import AttributeGroup

    try:
        group = AttributeGroup.from_dict(json.loads(attrs))
        result = evaluate(expression, group)
    except json.JSONDecodeError as e:
        raise click.BadParameter(str(e), param_hint="--attrs") from e
    except RouterError as e:
        raise click.ClickException(f"{e.kind}: {e.message}") from e

    color = "green" if result else "red"
    console.print(f"[{color}]{str(result).lower()}[/{color}]")


@main.command()
@click.option("--timeout", type=float, default=None, help="Seconds without heartbeat")
@click.pass_obj
def sweep(settings: Settings, timeout: float | None) -> None:
    """Mark ready agents with stale heartbeats unavailable."""
    app = _context(settings)
    try:
        swept = app.agents.sweep_stale(timeout if timeout is not None else settings.heartbeat_timeout)
    finally:
        app.close()

    if not swept:
        console.print("[dim]No stale agents.[/dim]")
        return
    for agent in swept:
        console.print(f"[yellow]unavailable[/yellow] {agent}")
    console.print(f"\nSwept {len(swept)} agent(s).")

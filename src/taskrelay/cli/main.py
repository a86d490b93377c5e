"""Main CLI for the task relay."""

import asyncio
import json
import time
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from ..core.config import load_config
from ..core.orchestrator import Orchestrator
from ..core.task import HookEvent
from ..errors import TaskRelayError
from ..run_worker import run_worker


console = Console()


def _orchestrator(ctx) -> Orchestrator:
    """Build the orchestrator on first use (tests may pre-seed ``ctx.obj``)."""
    if ctx.obj.get("orchestrator") is None:
        ctx.obj["orchestrator"] = Orchestrator(load_config(ctx.obj["config_path"]))
    return ctx.obj["orchestrator"]


def _print(data) -> None:
    console.print_json(json.dumps(data, default=str))


def _fail(ctx, error: Exception) -> None:
    _print({"error": str(error), "type": type(error).__name__})
    ctx.exit(1)


def _parse_payload(ctx, raw: str):
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        _fail(ctx, ValueError(f"--payload is not valid JSON: {e}"))


@click.group()
@click.option("--config", "-c", "config_path", default="config/taskrelay.yaml", help="Config file")
@click.pass_context
def cli(ctx, config_path):
    """Task relay - queue with broker failover and tracked multi-step jobs."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config_path)


@cli.command()
@click.argument("name", default="test-task")
@click.option("--payload", "-p", default='{"message": "Hello"}', help="JSON payload")
@click.pass_context
def enqueue(ctx, name, payload):
    """Enqueue a raw task record."""
    record = _orchestrator(ctx).enqueue({"name": name, "payload": _parse_payload(ctx, payload)})
    _print(record.model_dump(mode="json"))


@cli.command()
@click.argument("name")
@click.option("--payload", "-p", default="{}", help="JSON payload, validated against the job kind")
@click.pass_context
def create(ctx, name, payload):
    """Validate a payload for a registered job kind and enqueue it."""
    try:
        record = _orchestrator(ctx).create_task(name, _parse_payload(ctx, payload))
    except (TaskRelayError, ValidationError) as e:
        _fail(ctx, e)
        return
    _print(record.model_dump(mode="json"))


@cli.command()
@click.pass_context
def dequeue(ctx):
    """Remove and print the next queued task."""
    record = _orchestrator(ctx).dequeue()
    _print(record.model_dump(mode="json") if record else None)


@cli.command()
@click.pass_context
def peek(ctx):
    """Print the next queued task without removing it."""
    record = _orchestrator(ctx).peek()
    _print(record.model_dump(mode="json") if record else None)


@cli.command()
@click.argument("task_id")
@click.pass_context
def remove(ctx, task_id):
    """Cancel a task that is still queued."""
    _print({"task_id": task_id, "removed": _orchestrator(ctx).remove(task_id)})


@cli.command()
@click.pass_context
def stats(ctx):
    """Show waiting counts per backend."""
    _print(_orchestrator(ctx).stats())


@cli.command()
@click.argument("task_id")
@click.pass_context
def status(ctx, task_id):
    """Show the last known status of a task."""
    _print(_orchestrator(ctx).get_task_status(task_id))


@cli.command("list")
@click.pass_context
def list_tasks(ctx):
    """List queued, running and persisted tasks."""
    _print(_orchestrator(ctx).list_tasks())


@cli.command()
@click.pass_context
def jobs(ctx):
    """List registered job kinds."""
    table = Table(title="Job kinds")
    table.add_column("Name", style="cyan")
    table.add_column("Payload")
    table.add_column("Description")

    for definition in _orchestrator(ctx).registry.definitions():
        table.add_row(definition.name, definition.payload_model.__name__, definition.description)

    console.print(table)


@cli.command()
@click.option("--once", is_flag=True, help="Process at most one job and exit")
@click.pass_context
def work(ctx, once):
    """Run the worker loop."""
    orchestrator = _orchestrator(ctx)
    code = asyncio.run(run_worker(orchestrator, once=once))
    ctx.exit(code)


@cli.command("hook-test")
@click.pass_context
def hook_test(ctx):
    """Drive a tracked task through start/progress/complete to exercise hooks."""
    orchestrator = _orchestrator(ctx)
    fired = []

    for event in HookEvent:
        orchestrator.register_hook(event, lambda task_id, payload, e=event: fired.append(e.value))

    task_id = f"hook-test-{int(time.time() * 1000)}"
    orchestrator.tracker.start(task_id, {"test": True})
    orchestrator.tracker.progress(task_id, 50, "Halfway done")
    orchestrator.tracker.complete(task_id, {"result": "ok"})

    _print({"task_id": task_id, "fired": fired, "status": orchestrator.get_task_status(task_id)})


@cli.command("test-fallback")
@click.pass_context
def test_fallback(ctx):
    """Enqueue and dequeue one task, printing stats around it."""
    orchestrator = _orchestrator(ctx)
    console.print("[bold]--- Testing normal operation ---[/]")

    enqueued = orchestrator.enqueue({"name": "fallback-test", "payload": {"test": True}})
    before = orchestrator.stats()
    dequeued = orchestrator.dequeue()
    after = orchestrator.stats()

    _print({
        "enqueued": enqueued.model_dump(mode="json"),
        "stats_after_enqueue": before,
        "dequeued": dequeued.model_dump(mode="json") if dequeued else None,
        "stats_after_dequeue": after,
    })
    console.print("[green]✓ Test complete[/]")


if __name__ == "__main__":
    cli()

"""Session command group - Inspect saved conversations."""

from __future__ import annotations

import datetime as dt

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from luxloop.agent.persistence import SessionStore
from luxloop.agent.session import AgentSession
from luxloop.config import get_config
from luxloop.memory.store import JsonFileStore
from luxloop.tools.registry import ToolRegistry

console = Console()


def _store(path: str | None) -> SessionStore:
    return SessionStore(JsonFileStore(path or get_config().store_path))


@click.group()
def session() -> None:
    """Inspect saved conversation sessions.

    Sessions are saved snapshots of history, pending operations, circuit
    breaker state and any paused batch.
    """


@session.command("list")
@click.option("--path", "-p", type=click.Path(), default=None, help="Session store path")
def session_list(path: str | None) -> None:
    """List saved conversation sessions.

    Examples:

        luxloop session list

        luxloop session list --path ~/my-sessions/
    """
    store = _store(path)
    ids = store.list()

    if not ids:
        console.print("[yellow]No sessions found.[/yellow]")
        return

    table = Table(title="Saved Sessions")
    table.add_column("ID", style="cyan")
    table.add_column("Messages", style="yellow")
    table.add_column("Paused", style="magenta")
    table.add_column("Saved", style="dim")

    for conversation_id in ids:
        data = store.load_snapshot(conversation_id) or {}
        paused = data.get("paused") or {}
        saved_at = data.get("saved_at")
        table.add_row(
            conversation_id,
            str(len(data.get("history", {}).get("messages", []))),
            paused.get("kind", "-"),
            dt.datetime.fromtimestamp(saved_at).strftime("%Y-%m-%d %H:%M") if saved_at else "-",
        )

    console.print(table)


@session.command("show")
@click.argument("conversation_id")
@click.option("--path", "-p", type=click.Path(), default=None, help="Session store path")
def session_show(conversation_id: str, path: str | None) -> None:
    """Show one saved session.

    Examples:

        luxloop session show conv-1
    """
    store = _store(path)
    restored = AgentSession(conversation_id, ToolRegistry())
    try:
        found = store.load(conversation_id, restored)
    except (KeyError, ValueError) as e:
        raise click.ClickException(f"Session {conversation_id} is unreadable: {e}") from e
    if not found:
        raise click.ClickException(f"Session not found: {conversation_id}")

    summary = restored.summary()
    circuit = summary["circuit"]
    console.print(Panel(f"[bold]Session {conversation_id}[/bold]", border_style="cyan"))
    console.print(f"  Task: {summary['task_id'] or '-'}")
    console.print(f"  Messages: {summary['messages']} (~{summary['tokens']} tokens)")
    console.print(
        f"  Circuit: {circuit['state']} "
        f"({circuit['consecutive_failures']}/{circuit['failure_threshold']} failures)"
    )

    if restored.paused is not None:
        paused = restored.paused
        console.print(
            f"  Paused: {paused.kind.value} at call {paused.cursor + 1}/{len(paused.batch)} "
            f"({paused.call.name}, operation #{paused.operation_id})"
        )
    else:
        console.print("  Paused: no")

    pending = restored.approval_queue.pending()
    if not pending:
        console.print("\n[dim]No pending operations.[/dim]")
        return

    table = Table(title="Pending Operations")
    table.add_column("ID", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Description")
    table.add_column("Age", style="dim")
    for operation in pending:
        table.add_row(
            str(operation.id),
            operation.type,
            str(operation.data.get("description", "-")),
            f"{operation.age():.0f}s",
        )
    console.print(table)

"""Config command - Manage Luxloop configuration."""

from __future__ import annotations

from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel

from luxloop.config import get_config, load_config, save_default_config

console = Console()


@click.command()
@click.option("--show", is_flag=True, help="Show current configuration")
@click.option("--init", is_flag=True, help="Create default config file")
@click.option("--path", type=click.Path(), help="Config file path (default: .luxloop/config.yaml)")
def config(show: bool, init: bool, path: str | None) -> None:
    """Manage Luxloop configuration.

    Configuration is loaded from (in priority order):
    1. Environment variables (LUXLOOP_*)
    2. .luxloop/config.yaml (project-local)
    3. ~/.luxloop/config.yaml (user-global)
    4. Built-in defaults

    Examples:

        luxloop config --show              # Show current config
        luxloop config --init              # Create default config file
        luxloop config --init --path ~/.luxloop/config.yaml  # Create global config

    Environment overrides:

        LUXLOOP_LOOP_MAX_ITERATIONS=80 luxloop config --show
        LUXLOOP_CIRCUIT_FAILURE_THRESHOLD=3 luxloop config --show
    """
    if init:
        config_path = path or ".luxloop/config.yaml"
        saved_path = save_default_config(config_path)
        console.print(f"[green]✓ Config file created:[/green] {saved_path}")
        console.print("\n[dim]Edit this file to customize Luxloop behavior.[/dim]")
        return

    cfg = load_config(path) if path else get_config()

    console.print(Panel("[bold]Luxloop Configuration[/bold]", border_style="cyan"))

    console.print("\n[cyan]Loop[/cyan]")
    console.print(f"  Max iterations: {cfg.loop.max_iterations}")
    console.print(f"  Dangerous operations: {', '.join(cfg.loop.dangerous_operations)}")
    console.print(f"  Feedback operations: {', '.join(cfg.loop.feedback_operations)}")

    console.print("\n[cyan]Resilience[/cyan]")
    console.print(f"  Max retries: {cfg.resilience.max_retries}")
    console.print(f"  Backoff (ms): {cfg.resilience.retry_backoff_ms}")
    console.print(f"  Health window: {cfg.resilience.health_window}")
    console.print(f"  Max output chars: {cfg.resilience.max_output_chars}")

    console.print("\n[cyan]Circuit Breaker[/cyan]")
    console.print(f"  Failure threshold: {cfg.circuit.failure_threshold}")
    console.print(f"  Cooldown: {cfg.circuit.cooldown_seconds}s")
    console.print(f"  Warning threshold: {cfg.circuit.warning_threshold}")

    console.print("\n[cyan]Approval Queue[/cyan]")
    console.print(f"  TTL: {cfg.approval.ttl_seconds}s")
    console.print(f"  Max operations: {cfg.approval.max_operations}")

    console.print("\n[cyan]History[/cyan]")
    console.print(f"  Compression threshold: {cfg.history.compression_token_threshold} tokens")
    console.print(f"  Messages preserved: {cfg.history.messages_to_preserve}")

    console.print("\n[cyan]Errors[/cyan]")
    console.print(
        f"  Loop detection: {cfg.errors.loop_threshold} in last {cfg.errors.loop_window}"
    )
    console.print(f"  Repeat failure limit: {cfg.executor.repeat_failure_limit}")

    console.print(f"\n[cyan]Sessions[/cyan]\n  Store path: {cfg.store_path}")

    console.print("\n[dim]Config sources:[/dim]")
    if Path(".luxloop/config.yaml").exists():
        console.print("  [green]✓[/green] .luxloop/config.yaml")
    else:
        console.print("  [dim]○[/dim] .luxloop/config.yaml (not found)")

    home_config = Path.home() / ".luxloop" / "config.yaml"
    if home_config.exists():
        console.print(f"  [green]✓[/green] {home_config}")
    else:
        console.print(f"  [dim]○[/dim] {home_config} (not found)")

"""Main CLI entry point."""

from __future__ import annotations

import logging

import click

from luxloop.cli.config_cmd import config
from luxloop.cli.session_cmd import session


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.version_option(version="0.1.0")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """Luxloop - agentic tool loop with approval-gated writes.

    \b
    Inspect configuration and saved conversations:

        luxloop config --show
        luxloop session list
        luxloop session show conv-1
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


main.add_command(config)
main.add_command(session)

"""Luxloop CLI - Command-line interface."""

from luxloop.cli.main import main

__all__ = ["main"]

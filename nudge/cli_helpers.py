#!/usr/bin/env python3
"""
Nudge CLI Helpers

Shared formatting utilities for consistent CLI output across all commands.
"""

from contextlib import contextmanager

from rich.console import Console

# Single shared Console instance for the entire CLI
console = Console()


def print_success(message: str) -> None:
    """Print a success message with green checkmark."""
    console.print(f"[green]✓[/green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message with yellow triangle."""
    console.print(f"[yellow]⚠[/yellow]  {message}")


def print_error(message: str, fix_hint: str = "") -> None:
    """Print an error message with red X and optional fix hint."""
    console.print(f"[red]✗[/red] {message}")
    if fix_hint:
        console.print(f"  [white]Hint: {fix_hint}[/white]")


@contextmanager
def spinner(message: str):
    """
    Context manager for showing a Rich spinner during long operations.

    Usage:
        with spinner("Running learning cycle"):
            do_slow_work()
    """
    with console.status(f"[bold cyan]{message}...", spinner="dots"):
        yield


def effectiveness_style(value: float) -> str:
    """Rich color for a 0-1 effectiveness value."""
    if value >= 0.6:
        return "green"
    if value >= 0.3:
        return "yellow"
    return "red"


def format_db_size(size: int) -> str:
    if size > 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    if size > 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size} bytes"

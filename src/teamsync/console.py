"""Terminal output helpers for CLI commands, rendered with rich.

Consoles are created per call so terminal detection follows whatever
stdout/stderr are at that moment.
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.markup import escape


def _stdout() -> Console:
    return Console(soft_wrap=True)


def _stderr() -> Console:
    return Console(stderr=True, soft_wrap=True)


def header(title: str) -> None:
    out = _stdout()
    out.print(f"[bold]{escape(title)}[/]")
    out.print(f"[dim]{'-' * len(title)}[/]")


def key_value(key: str, value: Any, indent: int = 2) -> None:
    _stdout().print(
        f"{' ' * indent}[cyan]{escape(key)}:[/] {escape(str(value))}"
    )


def success(message: str) -> None:
    _stdout().print(f"[green]{escape(message)}[/]")


def warning(message: str) -> None:
    _stderr().print(f"[yellow]warning:[/] {escape(message)}")


def error(message: str) -> None:
    _stderr().print(f"[red]error:[/] {escape(message)}")

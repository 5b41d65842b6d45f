from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable
from typing import Any, NoReturn, TypeVar

import typer
from rich.markup import escape
from rich.panel import Panel

from gitchain.core.config import ConfigError
from gitchain.core.console import console
from gitchain.core.result import ChainCancelledError, CommandFailedError, GitChainError

F = TypeVar("F", bound=Callable[..., Any])

# Lines of git output shown under a failed command.
OUTPUT_TAIL_LINES = 12

CANCELLED_EXIT_CODE = 130


def _output_tail(text: str) -> str:
    lines = text.strip().splitlines()
    if len(lines) > OUTPUT_TAIL_LINES:
        lines = ["...", *lines[-OUTPUT_TAIL_LINES:]]
    return "\n".join(lines)


def _handle_exception(exc: Exception) -> NoReturn:
    if isinstance(exc, ChainCancelledError):
        console.print(f"[yellow]Cancelled:[/yellow] {escape(exc.message)}")
        raise typer.Exit(code=CANCELLED_EXIT_CODE)

    console.print(f"[red]{escape(str(exc))}[/red]")
    if isinstance(exc, CommandFailedError):
        output = exc.stderr.strip() or exc.stdout.strip()
        if output:
            console.print(
                Panel(
                    escape(_output_tail(output)),
                    title=f"exit code {exc.returncode}",
                    title_align="left",
                    border_style="red",
                )
            )
    raise typer.Exit(code=1)


def handle_exceptions(func: F) -> F:
    """Decorate CLI entrypoints to present friendly errors and exit cleanly.

    Failed git commands also show the tail of their captured output.
    Cancellation exits with 130 instead of 1.
    """

    if asyncio.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await func(*args, **kwargs)
            except (GitChainError, ConfigError, PermissionError) as exc:
                _handle_exception(exc)

        return async_wrapper  # type: ignore[return-value]

    @functools.wraps(func)
    def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (GitChainError, ConfigError, PermissionError) as exc:
            _handle_exception(exc)

    return sync_wrapper  # type: ignore[return-value]


__all__ = ["handle_exceptions"]

"""CLI application — Click-based command hierarchy for Parallax.

The main group configures logging and holds the global flags. Subcommand
modules register themselves by importing and adding to the group.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any

import click
import structlog

_TRUNCATED_KEYS = {"prompt", "content", "preview", "response"}
_MAX_FIELD_LEN = 80

_logging_configured = False


def _truncate_long_fields(logger, method_name, event_dict):
    """Structlog processor that shortens prompt-sized fields."""
    for key in _TRUNCATED_KEYS:
        val = event_dict.get(key)
        if isinstance(val, str) and len(val) > _MAX_FIELD_LEN:
            event_dict[key] = val[:_MAX_FIELD_LEN] + "... [truncated]"
    return event_dict


def configure_logging(verbose: bool = False) -> None:
    """Configure structlog over standard-library logging.

    Safe to call more than once; only the first call takes effect.
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        return
    _logging_configured = True

    logging.basicConfig(format="%(message)s", level=logging.DEBUG if verbose else logging.WARNING)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            _truncate_long_fields,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


def async_cmd(func):
    """Decorator to run an async Click command via asyncio.run()."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return asyncio.run(func(*args, **kwargs))

    return wrapper


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, no_color: bool) -> None:
    """Parallax - parallel multi-worker code analysis on a local LLM server."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["no_color"] = no_color
    configure_logging(verbose)


def _register_subcommands() -> None:
    """Import and register all subcommands."""
    from parallax.cli.analyze import analyze_cmd, workers_cmd
    from parallax.cli.chat import chat_cmd, models_cmd

    cli.add_command(analyze_cmd)
    cli.add_command(workers_cmd)
    cli.add_command(chat_cmd)
    cli.add_command(models_cmd)


_register_subcommands()

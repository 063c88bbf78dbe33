"""Direct server commands — chat, models."""

from __future__ import annotations

import json as json_mod

import click

from parallax.api import GenerationError, OllamaClient
from parallax.api.ollama import select_preferred_model
from parallax.cli.app import async_cmd
from parallax.cli.formatters import build_table, get_console
from parallax.config import OllamaConfig


def _format_size(size: int) -> str:
    if size <= 0:
        return "-"
    gib = size / (1024 ** 3)
    if gib >= 1:
        return f"{gib:.1f} GiB"
    return f"{size / (1024 ** 2):.0f} MiB"


@click.command("chat")
@click.argument("message")
@click.option("--no-stream", is_flag=True, help="Wait for the whole answer")
@async_cmd
async def chat_cmd(message: str, no_stream: bool) -> None:
    """Send MESSAGE to the configured model and print the answer."""
    async with OllamaClient(OllamaConfig()) as client:
        try:
            if no_stream:
                click.echo(await client.chat(message))
                return
            await client.chat_stream(
                message,
                on_token=lambda fragment: click.echo(fragment, nl=False),
            )
            click.echo()
        except GenerationError as exc:
            raise click.ClickException(str(exc)) from exc


@click.command("models")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
@async_cmd
async def models_cmd(ctx: click.Context, json_output: bool) -> None:
    """List the models installed on the server."""
    async with OllamaClient(OllamaConfig()) as client:
        try:
            models = await client.list_models()
        except GenerationError as exc:
            raise click.ClickException(str(exc)) from exc

    auto_selected = select_preferred_model(models) if models else None
    if json_output:
        click.echo(json_mod.dumps({
            "models": [m.model_dump() for m in models],
            "auto_selected": auto_selected,
        }, indent=2))
        return

    rows = [[m.name, _format_size(m.size), m.modified_at or "-"] for m in models]
    console = get_console(no_color=ctx.obj.get("no_color", False))
    console.print(build_table(f"Models ({len(models)})", ["Name", "Size", "Modified"], rows))
    if auto_selected:
        console.print(f"Auto-selected: [bold]{auto_selected}[/bold]")
    else:
        console.print("No models installed. Try: ollama pull llama3.2:3b")

"""Analysis commands — analyze, workers."""

from __future__ import annotations

import json as json_mod
from pathlib import Path
from typing import Any, Optional

import click
from pydantic import ValidationError
from rich.panel import Panel

from parallax.cli.app import async_cmd
from parallax.cli.formatters import format_ms, get_console, results_table, workers_table
from parallax.config import ParallaxConfig
from parallax.metrics import metrics
from parallax.orchestration import DependencyInfo, NoWorkersAvailableError, Orchestrator


def load_dependencies(path: Optional[Path]) -> list[DependencyInfo]:
    """Read dependency records from a JSON array file."""
    if path is None:
        return []
    try:
        raw: Any = json_mod.loads(path.read_text(encoding="utf-8"))
    except (OSError, json_mod.JSONDecodeError) as exc:
        raise click.BadParameter(f"Cannot read dependency file: {exc}") from exc
    if not isinstance(raw, list):
        raise click.BadParameter("Dependency file must contain a JSON array")
    try:
        return [DependencyInfo.model_validate(item) for item in raw]
    except ValidationError as exc:
        raise click.BadParameter(f"Invalid dependency record: {exc}") from exc


def _build_orchestrator() -> Orchestrator:
    config = ParallaxConfig()
    return Orchestrator(
        ollama_config=config.ollama,
        orchestration_config=config.orchestration,
    )


@click.command("analyze")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--deps",
    "deps_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON array of dependency records",
)
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
@async_cmd
async def analyze_cmd(
    ctx: click.Context,
    file: Path,
    deps_path: Optional[Path],
    json_output: bool,
) -> None:
    """Analyze FILE in parallel across the specialized workers."""
    dependencies = load_dependencies(deps_path)
    content = file.read_text(encoding="utf-8", errors="replace")

    orchestrator = _build_orchestrator()
    try:
        result = await orchestrator.analyze_in_parallel(content, dependencies, str(file))
        stats = orchestrator.worker_stats()
    except NoWorkersAvailableError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        await orchestrator.close()

    if json_output:
        click.echo(json_mod.dumps({
            "result": result.model_dump(),
            "workers": stats,
            "metrics": metrics.snapshot(),
        }, indent=2, ensure_ascii=False, default=str))
        return

    console = get_console(no_color=ctx.obj.get("no_color", False))
    console.print(results_table(result.per_task_results))
    console.print(Panel(result.synthesis, title="Synthesis"))
    perf = result.metrics
    console.print(
        f"[bold]{perf.task_count}[/bold] tasks in {format_ms(perf.total_wall_ms)} "
        f"(efficiency x{perf.efficiency_ratio:.2f})"
    )


@click.command("workers")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
@async_cmd
async def workers_cmd(ctx: click.Context, json_output: bool) -> None:
    """Create and probe the worker pool, then show its state."""
    orchestrator = _build_orchestrator()
    try:
        await orchestrator.initialize()
        stats = orchestrator.worker_stats()
    except NoWorkersAvailableError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        await orchestrator.close()

    if json_output:
        click.echo(json_mod.dumps(stats, indent=2))
        return
    get_console(no_color=ctx.obj.get("no_color", False)).print(workers_table(stats))

"""CLI formatters — console, status markers, result tables."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

from parallax.orchestration.models import is_error_marker


def get_console(no_color: bool = False) -> Console:
    """Get a Rich Console, optionally with color disabled."""
    return Console(no_color=no_color)


def status_indicator(status: str) -> Text:
    """Map a status string to a colored marker."""
    mapping = {
        "ok": Text("> ", style="green"),
        "available": Text("> ", style="green"),
        "busy": Text("~ ", style="yellow"),
        "raw": Text("? ", style="yellow"),
        "error": Text("x ", style="red"),
    }
    return mapping.get(status, Text("- ", style="dim"))


def format_ms(value: float) -> str:
    """Format a millisecond duration in human-readable form."""
    if value < 1000:
        return f"{value:.0f}ms"
    seconds = value / 1000.0
    if seconds < 60:
        return f"{seconds:.1f}s"
    m = int(seconds // 60)
    s = int(seconds % 60)
    return f"{m}m{s:02d}s"


def build_table(title: str, columns: list[str], rows: list[list[Any]]) -> Table:
    """Build a Rich table with standard styling."""
    table = Table(title=title, show_header=True, header_style="bold")
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*(v if isinstance(v, Text) else str(v) for v in row))
    return table


def result_status(value: Any) -> str:
    if is_error_marker(value):
        return "error"
    if isinstance(value, dict) and "rawResult" in value:
        return "raw"
    return "ok"


def preview(value: Any, limit: int = 80) -> str:
    """One-line preview of a task result."""
    if is_error_marker(value):
        text = str(value["error"])
    elif isinstance(value, dict) and "rawResult" in value:
        text = str(value["rawResult"])
    else:
        text = json.dumps(value, ensure_ascii=False, default=str)
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 3] + "..."


def results_table(results: dict[str, Any]) -> Table:
    rows = [
        [status_indicator(result_status(value)) + Text(task_id), result_status(value), preview(value)]
        for task_id, value in sorted(results.items())
    ]
    return build_table("Task results", ["Task", "Status", "Preview"], rows)


def workers_table(stats: dict[str, Any]) -> Table:
    rows = []
    for worker in stats.get("workers", []):
        state = "available" if worker["available"] else "busy"
        rows.append([
            status_indicator(state) + Text(worker["id"]),
            worker["kind"],
            worker["specialization"],
            worker["completed_tasks"],
            format_ms(worker["average_latency_ms"]),
        ])
    title = f"Workers ({stats.get('available_workers', 0)}/{stats.get('total_workers', 0)} available)"
    return build_table(title, ["Worker", "Kind", "Specialization", "Done", "Avg"], rows)

"""
Synthesizer — merges the per-task results into one narrative.

A synthesis worker, when one is idle, writes the narrative. Without one, or
when its call fails, a deterministic summary is built from the results
instead. Either way the caller gets a non-empty string.
"""

from __future__ import annotations

import json
from typing import Any

import structlog

from parallax.metrics import metrics
from parallax.orchestration.executor import TaskExecutor
from parallax.orchestration.models import SynthesisInput, Task, TaskKind, import_results
from parallax.orchestration.pool import WorkerPool

logger = structlog.get_logger(__name__)

BASIC_SYNTHESIS_HEADING = "## Parallel analysis synthesis"


def _to_json(value: Any) -> str:
    try:
        return json.dumps(value, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return repr(value)


def basic_synthesis(results: dict[str, Any]) -> str:
    """Fixed-format summary used when no synthesis worker can help."""
    parts = [BASIC_SYNTHESIS_HEADING, ""]

    main_content = results.get("main-content")
    if main_content:
        parts += [f"**Main content:** {_to_json(main_content)}", ""]

    structure = results.get("global-structure")
    if structure:
        parts += [f"**Structure:** {_to_json(structure)}", ""]

    imports = import_results(results)
    if imports:
        parts += [f"**Imports analyzed:** {len(imports)} imports processed in parallel", ""]

    return "\n".join(parts) + "\n"


def synthesis_sections(results: dict[str, Any]) -> dict[str, Any]:
    imports = import_results(results)
    return {
        "Main content analysis": results.get("main-content"),
        "Structure analysis": results.get("global-structure"),
        f"Import analyses ({len(imports)} imports analyzed)": imports,
    }


class Synthesizer:
    """Produces the final report text for one orchestration run."""

    def __init__(self, pool: WorkerPool, executor: TaskExecutor):
        self._pool = pool
        self._executor = executor

    async def synthesize(self, results: dict[str, Any]) -> str:
        worker = self._pool.find_available(TaskKind.SYNTHESIS)
        if worker is None:
            logger.info("synthesizer.no_worker")
            metrics.inc("orchestrator.synthesis_fallbacks")
            return basic_synthesis(results)

        task = Task(id="synthesis", input=SynthesisInput(sections=synthesis_sections(results)))
        try:
            text = await self._executor.generate_text(task, worker)
        except Exception as exc:
            logger.warning("synthesizer.failed", worker=worker.id, error=str(exc))
            metrics.inc("orchestrator.synthesis_fallbacks")
            return basic_synthesis(results)

        text = text.strip()
        if not text:
            metrics.inc("orchestrator.synthesis_fallbacks")
            return basic_synthesis(results)
        return text

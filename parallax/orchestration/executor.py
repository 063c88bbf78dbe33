"""
Task Executor — runs one task on one worker.

Builds the prompt for the task's payload, calls the worker's generation client
in buffered mode, and pulls a JSON object out of the free-form answer. Models
wrap JSON in prose and code fences often enough that extraction is best-effort:
the first ``{`` through the last ``}`` is tried, and anything unparseable is
kept as raw text instead of failing the task. Only a failed generation call
fails a task.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Callable, Optional

import structlog

from parallax.api.ollama import UnexpectedGenerationError
from parallax.config import OrchestrationConfig
from parallax.metrics import metrics
from parallax.orchestration.models import (
    ContentAnalysisInput,
    DependencyTreeInput,
    ImportAnalysisInput,
    StructureAnalysisInput,
    SynthesisInput,
    Task,
    Worker,
)

logger = structlog.get_logger(__name__)

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

_JSON_INSTRUCTION = "Answer in JSON using the defined format."


def _import_prompt(payload: ImportAnalysisInput) -> str:
    lines = [
        "Analyze this import in detail:",
        f"Source: {payload.source}",
        f"Type: {payload.import_kind}",
        f"Imported names: {', '.join(payload.imported_names)}",
    ]
    if payload.sub_dependency_sources:
        lines.append(f"Its own dependencies: {', '.join(payload.sub_dependency_sources)}")
    lines += ["", "Related code:", "```", payload.extracted_code, "```", "", _JSON_INSTRUCTION]
    return "\n".join(lines)


def _content_prompt(payload: ContentAnalysisInput) -> str:
    return (
        "Analyze this source code in detail:\n\n"
        f"File: {payload.file_name}\n"
        "Content:\n"
        f"```\n{payload.content}\n```\n\n"
        f"{_JSON_INSTRUCTION}"
    )


def _structure_prompt(payload: StructureAnalysisInput) -> str:
    return (
        "Analyze the structure and architecture of this code:\n"
        f"File: {payload.file_name}\n"
        f"Number of imports: {len(payload.dependency_sources)}\n"
        f"Lines of code: {payload.line_count}\n\n"
        "Code:\n"
        f"```\n{payload.content}\n```\n\n"
        f"{_JSON_INSTRUCTION}"
    )


def _dependency_tree_prompt(payload: DependencyTreeInput) -> str:
    sources = ", ".join(dep.source for dep in payload.dependencies)
    return (
        "Analyze the dependency tree of this project:\n"
        f"Main file: {payload.main_file}\n"
        f"Imports: {sources}\n\n"
        "Build a dependency tree and analyze the overall architecture."
    )


def _synthesis_prompt(payload: SynthesisInput) -> str:
    body = "\n\n".join(
        f"{title}:\n{json.dumps(value, indent=2, ensure_ascii=False, default=str)}"
        for title, value in payload.sections.items()
    )
    return (
        "Synthesize these analyses into one coherent, actionable conclusion:\n\n"
        f"{body}\n\n"
        "Provide a clear synthesis with:\n"
        "1. Overview of the code\n"
        "2. Strengths and problems identified\n"
        "3. Priority recommendations\n"
        "4. Conclusion on overall quality"
    )


_PROMPT_BUILDERS: dict[type, Callable[[Any], str]] = {
    ImportAnalysisInput: _import_prompt,
    ContentAnalysisInput: _content_prompt,
    StructureAnalysisInput: _structure_prompt,
    DependencyTreeInput: _dependency_tree_prompt,
    SynthesisInput: _synthesis_prompt,
}


def build_prompt(task: Task) -> str:
    """Render the prompt for a task from its payload."""
    builder = _PROMPT_BUILDERS.get(type(task.input))
    if builder is None:
        return f"Analyze: {task.input.model_dump_json()}"
    return builder(task.input)


def parse_result(text: str, task_kind: str) -> Any:
    """Extract a JSON object from model output, or wrap the raw text."""
    match = _JSON_OBJECT_RE.search(text)
    if match:
        try:
            return json.loads(match.group(0))
        except (ValueError, RecursionError):
            logger.debug("executor.json_parse_failed", task_kind=task_kind)
    return {"rawResult": text, "taskKind": task_kind}


class TaskExecutor:
    """Runs tasks against workers and keeps task/worker state in step."""

    def __init__(self, config: Optional[OrchestrationConfig] = None):
        self._config = config or OrchestrationConfig()

    @property
    def timeout(self) -> float:
        return self._config.worker_timeout

    def options_for(self, worker: Worker) -> dict[str, Any]:
        options = self._config.worker_options()
        options.update(worker.spec.options)
        return options

    async def run(self, task: Task, worker: Worker) -> Any:
        """Execute ``task`` on ``worker`` and return the parsed result.

        Generation failures mark the task failed and are re-raised; the caller
        decides how to record them.
        """
        text = await self.generate_text(task, worker)
        return parse_result(text, task.kind.value)

    async def generate_text(self, task: Task, worker: Worker) -> str:
        """Execute ``task`` on ``worker`` and return the raw answer text.

        The worker is always released, whatever the outcome.
        """
        worker.acquire(task.id)
        task.mark_processing(worker.id)
        logger.info("executor.task_started", task_id=task.id, worker=worker.id)

        try:
            prompt = build_prompt(task)
            try:
                text = await asyncio.wait_for(
                    worker.client.generate(
                        prompt,
                        system=worker.spec.system_prompt,
                        options=self.options_for(worker),
                        timeout=self.timeout,
                    ),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError as exc:
                raise UnexpectedGenerationError(
                    f"Task {task.id} timed out after {self.timeout:.0f}s"
                ) from exc
        except asyncio.CancelledError:
            task.mark_failed("cancelled")
            raise
        except Exception as exc:
            task.mark_failed(str(exc) or type(exc).__name__)
            metrics.inc("orchestrator.tasks_failed")
            logger.warning(
                "executor.task_failed",
                task_id=task.id,
                worker=worker.id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        else:
            task.mark_completed(text)
            duration_ms = task.duration_ms or 0.0
            worker.record_completion(duration_ms)
            metrics.inc("orchestrator.tasks_completed")
            metrics.observe("orchestrator.task_seconds", duration_ms / 1000.0)
            logger.info(
                "executor.task_completed",
                task_id=task.id,
                worker=worker.id,
                duration_ms=round(duration_ms),
            )
            return text
        finally:
            worker.release()

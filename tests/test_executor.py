"""Tests for parallax.orchestration.executor — prompts, parsing, task execution."""

from __future__ import annotations

import asyncio
from unittest.mock import PropertyMock, patch

import pytest

from parallax.api.ollama import ProtocolError, UnexpectedGenerationError
from parallax.config import OrchestrationConfig
from parallax.metrics import metrics
from parallax.orchestration.executor import TaskExecutor, build_prompt, parse_result
from parallax.orchestration.models import (
    ContentAnalysisInput,
    DependencyInfo,
    DependencyTreeInput,
    ImportAnalysisInput,
    StructureAnalysisInput,
    SynthesisInput,
    Task,
    TaskKind,
    TaskStatus,
)


def _import_task(task_id: str = "import-0") -> Task:
    return Task(
        id=task_id,
        input=ImportAnalysisInput(
            source="lodash",
            import_kind="named",
            imported_names=["debounce", "throttle"],
            extracted_code="debounce(fn, 100)",
            sub_dependency_sources=["lodash.debounce"],
        ),
    )


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


class TestBuildPrompt:
    def test_import_prompt(self) -> None:
        prompt = build_prompt(_import_task())
        assert "Source: lodash" in prompt
        assert "Type: named" in prompt
        assert "Imported names: debounce, throttle" in prompt
        assert "Its own dependencies: lodash.debounce" in prompt
        assert "debounce(fn, 100)" in prompt

    def test_content_prompt(self) -> None:
        task = Task(id="main-content", input=ContentAnalysisInput(file_name="app.ts", content="let a = 1"))
        prompt = build_prompt(task)
        assert "File: app.ts" in prompt
        assert "let a = 1" in prompt

    def test_structure_prompt(self) -> None:
        payload = StructureAnalysisInput(
            file_name="app.ts", content="x", dependency_sources=["a", "b"], line_count=42
        )
        prompt = build_prompt(Task(id="global-structure", input=payload))
        assert "Number of imports: 2" in prompt
        assert "Lines of code: 42" in prompt

    def test_dependency_tree_prompt(self) -> None:
        payload = DependencyTreeInput(
            main_file="app.ts",
            dependencies=[DependencyInfo(source="react"), DependencyInfo(source="lodash")],
        )
        prompt = build_prompt(Task(id="dependency-tree", input=payload))
        assert "Main file: app.ts" in prompt
        assert "Imports: react, lodash" in prompt

    def test_synthesis_prompt(self) -> None:
        payload = SynthesisInput(sections={"Main content analysis": {"purpose": "demo"}})
        prompt = build_prompt(Task(id="synthesis", input=payload))
        assert "Main content analysis:" in prompt
        assert '"purpose": "demo"' in prompt
        assert "3. Priority recommendations" in prompt


# ---------------------------------------------------------------------------
# Result parsing
# ---------------------------------------------------------------------------


class TestParseResult:
    def test_json_embedded_in_prose(self) -> None:
        text = 'Sure! Here it is:\n```json\n{"complexity": 3, "risks": []}\n```\nDone.'
        assert parse_result(text, "import-analysis") == {"complexity": 3, "risks": []}

    def test_no_json_keeps_raw_text(self) -> None:
        assert parse_result("just words", "content-analysis") == {
            "rawResult": "just words",
            "taskKind": "content-analysis",
        }

    def test_invalid_json_keeps_raw_text(self) -> None:
        result = parse_result("{not: valid}", "structure-analysis")
        assert result == {"rawResult": "{not: valid}", "taskKind": "structure-analysis"}

    def test_greedy_match_spans_first_to_last_brace(self) -> None:
        result = parse_result('{"a": 1} and {"b": 2}', "import-analysis")
        assert result["taskKind"] == "import-analysis"
        assert "rawResult" in result

    def test_too_deeply_nested_json_keeps_raw_text(self) -> None:
        text = '{"a":' * 5000 + "1" + "}" * 5000
        result = parse_result(text, "content-analysis")
        assert result == {"rawResult": text, "taskKind": "content-analysis"}


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class TestTaskExecutor:
    @pytest.mark.asyncio
    async def test_success_updates_task_and_worker(self, fake_client, make_worker) -> None:
        client = fake_client('{"purpose": "utility"}')
        worker = make_worker("import-analyzer-1", TaskKind.IMPORT_ANALYSIS, client)
        task = _import_task()

        result = await TaskExecutor().run(task, worker)

        assert result == {"purpose": "utility"}
        assert task.status is TaskStatus.COMPLETED
        assert task.assigned_worker == "import-analyzer-1"
        assert worker.available is True
        assert worker.completed_count == 1
        assert metrics.counter("orchestrator.tasks_completed") == 1

    @pytest.mark.asyncio
    async def test_passes_system_prompt_and_merged_options(self, fake_client, make_worker) -> None:
        client = fake_client()
        worker = make_worker(
            "w",
            TaskKind.IMPORT_ANALYSIS,
            client,
            system_prompt="You analyze imports.",
            options={"temperature": 0.1, "top_p": 0.7},
        )
        executor = TaskExecutor(OrchestrationConfig(worker_timeout=30.0))
        await executor.run(_import_task(), worker)

        call = client.calls[0]
        assert call["system"] == "You analyze imports."
        assert call["options"] == {"temperature": 0.1, "top_p": 0.7, "num_predict": 500, "num_ctx": 2048}
        assert call["timeout"] == 30.0

    @pytest.mark.asyncio
    async def test_failure_marks_task_failed_and_releases_worker(self, fake_client, make_worker) -> None:
        client = fake_client(error=ProtocolError("Generation server returned HTTP 500", status_code=500))
        worker = make_worker("w", TaskKind.IMPORT_ANALYSIS, client)
        task = _import_task()

        with pytest.raises(ProtocolError):
            await TaskExecutor().run(task, worker)

        assert task.status is TaskStatus.FAILED
        assert "HTTP 500" in task.error
        assert worker.available is True
        assert worker.completed_count == 0
        assert metrics.counter("orchestrator.tasks_failed") == 1

    @pytest.mark.asyncio
    async def test_unparseable_answer_is_not_a_failure(self, fake_client, make_worker) -> None:
        worker = make_worker("w", TaskKind.IMPORT_ANALYSIS, fake_client("no json here"))
        task = _import_task()
        result = await TaskExecutor().run(task, worker)
        assert result["rawResult"] == "no json here"
        assert task.status is TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_deeply_nested_answer_is_not_a_failure(self, fake_client, make_worker) -> None:
        nested = '{"a":' * 5000 + "1" + "}" * 5000
        worker = make_worker("w", TaskKind.IMPORT_ANALYSIS, fake_client(nested))
        task = _import_task()
        result = await TaskExecutor().run(task, worker)
        assert result["rawResult"] == nested
        assert task.status is TaskStatus.COMPLETED
        assert worker.available is True
        assert metrics.counter("orchestrator.tasks_failed") == 0

    @pytest.mark.asyncio
    async def test_timeout_fails_task(self, fake_client, make_worker) -> None:
        worker = make_worker("w", TaskKind.IMPORT_ANALYSIS, fake_client(delay=1.0))
        task = _import_task()
        with patch.object(TaskExecutor, "timeout", new_callable=PropertyMock, return_value=0.01):
            with pytest.raises(UnexpectedGenerationError, match="timed out"):
                await TaskExecutor().run(task, worker)
        assert task.status is TaskStatus.FAILED
        assert worker.available is True

    @pytest.mark.asyncio
    async def test_busy_worker_is_rejected_before_task_starts(self, make_worker) -> None:
        worker = make_worker("w", TaskKind.IMPORT_ANALYSIS)
        worker.acquire("other")
        task = _import_task()
        with pytest.raises(RuntimeError):
            await TaskExecutor().run(task, worker)
        assert task.status is TaskStatus.PENDING
        assert worker.current_task_id == "other"

    @pytest.mark.asyncio
    async def test_cancellation_marks_task_failed(self, fake_client, make_worker) -> None:
        worker = make_worker("w", TaskKind.IMPORT_ANALYSIS, fake_client(delay=5.0))
        task = _import_task()
        running = asyncio.ensure_future(TaskExecutor().run(task, worker))
        await asyncio.sleep(0.01)
        running.cancel()
        with pytest.raises(asyncio.CancelledError):
            await running
        assert task.status is TaskStatus.FAILED
        assert task.error == "cancelled"
        assert worker.available is True

    @pytest.mark.asyncio
    async def test_running_average_over_sequential_tasks(self, fake_client, make_worker) -> None:
        worker = make_worker("w", TaskKind.IMPORT_ANALYSIS, fake_client(delay=0.01))
        executor = TaskExecutor()
        tasks = [_import_task(f"import-{i}") for i in range(3)]
        for task in tasks:
            await executor.run(task, worker)
        expected = sum(t.duration_ms for t in tasks) / 3
        assert worker.completed_count == 3
        assert worker.average_latency_ms == pytest.approx(expected)

"""Tests for parallax.orchestration.synthesizer — report generation and fallback."""

from __future__ import annotations

import pytest

from parallax.api.ollama import GenerationConnectionError
from parallax.metrics import metrics
from parallax.orchestration.executor import TaskExecutor
from parallax.orchestration.models import TaskKind, error_marker
from parallax.orchestration.pool import WorkerPool
from parallax.orchestration.synthesizer import (
    BASIC_SYNTHESIS_HEADING,
    Synthesizer,
    basic_synthesis,
    synthesis_sections,
)


RESULTS = {
    "main-content": {"mainPurpose": "render the app"},
    "global-structure": {"architecture": "component"},
    "import-0": {"purpose": "ui"},
    "import-1": error_marker("Cannot connect"),
}


class TestBasicSynthesis:
    def test_empty_results_still_produce_text(self) -> None:
        text = basic_synthesis({})
        assert text.strip() == BASIC_SYNTHESIS_HEADING

    def test_sections(self) -> None:
        text = basic_synthesis(RESULTS)
        assert text.startswith(BASIC_SYNTHESIS_HEADING)
        assert '**Main content:** {\n  "mainPurpose": "render the app"\n}' in text
        assert "**Structure:**" in text
        assert "**Imports analyzed:** 2 imports processed in parallel" in text

    def test_omits_missing_sections(self) -> None:
        text = basic_synthesis({"import-0": {}})
        assert "**Main content:**" not in text
        assert "**Structure:**" not in text
        assert "1 imports processed" in text

    def test_sections_for_prompt(self) -> None:
        sections = synthesis_sections(RESULTS)
        assert sections["Main content analysis"] == {"mainPurpose": "render the app"}
        assert sections["Import analyses (2 imports analyzed)"][1] == error_marker("Cannot connect")


class TestSynthesizer:
    @pytest.mark.asyncio
    async def test_uses_synthesis_worker(self, fake_client, make_worker) -> None:
        client = fake_client("  Overall the code is clean.  ")
        pool = WorkerPool([make_worker("synthesizer-1", TaskKind.SYNTHESIS, client)])

        text = await Synthesizer(pool, TaskExecutor()).synthesize(RESULTS)

        assert text == "Overall the code is clean."
        assert "render the app" in client.calls[0]["prompt"]
        assert metrics.counter("orchestrator.synthesis_fallbacks") == 0

    @pytest.mark.asyncio
    async def test_no_synthesis_worker_falls_back(self, make_worker) -> None:
        pool = WorkerPool([make_worker("content-analyzer-1", TaskKind.CONTENT_ANALYSIS)])
        text = await Synthesizer(pool, TaskExecutor()).synthesize(RESULTS)
        assert text == basic_synthesis(RESULTS)
        assert metrics.counter("orchestrator.synthesis_fallbacks") == 1

    @pytest.mark.asyncio
    async def test_failed_synthesis_falls_back(self, fake_client, make_worker) -> None:
        client = fake_client(error=GenerationConnectionError("Cannot connect"))
        worker = make_worker("synthesizer-1", TaskKind.SYNTHESIS, client)
        pool = WorkerPool([worker])

        text = await Synthesizer(pool, TaskExecutor()).synthesize(RESULTS)

        assert text.startswith(BASIC_SYNTHESIS_HEADING)
        assert worker.available is True
        assert metrics.counter("orchestrator.synthesis_fallbacks") == 1

    @pytest.mark.asyncio
    async def test_blank_answer_falls_back(self, fake_client, make_worker) -> None:
        pool = WorkerPool([make_worker("synthesizer-1", TaskKind.SYNTHESIS, fake_client("   "))])
        text = await Synthesizer(pool, TaskExecutor()).synthesize({})
        assert text.strip() == BASIC_SYNTHESIS_HEADING

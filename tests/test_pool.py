"""Tests for parallax.orchestration.pool — worker creation, probing, stats."""

from __future__ import annotations

import pytest

from parallax.metrics import metrics
from parallax.orchestration.models import TaskKind
from parallax.orchestration.pool import DEFAULT_WORKER_SPECS, NoWorkersAvailableError, WorkerPool


class TestDefaultSpecs:
    def test_default_roster(self) -> None:
        kinds = [spec.kind for spec in DEFAULT_WORKER_SPECS]
        assert kinds.count(TaskKind.IMPORT_ANALYSIS) == 2
        assert kinds.count(TaskKind.CONTENT_ANALYSIS) == 1
        assert kinds.count(TaskKind.STRUCTURE_ANALYSIS) == 1
        assert kinds.count(TaskKind.SYNTHESIS) == 1

    def test_default_specs_have_system_prompts(self) -> None:
        assert all(spec.system_prompt for spec in DEFAULT_WORKER_SPECS)


class TestWorkerPool:
    def test_create_builds_one_client_per_spec(self, fake_client) -> None:
        created = []

        def factory(spec):
            created.append(spec.worker_id)
            return fake_client()

        pool = WorkerPool.create(DEFAULT_WORKER_SPECS, factory)
        assert len(pool) == len(DEFAULT_WORKER_SPECS)
        assert created == [spec.worker_id for spec in DEFAULT_WORKER_SPECS]

    def test_duplicate_ids_rejected(self, fake_client, make_spec) -> None:
        spec = make_spec("w", TaskKind.SYNTHESIS)
        with pytest.raises(ValueError, match="Duplicate"):
            WorkerPool.create([spec, spec], lambda s: fake_client())

    @pytest.mark.asyncio
    async def test_validate_removes_dead_workers(self, fake_client, make_worker) -> None:
        dead = fake_client(alive=False)
        crashed = fake_client(connection_error=OSError("connection check crashed"))
        pool = WorkerPool([
            make_worker("alive", TaskKind.IMPORT_ANALYSIS),
            make_worker("dead", TaskKind.IMPORT_ANALYSIS, dead),
            make_worker("crashed", TaskKind.CONTENT_ANALYSIS, crashed),
        ])

        await pool.validate()

        assert [w.id for w in pool] == ["alive"]
        assert dead.closed and crashed.closed
        assert metrics.gauge("pool.workers") == 1

    @pytest.mark.asyncio
    async def test_validate_with_no_survivors_raises(self, fake_client, make_worker) -> None:
        pool = WorkerPool([make_worker("dead", TaskKind.SYNTHESIS, fake_client(alive=False))])
        metrics.set_gauge("pool.workers", 3)
        with pytest.raises(NoWorkersAvailableError, match="No functioning workers"):
            await pool.validate()
        assert metrics.gauge("pool.workers") == 0

    def test_available_workers_filters_kind_and_busy(self, make_worker) -> None:
        a = make_worker("a", TaskKind.IMPORT_ANALYSIS)
        b = make_worker("b", TaskKind.IMPORT_ANALYSIS)
        c = make_worker("c", TaskKind.CONTENT_ANALYSIS)
        pool = WorkerPool([a, b, c])
        b.acquire("t")
        assert pool.available_workers(TaskKind.IMPORT_ANALYSIS) == [a]
        assert pool.find_available(TaskKind.SYNTHESIS) is None

    def test_stats(self, make_worker) -> None:
        a = make_worker("a", TaskKind.IMPORT_ANALYSIS)
        b = make_worker("b", TaskKind.SYNTHESIS)
        a.acquire("import-0")
        stats = WorkerPool([a, b]).stats()
        assert stats["total_workers"] == 2
        assert stats["available_workers"] == 1
        assert stats["workers"][0]["current_task"] == "import-0"

    @pytest.mark.asyncio
    async def test_close_closes_clients(self, fake_client, make_worker) -> None:
        client = fake_client()
        pool = WorkerPool([make_worker("a", TaskKind.SYNTHESIS, client)])
        await pool.validate()
        assert metrics.gauge("pool.workers") == 1
        await pool.close()
        assert client.closed
        assert metrics.gauge("pool.workers") == 0

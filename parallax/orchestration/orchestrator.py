"""
Orchestrator — the single entry point for parallel file analysis.

One instance owns one worker pool. ``analyze_in_parallel`` builds the task
list, runs every task group concurrently, waits for all of them to settle,
then synthesizes a report and computes timing metrics.

Key rules:
  - Pool creation is lazy, single-flight, and fatal when no worker survives.
  - Each worker runs its share of a group serially (one lane per worker), so
    a worker never holds two tasks at once; lanes and groups run concurrently.
  - A failed task is recorded as an error marker and never aborts its siblings.
  - Runs on the same instance are serialized; they share the pool.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Sequence, Union

import structlog

from parallax.api.ollama import OllamaClient
from parallax.config import OllamaConfig, OrchestrationConfig
from parallax.metrics import metrics
from parallax.orchestration.executor import TaskExecutor
from parallax.orchestration.models import (
    DependencyInfo,
    OrchestrationResult,
    PerformanceMetrics,
    Task,
    Worker,
    WorkerSpec,
    error_marker,
)
from parallax.orchestration.pool import DEFAULT_WORKER_SPECS, WorkerPool
from parallax.orchestration.scheduler import assign_round_robin, build_tasks, group_by_kind
from parallax.orchestration.synthesizer import Synthesizer

logger = structlog.get_logger(__name__)


class OrchestratorStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


def calculate_efficiency(tasks: Sequence[Task], total_wall_ms: float) -> float:
    """Sum of task durations over wall time; 1.0 when nothing was timed."""
    sequential_ms = sum(t.duration_ms or 0.0 for t in tasks)
    if sequential_ms <= 0 or total_wall_ms <= 0:
        return 1.0
    return sequential_ms / total_wall_ms


class Orchestrator:
    """Coordinates specialized workers over one analysis request at a time."""

    def __init__(
        self,
        ollama_config: Optional[OllamaConfig] = None,
        orchestration_config: Optional[OrchestrationConfig] = None,
        worker_specs: Optional[Iterable[WorkerSpec]] = None,
        client_factory: Optional[Callable[[WorkerSpec], Any]] = None,
    ):
        self._ollama_config = ollama_config
        self._orchestration_config = orchestration_config or OrchestrationConfig()
        self._worker_specs = list(worker_specs) if worker_specs is not None else list(DEFAULT_WORKER_SPECS)
        self._client_factory = client_factory or self._default_client_factory

        self._executor = TaskExecutor(self._orchestration_config)
        self._pool: Optional[WorkerPool] = None
        self._synthesizer: Optional[Synthesizer] = None

        self._status = OrchestratorStatus.UNINITIALIZED
        self._init_lock = asyncio.Lock()
        self._run_lock = asyncio.Lock()

    def _default_client_factory(self, spec: WorkerSpec) -> OllamaClient:
        if self._ollama_config is None:
            self._ollama_config = OllamaConfig()
        return OllamaClient(self._ollama_config)

    @property
    def status(self) -> OrchestratorStatus:
        return self._status

    @property
    def pool(self) -> Optional[WorkerPool]:
        return self._pool

    async def initialize(self) -> None:
        """Create and validate the worker pool. Safe to call repeatedly.

        Concurrent callers wait on the same attempt. A failed attempt leaves
        the status FAILED and may be retried.
        """
        if self._status is OrchestratorStatus.READY:
            return
        async with self._init_lock:
            if self._status is OrchestratorStatus.READY:
                return
            self._status = OrchestratorStatus.INITIALIZING
            logger.info("orchestrator.initializing", workers=len(self._worker_specs))

            pool: Optional[WorkerPool] = None
            try:
                pool = WorkerPool.create(self._worker_specs, self._client_factory)
                await pool.validate()
            except Exception as exc:
                self._status = OrchestratorStatus.FAILED
                if pool is not None:
                    await pool.close()
                logger.error("orchestrator.initialization_failed", error=str(exc))
                raise

            self._pool = pool
            self._synthesizer = Synthesizer(pool, self._executor)
            self._status = OrchestratorStatus.READY
            logger.info("orchestrator.initialized", workers=len(pool))

    async def analyze_in_parallel(
        self,
        file_content: str,
        dependencies: Sequence[Union[DependencyInfo, dict[str, Any]]],
        file_label: str,
    ) -> OrchestrationResult:
        """Analyze one file and its dependencies across the worker pool."""
        await self.initialize()
        assert self._pool is not None and self._synthesizer is not None

        deps = [
            d if isinstance(d, DependencyInfo) else DependencyInfo.model_validate(d)
            for d in dependencies
        ]

        async with self._run_lock:
            start = time.monotonic()
            logger.info("orchestrator.run_started", file=file_label, dependencies=len(deps))

            tasks = build_tasks(file_content, deps, file_label)
            results = await self._execute_tasks(tasks)
            synthesis = await self._synthesizer.synthesize(results)

            total_wall_ms = (time.monotonic() - start) * 1000.0
            efficiency = calculate_efficiency(tasks, total_wall_ms)
            metrics.set_gauge("orchestrator.efficiency_ratio", efficiency)
            logger.info(
                "orchestrator.run_complete",
                file=file_label,
                tasks=len(tasks),
                results=len(results),
                total_ms=round(total_wall_ms),
                efficiency=round(efficiency, 2),
            )

            return OrchestrationResult(
                per_task_results=results,
                synthesis=synthesis,
                metrics=PerformanceMetrics(
                    total_wall_ms=total_wall_ms,
                    task_count=len(tasks),
                    efficiency_ratio=efficiency,
                ),
            )

    async def _execute_tasks(self, tasks: Sequence[Task]) -> dict[str, Any]:
        assert self._pool is not None
        results: dict[str, Any] = {}
        lanes = []

        for kind, group in group_by_kind(tasks).items():
            # Availability is sampled once per group.
            workers = self._pool.available_workers(kind)
            if not workers:
                logger.warning(
                    "orchestrator.no_worker_for_kind",
                    kind=kind.value,
                    skipped=[t.id for t in group],
                )
                metrics.inc("orchestrator.groups_skipped")
                continue
            for worker, lane in assign_round_robin(group, workers):
                lanes.append(self._run_lane(worker, lane, results))

        logger.info("orchestrator.dispatch", tasks=len(tasks), lanes=len(lanes))
        await asyncio.gather(*lanes)
        return results

    async def _run_lane(
        self,
        worker: Worker,
        lane: Sequence[Task],
        results: dict[str, Any],
    ) -> None:
        for task in lane:
            try:
                results[task.id] = await self._executor.run(task, worker)
            except Exception as exc:
                results[task.id] = error_marker(str(exc) or type(exc).__name__)

    def worker_stats(self) -> dict[str, Any]:
        """Snapshot of worker availability and running statistics."""
        if self._pool is None:
            return {"total_workers": 0, "available_workers": 0, "workers": []}
        return self._pool.stats()

    async def close(self) -> None:
        """Close worker clients; the next call re-initializes."""
        async with self._init_lock:
            if self._pool is not None:
                await self._pool.close()
            self._pool = None
            self._synthesizer = None
            self._status = OrchestratorStatus.UNINITIALIZED

    async def __aenter__(self) -> "Orchestrator":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
